"""Turn uploaded spreadsheet bytes into plain rows for the manual normalizer."""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from typing import Any

import pandas as pd

from trade_journal.normalizers import SpreadsheetFormatError

logger = logging.getLogger(__name__)

_EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xls")


def _decode(content: bytes) -> str:
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise SpreadsheetFormatError("Unable to decode CSV upload")


def _frame_to_rows(frame: pd.DataFrame) -> list[list[Any]]:
    cleaned = frame.astype(object).where(pd.notna(frame), None)
    return [list(row) for row in cleaned.itertuples(index=False, name=None)]


def read_rows(content: bytes, filename: str) -> list[list[Any]]:
    """Read ``content`` without treating any row as a header.

    CSV files are parsed as text; Excel workbooks keep native numbers and
    datetimes. Empty cells come back as ``None``.
    """

    if not content:
        raise SpreadsheetFormatError("Uploaded file is empty")
    name = filename.lower()
    try:
        if name.endswith(".csv"):
            text = _decode(content)
            width = max((len(row) for row in csv.reader(io.StringIO(text))), default=0)
            if width == 0:
                raise SpreadsheetFormatError("Uploaded file is empty")
            frame = pd.read_csv(
                io.StringIO(text),
                header=None,
                names=list(range(width)),
                dtype=str,
                keep_default_na=False,
                na_values=[""],
                skip_blank_lines=False,
            )
        elif name.endswith(_EXCEL_SUFFIXES):
            frame = pd.read_excel(io.BytesIO(content), header=None)
        else:
            raise SpreadsheetFormatError(f"Unsupported file type: {filename}")
    except SpreadsheetFormatError:
        raise
    except (ValueError, OSError, zipfile.BadZipFile, pd.errors.ParserError) as exc:
        raise SpreadsheetFormatError(f"Could not read {filename}: {exc}") from exc

    rows = _frame_to_rows(frame)
    logger.debug("Read %d rows from %s", len(rows), filename)
    return rows


__all__ = ["read_rows"]
