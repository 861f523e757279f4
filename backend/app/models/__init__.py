"""Database model exports."""

from .journal import TradeGroupRecord, UploadedFile

__all__ = [
    "TradeGroupRecord",
    "UploadedFile",
]
