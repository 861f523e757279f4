"""Spreadsheet upload and broker sync endpoints."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from app.api.dependencies.context import (
    RequestContext,
    get_broker_client,
    get_journal_service,
    get_request_context,
)
from app.ingest.spreadsheet import read_rows
from app.providers.broker import BrokerClient, BrokerServiceError
from app.schemas import BrokerSyncRequest, ImportSummarySchema, UploadDeletedSchema, UploadedFileSchema
from app.services.imports import JournalService
from trade_journal.normalizers import SpreadsheetFormatError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/upload", response_model=ImportSummarySchema)
async def upload_spreadsheet(
    file: UploadFile = File(...),
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> ImportSummarySchema:
    filename = file.filename or "upload.csv"
    content = await file.read()
    if len(content) > service.settings.max_upload_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Upload too large")
    try:
        rows = await asyncio.to_thread(read_rows, content, filename)
        summary = await service.import_spreadsheet(context.user_id, filename, rows)
    except SpreadsheetFormatError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ImportSummarySchema.model_validate(summary)


@router.get("/uploads", response_model=list[UploadedFileSchema])
async def list_uploads(
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> list[UploadedFileSchema]:
    uploads = await service.list_uploads(context.user_id)
    return [UploadedFileSchema.model_validate(item) for item in uploads]


@router.delete("/uploads/{filename}", response_model=UploadDeletedSchema)
async def delete_upload(
    filename: str,
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> UploadDeletedSchema:
    uploads = {item.filename for item in await service.list_uploads(context.user_id)}
    if filename not in uploads:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upload not found")
    removed = await service.delete_upload(context.user_id, filename)
    return UploadDeletedSchema(filename=filename, removed=removed)


@router.post("/broker/sync", response_model=ImportSummarySchema)
async def sync_broker(
    payload: BrokerSyncRequest,
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
    client: BrokerClient = Depends(get_broker_client),
) -> ImportSummarySchema:
    try:
        summary = await service.sync_broker(context.user_id, client, payload.access_token)
    except BrokerServiceError as exc:
        logger.warning("Broker account listing failed for user %s: %s", context.user_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    if not summary.success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Broker sync failed for every account: {', '.join(summary.accounts_failed)}",
        )
    return ImportSummarySchema.model_validate(summary)


__all__ = ["router"]
