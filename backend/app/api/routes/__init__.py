"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .imports import router as imports_router
from .trades import router as trades_router

api_router = APIRouter()
api_router.include_router(imports_router, prefix="/imports", tags=["imports"])
api_router.include_router(trades_router, prefix="/trades", tags=["trades"])

__all__ = ["api_router"]
