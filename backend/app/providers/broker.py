"""Client for the broker's trader REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


class BrokerServiceError(RuntimeError):
    """Raised when the broker API is unreachable or returns an error."""


@dataclass(frozen=True)
class BrokerAccount:
    account_number: str
    hash_value: str


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class BrokerClient:
    """Thin async wrapper over the account and transaction endpoints.

    The caller owns the OAuth flow and passes a bearer token per call. An
    existing ``httpx.AsyncClient`` (or anything exposing a compatible ``get``)
    can be injected, which is how the tests stub the network.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        client: Any | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.broker_api_base_url).rstrip("/")
        self._timeout = timeout_seconds or settings.broker_http_timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _get(self, path: str, access_token: str, params: dict[str, Any] | None = None) -> Any:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            response = await self._client.get(url, params=params or {}, headers=headers)
        except httpx.HTTPError as exc:
            raise BrokerServiceError(f"Failed to reach broker API: {exc}") from exc

        if response.status_code >= 400:
            detail: Any
            try:
                payload = response.json()
                detail = payload.get("message") or payload.get("errors") or payload
            except (ValueError, AttributeError):
                detail = getattr(response, "text", "")
            raise BrokerServiceError(f"Broker API error {response.status_code}: {detail}")

        try:
            return response.json()
        except ValueError as exc:
            raise BrokerServiceError("Broker API returned invalid JSON payload") from exc

    async def list_accounts(self, access_token: str) -> list[BrokerAccount]:
        payload = await self._get("/accounts/accountNumbers", access_token)
        if not isinstance(payload, list):
            raise BrokerServiceError("Broker account listing is not a list")
        accounts: list[BrokerAccount] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            number = str(item.get("accountNumber") or "").strip()
            hash_value = str(item.get("hashValue") or "").strip()
            if number and hash_value:
                accounts.append(BrokerAccount(account_number=number, hash_value=hash_value))
        return accounts

    async def fetch_transactions(
        self,
        access_token: str,
        account_hash: str,
        start: datetime,
        end: datetime,
        types: str = "TRADE",
    ) -> list[dict[str, Any]]:
        """Return raw transaction records for one account between ``start`` and ``end``."""

        params = {
            "startDate": _format_timestamp(start),
            "endDate": _format_timestamp(end),
            "types": types,
        }
        payload = await self._get(f"/accounts/{account_hash}/transactions", access_token, params)
        if isinstance(payload, dict):
            payload = payload.get("transactions", [])
        if not isinstance(payload, list):
            raise BrokerServiceError("Broker transaction response is not a list")
        logger.debug("Fetched %d broker records for account %s", len(payload), account_hash)
        return [item for item in payload if isinstance(item, dict)]

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["BrokerServiceError", "BrokerAccount", "BrokerClient"]
