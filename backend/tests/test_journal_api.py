"""Journal HTTP API tests."""

from __future__ import annotations

from decimal import Decimal

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.api.dependencies.context import get_broker_client, get_journal_service
from app.api.routes import api_router
from app.providers.broker import BrokerAccount, BrokerServiceError
from app.services.imports import JournalService
from app.services.journal_store import InMemoryTradeGroupStore

EXPORT_CSV = (
    "Account Statement for 123456\n"
    "\n"
    "Account Trade History\n"
    ",Exec Time,Side,Qty,Pos Effect,Symbol,Exp,Strike,Type,Price,Order Type\n"
    ",3/1/24 09:30:00,BUY,+10,TO OPEN,AAPL,15 MAR 24,150,CALL,2.00,LMT\n"
    ",3/1/24 11:00:00,SELL,-10,TO CLOSE,AAPL,15 MAR 24,150,CALL,3.00,LMT\n"
    ",3/4/24 10:00:00,BUY,+2,TO OPEN,MSFT,15 MAR 24,400,PUT,4.00,LMT\n"
).encode()

USER = {"X-User-Id": "user-1"}


class StubBroker:
    def __init__(self, fail_listing: bool = False) -> None:
        self.fail_listing = fail_listing

    async def list_accounts(self, access_token: str) -> list[BrokerAccount]:
        if self.fail_listing:
            raise BrokerServiceError("Broker API error 401: Unauthorized")
        return [BrokerAccount(account_number="1234", hash_value="H1")]

    async def fetch_transactions(self, access_token, account_hash, start, end, types):
        raise BrokerServiceError("Broker API error 500: down")


def _app(settings, broker: StubBroker | None = None) -> FastAPI:
    app = FastAPI()
    app.include_router(api_router)
    service = JournalService(InMemoryTradeGroupStore(), settings)
    app.dependency_overrides[get_journal_service] = lambda: service
    app.dependency_overrides[get_broker_client] = lambda: broker or StubBroker()
    return app


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _upload(client: AsyncClient, filename: str = "march.csv", content: bytes = EXPORT_CSV):
    return await client.post("/imports/upload", files={"file": (filename, content, "text/csv")}, headers=USER)


async def test_upload_then_list_trades(settings):
    async with _client(_app(settings)) as client:
        upload = await _upload(client)
        trades = await client.get("/trades", headers=USER)
        uploads = await client.get("/imports/uploads", headers=USER)

    assert upload.status_code == 200
    summary = upload.json()
    assert summary["success"] is True
    assert summary["processed"] == 3
    assert summary["imported"] == 3

    assert trades.status_code == 200
    [trade] = trades.json()
    assert trade["symbol"] == "AAPL"
    assert Decimal(trade["profit_loss"]) == Decimal("1000")
    assert Decimal(trade["net_roi"]) == Decimal("50")
    assert trade["expiration"] == "2024-03-15"

    assert [item["filename"] for item in uploads.json()] == ["march.csv"]


async def test_requests_without_user_are_rejected(settings):
    async with _client(_app(settings)) as client:
        response = await client.get("/trades")

    assert response.status_code == 401


async def test_unreadable_upload_is_a_bad_request(settings):
    async with _client(_app(settings)) as client:
        wrong_type = await _upload(client, "notes.txt", b"hello")
        no_section = await _upload(client, "other.csv", b"Cash Balance\n,DATE,TIME\n")

    assert wrong_type.status_code == 400
    assert no_section.status_code == 400
    assert "Account Trade History" in no_section.json()["detail"]


async def test_calendar_views(settings):
    async with _client(_app(settings)) as client:
        await _upload(client)
        daily = await client.get("/trades/daily", headers=USER)
        weekly = await client.get("/trades/weekly", headers=USER)
        metrics = await client.get("/trades/metrics", headers=USER)
        cumulative = await client.get("/trades/cumulative", headers=USER)
        report = await client.get("/trades/report", headers=USER)
        open_positions = await client.get("/trades/open", headers=USER)

    [day] = daily.json()
    assert day["day"] == "2024-03-01"
    assert day["summary"]["wins"] == 1
    assert Decimal(day["summary"]["profit_factor"]).is_infinite()

    [week] = weekly.json()
    assert week["week_start"] == "2024-02-26"
    assert week["week_end"] == "2024-03-03"

    assert metrics.json()["total_trades"] == 1
    assert [Decimal(point["value"]) for point in cumulative.json()] == [Decimal("0"), Decimal("1000")]
    assert report.json()["trades_by_hour"][9] == 1

    [position] = open_positions.json()
    assert position == {"symbol": "MSFT", "strike": "400", "expiration": "2024-03-15", "quantity": 2}


async def test_date_range_filters_trades(settings):
    async with _client(_app(settings)) as client:
        await _upload(client)
        later = await client.get("/trades", params={"start": "2024-03-02"}, headers=USER)
        backwards = await client.get("/trades", params={"start": "2024-03-05", "end": "2024-03-01"}, headers=USER)

    assert later.json() == []
    assert backwards.status_code == 400


async def test_delete_upload(settings):
    async with _client(_app(settings)) as client:
        await _upload(client)
        deleted = await client.delete("/imports/uploads/march.csv", headers=USER)
        missing = await client.delete("/imports/uploads/march.csv", headers=USER)
        trades = await client.get("/trades", headers=USER)

    assert deleted.json() == {"filename": "march.csv", "removed": 3}
    assert missing.status_code == 404
    assert trades.json() == []


async def test_broker_sync_failures_map_to_bad_gateway(settings):
    async with _client(_app(settings)) as client:
        every_account = await client.post("/imports/broker/sync", json={"access_token": "t"}, headers=USER)
    async with _client(_app(settings, StubBroker(fail_listing=True))) as client:
        listing = await client.post("/imports/broker/sync", json={"access_token": "t"}, headers=USER)

    assert every_account.status_code == 502
    assert "1234" in every_account.json()["detail"]
    assert listing.status_code == 502
