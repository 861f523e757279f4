import asyncio
import inspect
import pathlib
import sys
from datetime import date, datetime
from decimal import Decimal

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import AppSettings  # noqa: E402
from trade_journal.models import InstrumentType, PositionEffect, Side, Transaction  # noqa: E402



def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            arguments = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**arguments))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def make_tx():
    """Factory for option legs on a single AAPL series unless overridden."""

    def _make(
        side: str,
        quantity: int,
        price: str,
        at: datetime,
        *,
        source_id: str | None = None,
        symbol: str = "AAPL",
        strike: str = "150",
        expiration: date | None = date(2024, 3, 15),
        pos_effect: PositionEffect | None = None,
        instrument: InstrumentType = InstrumentType.CALL,
        asset_type: str = "",
    ) -> Transaction:
        leg_side = Side(side)
        effect = pos_effect or (PositionEffect.OPEN if leg_side == Side.BUY else PositionEffect.CLOSE)
        return Transaction(
            exec_time=at,
            trade_date=at.date(),
            symbol=symbol,
            strike=Decimal(strike),
            expiration=expiration,
            side=leg_side,
            quantity=quantity,
            price=Decimal(price),
            pos_effect=effect,
            order_type="LMT",
            type=instrument,
            source_id=source_id or f"{symbol}-{side}-{at.isoformat()}-{quantity}",
            asset_type=asset_type,
        )

    return _make
