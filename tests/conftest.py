# tests/conftest.py
"""Test configuration and fixtures."""

from datetime import datetime

import pytest
import pytz
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

from tradebook.db.models import Account, Trade

BASE_TS = datetime(2025, 1, 2, 14, 30, tzinfo=pytz.UTC)


@pytest.fixture(name="session")
def session_fixture():
    """Create in-memory SQLite test database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="account")
def account_fixture(session: Session):
    """Create test brokerage account."""
    account = Account(name="Individual", broker_name="Schwab")
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


@pytest.fixture(name="make_trade")
def make_trade_fixture():
    """Factory for unsaved Trade rows with sensible defaults."""

    def _make(action, quantity, price=0.0, ts=None, symbol="AAPL", account_id="acct-1", **kwargs):
        return Trade(
            account_id=account_id,
            symbol=symbol,
            action=action,
            quantity=quantity,
            price=price,
            ts_utc=ts or BASE_TS,
            **kwargs,
        )

    return _make
