# tradebook/db/models.py
"""
SQLModel definitions for the trade ledger.
Designed for SQLite locally, PostgreSQL in production.
"""

from datetime import datetime, timezone
from typing import Optional, List
import uuid

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(SQLModel, table=True):
    """Brokerage account that trades are synced into."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(default="")
    broker_name: Optional[str] = Field(default=None)  # e.g., "Schwab"
    created_at: datetime = Field(default_factory=_utcnow)

    trades: List["Trade"] = Relationship(back_populates="account", cascade_delete=True)


class Trade(SQLModel, table=True):
    """Raw brokerage execution as delivered by broker sync.

    Rows are append-only. The only column this package ever writes is
    ``position_key``.
    """
    __tablename__ = "trade"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    account_id: str = Field(foreign_key="account.id", index=True)

    # Broker-side identifier; ingestion owns uniqueness (account_id, external_trade_id)
    external_trade_id: Optional[str] = Field(default=None, index=True)

    symbol: str = Field(index=True)
    universal_symbol_id: Optional[str] = Field(default=None, index=True)
    asset_type: str = Field(default="STOCK")  # STOCK or OPTION

    action: str = Field()  # Broker code: BUY, SELL_TO_OPEN, SPLIT, OPTIONEXPIRATION, ...
    quantity: float = Field()  # Signed as reported by the broker
    price: float = Field(default=0.0)
    fees: float = Field(default=0.0)
    contract_multiplier: float = Field(default=1.0)

    ts_utc: datetime = Field(index=True)

    position_key: Optional[str] = Field(default=None, index=True)

    # Ingestion order, secondary sort key for identical timestamps
    created_at: datetime = Field(default_factory=_utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "external_trade_id", name="uq_account_external_trade"),
    )

    account: Optional[Account] = Relationship(back_populates="trades")


class TagDefinition(SQLModel, table=True):
    """User-defined tag (e.g., "breakout", "FOMO"). Owned by the tagging feature."""
    __tablename__ = "tag_definition"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field()
    category: str = Field(default="CUSTOM")  # SETUP, MISTAKE, EMOTION, CUSTOM
    color: str = Field(default="#64748b")
    icon: Optional[str] = Field(default=None)
    is_archived: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utcnow)

    position_tags: List["PositionTag"] = Relationship(back_populates="tag_definition", cascade_delete=True)


class PositionTag(SQLModel, table=True):
    """Association between a position key and a tag definition."""
    __tablename__ = "position_tag"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    position_key: str = Field(index=True)
    tag_definition_id: str = Field(foreign_key="tag_definition.id", index=True)
    notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=_utcnow)

    __table_args__ = (
        UniqueConstraint("position_key", "tag_definition_id", name="uq_position_tag"),
    )

    tag_definition: TagDefinition = Relationship(back_populates="position_tags")
