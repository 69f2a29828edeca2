# tradebook/domain/models.py
"""Domain value objects produced by position reconstruction."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Deque, List, Optional

import pytz

ZERO = Decimal("0")


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a stored float/str to Decimal, or None when it is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return result if result.is_finite() else None


def ensure_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC (SQLite drops tzinfo) and normalize aware ones."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        return pytz.UTC.localize(ts)
    return ts.astimezone(pytz.UTC)


@dataclass(frozen=True)
class TagInfo:
    """Tag definition as attached to a reconstructed position."""
    id: str
    name: str
    color: str = "#64748b"
    category: str = "CUSTOM"
    icon: Optional[str] = None


@dataclass
class Lot:
    """An open tranche of a position (for FIFO matching). Never persisted."""
    trade_id: str
    opened_at: datetime
    price: Decimal
    quantity: Decimal  # Remaining, always positive
    original_quantity: Decimal
    broker: str
    account_id: str
    multiplier: Decimal
    asset_type: str
    position_key: Optional[str] = None


@dataclass
class ClosedTrade:
    """A realized match between an opening lot and a closing trade."""
    symbol: str
    pnl: Decimal
    entry_price: Decimal
    exit_price: Decimal
    quantity: Decimal
    opened_at: datetime
    closed_at: datetime
    broker: str
    account_id: str
    asset_type: str
    multiplier: Decimal
    position_key: Optional[str] = None
    tags: List[TagInfo] = field(default_factory=list)


@dataclass
class OpenPosition:
    """A residual lot reported as an open position. Negative quantity means short."""
    symbol: str
    quantity: Decimal
    entry_price: Decimal
    opened_at: datetime
    broker: str
    account_id: str
    current_value: Decimal
    trade_id: str
    asset_type: str
    position_key: Optional[str] = None
    tags: List[TagInfo] = field(default_factory=list)


@dataclass
class InstrumentBook:
    """Lot queues for one instrument while a stream is being reduced."""
    long_lots: Deque[Lot] = field(default_factory=deque)
    short_lots: Deque[Lot] = field(default_factory=deque)

    def long_quantity(self) -> Decimal:
        return sum((lot.quantity for lot in self.long_lots), ZERO)

    def short_quantity(self) -> Decimal:
        return sum((lot.quantity for lot in self.short_lots), ZERO)


@dataclass
class FifoResult:
    """Output of a reconstruction run."""
    closed_trades: List[ClosedTrade] = field(default_factory=list)
    open_positions: List[OpenPosition] = field(default_factory=list)
    unrealized_cost: Decimal = ZERO
