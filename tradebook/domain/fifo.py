# tradebook/domain/fifo.py
"""
Position reconstruction from raw brokerage trades.
Implements FIFO lot matching, split adjustments, option expiry, and phantom-short suppression.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Deque, Iterable, List, Optional, Sequence, Tuple

import pytz

from tradebook.db.models import Trade
from tradebook.domain.actions import ActionKind, classify_action, is_flat
from tradebook.domain.filters import FilterOptions, apply_filters
from tradebook.domain.grouping import group_by_instrument
from tradebook.domain.models import (
    ZERO,
    ClosedTrade,
    FifoResult,
    InstrumentBook,
    Lot,
    OpenPosition,
    ensure_utc,
    to_decimal,
)
from tradebook.domain.options import looks_like_option, parse_option_expiration
from tradebook.domain.tags import TagResolver

logger = logging.getLogger(__name__)

ONE = Decimal("1")
OPTION_MULTIPLIER = Decimal("100")


@dataclass
class _Fill:
    """A trade row after validation and numeric normalization."""
    trade_id: str
    kind: ActionKind
    raw_quantity: Decimal
    quantity: Decimal
    price: Decimal
    fees: Decimal
    ts: datetime
    multiplier: Decimal
    asset_type: str
    broker: str
    account_id: str
    position_key: Optional[str]


class FifoEngine:
    """Reduces trade streams into realized (closed) trades and residual open lots."""

    @staticmethod
    def calculate(
        trades: Iterable[Trade],
        filters: Optional[FilterOptions] = None,
        resolver: Optional[TagResolver] = None,
        as_of: Optional[datetime] = None,
        exchange_timezone: Optional[str] = None,
    ) -> FifoResult:
        """
        Reconstruct positions for a whole trade batch.

        Args:
            trades: Trades from any number of accounts and instruments
            filters: Applied to the output only; matching always sees full history
            resolver: Tag lookup; without one, positions carry no tags
            as_of: Reference time for option expiry (defaults to now)
            exchange_timezone: Zone in which option expiration dates are read

        Returns:
            FifoResult with closed trades, open positions, and the absolute
            notional of all open positions before filtering
        """
        as_of = ensure_utc(as_of) or datetime.now(pytz.UTC)

        closed_trades: List[ClosedTrade] = []
        open_positions: List[OpenPosition] = []

        for stream in group_by_instrument(trades).values():
            closed, opened = FifoEngine.reduce_stream(
                stream, as_of=as_of, exchange_timezone=exchange_timezone
            )
            closed_trades.extend(closed)
            open_positions.extend(opened)

        if resolver is not None:
            FifoEngine.attach_tags(closed_trades, resolver)
            FifoEngine.attach_tags(open_positions, resolver)

        unrealized_cost = sum((abs(p.current_value) for p in open_positions), ZERO)

        closed_trades, open_positions = apply_filters(
            closed_trades, open_positions, filters, resolver
        )
        return FifoResult(
            closed_trades=closed_trades,
            open_positions=open_positions,
            unrealized_cost=unrealized_cost,
        )

    @staticmethod
    def reduce_stream(
        trades: Sequence[Trade],
        as_of: Optional[datetime] = None,
        exchange_timezone: Optional[str] = None,
    ) -> Tuple[List[ClosedTrade], List[OpenPosition]]:
        """Reduce one chronologically ordered instrument stream."""
        if not trades:
            return [], []

        as_of = ensure_utc(as_of) or datetime.now(pytz.UTC)
        symbol = trades[0].symbol
        book = InstrumentBook()
        closed: List[ClosedTrade] = []
        saw_buy = False
        is_option = False

        for trade in trades:
            kind = classify_action(trade.action, trade.quantity)
            if kind is ActionKind.BUY:
                saw_buy = True

            fill = FifoEngine._normalize(trade, kind)
            if fill is None:
                continue
            if fill.asset_type == "OPTION":
                is_option = True

            if fill.kind is ActionKind.SPLIT:
                FifoEngine._apply_split(book, fill.raw_quantity)
            elif fill.kind is ActionKind.BUY:
                matched, remaining = FifoEngine._match(book.short_lots, fill, symbol, closing_long=False)
                closed.extend(matched)
                if not is_flat(remaining):
                    book.long_lots.append(FifoEngine._new_lot(fill, remaining))
            else:
                matched, remaining = FifoEngine._match(book.long_lots, fill, symbol, closing_long=True)
                closed.extend(matched)
                if not is_flat(remaining):
                    book.short_lots.append(FifoEngine._new_lot(fill, remaining))

        if is_option:
            expires_at = parse_option_expiration(symbol, exchange_timezone)
            if expires_at is not None and expires_at < as_of:
                closed.extend(FifoEngine._expire(book, symbol, expires_at))

        open_positions = [
            FifoEngine._open_position(lot, symbol, short=False) for lot in book.long_lots
        ]

        # Short lots with no buy-class action anywhere in the stream come from
        # history that starts mid-position; they are not reported as open.
        phantom = bool(book.short_lots) and not book.long_lots and not saw_buy
        if phantom:
            logger.debug(
                "Suppressing %d phantom short lot(s) for %s", len(book.short_lots), symbol
            )
        else:
            open_positions.extend(
                FifoEngine._open_position(lot, symbol, short=True) for lot in book.short_lots
            )

        return closed, open_positions

    @staticmethod
    def attach_tags(items, resolver: TagResolver) -> None:
        for item in items:
            item.tags = resolver.resolve(
                item.account_id, item.symbol, item.opened_at, item.position_key
            )

    @staticmethod
    def _normalize(trade: Trade, kind: ActionKind) -> Optional[_Fill]:
        """Validate a trade row. Returns None for rows the engine skips."""
        if kind is ActionKind.IGNORE:
            logger.debug("Skipping trade %s: unrecognized action %r", trade.id, trade.action)
            return None

        raw_quantity = to_decimal(trade.quantity)
        if raw_quantity is None or raw_quantity == 0:
            logger.debug("Skipping trade %s: quantity %r", trade.id, trade.quantity)
            return None

        ts = trade.ts_utc
        if not isinstance(ts, datetime):
            logger.debug("Skipping trade %s: timestamp %r", trade.id, ts)
            return None

        price = to_decimal(trade.price)
        if price is None:
            if kind is not ActionKind.SPLIT:
                logger.debug("Skipping trade %s: price %r", trade.id, trade.price)
                return None
            price = ZERO

        multiplier = to_decimal(trade.contract_multiplier)
        if multiplier is None or multiplier <= 0:
            multiplier = ONE
        asset_type = (trade.asset_type or "STOCK").upper()
        if multiplier == ONE and looks_like_option(trade.symbol):
            multiplier = OPTION_MULTIPLIER
            asset_type = "OPTION"

        account = trade.account
        broker = (account.broker_name if account is not None else None) or "Unknown"

        return _Fill(
            trade_id=trade.id,
            kind=kind,
            raw_quantity=raw_quantity,
            quantity=abs(raw_quantity),
            price=price,
            fees=abs(to_decimal(trade.fees) or ZERO),
            ts=ensure_utc(ts),
            multiplier=multiplier,
            asset_type=asset_type,
            broker=broker,
            account_id=trade.account_id,
            position_key=trade.position_key or None,
        )

    @staticmethod
    def _apply_split(book: InstrumentBook, adjustment: Decimal) -> None:
        """Rescale lots by (qty + adjustment) / qty, keeping each lot's notional."""
        for lots, current in (
            (book.long_lots, book.long_quantity()),
            (book.short_lots, book.short_quantity()),
        ):
            if current <= 0:
                continue
            ratio = (current + adjustment) / current
            if ratio <= 0:
                logger.debug("Ignoring split adjustment %s against %s held", adjustment, current)
                continue
            for lot in lots:
                lot.quantity *= ratio
                lot.price /= ratio

    @staticmethod
    def _match(
        lots: Deque[Lot],
        fill: _Fill,
        symbol: str,
        closing_long: bool,
    ) -> Tuple[List[ClosedTrade], Decimal]:
        """Consume opposing lots oldest-first. Returns closed trades and unmatched quantity."""
        closed: List[ClosedTrade] = []
        remaining = fill.quantity
        fee_per_unit = fill.fees / fill.quantity

        while not is_flat(remaining) and lots:
            lot = lots[0]
            matched = min(remaining, lot.quantity)

            if closing_long:
                gross = (fill.price - lot.price) * matched * lot.multiplier
            else:
                gross = (lot.price - fill.price) * matched * lot.multiplier

            closed.append(
                ClosedTrade(
                    symbol=symbol,
                    pnl=gross - fee_per_unit * matched,
                    entry_price=lot.price,
                    exit_price=fill.price,
                    quantity=matched,
                    opened_at=lot.opened_at,
                    closed_at=fill.ts,
                    broker=lot.broker,
                    account_id=lot.account_id,
                    asset_type=lot.asset_type,
                    multiplier=lot.multiplier,
                    position_key=lot.position_key,
                )
            )

            lot.quantity -= matched
            remaining -= matched
            if is_flat(lot.quantity):
                lots.popleft()

        return closed, remaining

    @staticmethod
    def _expire(book: InstrumentBook, symbol: str, expires_at: datetime) -> List[ClosedTrade]:
        """Close every remaining lot at a settlement price of zero."""
        closed = []
        for lots, closing_long in ((book.long_lots, True), (book.short_lots, False)):
            for lot in lots:
                if is_flat(lot.quantity):
                    continue
                notional = lot.price * lot.quantity * lot.multiplier
                closed.append(
                    ClosedTrade(
                        symbol=symbol,
                        pnl=-notional if closing_long else notional,
                        entry_price=lot.price,
                        exit_price=ZERO,
                        quantity=lot.quantity,
                        opened_at=lot.opened_at,
                        closed_at=expires_at,
                        broker=lot.broker,
                        account_id=lot.account_id,
                        asset_type=lot.asset_type,
                        multiplier=lot.multiplier,
                        position_key=lot.position_key,
                    )
                )
            lots.clear()
        return closed

    @staticmethod
    def _new_lot(fill: _Fill, quantity: Decimal) -> Lot:
        return Lot(
            trade_id=fill.trade_id,
            opened_at=fill.ts,
            price=fill.price,
            quantity=quantity,
            original_quantity=quantity,
            broker=fill.broker,
            account_id=fill.account_id,
            multiplier=fill.multiplier,
            asset_type=fill.asset_type,
            position_key=fill.position_key,
        )

    @staticmethod
    def _open_position(lot: Lot, symbol: str, short: bool) -> OpenPosition:
        quantity = -lot.quantity if short else lot.quantity
        return OpenPosition(
            symbol=symbol,
            quantity=quantity,
            entry_price=lot.price,
            opened_at=lot.opened_at,
            broker=lot.broker,
            account_id=lot.account_id,
            current_value=lot.price * quantity * lot.multiplier,
            trade_id=lot.trade_id,
            asset_type=lot.asset_type,
            position_key=lot.position_key,
        )
