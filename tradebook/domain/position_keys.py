# tradebook/domain/position_keys.py
"""
Stable position identity.

Replays each (account, symbol) group's full history and stamps every trade
with the key of the position episode it belongs to, so tags attached to a
position survive recomputation as new trades arrive.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import delete, update
from sqlmodel import Session, select

from tradebook.db.models import PositionTag, Trade
from tradebook.domain.actions import ActionKind, classify_action, is_flat, replay_rank
from tradebook.domain.models import ZERO, ensure_utc, to_decimal
from tradebook.domain.position_key import (
    KEY_VERSION,
    generate_position_key,
    is_well_formed,
    parse_position_key,
)
from tradebook.errors import PositionKeyConflictError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyUpdate:
    trade_id: str
    old_key: Optional[str]
    new_key: str


def replay_order(trades: Sequence[Trade]) -> List[Trade]:
    """Order by time, then buys before sells, then input (ingestion) order."""
    dated = [
        (index, trade) for index, trade in enumerate(trades) if isinstance(trade.ts_utc, datetime)
    ]
    dated.sort(
        key=lambda item: (
            ensure_utc(item[1].ts_utc),
            replay_rank(classify_action(item[1].action, item[1].quantity)),
            item[0],
        )
    )
    return [trade for _, trade in dated]


def compute_position_key_updates(trades: Sequence[Trade]) -> List[KeyUpdate]:
    """
    Assign episode keys to one group's full history.

    An episode starts on the first trade seen while inventory is flat. If that
    trade already carries a well-formed key that no earlier episode in this
    replay has claimed, the key is kept verbatim; otherwise a new key is
    minted from the trade's account, symbol and time. Later trades inherit
    the episode key until inventory is flat again.

    Returns only the trades whose key changes.
    """
    updates: List[KeyUpdate] = []
    net = ZERO
    current_key: Optional[str] = None
    claimed = set()

    for trade in replay_order(trades):
        if is_flat(net):
            if is_well_formed(trade.position_key) and trade.position_key not in claimed:
                current_key = trade.position_key
            else:
                current_key = generate_position_key(trade.account_id, trade.symbol, trade.ts_utc)
            claimed.add(current_key)

        if trade.position_key != current_key:
            updates.append(KeyUpdate(trade.id, trade.position_key, current_key))

        kind = classify_action(trade.action, trade.quantity)
        qty = to_decimal(trade.quantity) or ZERO
        if kind is ActionKind.BUY:
            net += abs(qty)
        elif kind is ActionKind.SELL:
            net -= abs(qty)
        elif kind is ActionKind.SPLIT:
            # Adjustment grows or shrinks the held side, long or short
            if net > 0:
                net += qty
            elif net < 0:
                net -= qty

    return updates


class PositionKeyAssigner:
    """Maintains ``Trade.position_key`` and the tag associations that depend on it."""

    @staticmethod
    def recalculate_position_keys(session: Session, account_id: str, symbol: str) -> int:
        """
        Recompute keys for one (account, symbol) group in a single transaction.

        Rows are read ``FOR UPDATE`` and every write is conditional on the key
        that was read, so a concurrent recalculation either waits for this one
        or finds nothing left to change. A lost race raises
        PositionKeyConflictError after rolling back the whole batch.

        Returns:
            Number of trades whose key was written
        """
        stmt = (
            select(Trade)
            .where(Trade.account_id == account_id, Trade.symbol == symbol)
            .order_by(Trade.ts_utc, Trade.created_at, Trade.id)
            .with_for_update()
        )
        try:
            trades = session.exec(stmt).all()
            updates = compute_position_key_updates(trades)
            PositionKeyAssigner.apply_updates(session, account_id, symbol, updates)
            session.commit()
        except Exception:
            session.rollback()
            raise

        if updates:
            logger.info(
                "Applied %d position key update(s) for %s:%s", len(updates), account_id, symbol
            )
        return len(updates)

    @staticmethod
    def apply_updates(
        session: Session,
        account_id: str,
        symbol: str,
        updates: Sequence[KeyUpdate],
    ) -> None:
        """Compare-and-set each key. Caller owns the transaction."""
        for u in updates:
            if u.old_key is None:
                current = Trade.position_key.is_(None)
            else:
                current = Trade.position_key == u.old_key
            result = session.exec(
                update(Trade)
                .where(Trade.id == u.trade_id, current)
                .values(position_key=u.new_key)
            )
            if result.rowcount != 1:
                raise PositionKeyConflictError(account_id, symbol, u.trade_id)

    @staticmethod
    def recalculate_all(session: Session, account_id: Optional[str] = None) -> int:
        """Backfill keys for every (account, symbol) group. Returns total updates."""
        stmt = select(Trade.account_id, Trade.symbol).distinct()
        if account_id:
            stmt = stmt.where(Trade.account_id == account_id)
        groups = session.exec(stmt).all()
        logger.info("Recalculating position keys for %d group(s)", len(groups))

        total = 0
        for count, (group_account, group_symbol) in enumerate(groups, start=1):
            total += PositionKeyAssigner.recalculate_position_keys(
                session, group_account, group_symbol
            )
            if count % 100 == 0:
                logger.info("Processed %d / %d groups", count, len(groups))
        return total

    @staticmethod
    def cleanup_orphaned_tags(session: Session) -> int:
        """
        Delete tag associations whose position key no longer has any trades.

        Run after bulk trade deletion. Legacy-format keys should be migrated
        first, since they never match a current trade key.
        """
        tag_keys = set(session.exec(select(PositionTag.position_key).distinct()).all())
        if not tag_keys:
            return 0

        live_keys = set(
            session.exec(
                select(Trade.position_key).where(Trade.position_key.in_(sorted(tag_keys))).distinct()
            ).all()
        )
        orphaned = tag_keys - live_keys
        if not orphaned:
            return 0

        result = session.exec(delete(PositionTag).where(PositionTag.position_key.in_(sorted(orphaned))))
        session.commit()
        logger.info("Deleted %d orphaned position tag(s)", result.rowcount)
        return result.rowcount

    @staticmethod
    def migrate_legacy_keys(session: Session) -> Tuple[int, int]:
        """
        Rewrite colon-delimited legacy keys to the current format.

        A legacy tag whose current-format twin already exists for the same tag
        definition is dropped instead of rewritten.

        Returns:
            (position_tags_migrated, trades_migrated)
        """
        prefix = KEY_VERSION + "|"

        legacy_tags = session.exec(
            select(PositionTag).where(~PositionTag.position_key.startswith(prefix))
        ).all()
        tags_migrated = 0
        for pt in legacy_tags:
            new_key = PositionKeyAssigner._upgrade_key(pt.position_key)
            if new_key is None:
                logger.warning("Could not parse legacy position key: %s", pt.position_key)
                continue
            twin = session.exec(
                select(PositionTag).where(
                    PositionTag.position_key == new_key,
                    PositionTag.tag_definition_id == pt.tag_definition_id,
                )
            ).first()
            if twin is not None:
                session.delete(pt)
            else:
                pt.position_key = new_key
                session.add(pt)
            tags_migrated += 1

        legacy_trades = session.exec(
            select(Trade).where(
                Trade.position_key.is_not(None),
                ~Trade.position_key.startswith(prefix),
            )
        ).all()
        trades_migrated = 0
        for trade in legacy_trades:
            new_key = PositionKeyAssigner._upgrade_key(trade.position_key)
            if new_key is None:
                logger.warning("Could not parse legacy position key on trade %s", trade.id)
                continue
            trade.position_key = new_key
            session.add(trade)
            trades_migrated += 1

        session.commit()
        logger.info(
            "Migrated %d position tag(s) and %d trade(s) to %s keys",
            tags_migrated,
            trades_migrated,
            KEY_VERSION,
        )
        return tags_migrated, trades_migrated

    @staticmethod
    def _upgrade_key(key: str) -> Optional[str]:
        parsed = parse_position_key(key)
        if parsed is None:
            return None
        return generate_position_key(parsed.account_id, parsed.symbol, parsed.opened_at)
