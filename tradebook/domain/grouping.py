# tradebook/domain/grouping.py
"""Partition a trade batch into independent per-instrument streams."""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List

from tradebook.db.models import Trade
from tradebook.domain.models import ensure_utc


def canonical_key(trade: Trade) -> str:
    """
    Account plus instrument identity.

    Falls back to the raw symbol when the broker gives no universal id, so
    two instruments that reuse a ticker over time share a stream.
    """
    instrument = trade.universal_symbol_id or trade.symbol
    return f"{trade.account_id}:{instrument}"


def group_by_instrument(trades: Iterable[Trade]) -> Dict[str, List[Trade]]:
    """Group by canonical key; each stream sorted by time, ties kept in input order."""
    by_key: Dict[str, List[Trade]] = defaultdict(list)
    for trade in trades:
        if not isinstance(trade.ts_utc, datetime):
            continue
        by_key[canonical_key(trade)].append(trade)

    return {
        key: sorted(stream, key=lambda t: ensure_utc(t.ts_utc))
        for key, stream in by_key.items()
    }
