# tradebook/domain/projection.py
"""Tabular views of reconstruction results."""

from typing import Sequence

import pandas as pd

from tradebook.domain.models import ClosedTrade, OpenPosition

CLOSED_TRADE_COLUMNS = [
    "symbol", "account_id", "broker", "asset_type", "opened_at", "closed_at",
    "quantity", "entry_price", "exit_price", "multiplier", "pnl", "position_key", "tags",
]

OPEN_POSITION_COLUMNS = [
    "symbol", "account_id", "broker", "asset_type", "opened_at",
    "quantity", "entry_price", "current_value", "trade_id", "position_key", "tags",
]


def closed_trades_frame(closed_trades: Sequence[ClosedTrade]) -> pd.DataFrame:
    """One row per realized match, in input order. Numeric columns are floats."""
    if not closed_trades:
        return pd.DataFrame(columns=CLOSED_TRADE_COLUMNS)

    rows = [
        {
            "symbol": t.symbol,
            "account_id": t.account_id,
            "broker": t.broker,
            "asset_type": t.asset_type,
            "opened_at": t.opened_at,
            "closed_at": t.closed_at,
            "quantity": float(t.quantity),
            "entry_price": float(t.entry_price),
            "exit_price": float(t.exit_price),
            "multiplier": float(t.multiplier),
            "pnl": float(t.pnl),
            "position_key": t.position_key,
            "tags": [tag.name for tag in t.tags],
        }
        for t in closed_trades
    ]
    return pd.DataFrame(rows, columns=CLOSED_TRADE_COLUMNS)


def open_positions_frame(open_positions: Sequence[OpenPosition]) -> pd.DataFrame:
    if not open_positions:
        return pd.DataFrame(columns=OPEN_POSITION_COLUMNS)

    rows = [
        {
            "symbol": p.symbol,
            "account_id": p.account_id,
            "broker": p.broker,
            "asset_type": p.asset_type,
            "opened_at": p.opened_at,
            "quantity": float(p.quantity),
            "entry_price": float(p.entry_price),
            "current_value": float(p.current_value),
            "trade_id": p.trade_id,
            "position_key": p.position_key,
            "tags": [tag.name for tag in p.tags],
        }
        for p in open_positions
    ]
    return pd.DataFrame(rows, columns=OPEN_POSITION_COLUMNS)
