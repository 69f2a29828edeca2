# tradebook/domain/actions.py
"""Broker action classification shared by lot matching and position keying."""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from tradebook.domain.models import to_decimal

# Inventory within this distance of zero counts as flat
FLAT_EPSILON = Decimal("0.000001")


class ActionKind(Enum):
    BUY = "BUY"
    SELL = "SELL"
    SPLIT = "SPLIT"
    IGNORE = "IGNORE"


_ACTION_KINDS = {
    "BUY": ActionKind.BUY,
    "BUY_TO_OPEN": ActionKind.BUY,
    "BUY_TO_CLOSE": ActionKind.BUY,
    "ASSIGNMENT": ActionKind.BUY,
    "SELL": ActionKind.SELL,
    "SELL_TO_OPEN": ActionKind.SELL,
    "SELL_TO_CLOSE": ActionKind.SELL,
    "EXERCISES": ActionKind.SELL,
    "EXERCISE": ActionKind.SELL,
    "SPLIT": ActionKind.SPLIT,
}

# Tie-break on identical timestamps: buys replay before sells
_REPLAY_RANK = {
    ActionKind.BUY: 0,
    ActionKind.SELL: 1,
    ActionKind.SPLIT: 2,
    ActionKind.IGNORE: 3,
}


def classify_action(action: Optional[str], signed_quantity: Any = None) -> ActionKind:
    """Map a broker action code onto the closed set of inventory effects.

    Expirations carry no direction of their own: a negative quantity removes
    long inventory (SELL), anything else covers a short (BUY).
    """
    if not isinstance(action, str):
        return ActionKind.IGNORE
    code = action.strip().upper()
    if code == "OPTIONEXPIRATION":
        qty = to_decimal(signed_quantity)
        if qty is not None and qty < 0:
            return ActionKind.SELL
        return ActionKind.BUY
    return _ACTION_KINDS.get(code, ActionKind.IGNORE)


def replay_rank(kind: ActionKind) -> int:
    return _REPLAY_RANK[kind]


def is_flat(quantity: Decimal) -> bool:
    return abs(quantity) < FLAT_EPSILON
