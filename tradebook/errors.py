# tradebook/errors.py
"""Exceptions raised by tradebook."""


class TradebookError(Exception):
    """Base class for tradebook errors."""

    retryable = False


class PositionKeyConflictError(TradebookError):
    """A position key write lost a race against a concurrent recalculation.

    The whole group's batch was rolled back; rerunning the recalculation
    converges on the committed state.
    """

    retryable = True

    def __init__(self, account_id: str, symbol: str, trade_id: str):
        self.account_id = account_id
        self.symbol = symbol
        self.trade_id = trade_id
        super().__init__(
            f"Position key for trade {trade_id} ({account_id}:{symbol}) "
            "changed during recalculation"
        )
