# tradebook/domain/ledger.py
"""Load trades and tags from the database and reconstruct positions on demand."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from tradebook.config import settings
from tradebook.db.models import Trade
from tradebook.domain.fifo import FifoEngine
from tradebook.domain.filters import FilterOptions
from tradebook.domain.models import FifoResult
from tradebook.domain.tags import TagResolver

logger = logging.getLogger(__name__)


class PositionLedger:
    """Entry point for callers that hold a database session."""

    @staticmethod
    def compute(
        session: Session,
        filters: Optional[FilterOptions] = None,
        as_of: Optional[datetime] = None,
    ) -> FifoResult:
        """
        Reconstruct closed trades and open positions.

        Full history is always loaded so cost basis is correct; date and other
        filters only narrow the output. Nothing is cached or written.
        """
        stmt = (
            select(Trade)
            .options(selectinload(Trade.account))
            .order_by(Trade.ts_utc, Trade.created_at, Trade.id)
        )
        if filters and filters.account_id and filters.account_id != "all":
            stmt = stmt.where(Trade.account_id == filters.account_id)
        trades = session.exec(stmt).all()

        resolver = TagResolver.from_session(session)
        result = FifoEngine.calculate(
            trades,
            filters=filters,
            resolver=resolver,
            as_of=as_of,
            exchange_timezone=settings.exchange_timezone,
        )
        logger.debug(
            "Reconstructed %d closed trade(s) and %d open position(s) from %d trade(s)",
            len(result.closed_trades),
            len(result.open_positions),
            len(trades),
        )
        return result
