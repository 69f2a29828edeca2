# tradebook/domain/filters.py
"""Caller-specified filters over reconstructed closed trades and open positions."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import List, Optional, Sequence, Tuple, Union

import pytz

from tradebook.domain.models import ClosedTrade, OpenPosition, ensure_utc
from tradebook.domain.tags import TagResolver

TAG_MODE_ANY = "any"
TAG_MODE_ALL = "all"

Item = Union[ClosedTrade, OpenPosition]


@dataclass
class FilterOptions:
    """
    Filters applied after reconstruction.

    Dates bound the close time of closed trades and the open time of open
    positions, both inclusive. ``symbol`` is a comma-separated list of
    case-insensitive prefixes. ``"all"`` for account or asset type means no
    filter.

    ``tag_ids`` are matched through a TagResolver. When none is supplied,
    no item has tags, so a non-empty ``tag_ids`` excludes every item.
    """
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    symbol: Optional[str] = None
    account_id: Optional[str] = None
    asset_type: Optional[str] = None
    tag_ids: List[str] = field(default_factory=list)
    tag_filter_mode: str = TAG_MODE_ANY

    @classmethod
    def for_days(
        cls,
        start_day: Optional[date],
        end_day: Optional[date],
        timezone: str = "US/Eastern",
        **kwargs,
    ) -> "FilterOptions":
        """Whole-day window in the given time zone, from start of start_day to end of end_day."""
        tz = pytz.timezone(timezone)
        start = tz.localize(datetime.combine(start_day, time.min)) if start_day else None
        end = tz.localize(datetime.combine(end_day, time.max)) if end_day else None
        return cls(start_date=start, end_date=end, **kwargs)

    def symbol_prefixes(self) -> List[str]:
        if not self.symbol:
            return []
        return [s.strip().lower() for s in self.symbol.split(",") if s.strip()]


def _timestamp(item: Item) -> datetime:
    return item.closed_at if isinstance(item, ClosedTrade) else item.opened_at


def _has_tags(item: Item, tag_ids: Sequence[str], mode: str, resolver: TagResolver) -> bool:
    item_tags = set(
        resolver.tag_ids_for(item.account_id, item.symbol, item.opened_at, item.position_key)
    )
    if mode == TAG_MODE_ALL:
        return all(tag_id in item_tags for tag_id in tag_ids)
    return any(tag_id in item_tags for tag_id in tag_ids)


def filter_items(
    items: Sequence[Item],
    filters: Optional[FilterOptions],
    resolver: Optional[TagResolver] = None,
) -> List[Item]:
    """Order-preserving filter of one result set."""
    result = list(items)
    if filters is None:
        return result

    if filters.start_date is not None:
        start = ensure_utc(filters.start_date)
        result = [i for i in result if ensure_utc(_timestamp(i)) >= start]
    if filters.end_date is not None:
        end = ensure_utc(filters.end_date)
        result = [i for i in result if ensure_utc(_timestamp(i)) <= end]

    prefixes = filters.symbol_prefixes()
    if prefixes:
        result = [i for i in result if any(i.symbol.lower().startswith(p) for p in prefixes)]

    if filters.account_id and filters.account_id != "all":
        result = [i for i in result if i.account_id == filters.account_id]

    if filters.asset_type and filters.asset_type != "all":
        result = [i for i in result if i.asset_type == filters.asset_type]

    if filters.tag_ids:
        # Keys are re-derived here so the filter does not depend on attached tags
        resolver = resolver or TagResolver()
        mode = (filters.tag_filter_mode or TAG_MODE_ANY).lower()
        result = [i for i in result if _has_tags(i, filters.tag_ids, mode, resolver)]

    return result


def apply_filters(
    closed_trades: Sequence[ClosedTrade],
    open_positions: Sequence[OpenPosition],
    filters: Optional[FilterOptions],
    resolver: Optional[TagResolver] = None,
) -> Tuple[List[ClosedTrade], List[OpenPosition]]:
    return (
        filter_items(closed_trades, filters, resolver),
        filter_items(open_positions, filters, resolver),
    )
