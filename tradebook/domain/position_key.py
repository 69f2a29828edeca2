# tradebook/domain/position_key.py
"""
Position key format.

A position key identifies one position episode (flat to flat) of one symbol
in one account. Current format::

    v1|{account_id}|{symbol}|{opened_at_epoch_millis}

Older data carries the colon-delimited legacy format
``{account_id}:{symbol}:{opened_at_iso}`` (ISO with milliseconds and ``Z``).
"""

import base64
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import pytz

from tradebook.domain.models import ensure_utc

KEY_VERSION = "v1"
_SEPARATOR = "|"
_EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)
_ISO_TAIL = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}.+")


@dataclass(frozen=True)
class ParsedPositionKey:
    account_id: str
    symbol: str
    opened_at: datetime
    version: str


def epoch_millis(ts: datetime) -> int:
    return (ensure_utc(ts) - _EPOCH) // timedelta(milliseconds=1)


def iso_millis(ts: datetime) -> str:
    """Render as ``2024-01-15T09:30:00.000Z``."""
    ts = ensure_utc(ts)
    return ts.strftime("%Y-%m-%dT%H:%M:%S") + f".{ts.microsecond // 1000:03d}Z"


def generate_position_key(account_id: str, symbol: str, opened_at: datetime) -> str:
    # Pipe is rare in symbols, unlike colon
    return _SEPARATOR.join([KEY_VERSION, account_id, symbol, str(epoch_millis(opened_at))])


def legacy_position_key(account_id: str, symbol: str, opened_at: datetime) -> str:
    return f"{account_id}:{symbol}:{iso_millis(opened_at)}"


def parse_position_key(key: Optional[str]) -> Optional[ParsedPositionKey]:
    """Parse a v1 or legacy key. Returns None for anything unrecognized."""
    if not isinstance(key, str) or not key:
        return None

    parts = key.split(_SEPARATOR)
    if parts[0] == KEY_VERSION:
        if len(parts) < 4 or not parts[1]:
            return None
        try:
            millis = int(parts[-1])
        except ValueError:
            return None
        return ParsedPositionKey(
            account_id=parts[1],
            # Symbols may themselves contain the separator
            symbol=_SEPARATOR.join(parts[2:-1]),
            opened_at=_EPOCH + timedelta(milliseconds=millis),
            version=KEY_VERSION,
        )

    # Legacy: symbols can contain colons, so anchor on the trailing ISO timestamp
    match = _ISO_TAIL.search(key)
    if not match or match.start() < 2:
        return None
    try:
        opened_at = datetime.fromisoformat(match.group(0).replace("Z", "+00:00"))
    except ValueError:
        return None
    prefix = key[: match.start() - 1]
    account_id, sep, symbol = prefix.partition(":")
    if not sep or not account_id:
        return None
    return ParsedPositionKey(
        account_id=account_id,
        symbol=symbol,
        opened_at=ensure_utc(opened_at),
        version="legacy",
    )


def is_well_formed(key: Optional[str]) -> bool:
    """True for a parseable current-version key; only those are reused verbatim."""
    parsed = parse_position_key(key)
    return parsed is not None and parsed.version == KEY_VERSION


def encode_position_key(key: str) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")


def decode_position_key(encoded: str) -> str:
    padded = encoded + "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
