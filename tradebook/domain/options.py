# tradebook/domain/options.py
"""Option contract symbol helpers."""

import re
from datetime import datetime
from typing import Optional

import pytz

from tradebook.config import settings

# e.g. "AAPL  240119C00150000"
_OCC_SYMBOL = re.compile(r"^[A-Z]+\s*[0-9]{6}[CP][0-9]{8}$")
_EXPIRY_CODE = re.compile(r"(\d{6})[CP]")


def looks_like_option(symbol: str) -> bool:
    return bool(symbol) and bool(_OCC_SYMBOL.match(symbol.strip()))


def parse_option_expiration(symbol: str, timezone: Optional[str] = None) -> Optional[datetime]:
    """
    Expiration encoded in an option symbol (YYMMDD before the C/P flag).

    Returns the last second of the expiration day in the exchange time zone,
    as a UTC datetime, or None if the symbol carries no expiration.
    """
    if not symbol:
        return None
    match = _EXPIRY_CODE.search(symbol)
    if not match:
        return None
    code = match.group(1)
    try:
        naive = datetime(2000 + int(code[0:2]), int(code[2:4]), int(code[4:6]), 23, 59, 59)
    except ValueError:
        return None
    tz = pytz.timezone(timezone or settings.exchange_timezone)
    return tz.localize(naive).astimezone(pytz.UTC)
