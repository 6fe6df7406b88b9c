"""
Common utility functions for the LearnHub backend.

Timestamp handling for rows coming back from the data API and the small
numeric helpers used by scoring.
"""

import datetime
import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Union

# Fractional seconds and a trailing hour-only offset, e.g. ``.12345+05``
_FRACTION = re.compile(r"\.(\d+)")
_SHORT_OFFSET = re.compile(r"(:\d{2}(?:\.\d+)?)([+-]\d{2})$")


def utc_now() -> datetime.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """
    Parse a timestamp as returned by the data API.

    Accepts ISO 8601 strings (including a trailing ``Z``) and datetime
    objects. Naive values are assumed to be UTC.

    Args:
        value: Raw column value

    Returns:
        Timezone-aware datetime, or None for empty values
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        text = _SHORT_OFFSET.sub(r"\1\2:00", text)
        parsed = datetime.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def isoformat(value: Optional[datetime.datetime]) -> Optional[str]:
    """Serialize a datetime for the data API, passing None through."""
    if value is None:
        return None
    return value.isoformat()


def round_half_up(value: Union[int, float]) -> int:
    """Round to the nearest integer, halves away from zero (62.5 -> 63)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_int(value: Any, default: int = 0) -> int:
    """Coerce a loosely typed column value to int."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else default
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return default
    return default
