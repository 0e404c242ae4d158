"""
Small conversion helpers shared by the directory client.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple

from ldap3.utils.conv import escape_filter_chars

# FILETIME counts 100-nanosecond intervals since 1601-01-01 UTC
FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
FILETIME_NEVER = 0x7FFFFFFFFFFFFFFF

_LINE_BREAK = re.compile(r'\r\n|\n|\r')


def filetime_to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert a directory FILETIME value to an aware UTC datetime.

    Args:
        value: Integer FILETIME, or its decimal string form as stored in the directory

    Returns:
        Converted datetime, or None when the value is zero (never set) or the
        "never" sentinel

    Raises:
        ValueError: If the value is not an integer
    """
    ticks = int(value)
    if ticks <= 0 or ticks >= FILETIME_NEVER:
        return None
    return FILETIME_EPOCH + timedelta(microseconds=ticks // 10)


def split_street_address(street: Optional[str]) -> Tuple[str, str]:
    """Split a street address at its first line break into line 1 and line 2."""
    if not street:
        return '', ''
    parts = _LINE_BREAK.split(street, maxsplit=1)
    if len(parts) == 1:
        return parts[0], ''
    return parts[0], parts[1]


def escape_filter_value(value: str) -> str:
    """Escape a caller-supplied value for use inside a search filter."""
    return escape_filter_chars(value or '')
