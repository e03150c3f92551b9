"""
Byte-size estimation for stored values.

The backing medium budgets in UTF-16 terms: a value costs two bytes per
character of its compact JSON serialization.
"""

from __future__ import annotations

import json
from typing import Any

__all__ = ['estimate_bytes', 'to_json']


def to_json(value: Any) -> str:
    """Compact JSON serialization, as the medium stores it."""
    return json.dumps(value, separators=(',', ':'), ensure_ascii=False)


def estimate_bytes(value: Any) -> int:
    """
    Estimated stored size of a JSON-compatible value.

    Counts UTF-16 code units, so characters outside the BMP cost four bytes.

    Examples:
        >>> estimate_bytes('ab')
        8
        >>> estimate_bytes([1, 2])
        10
    """
    return len(to_json(value).encode('utf-16-le'))
