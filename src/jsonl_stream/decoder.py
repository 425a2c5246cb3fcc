"""Per-line JSON decoding."""

from __future__ import annotations

import json
from typing import Any

from .exceptions import RecordDecodeError


def is_blank(data: bytes) -> bool:
    """True for empty or whitespace-only lines, which carry no record."""
    return not data.strip()


def decode_record(data: bytes) -> Any:
    """Parse one line (without terminator) as a JSON value.

    Raises:
        RecordDecodeError: If the line is not UTF-8 or not valid JSON
    """
    try:
        return json.loads(data.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise RecordDecodeError(data, f"not UTF-8 ({e.reason})") from e
    except json.JSONDecodeError as e:
        raise RecordDecodeError(data, e.msg) from e
