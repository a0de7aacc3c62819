"""Opaque pagination tokens for the transaction feed.

A cursor pins the position of the last item handed to the client as the
four-tuple ``(direction, timestamp, type_rank, row_id)``. On the wire it is
the URL-safe base64 encoding (padding stripped) of a compact JSON object::

    {"d": "newest", "t": "2025-01-05T10:00:00.000000", "r": 0, "i": 12}

The token carries no signature: the feed re-validates every field and a
tampered token can only move the resume point, never widen the query
beyond the caller's own rows.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Final, Literal

from .errors import InvalidCursorError
from .models import MAX_ID

Direction = Literal["newest", "oldest"]

DIRECTIONS: Final[tuple[str, ...]] = ("newest", "oldest")
INCOME_RANK: Final[int] = 0
EXPENSE_RANK: Final[int] = 1
_FIELDS: Final[frozenset[str]] = frozenset({"d", "t", "r", "i"})
_MAX_TOKEN_LENGTH: Final[int] = 512


@dataclass(frozen=True, slots=True)
class Cursor:
    """Resume point inside the merged feed."""

    direction: Direction
    timestamp: datetime
    type_rank: int
    row_id: int


def encode_cursor(cursor: Cursor) -> str:
    payload = {
        "d": cursor.direction,
        "t": cursor.timestamp.isoformat(timespec="microseconds"),
        "r": cursor.type_rank,
        "i": cursor.row_id,
    }
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_cursor(token: str) -> Cursor:
    """Parse ``token`` back into a :class:`Cursor`.

    Raises:
        InvalidCursorError: If the token is malformed, truncated, or any
            field is missing or out of its domain.
    """

    if not isinstance(token, str) or not token or len(token) > _MAX_TOKEN_LENGTH:
        raise InvalidCursorError()
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeError, binascii.Error, ValueError) as exc:
        raise InvalidCursorError() from exc

    if not isinstance(payload, dict) or set(payload) != _FIELDS:
        raise InvalidCursorError()

    direction = payload["d"]
    if direction not in DIRECTIONS:
        raise InvalidCursorError()

    stamp = payload["t"]
    if not isinstance(stamp, str):
        raise InvalidCursorError()
    try:
        timestamp = datetime.fromisoformat(stamp)
    except ValueError as exc:
        raise InvalidCursorError() from exc
    if timestamp.tzinfo is not None:
        raise InvalidCursorError()

    rank = payload["r"]
    if not isinstance(rank, int) or isinstance(rank, bool) or rank not in (INCOME_RANK, EXPENSE_RANK):
        raise InvalidCursorError()

    row_id = payload["i"]
    if not isinstance(row_id, int) or isinstance(row_id, bool) or not 0 < row_id <= MAX_ID:
        raise InvalidCursorError()

    return Cursor(direction=direction, timestamp=timestamp, type_rank=rank, row_id=row_id)


__all__ = [
    "Cursor",
    "DIRECTIONS",
    "Direction",
    "EXPENSE_RANK",
    "INCOME_RANK",
    "decode_cursor",
    "encode_cursor",
]
