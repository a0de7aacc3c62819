from __future__ import annotations

from datetime import datetime

import pytest

pytest.importorskip("hypothesis")

from hypothesis import given
from hypothesis import strategies as st

from budgetwise.cursor import DIRECTIONS, EXPENSE_RANK, INCOME_RANK, Cursor, decode_cursor, encode_cursor
from budgetwise.errors import InvalidCursorError

CURSORS = st.builds(
    Cursor,
    direction=st.sampled_from(DIRECTIONS),
    timestamp=st.datetimes(min_value=datetime(1970, 1, 1), max_value=datetime(2100, 1, 1)),
    type_rank=st.sampled_from([INCOME_RANK, EXPENSE_RANK]),
    row_id=st.integers(min_value=1, max_value=2**53),
)


@given(cursor=CURSORS)
def test_encode_decode_round_trip(cursor: Cursor) -> None:
    token = encode_cursor(cursor)
    assert decode_cursor(token) == cursor
    assert token.isascii() and "=" not in token


@given(token=st.text(max_size=80))
def test_arbitrary_text_is_rejected_cleanly(token: str) -> None:
    try:
        decode_cursor(token)
    except InvalidCursorError as exc:
        assert exc.message == "invalid cursor"


@given(cursor=CURSORS, cut=st.integers(min_value=1, max_value=20))
def test_truncated_tokens_never_decode_to_another_cursor(cursor: Cursor, cut: int) -> None:
    token = encode_cursor(cursor)
    with pytest.raises(InvalidCursorError):
        decode_cursor(token[:-cut])
