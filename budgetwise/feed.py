"""Cursor-paginated feed over a user's income and expense records.

Income and expense rows live in two tables with independent id sequences.
The feed merges them into one stream ordered by the composite key
``(timestamp, type_rank, row_id)``:

* ``newest``: timestamp descending, type rank ascending, row id descending;
* ``oldest``: timestamp ascending, type rank ascending, row id ascending.

The type rank never flips with the direction, so on an exact timestamp tie
income is always listed before expense. Row ids are only compared once the
timestamp and the type rank agree, which is the only place where ids from
the two tables can meet.

Pages are fetched with a single ``UNION ALL`` query limited to
``limit + 1`` rows; the extra row only signals that another page exists.
The cursor boundary is exclusive, so the row a cursor was built from never
comes back on the page fetched with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Final, Literal, Optional, Union

from sqlalchemy import Integer, String, and_, cast, literal_column, null, or_, select, union_all
from sqlalchemy.orm import Session

from . import models
from .cursor import EXPENSE_RANK, INCOME_RANK, Cursor, Direction, decode_cursor, encode_cursor
from .errors import InvalidCursorError, ValidationError
from .models import to_naive_utc

LOG = logging.getLogger(__name__)

DEFAULT_LIMIT: Final[int] = 20
MIN_LIMIT: Final[int] = 1
MAX_LIMIT: Final[int] = 50
UNCATEGORIZED: Final[str] = "uncategorized"
_EPOCH: Final[datetime] = datetime(1970, 1, 1)

Kind = Literal["Income", "Expense"]
CategoryFilter = Union[int, Literal["uncategorized"]]


@dataclass(frozen=True, slots=True)
class SortKey:
    """Position of a row in the merged stream."""

    timestamp: datetime
    type_rank: int
    row_id: int


@dataclass(frozen=True, slots=True)
class IncomeView:
    id: int
    amount: Decimal
    date: datetime
    source: Optional[str] = None

    kind: Kind = field(default="Income", init=False)

    @property
    def key(self) -> SortKey:
        return SortKey(self.date, INCOME_RANK, self.id)


@dataclass(frozen=True, slots=True)
class ExpenseView:
    id: int
    amount: Decimal
    date: datetime
    description: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    category_budget_type: Optional[str] = None

    kind: Kind = field(default="Expense", init=False)

    @property
    def key(self) -> SortKey:
        return SortKey(self.date, EXPENSE_RANK, self.id)


TransactionView = IncomeView | ExpenseView


def ordering_key(key: SortKey, direction: Direction) -> tuple[timedelta, int, int]:
    """Return a tuple whose natural ascending order is the feed order."""

    offset = key.timestamp - _EPOCH
    if direction == "newest":
        return (-offset, key.type_rank, -key.row_id)
    return (offset, key.type_rank, key.row_id)


def comes_after(key: SortKey, cursor: Cursor) -> bool:
    """``True`` when a row at ``key`` belongs strictly after ``cursor``."""

    boundary = SortKey(cursor.timestamp, cursor.type_rank, cursor.row_id)
    return ordering_key(key, cursor.direction) > ordering_key(boundary, cursor.direction)


def cursor_for(view: TransactionView, direction: Direction) -> Cursor:
    key = view.key
    return Cursor(direction=direction, timestamp=key.timestamp, type_rank=key.type_rank, row_id=key.row_id)


@dataclass(frozen=True, slots=True)
class FeedQuery:
    """Validated page request.

    Attributes:
      limit: Page size, already clamped to ``[MIN_LIMIT, MAX_LIMIT]``.
      direction: Sort direction of the stream.
      cursor: Resume point from a previous page, if any.
      kind: Restrict the stream to one record type.
      category: Category id, or ``"uncategorized"`` for expenses without one.
      start: Inclusive lower bound on the timestamp.
      end: Upper bound on the timestamp, inclusive unless ``end_exclusive``.
      end_exclusive: Set when ``end`` was widened from a date-only bound.
    """

    limit: int = DEFAULT_LIMIT
    direction: Direction = "newest"
    cursor: Optional[Cursor] = None
    kind: Optional[Kind] = None
    category: Optional[CategoryFilter] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    end_exclusive: bool = False


@dataclass(frozen=True, slots=True)
class FeedPage:
    items: list[TransactionView]
    next_cursor: Optional[str] = None


def clamp_limit(value: int | str | None) -> int:
    """Coerce ``value`` into the supported page size range.

    Out-of-range integers are clamped rather than rejected; only values that
    are not integers at all raise :class:`ValidationError`.
    """

    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_LIMIT
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("invalid limit") from exc
    return max(MIN_LIMIT, min(MAX_LIMIT, number))


def parse_direction(value: str | None) -> Direction:
    if value and value.strip().lower() == "oldest":
        return "oldest"
    return "newest"


def parse_kind(value: str | None) -> Optional[Kind]:
    if value is None or not value.strip():
        return None
    lowered = value.strip().lower()
    if lowered == "income":
        return "Income"
    if lowered == "expense":
        return "Expense"
    raise ValidationError("invalid type filter")


def parse_category(value: str | int | None) -> Optional[CategoryFilter]:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 < value <= models.MAX_ID:
            raise ValidationError("invalid category filter")
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.lower() == UNCATEGORIZED:
        return UNCATEGORIZED
    if not (text.isascii() and text.isdigit()) or len(text) > 19 or not 0 < int(text) <= models.MAX_ID:
        raise ValidationError("invalid category filter")
    return int(text)


def parse_bound(value: str | None) -> tuple[Optional[datetime], bool]:
    """Parse a date or date-time bound.

    Returns:
        The parsed naive UTC datetime and whether the input was a bare date.
    """

    if value is None or not value.strip():
        return None, False
    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime(day.year, day.month, day.day), True
        return to_naive_utc(datetime.fromisoformat(text)), False
    except ValueError as exc:
        raise ValidationError("invalid date") from exc


def parse_feed_query(
    *,
    limit: int | str | None = None,
    sort: str | None = None,
    cursor: str | None = None,
    type_: str | None = None,
    category_id: str | int | None = None,
    start: str | None = None,
    end: str | None = None,
) -> FeedQuery:
    """Validate raw request parameters into a :class:`FeedQuery`.

    Raises:
        InvalidCursorError: The cursor is malformed or was issued for the
            other sort direction.
        ValidationError: ``incompatible filters`` when a category filter is
            combined with ``type=income``; ``invalid range`` when the bounds
            describe an empty window; ``invalid date``, ``invalid type filter``,
            ``invalid category filter`` or ``invalid limit`` for unparseable
            values.
    """

    size = clamp_limit(limit)
    direction = parse_direction(sort)
    kind = parse_kind(type_)
    category = parse_category(category_id)
    if category is not None and kind == "Income":
        raise ValidationError("incompatible filters")

    lower, _ = parse_bound(start)
    upper, date_only = parse_bound(end)
    if date_only and upper is not None:
        upper = upper + timedelta(days=1)
    if lower is not None and upper is not None:
        empty = lower >= upper if date_only else lower > upper
        if empty:
            raise ValidationError("invalid range")

    resume: Optional[Cursor] = None
    if cursor is not None and cursor.strip():
        resume = decode_cursor(cursor.strip())
        if resume.direction != direction:
            raise InvalidCursorError()

    return FeedQuery(
        limit=size,
        direction=direction,
        cursor=resume,
        kind=kind,
        category=category,
        start=lower,
        end=upper,
        end_exclusive=date_only,
    )


def _date_filters(column, query: FeedQuery) -> list:
    clauses = []
    if query.start is not None:
        clauses.append(column >= query.start)
    if query.end is not None:
        clauses.append(column < query.end if query.end_exclusive else column <= query.end)
    return clauses


def _income_select(user_id: int, query: FeedQuery):
    income = models.Income
    return select(
        income.id.label("row_id"),
        literal_column(str(INCOME_RANK), Integer).label("type_rank"),
        income.amount.label("amount"),
        income.date.label("date"),
        income.source.label("source"),
        cast(null(), String(255)).label("description"),
        cast(null(), Integer).label("category_id"),
        cast(null(), String(40)).label("category_name"),
        cast(null(), String(20)).label("category_budget_type"),
    ).where(income.user_id == user_id, *_date_filters(income.date, query))


def _expense_select(user_id: int, query: FeedQuery):
    expense = models.Expense
    category = models.Category
    stmt = (
        select(
            expense.id.label("row_id"),
            literal_column(str(EXPENSE_RANK), Integer).label("type_rank"),
            expense.amount.label("amount"),
            expense.date.label("date"),
            cast(null(), String(255)).label("source"),
            expense.description.label("description"),
            expense.category_id.label("category_id"),
            category.name.label("category_name"),
            category.budget_type.label("category_budget_type"),
        )
        .outerjoin(category, category.id == expense.category_id)
        .where(expense.user_id == user_id, *_date_filters(expense.date, query))
    )
    if query.category == UNCATEGORIZED:
        stmt = stmt.where(expense.category_id.is_(None))
    elif query.category is not None:
        stmt = stmt.where(expense.category_id == query.category)
    return stmt


def _after_cursor(feed, cursor: Cursor):
    """Exclusive boundary predicate matching :func:`comes_after`."""

    if cursor.direction == "newest":
        earlier_time = feed.c.date < cursor.timestamp
        earlier_row = feed.c.row_id < cursor.row_id
    else:
        earlier_time = feed.c.date > cursor.timestamp
        earlier_row = feed.c.row_id > cursor.row_id
    return or_(
        earlier_time,
        and_(
            feed.c.date == cursor.timestamp,
            or_(
                feed.c.type_rank > cursor.type_rank,
                and_(feed.c.type_rank == cursor.type_rank, earlier_row),
            ),
        ),
    )


def _to_view(row) -> TransactionView:
    if row.type_rank == INCOME_RANK:
        return IncomeView(id=row.row_id, amount=row.amount, date=row.date, source=row.source)
    return ExpenseView(
        id=row.row_id,
        amount=row.amount,
        date=row.date,
        description=row.description,
        category_id=row.category_id,
        category_name=row.category_name,
        category_budget_type=row.category_budget_type,
    )


def build_feed_statement(user_id: int, query: FeedQuery):
    """Build the single ``SELECT`` that serves one page of the feed."""

    branches = []
    if query.kind in (None, "Income") and query.category is None:
        branches.append(_income_select(user_id, query))
    if query.kind in (None, "Expense"):
        branches.append(_expense_select(user_id, query))
    source = union_all(*branches) if len(branches) > 1 else branches[0]
    feed = source.subquery("feed")

    if query.direction == "newest":
        ordering = (feed.c.date.desc(), feed.c.type_rank.asc(), feed.c.row_id.desc())
    else:
        ordering = (feed.c.date.asc(), feed.c.type_rank.asc(), feed.c.row_id.asc())

    stmt = select(feed).order_by(*ordering).limit(query.limit + 1)
    if query.cursor is not None:
        stmt = stmt.where(_after_cursor(feed, query.cursor))
    return stmt


def fetch_page(session: Session, user_id: int, query: FeedQuery) -> FeedPage:
    """Return one page of the merged feed for ``user_id``."""

    rows = session.execute(build_feed_statement(user_id, query)).all()
    views = [_to_view(row) for row in rows]
    next_cursor: Optional[str] = None
    if len(views) > query.limit:
        views = views[: query.limit]
        next_cursor = encode_cursor(cursor_for(views[-1], query.direction))
    LOG.debug(
        "Feed page for user %s: %d items (direction=%s, more=%s)",
        user_id,
        len(views),
        query.direction,
        next_cursor is not None,
    )
    return FeedPage(items=views, next_cursor=next_cursor)


__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "MIN_LIMIT",
    "UNCATEGORIZED",
    "ExpenseView",
    "FeedPage",
    "FeedQuery",
    "IncomeView",
    "SortKey",
    "TransactionView",
    "build_feed_statement",
    "clamp_limit",
    "comes_after",
    "cursor_for",
    "fetch_page",
    "ordering_key",
    "parse_feed_query",
]
