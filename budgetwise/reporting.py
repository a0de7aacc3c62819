"""Monthly aggregation for the 50/30/20 dashboard."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Final, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import models, schemas
from .feed import FeedQuery, fetch_page

LOG = logging.getLogger(__name__)

BUCKET_SHARES: Final[dict[str, Decimal]] = {
    "Necessities": Decimal("0.5"),
    "Leisure": Decimal("0.3"),
    "Savings": Decimal("0.2"),
}
RECENT_ACTIVITY_LIMIT: Final[int] = 10
_CENT: Final[Decimal] = Decimal("0.01")
_ZERO: Final[Decimal] = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class MonthWindow:
    """Half-open ``[start, end)`` range covering one calendar month."""

    start: datetime
    end: datetime


def month_window(now: Optional[datetime] = None) -> MonthWindow:
    moment = models.to_naive_utc(now) if now is not None else models.utcnow()
    start = datetime(moment.year, moment.month, 1)
    if moment.month == 12:
        end = datetime(moment.year + 1, 1, 1)
    else:
        end = datetime(moment.year, moment.month + 1, 1)
    return MonthWindow(start=start, end=end)


def _as_money(value: object) -> Decimal:
    if value is None:
        return _ZERO
    return Decimal(str(value)).quantize(_CENT)


def total_income(session: Session, user_id: int, window: MonthWindow) -> Decimal:
    stmt = select(func.coalesce(func.sum(models.Income.amount), 0)).where(
        models.Income.user_id == user_id,
        models.Income.date >= window.start,
        models.Income.date < window.end,
    )
    return _as_money(session.scalar(stmt))


def spending_by_bucket(session: Session, user_id: int, window: MonthWindow) -> dict[Optional[str], Decimal]:
    """Sum expenses per budget bucket; uncategorized spending is keyed by ``None``."""

    stmt = (
        select(
            models.Category.budget_type,
            func.coalesce(func.sum(models.Expense.amount), 0).label("total"),
        )
        .select_from(models.Expense)
        .outerjoin(models.Category, models.Category.id == models.Expense.category_id)
        .where(
            models.Expense.user_id == user_id,
            models.Expense.date >= window.start,
            models.Expense.date < window.end,
        )
        .group_by(models.Category.budget_type)
    )
    return {row.budget_type: _as_money(row.total) for row in session.execute(stmt)}


def monthly_dashboard(session: Session, user_id: int, now: Optional[datetime] = None) -> schemas.DashboardRead:
    """Build the dashboard for the calendar month containing ``now``.

    ``remaining`` is allowed to go negative: it signals overspending in a
    bucket and is not treated as an error. Recent activity is the first
    newest-first page of the transaction feed.
    """

    window = month_window(now)
    income = total_income(session, user_id, window)
    spent = spending_by_bucket(session, user_id, window)

    budgets: dict[str, schemas.BucketRead] = {}
    for bucket, share in BUCKET_SHARES.items():
        budget = (income * share).quantize(_CENT)
        bucket_spent = spent.get(bucket, _ZERO)
        budgets[bucket] = schemas.BucketRead(budget=budget, spent=bucket_spent, remaining=budget - bucket_spent)

    page = fetch_page(session, user_id, FeedQuery(limit=RECENT_ACTIVITY_LIMIT, direction="newest"))
    LOG.debug("Dashboard for user %s over %s..%s", user_id, window.start.date(), window.end.date())
    return schemas.DashboardRead(
        total_income=income,
        total_expenses=sum(spent.values(), _ZERO),
        uncategorized_spent=spent.get(None, _ZERO),
        budgets=budgets,
        transactions=[schemas.feed_item(view) for view in page.items],
        next_cursor=page.next_cursor,
    )


def spending_by_category(
    session: Session,
    user_id: int,
    now: Optional[datetime] = None,
) -> List[schemas.CategorySpendRead]:
    window = month_window(now)
    name = func.coalesce(models.Category.name, "Uncategorized").label("name")
    total = func.coalesce(func.sum(models.Expense.amount), 0).label("total")
    stmt = (
        select(name, total)
        .select_from(models.Expense)
        .outerjoin(models.Category, models.Category.id == models.Expense.category_id)
        .where(
            models.Expense.user_id == user_id,
            models.Expense.date >= window.start,
            models.Expense.date < window.end,
        )
        .group_by(models.Category.name)
        .order_by(total.desc(), name)
    )
    return [schemas.CategorySpendRead(name=row.name, total=_as_money(row.total)) for row in session.execute(stmt)]


__all__ = [
    "BUCKET_SHARES",
    "MonthWindow",
    "month_window",
    "monthly_dashboard",
    "spending_by_bucket",
    "spending_by_category",
    "total_income",
]
