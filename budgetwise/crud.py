"""CRUD helper functions for the BudgetWise backend.

Every function is scoped by ``user_id``; rows owned by another user are
reported as missing rather than forbidden so that ids never leak across
accounts.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import hash_password, verify_password
from .errors import AuthError, ConflictError, NotFoundError, ReferentialError, ValidationError

CATEGORY_LIMIT = 50
RECURRING_LIMIT = 50
CATEGORY_NAME_MAX = 40
TEXT_MAX = 255
USERNAME_MAX = 64
PASSWORD_MIN = 8

_CENT = Decimal("0.01")
_AMOUNT_CEILING = Decimal("10000000000")


def normalize_amount(value: Any) -> Decimal:
    """Return ``value`` as a positive amount with at most two decimals."""

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError("Amount must be a positive number.") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be a positive number.")
    if amount >= _AMOUNT_CEILING:
        raise ValidationError("Amount is too large.")
    if amount != amount.quantize(_CENT):
        raise ValidationError("Amount must have at most two decimal places.")
    return amount.quantize(_CENT)


def normalize_category_name(name: Any) -> str:
    trimmed = name.strip() if isinstance(name, str) else ""
    if not trimmed:
        raise ValidationError("Category name is required.")
    if len(trimmed) > CATEGORY_NAME_MAX:
        raise ValidationError("Category name must be between 1 and 40 characters.")
    return trimmed


def validate_budget_type(budget_type: Any) -> str:
    if budget_type not in models.BUDGET_TYPES:
        raise ValidationError("Invalid budget type.")
    return budget_type


def _clip(value: Optional[str]) -> str:
    return value.strip()[:TEXT_MAX] if isinstance(value, str) else ""


def _parse_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()) or len(text) > 19:
            return None
        value = int(text)
    if isinstance(value, int) and 0 < value <= models.MAX_ID:
        return value
    return None


def _owned(session: Session, model: type, user_id: int, row_id: Any):
    """Return the row of ``model`` with ``row_id`` if ``user_id`` owns it."""
    parsed = _parse_id(row_id)
    row = session.get(model, parsed) if parsed is not None else None
    if row is None or row.user_id != user_id:
        return None
    return row


# Users


def get_user_by_username(session: Session, username: str) -> Optional[models.User]:
    stmt = select(models.User).where(models.User.username == username.strip())
    return session.scalars(stmt).first()


def register_user(session: Session, credentials: schemas.Credentials) -> models.User:
    username = credentials.username.strip()
    if not username or len(username) > USERNAME_MAX or len(credentials.password) < PASSWORD_MIN:
        raise ValidationError("Username is required and password must be at least 8 characters.")
    if get_user_by_username(session, username) is not None:
        raise ConflictError("Username is already taken.")

    user = models.User(username=username, password_hash=hash_password(credentials.password))
    session.add(user)
    try:
        session.flush()
    except IntegrityError as exc:  # pragma: no cover - concurrent registration
        raise ConflictError("Username is already taken.") from exc
    return user


def authenticate_user(session: Session, credentials: schemas.Credentials) -> models.User:
    username = credentials.username.strip()
    if not username or not credentials.password:
        raise ValidationError("Username and password are required.")
    user = get_user_by_username(session, username)
    if user is None or not verify_password(credentials.password, user.password_hash):
        raise AuthError("Invalid username or password.")
    return user


# Categories


def list_categories(session: Session, user_id: int) -> List[models.Category]:
    stmt = (
        select(models.Category)
        .where(models.Category.user_id == user_id)
        .order_by(func.lower(models.Category.name), models.Category.id)
    )
    return list(session.scalars(stmt))


def get_category(session: Session, user_id: int, category_id: int) -> models.Category:
    category = _owned(session, models.Category, user_id, category_id)
    if category is None:
        raise NotFoundError("Category not found.")
    return category


def find_category_by_name(session: Session, user_id: int, name: str) -> Optional[models.Category]:
    stmt = select(models.Category).where(
        models.Category.user_id == user_id,
        models.Category.name_key == name.strip().lower(),
    )
    return session.scalars(stmt).first()


def count_categories(session: Session, user_id: int) -> int:
    stmt = select(func.count(models.Category.id)).where(models.Category.user_id == user_id)
    return int(session.scalar(stmt) or 0)


def create_category(session: Session, user_id: int, category_in: schemas.CategoryCreate) -> models.Category:
    name = normalize_category_name(category_in.name)
    budget_type = validate_budget_type(category_in.budget_type)

    if find_category_by_name(session, user_id, name) is not None:
        raise ConflictError("Category name already exists.")
    if count_categories(session, user_id) >= CATEGORY_LIMIT:
        raise ValidationError(f"Category limit reached ({CATEGORY_LIMIT}).")

    category = models.Category(user_id=user_id, name=name, name_key=name.lower(), budget_type=budget_type)
    session.add(category)
    try:
        session.flush()
    except IntegrityError as exc:  # pragma: no cover - concurrent insert
        raise ConflictError("Category name already exists.") from exc
    session.refresh(category)
    return category


def delete_category(session: Session, user_id: int, category_id: int) -> None:
    category = get_category(session, user_id, category_id)
    usage = session.scalar(
        select(func.count(models.Expense.id)).where(
            models.Expense.user_id == user_id,
            models.Expense.category_id == category.id,
        )
    )
    if usage:
        raise ReferentialError("Cannot delete a category that has expenses.")
    session.delete(category)
    session.flush()


def resolve_category(session: Session, user_id: int, raw_id: Any) -> models.Category:
    """Look up a category referenced from a write payload.

    Raises:
        ValidationError: If the id is malformed or names another user's row.
    """

    category = _owned(session, models.Category, user_id, raw_id)
    if category is None:
        raise ValidationError("Invalid category selection.")
    return category


# Income and expenses


def create_income(session: Session, user_id: int, income_in: schemas.IncomeCreate) -> models.Income:
    income = models.Income(
        user_id=user_id,
        amount=normalize_amount(income_in.amount),
        source=_clip(income_in.source),
        date=models.to_naive_utc(income_in.date) if income_in.date else models.utcnow(),
    )
    session.add(income)
    session.flush()
    session.refresh(income)
    return income


def delete_income(session: Session, user_id: int, income_id: int) -> None:
    income = _owned(session, models.Income, user_id, income_id)
    if income is None:
        raise NotFoundError("Income not found.")
    session.delete(income)
    session.flush()


def create_expense(session: Session, user_id: int, expense_in: schemas.ExpenseCreate) -> models.Expense:
    amount = normalize_amount(expense_in.amount)
    category: Optional[models.Category] = None
    if expense_in.user_category_id not in (None, ""):
        category = resolve_category(session, user_id, expense_in.user_category_id)

    expense = models.Expense(
        user_id=user_id,
        category_id=category.id if category is not None else None,
        amount=amount,
        description=_clip(expense_in.description),
        date=models.to_naive_utc(expense_in.date) if expense_in.date else models.utcnow(),
    )
    session.add(expense)
    session.flush()
    session.refresh(expense)
    return expense


def delete_expense(session: Session, user_id: int, expense_id: int) -> None:
    expense = _owned(session, models.Expense, user_id, expense_id)
    if expense is None:
        raise NotFoundError("Expense not found.")
    session.delete(expense)
    session.flush()


# Recurring templates


def normalize_description(description: Any) -> str:
    trimmed = description.strip() if isinstance(description, str) else ""
    if not trimmed:
        raise ValidationError("Description is required.")
    if len(trimmed) > TEXT_MAX:
        raise ValidationError("Description must be 255 characters or fewer.")
    return trimmed


def count_recurring(session: Session, user_id: int) -> int:
    stmt = select(func.count(models.RecurringTemplate.id)).where(models.RecurringTemplate.user_id == user_id)
    return int(session.scalar(stmt) or 0)


def list_recurring(session: Session, user_id: int) -> List[schemas.RecurringRead]:
    stmt = (
        select(
            models.RecurringTemplate.id,
            models.RecurringTemplate.description,
            models.RecurringTemplate.default_amount,
            models.RecurringTemplate.category_id,
            models.Category.name,
            models.Category.budget_type,
        )
        .join(models.Category, models.Category.id == models.RecurringTemplate.category_id)
        .where(models.RecurringTemplate.user_id == user_id)
        .order_by(func.lower(models.RecurringTemplate.description), models.RecurringTemplate.id)
    )
    return [
        schemas.RecurringRead(
            id=row.id,
            description=row.description,
            default_amount=row.default_amount,
            user_category_id=row.category_id,
            category_name=row.name,
            category_budget_type=row.budget_type,
        )
        for row in session.execute(stmt)
    ]


def create_recurring(
    session: Session,
    user_id: int,
    recurring_in: schemas.RecurringCreate,
) -> schemas.RecurringRead:
    description = normalize_description(recurring_in.description)
    amount = normalize_amount(recurring_in.default_amount)
    if _parse_id(recurring_in.user_category_id) is None:
        raise ValidationError("A valid category is required.")
    category = resolve_category(session, user_id, recurring_in.user_category_id)
    if count_recurring(session, user_id) >= RECURRING_LIMIT:
        raise ValidationError(f"Recurring template limit reached ({RECURRING_LIMIT}).")

    template = models.RecurringTemplate(
        user_id=user_id,
        category_id=category.id,
        description=description,
        default_amount=amount,
    )
    session.add(template)
    session.flush()
    return schemas.RecurringRead(
        id=template.id,
        description=description,
        default_amount=amount,
        user_category_id=category.id,
        category_name=category.name,
        category_budget_type=category.budget_type,
    )


def delete_recurring(session: Session, user_id: int, template_id: int) -> None:
    template = _owned(session, models.RecurringTemplate, user_id, template_id)
    if template is None:
        raise NotFoundError("Template not found.")
    session.delete(template)
    session.flush()
