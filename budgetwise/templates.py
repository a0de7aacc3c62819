"""Export and import of a user's category and recurring-template setup.

The exchanged document is versioned JSON::

    {
      "version": "1.0",
      "generatedAt": "2025-01-05T10:00:00Z",
      "categories": [{"name": "Rent", "budget_type": "Necessities"}],
      "recurring": [{"description": "Rent", "default_amount": 950.0, "category_name": "Rent"}]
    }

Import is an upsert keyed case-insensitively: categories that already exist
are reused, recurring templates that already exist are skipped, so replaying
the same file inserts nothing. All inserts of one import share a savepoint
and either land together or not at all.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Final, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, models, schemas
from .config import MAX_IMPORT_BYTES
from .errors import ConflictError, PayloadTooLargeError, ValidationError

LOG = logging.getLogger(__name__)

TEMPLATE_VERSION: Final[str] = "1.0"
MAX_TEMPLATE_CATEGORIES: Final[int] = 100
MAX_TEMPLATE_RECURRING: Final[int] = 200


def export_filename(now: Optional[datetime] = None) -> str:
    moment = now or models.utcnow()
    return f"budgetwise-template-{moment.date().isoformat()}.json"


def export_template(session: Session, user_id: int, now: Optional[datetime] = None) -> schemas.TemplateDocument:
    categories = crud.list_categories(session, user_id)
    recurring = crud.list_recurring(session, user_id)
    return schemas.TemplateDocument(
        version=TEMPLATE_VERSION,
        generated_at=now or models.utcnow(),
        categories=[schemas.TemplateCategory(name=item.name, budget_type=item.budget_type) for item in categories],
        recurring=[
            schemas.TemplateRecurring(
                description=item.description,
                default_amount=item.default_amount,
                category_name=item.category_name,
            )
            for item in recurring
        ],
    )


def render_template(document: schemas.TemplateDocument) -> str:
    """Serialise ``document`` as indented JSON with a trailing newline."""

    payload = document.model_dump(mode="json", by_alias=True)
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def load_template_payload(raw: bytes, max_bytes: int = MAX_IMPORT_BYTES) -> Any:
    if len(raw) > max_bytes:
        raise PayloadTooLargeError("Template exceeds 1MB limit.")
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("Invalid template payload.") from exc


@dataclass(slots=True)
class _RecurringEntry:
    description: str
    amount: Decimal
    category_key: str


@dataclass(slots=True)
class _ParsedTemplate:
    categories: dict[str, tuple[str, str]] = field(default_factory=dict)
    recurring: list[_RecurringEntry] = field(default_factory=list)
    duplicate_categories: int = 0
    duplicate_recurring: int = 0


def _amount_key(amount: Decimal) -> str:
    return f"{amount:.2f}"


def parse_template(payload: Any) -> _ParsedTemplate:
    """Validate a decoded document and collapse in-document duplicates.

    Raises:
        ValidationError: With a message naming the first offending entry.
    """

    if not isinstance(payload, dict):
        raise ValidationError("Invalid template payload.")
    if payload.get("version") != TEMPLATE_VERSION:
        raise ValidationError("Unsupported template version.")

    categories = payload.get("categories", [])
    recurring = payload.get("recurring", [])
    if not isinstance(categories, list) or len(categories) > MAX_TEMPLATE_CATEGORIES:
        raise ValidationError(f"Invalid categories list (max {MAX_TEMPLATE_CATEGORIES}).")
    if not isinstance(recurring, list) or len(recurring) > MAX_TEMPLATE_RECURRING:
        raise ValidationError(f"Invalid recurring list (max {MAX_TEMPLATE_RECURRING}).")

    parsed = _ParsedTemplate()
    for index, item in enumerate(categories):
        if not isinstance(item, dict):
            raise ValidationError("Invalid category entry.")
        name = item.get("name").strip() if isinstance(item.get("name"), str) else ""
        if not name or len(name) > crud.CATEGORY_NAME_MAX:
            raise ValidationError(f"Category name at index {index} must be 1-40 characters.")
        budget_type = item.get("budget_type")
        if budget_type not in models.BUDGET_TYPES:
            raise ValidationError(f'Invalid budget type for category "{name}".')
        key = name.lower()
        if key in parsed.categories:
            parsed.duplicate_categories += 1
            continue
        parsed.categories[key] = (name, budget_type)

    seen: set[tuple[str, str, str]] = set()
    for index, item in enumerate(recurring):
        if not isinstance(item, dict):
            raise ValidationError("Invalid recurring entry.")
        description = item.get("description").strip() if isinstance(item.get("description"), str) else ""
        if not description:
            raise ValidationError(f"Recurring description at index {index} is required.")
        if len(description) > crud.TEXT_MAX:
            raise ValidationError(f'Recurring description "{description}" is too long (max 255).')
        raw_amount = item.get("default_amount")
        if isinstance(raw_amount, bool) or not isinstance(raw_amount, int | float | str):
            raise ValidationError(f'Recurring amount for "{description}" must be positive.')
        try:
            amount = crud.normalize_amount(raw_amount)
        except ValidationError as exc:
            if "decimal places" in exc.message:
                raise ValidationError(f'Recurring amount for "{description}" must have at most two decimals.') from exc
            raise ValidationError(f'Recurring amount for "{description}" must be positive.') from exc
        category_name = item.get("category_name").strip() if isinstance(item.get("category_name"), str) else ""
        if not category_name:
            raise ValidationError(f'Recurring entry "{description}" must reference a category name.')
        category_key = category_name.lower()
        if category_key not in parsed.categories:
            raise ValidationError(f'Recurring entry "{description}" references unknown category "{category_name}".')

        dedupe = (description.lower(), _amount_key(amount), category_key)
        if dedupe in seen:
            parsed.duplicate_recurring += 1
            continue
        seen.add(dedupe)
        parsed.recurring.append(_RecurringEntry(description, amount, category_key))
    return parsed


def _insert_pending(
    session: Session,
    user_id: int,
    categories: dict[str, models.Category],
    new_categories: list[tuple[str, tuple[str, str]]],
    pending: list[_RecurringEntry],
    inserted: schemas.ImportCounts,
) -> None:
    with session.begin_nested():
        for key, (name, budget_type) in new_categories:
            category = models.Category(user_id=user_id, name=name, name_key=key, budget_type=budget_type)
            session.add(category)
            session.flush()
            categories[key] = category
            inserted.categories += 1

        for entry in pending:
            session.add(
                models.RecurringTemplate(
                    user_id=user_id,
                    category_id=categories[entry.category_key].id,
                    description=entry.description,
                    default_amount=entry.amount,
                )
            )
            inserted.recurring += 1
        session.flush()


def import_template(session: Session, user_id: int, payload: Any) -> schemas.ImportResultRead:
    """Merge a template document into the user's categories and templates.

    Returns:
        Counts of inserted and skipped categories and recurring templates.

    Raises:
        ValidationError: On malformed entries or when the per-user caps would
            be exceeded; nothing is written in that case.
    """

    parsed = parse_template(payload)

    existing = {
        category.name_key: category
        for category in session.scalars(select(models.Category).where(models.Category.user_id == user_id))
    }
    new_categories = [(key, value) for key, value in parsed.categories.items() if key not in existing]
    if len(existing) + len(new_categories) > crud.CATEGORY_LIMIT:
        raise ValidationError(f"Import would exceed the category limit ({crud.CATEGORY_LIMIT}).")

    existing_recurring = {
        (row.description.lower(), _amount_key(row.default_amount), row.category_id)
        for row in session.execute(
            select(
                models.RecurringTemplate.description,
                models.RecurringTemplate.default_amount,
                models.RecurringTemplate.category_id,
            ).where(models.RecurringTemplate.user_id == user_id)
        )
    }

    def _already_stored(entry: _RecurringEntry) -> bool:
        category = existing.get(entry.category_key)
        if category is None:
            return False
        return (entry.description.lower(), _amount_key(entry.amount), category.id) in existing_recurring

    pending = [entry for entry in parsed.recurring if not _already_stored(entry)]
    recurring_count = session.scalar(
        select(func.count(models.RecurringTemplate.id)).where(models.RecurringTemplate.user_id == user_id)
    )
    if int(recurring_count or 0) + len(pending) > crud.RECURRING_LIMIT:
        raise ValidationError(f"Import would exceed the recurring template limit ({crud.RECURRING_LIMIT}).")

    inserted = schemas.ImportCounts()
    skipped = schemas.ImportCounts(
        categories=parsed.duplicate_categories + len(parsed.categories) - len(new_categories),
        recurring=parsed.duplicate_recurring + len(parsed.recurring) - len(pending),
    )

    try:
        _insert_pending(session, user_id, existing, new_categories, pending, inserted)
    except IntegrityError as exc:
        raise ConflictError("Template import conflicted with a concurrent change.") from exc

    LOG.info(
        "Template import for user %s: inserted %d categories, %d recurring; skipped %d, %d",
        user_id,
        inserted.categories,
        inserted.recurring,
        skipped.categories,
        skipped.recurring,
    )
    return schemas.ImportResultRead(inserted=inserted, skipped=skipped)


__all__ = [
    "MAX_TEMPLATE_CATEGORIES",
    "MAX_TEMPLATE_RECURRING",
    "TEMPLATE_VERSION",
    "export_filename",
    "export_template",
    "import_template",
    "load_template_payload",
    "parse_template",
    "render_template",
]
