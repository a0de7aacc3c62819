"""SQLAlchemy models for the BudgetWise backend."""
from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Final, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base

BUDGET_TYPES: Final[tuple[str, ...]] = ("Necessities", "Leisure", "Savings")
# Largest value SQLite can bind to an INTEGER column.
MAX_ID: Final[int] = 2**63 - 1
_BUDGET_TYPE_CHECK = "budget_type IN ('Necessities', 'Leisure', 'Savings')"


def utcnow() -> datetime:
    """Current UTC time as the naive datetime stored in the database."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)
    username: str = Column(String(64), unique=True, nullable=False, index=True)
    password_hash: str = Column(String(255), nullable=False)
    created_at: datetime = Column(DateTime, nullable=False, default=utcnow)

    categories = relationship("Category", back_populates="owner", cascade="all, delete-orphan")
    incomes = relationship("Income", back_populates="owner", cascade="all, delete-orphan")
    expenses = relationship("Expense", back_populates="owner", cascade="all, delete-orphan")
    recurring = relationship("RecurringTemplate", back_populates="owner", cascade="all, delete-orphan")


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name_key", name="uq_categories_user_name"),
        CheckConstraint(_BUDGET_TYPE_CHECK, name="ck_categories_budget_type"),
    )

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name: str = Column(String(40), nullable=False)
    name_key: str = Column(String(40), nullable=False)
    budget_type: str = Column(String(20), nullable=False)
    created_at: datetime = Column(DateTime, nullable=False, default=utcnow)

    owner = relationship("User", back_populates="categories")
    expenses = relationship("Expense", back_populates="category", passive_deletes="all")
    recurring = relationship("RecurringTemplate", back_populates="category", cascade="all, delete-orphan")


class Income(Base):
    __tablename__ = "income"

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Decimal = Column(Numeric(12, 2), nullable=False)
    source: Optional[str] = Column(String(255), nullable=True)
    date: datetime = Column(DateTime, nullable=False, default=utcnow, index=True)

    owner = relationship("User", back_populates="incomes")


class Expense(Base):
    __tablename__ = "expenditure"

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id: Optional[int] = Column(
        Integer,
        ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    amount: Decimal = Column(Numeric(12, 2), nullable=False)
    description: Optional[str] = Column(String(255), nullable=True)
    date: datetime = Column(DateTime, nullable=False, default=utcnow, index=True)

    owner = relationship("User", back_populates="expenses")
    category = relationship("Category", back_populates="expenses")


class RecurringTemplate(Base):
    __tablename__ = "recurring_expenditure"

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id: int = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    description: str = Column(String(255), nullable=False)
    default_amount: Decimal = Column(Numeric(12, 2), nullable=False)

    owner = relationship("User", back_populates="recurring")
    category = relationship("Category", back_populates="recurring")
