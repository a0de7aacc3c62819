"""Pydantic schemas for serialising BudgetWise data."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer


def _iso_utc(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat() + "Z"


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
Timestamp = Annotated[datetime, PlainSerializer(_iso_utc, return_type=str, when_used="json")]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Credentials(BaseModel):
    username: str = ""
    password: str = ""


class TokenRead(BaseModel):
    token: str


class CategoryCreate(BaseModel):
    name: str = ""
    budget_type: str = ""


class CategoryRead(ORMModel):
    id: int
    name: str
    budget_type: str


class IncomeCreate(BaseModel):
    amount: Decimal
    source: Optional[str] = None
    date: Optional[datetime] = None


class IncomeRead(ORMModel):
    id: int
    amount: Money
    source: Optional[str] = None
    date: Timestamp


class ExpenseCreate(BaseModel):
    amount: Decimal
    description: Optional[str] = None
    user_category_id: Optional[Union[int, str]] = None
    date: Optional[datetime] = None


class ExpenseRead(ORMModel):
    id: int
    amount: Money
    description: Optional[str] = None
    user_category_id: Optional[int] = Field(None, validation_alias=AliasChoices("category_id", "user_category_id"))
    category: Optional[CategoryRead] = None
    date: Timestamp


class RecurringCreate(BaseModel):
    description: str = ""
    default_amount: Decimal
    user_category_id: Union[int, str, None] = None


class RecurringRead(BaseModel):
    id: int
    description: str
    default_amount: Money
    user_category_id: int
    category_name: str
    category_budget_type: str


class IncomeItem(BaseModel):
    id: int
    type: Literal["Income"] = "Income"
    amount: Money
    date: Timestamp
    source: Optional[str] = None


class ExpenseItem(BaseModel):
    id: int
    type: Literal["Expense"] = "Expense"
    amount: Money
    date: Timestamp
    description: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    category_budget_type: Optional[str] = None


FeedItem = Annotated[Union[IncomeItem, ExpenseItem], Field(discriminator="type")]


class FeedPageRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[FeedItem]
    next_cursor: Optional[str] = Field(None, alias="nextCursor")


class BucketRead(BaseModel):
    budget: Money
    spent: Money
    remaining: Money


class DashboardRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_income: Money = Field(alias="totalIncome")
    total_expenses: Money = Field(alias="totalExpenses")
    uncategorized_spent: Money = Field(alias="uncategorizedSpent")
    budgets: Dict[str, BucketRead]
    transactions: List[FeedItem]
    next_cursor: Optional[str] = Field(None, alias="nextCursor")


class CategorySpendRead(BaseModel):
    name: str
    total: Money


class TemplateCategory(BaseModel):
    name: str
    budget_type: str


class TemplateRecurring(BaseModel):
    description: str
    default_amount: Money
    category_name: str


class TemplateDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: str
    generated_at: Timestamp = Field(alias="generatedAt")
    categories: List[TemplateCategory]
    recurring: List[TemplateRecurring]


class ImportCounts(BaseModel):
    categories: int = 0
    recurring: int = 0


class ImportResultRead(BaseModel):
    inserted: ImportCounts
    skipped: ImportCounts


def feed_item(view) -> Union[IncomeItem, ExpenseItem]:
    """Convert a feed view (``IncomeView``/``ExpenseView``) into its wire model."""
    model = IncomeItem if view.kind == "Income" else ExpenseItem
    return model.model_validate(view, from_attributes=True)
