import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import AlertCondition, AlertType, Frequency, TransactionType

_MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def _normalize_type(value: object) -> object:
    # Older clients sent "Expense"; the stored form is always lowercase.
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _reject_null(value: object) -> object:
    # Explicit nulls would erase required fields of the stored item.
    if value is None:
        raise ValueError("may not be null")
    return value


class TransactionIn(BaseModel):
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    note: str = Field(default="", max_length=200)
    date: Optional[dt.date] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: object) -> object:
        return _normalize_type(value)


class TemplateCategoryIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    budget_amount: Decimal = Field(..., ge=0)
    rollover_enabled: bool = False


class BudgetTemplateIn(BaseModel):
    template_name: str = Field(..., min_length=1, max_length=100)
    categories: list[TemplateCategoryIn] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_unique_categories(self) -> "BudgetTemplateIn":
        names = [entry.category for entry in self.categories]
        if len(names) != len(set(names)):
            raise ValueError("Category names must be unique within a template")
        return self


class TemplateCopyIn(BaseModel):
    new_template_name: str = Field(..., min_length=1, max_length=100)


class BudgetAmountIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    budget_amount: Decimal = Field(..., ge=0)


class BudgetAmountsIn(BaseModel):
    budgets: list[BudgetAmountIn] = Field(..., min_length=1)


class RecurringTransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    frequency: Frequency
    start_date: dt.date
    end_date: Optional[dt.date] = None
    description: str = Field(default="", max_length=200)
    is_active: bool = True

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: object) -> object:
        return _normalize_type(value)

    @model_validator(mode="after")
    def check_end_after_start(self) -> "RecurringTransactionIn":
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class RecurringTransactionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=200)
    is_active: Optional[bool] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: object) -> object:
        return _normalize_type(value)

    @field_validator(
        "name",
        "amount",
        "category",
        "type",
        "frequency",
        "start_date",
        "description",
        "is_active",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value: object) -> object:
        return _reject_null(value)


class AlertIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AlertType
    condition: AlertCondition
    threshold: Decimal = Field(..., gt=0)
    category: Optional[str] = Field(default=None, max_length=100)
    budget_template: Optional[str] = Field(default=None, max_length=100)
    month: Optional[str] = Field(default=None, pattern=_MONTH_PATTERN)
    is_active: bool = True
    notification_methods: list[str] = Field(default_factory=lambda: ["APP"])
    description: str = Field(default="", max_length=200)


class AlertPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    type: Optional[AlertType] = None
    condition: Optional[AlertCondition] = None
    threshold: Optional[Decimal] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, max_length=100)
    budget_template: Optional[str] = Field(default=None, max_length=100)
    month: Optional[str] = Field(default=None, pattern=_MONTH_PATTERN)
    is_active: Optional[bool] = None
    notification_methods: Optional[list[str]] = None
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator(
        "name",
        "type",
        "condition",
        "threshold",
        "is_active",
        "notification_methods",
        "description",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value: object) -> object:
        return _reject_null(value)
