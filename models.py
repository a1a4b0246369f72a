from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class AlertType(str, Enum):
    budget_exceeded = "BUDGET_EXCEEDED"
    spending_pattern = "SPENDING_PATTERN"
    category_limit = "CATEGORY_LIMIT"
    monthly_threshold = "MONTHLY_THRESHOLD"


class AlertCondition(str, Enum):
    greater_than = "GREATER_THAN"
    greater_than_or_equal = "GREATER_THAN_OR_EQUAL"
    percentage_of_budget = "PERCENTAGE_OF_BUDGET"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Item(Base, TimestampMixin):
    """One row of the single-table key-value store.

    ``pk``/``sk`` form the primary key; ``gsi1pk``/``gsi1sk`` are the
    optional alternate keys of the secondary index. Everything else lives in
    ``attributes``.
    """

    __tablename__ = "items"

    pk: Mapped[str] = mapped_column(String(512), primary_key=True)
    sk: Mapped[str] = mapped_column(String(512), primary_key=True)
    gsi1pk: Mapped[Optional[str]] = mapped_column(String(512))
    gsi1sk: Mapped[Optional[str]] = mapped_column(String(512))
    attributes: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )

    __table_args__ = (Index("ix_items_gsi1", "gsi1pk", "gsi1sk"),)
