from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from config import get_settings
from models import Frequency, TransactionType
from schemas import TransactionIn
from store import ItemStore, StorageError

logger = logging.getLogger(__name__)

ACTIVE_INDEX_KEY = "RECURRING_ACTIVE"


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def calculate_next_execution(from_date: date, frequency: Frequency) -> date:
    if frequency == Frequency.daily:
        return from_date + timedelta(days=1)
    if frequency == Frequency.weekly:
        return from_date + timedelta(weeks=1)
    if frequency == Frequency.monthly:
        return _add_months(from_date, 1)
    return _add_months(from_date, 12)


def recurring_pk(owner: str) -> str:
    return f"USER#{owner}#RECURRING"


def recurring_sk(rule_id: str) -> str:
    return f"RECURRING#{rule_id}"


def active_index_sk(owner: str, rule_id: str, is_active: bool, next_execution: date) -> str:
    if is_active:
        return f"{next_execution.isoformat()}#{owner}#{rule_id}"
    return f"INACTIVE#{owner}#{rule_id}"


def _optional_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


@dataclass(frozen=True)
class RecurringTransaction:
    id: str
    owner: str
    name: str
    amount: Decimal
    category: str
    type: TransactionType
    frequency: Frequency
    start_date: date
    end_date: Optional[date]
    description: str
    is_active: bool
    next_execution: date
    last_executed: Optional[date]
    execution_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "RecurringTransaction":
        return cls(
            id=item["id"],
            owner=item["user_id"],
            name=item["name"],
            amount=Decimal(str(item["amount"])),
            category=item["category"],
            type=TransactionType(str(item["type"]).lower()),
            frequency=Frequency(item["frequency"]),
            start_date=date.fromisoformat(item["start_date"]),
            end_date=_optional_date(item.get("end_date")),
            description=item.get("description") or "",
            is_active=bool(item.get("is_active", True)),
            next_execution=date.fromisoformat(item["next_execution"]),
            last_executed=_optional_date(item.get("last_executed")),
            execution_count=int(item.get("execution_count", 0)),
            created_at=datetime.fromisoformat(item["created_at"]),
            updated_at=datetime.fromisoformat(item["updated_at"]),
        )

    def ended_by(self, day: date) -> bool:
        return self.end_date is not None and day > self.end_date


@dataclass(frozen=True)
class Execution:
    rule: RecurringTransaction
    transaction: Any


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = ItemStore(session)

    def deactivate(self, rule: RecurringTransaction) -> RecurringTransaction:
        now = datetime.now(timezone.utc)
        item = self.store.update(
            recurring_pk(rule.owner),
            recurring_sk(rule.id),
            {
                "is_active": False,
                "updated_at": now,
                "GSI1SK": active_index_sk(
                    rule.owner, rule.id, False, rule.next_execution
                ),
            },
        )
        logger.info(f"recurring_deactivated: owner={rule.owner} id={rule.id}")
        return RecurringTransaction.from_item(item) if item else rule

    def execute(self, rule: RecurringTransaction, today: Optional[date] = None) -> Execution:
        from services import TransactionService

        today = today or local_today()
        description = f"{rule.description} (Auto-generated from: {rule.name})".strip()
        txn = TransactionService(self.session, rule.owner).create(
            TransactionIn(
                type=rule.type,
                category=rule.category,
                amount=rule.amount,
                note=description[:200],
                date=today,
            ),
            recurring_transaction_id=rule.id,
        )

        next_execution = calculate_next_execution(today, rule.frequency)
        still_active = not (rule.end_date and next_execution > rule.end_date)
        now = datetime.now(timezone.utc)
        item = self.store.update(
            recurring_pk(rule.owner),
            recurring_sk(rule.id),
            {
                "last_executed": today,
                "next_execution": next_execution,
                "execution_count": rule.execution_count + 1,
                "is_active": still_active,
                "updated_at": now,
                "GSI1SK": active_index_sk(
                    rule.owner, rule.id, still_active, next_execution
                ),
            },
        )
        logger.info(
            f"recurring_executed: owner={rule.owner} id={rule.id} "
            f"transaction={txn.id} next={next_execution.isoformat()}"
        )
        updated = RecurringTransaction.from_item(item) if item else rule
        return Execution(rule=updated, transaction=txn)

    def due_rules(
        self, today: date, owner: Optional[str] = None
    ) -> list[RecurringTransaction]:
        # Active index keys start with the ISO next-execution date.
        upper = (today + timedelta(days=1)).isoformat()
        rules: list[RecurringTransaction] = []
        for item in self.store.query_index(ACTIVE_INDEX_KEY, sk_lt=upper):
            try:
                rules.append(RecurringTransaction.from_item(item))
            except (KeyError, TypeError, ValueError, ArithmeticError):
                logger.exception(
                    f"recurring_rule_unreadable: pk={item['PK']} sk={item['SK']}"
                )
        if owner is not None:
            rules = [rule for rule in rules if rule.owner == owner]
        return rules

    def execute_due(
        self, today: Optional[date] = None, owner: Optional[str] = None
    ) -> list[Execution]:
        today = today or local_today()
        executions: list[Execution] = []
        for rule in self.due_rules(today, owner):
            if rule.ended_by(today):
                self.deactivate(rule)
                continue
            try:
                executions.append(self.execute(rule, today))
            except StorageError:
                logger.exception(
                    f"recurring_execute_failed: owner={rule.owner} id={rule.id}"
                )
        return executions
