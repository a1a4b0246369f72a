from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy.orm import Session

from budget_analysis import analyze_budget
from config import DEFAULT_TEMPLATE_NAME, get_settings
from models import AlertCondition, AlertType, TransactionType
from months import month_of, parse_month, previous_month
from recurrence import (
    RecurringEngine,
    RecurringTransaction,
    Execution,
    active_index_sk,
    local_today,
    recurring_pk,
    recurring_sk,
)
from schemas import (
    AlertIn,
    AlertPatch,
    BudgetAmountIn,
    BudgetTemplateIn,
    RecurringTransactionIn,
    RecurringTransactionPatch,
    TemplateCopyIn,
    TransactionIn,
)
from store import ItemStore

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_CLEARABLE = frozenset({"end_date"})
_ALERT_CLEARABLE = frozenset({"category", "budget_template", "month"})
_ANY_MONTH = "ANY"


class ValidationError(ValueError):
    pass


class TemplateNotFound(ValueError):
    pass


class TransactionNotFound(ValueError):
    pass


class RecurringTransactionNotFound(ValueError):
    pass


class AlertNotFound(ValueError):
    pass


def _require(value: Optional[str], field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"Missing {field}")
    return cleaned


def validate_owner(owner: Optional[str]) -> str:
    owner = _require(owner, "owner")
    if "#" in owner:
        raise ValidationError("Owner id must not contain '#'")
    return owner


def _validate_month(month: Optional[str]) -> str:
    month = _require(month, "month")
    try:
        parse_month(month)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return month


def _time_id(prefix: str) -> str:
    millis = time.time_ns() // 1_000_000
    return f"{prefix}-{millis}-{secrets.token_hex(4)}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _decimal(value: Any) -> Decimal:
    if value is None:
        return _ZERO
    return Decimal(str(value))


def _template_pk(owner: str, name: str) -> str:
    return f"USER#{owner}#TEMPLATE#{name}"


def _templates_prefix(owner: str) -> str:
    return f"USER#{owner}#TEMPLATE#"


def _envelope_pk(owner: str, template: str) -> str:
    return f"USER#{owner}#ENVELOPE#{template}"


def _envelope_month_key(owner: str, month: str) -> str:
    return f"USER#{owner}#ENVELOPE_MONTH#{month}"


def _transactions_pk(owner: str) -> str:
    return f"USER#{owner}#TRANSACTION"


def _transaction_month_key(owner: str, month: str) -> str:
    return f"USER#{owner}#MONTH#{month}"


@dataclass(frozen=True)
class TemplateCategory:
    category: str
    budget_amount: Decimal
    rollover_enabled: bool


@dataclass(frozen=True)
class EnvelopeBudget:
    id: str
    template_name: str
    category: str
    budget_amount: Decimal
    month: str
    rollover_enabled: bool
    rollover_amount: Decimal
    is_active: bool
    created_at: datetime


@dataclass(frozen=True)
class Transaction:
    id: str
    type: TransactionType
    category: str
    amount: Decimal
    note: str
    date: date
    created_at: datetime
    recurring_transaction_id: Optional[str] = None


def _template_item(
    owner: str, name: str, entry: TemplateCategory, created_at: datetime
) -> dict[str, Any]:
    return {
        "PK": _template_pk(owner, name),
        "SK": f"CATEGORY#{entry.category}",
        "GSI1PK": f"USER#{owner}#TEMPLATE_CATEGORY#{entry.category}",
        "GSI1SK": f"{name}#{entry.category}",
        "template_name": name,
        "category": entry.category,
        "budget_amount": entry.budget_amount,
        "rollover_enabled": entry.rollover_enabled,
        "is_active": True,
        "created_at": created_at,
        "user_id": owner,
    }


def _envelope_item(owner: str, budget: EnvelopeBudget) -> dict[str, Any]:
    return {
        "PK": _envelope_pk(owner, budget.template_name),
        "SK": f"{budget.month}#{budget.category}",
        "GSI1PK": _envelope_month_key(owner, budget.month),
        "GSI1SK": f"{budget.template_name}#{budget.category}",
        "id": budget.id,
        "template_name": budget.template_name,
        "category": budget.category,
        "budget_amount": budget.budget_amount,
        "month": budget.month,
        "rollover_enabled": budget.rollover_enabled,
        "rollover_amount": budget.rollover_amount,
        "is_active": budget.is_active,
        "created_at": budget.created_at,
        "user_id": owner,
    }


def _envelope_from_item(item: dict[str, Any]) -> EnvelopeBudget:
    return EnvelopeBudget(
        id=item["id"],
        template_name=item["template_name"],
        category=item["category"],
        budget_amount=_decimal(item.get("budget_amount")),
        month=item["month"],
        rollover_enabled=bool(item.get("rollover_enabled", False)),
        rollover_amount=_decimal(item.get("rollover_amount")),
        is_active=bool(item.get("is_active", True)),
        created_at=datetime.fromisoformat(item["created_at"]),
    )


def _transaction_from_item(item: dict[str, Any]) -> Transaction:
    return Transaction(
        id=item["id"],
        type=TransactionType(str(item["type"]).lower()),
        category=item["category"],
        amount=_decimal(item.get("amount")),
        note=item.get("note") or "",
        date=date.fromisoformat(item["date"]),
        created_at=datetime.fromisoformat(item["created_at"]),
        recurring_transaction_id=item.get("recurring_transaction_id"),
    )


class TransactionService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = validate_owner(owner)
        self.store = ItemStore(session)

    def create(
        self, data: TransactionIn, *, recurring_transaction_id: Optional[str] = None
    ) -> Transaction:
        txn_date = data.date or local_today()
        txn = Transaction(
            id=_time_id("txn"),
            type=data.type,
            category=data.category,
            amount=data.amount,
            note=data.note,
            date=txn_date,
            created_at=_now(),
            recurring_transaction_id=recurring_transaction_id,
        )
        item = {
            "PK": _transactions_pk(self.owner),
            "SK": f"TRANSACTION#{txn.id}",
            "GSI1PK": _transaction_month_key(self.owner, month_of(txn_date)),
            "GSI1SK": f"{txn.category}#{txn.id}",
            "id": txn.id,
            "type": txn.type,
            "category": txn.category,
            "amount": txn.amount,
            "note": txn.note,
            "date": txn.date,
            "created_at": txn.created_at,
            "user_id": self.owner,
        }
        if recurring_transaction_id:
            item["recurring_transaction_id"] = recurring_transaction_id
        self.store.put(item)
        logger.info(
            f"transaction_created: owner={self.owner} id={txn.id} "
            f"type={txn.type.value} category={txn.category}"
        )
        return txn

    def list(self, month: Optional[str] = None) -> list[Transaction]:
        if month:
            month = _validate_month(month)
            items = self.store.query_index(_transaction_month_key(self.owner, month))
        else:
            items = self.store.query(_transactions_pk(self.owner))
        txns = [_transaction_from_item(item) for item in items]
        return sorted(txns, key=lambda t: (t.date, t.created_at), reverse=True)

    def get(self, transaction_id: str) -> Transaction:
        item = self.store.get(
            _transactions_pk(self.owner), f"TRANSACTION#{transaction_id}"
        )
        if not item:
            raise TransactionNotFound("Transaction not found")
        return _transaction_from_item(item)

    def delete(self, transaction_id: str) -> None:
        deleted = self.store.delete(
            _transactions_pk(self.owner), f"TRANSACTION#{transaction_id}"
        )
        if not deleted:
            raise TransactionNotFound("Transaction not found")
        logger.info(f"transaction_deleted: owner={self.owner} id={transaction_id}")


class SpendingService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = validate_owner(owner)
        self.store = ItemStore(session)

    def actual_spending(self, month: str) -> dict[str, Decimal]:
        month = _validate_month(month)
        spending: dict[str, Decimal] = {}
        for item in self.store.query_index(_transaction_month_key(self.owner, month)):
            if str(item.get("type", "")).lower() != TransactionType.expense.value:
                continue
            category = item["category"]
            spending[category] = spending.get(category, _ZERO) + _decimal(
                item.get("amount")
            )
        return spending


class TemplateService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = validate_owner(owner)
        self.store = ItemStore(session)

    def _all_items(self) -> list[dict[str, Any]]:
        return self.store.scan_filtered(_templates_prefix(self.owner))

    def template_names(self) -> list[str]:
        return sorted({item["template_name"] for item in self._all_items()})

    def has_templates(self) -> bool:
        return bool(self._all_items())

    def list_templates(self) -> list[dict[str, Any]]:
        summaries: dict[str, dict[str, Any]] = {}
        for item in self._all_items():
            name = item["template_name"]
            summary = summaries.setdefault(
                name,
                {
                    "template_name": name,
                    "category_count": 0,
                    "total_budget": _ZERO,
                    "last_updated": item.get("created_at"),
                },
            )
            summary["category_count"] += 1
            summary["total_budget"] += _decimal(item.get("budget_amount"))
            created_at = item.get("created_at")
            if created_at and (
                summary["last_updated"] is None or created_at > summary["last_updated"]
            ):
                summary["last_updated"] = created_at
        return [summaries[name] for name in sorted(summaries)]

    def _not_found(self, name: str) -> TemplateNotFound:
        available = self.template_names()
        available.sort(key=lambda n: (Levenshtein.distance(name.lower(), n.lower()), n))
        return TemplateNotFound(
            f'Template "{name}" not found. '
            f"Available templates: {', '.join(available) or 'none'}"
        )

    def categories(self, name: str) -> list[TemplateCategory]:
        name = _require(name, "template")
        items = self.store.query(_template_pk(self.owner, name))
        if not items:
            raise self._not_found(name)
        return [
            TemplateCategory(
                category=item["category"],
                budget_amount=_decimal(item.get("budget_amount")),
                rollover_enabled=bool(item.get("rollover_enabled", False)),
            )
            for item in items
        ]

    def _write(self, name: str, entries: list[TemplateCategory]) -> int:
        created_at = _now()
        items = [_template_item(self.owner, name, entry, created_at) for entry in entries]
        return self.store.batch_put(
            items,
            chunk_size=get_settings().batch_chunk_size,
            if_not_exists=False,
        )

    def create_template(self, data: BudgetTemplateIn) -> dict[str, Any]:
        name = _require(data.template_name, "template_name")
        entries = [
            TemplateCategory(
                category=entry.category,
                budget_amount=entry.budget_amount,
                rollover_enabled=entry.rollover_enabled,
            )
            for entry in data.categories
        ]
        pk = _template_pk(self.owner, name)
        wanted = {f"CATEGORY#{entry.category}" for entry in entries}
        stale = [
            (item["PK"], item["SK"])
            for item in self.store.query(pk)
            if item["SK"] not in wanted
        ]
        self._write(name, entries)
        if stale:
            self.store.batch_delete(stale, chunk_size=get_settings().batch_chunk_size)
        logger.info(
            f"template_saved: owner={self.owner} name={name} "
            f"categories={len(entries)} removed={len(stale)}"
        )
        return {"template_name": name, "categories_created": len(entries)}

    def copy_template(self, source: str, data: TemplateCopyIn) -> dict[str, Any]:
        source = _require(source, "template")
        target = _require(data.new_template_name, "new_template_name")
        entries = self.categories(source)
        if self.store.query(_template_pk(self.owner, target)):
            raise ValidationError(f'Template "{target}" already exists')
        self._write(target, entries)
        logger.info(
            f"template_copied: owner={self.owner} source={source} target={target}"
        )
        return {
            "source_template": source,
            "new_template": target,
            "categories_copied": len(entries),
        }

    def delete_template(self, name: str) -> int:
        name = _require(name, "template")
        items = self.store.query(_template_pk(self.owner, name))
        if not items:
            raise self._not_found(name)
        deleted = self.store.batch_delete(
            [(item["PK"], item["SK"]) for item in items],
            chunk_size=get_settings().batch_chunk_size,
        )
        logger.info(f"template_deleted: owner={self.owner} name={name} items={deleted}")
        return deleted

    def provision_default(self) -> list[TemplateCategory]:
        entries = [
            TemplateCategory(
                category=category,
                budget_amount=Decimal(amount),
                rollover_enabled=rollover,
            )
            for category, amount, rollover in get_settings().default_template_categories
        ]
        self._write(DEFAULT_TEMPLATE_NAME, entries)
        logger.info(
            f"default_template_provisioned: owner={self.owner} categories={len(entries)}"
        )
        return entries


class EnvelopeBudgetService:
    """Monthly envelope budgets derived from a template, with rollover."""

    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = validate_owner(owner)
        self.store = ItemStore(session)
        self.templates = TemplateService(session, self.owner)
        self.spending = SpendingService(session, self.owner)

    def existing_budgets(self, template: str, month: str) -> list[EnvelopeBudget]:
        items = self.store.query(
            _envelope_pk(self.owner, template), sk_prefix=f"{month}#"
        )
        return [_envelope_from_item(item) for item in items]

    def budgets_for_month(self, month: str) -> list[EnvelopeBudget]:
        month = _validate_month(month)
        items = self.store.query_index(_envelope_month_key(self.owner, month))
        return [_envelope_from_item(item) for item in items]

    def get_or_create(self, template: str, month: str) -> list[EnvelopeBudget]:
        template = _require(template, "template")
        month = _validate_month(month)
        existing = self.existing_budgets(template, month)
        if existing:
            logger.info(
                f"envelope_budgets_found: owner={self.owner} template={template} "
                f"month={month} count={len(existing)}"
            )
            return existing
        return self._create_from_template(template, month)

    def _template_categories(self, template: str) -> list[TemplateCategory]:
        try:
            return self.templates.categories(template)
        except TemplateNotFound:
            if template != DEFAULT_TEMPLATE_NAME or self.templates.has_templates():
                raise
            return self.templates.provision_default()

    def _create_from_template(self, template: str, month: str) -> list[EnvelopeBudget]:
        entries = self._template_categories(template)
        rollover = self.rollover_amounts(template, previous_month(month))
        created_at = _now()
        budgets = [
            EnvelopeBudget(
                id=_time_id(f"{template}-{month}-{entry.category}"),
                template_name=template,
                category=entry.category,
                budget_amount=entry.budget_amount,
                month=month,
                rollover_enabled=entry.rollover_enabled,
                rollover_amount=rollover.get(entry.category, _ZERO),
                is_active=True,
                created_at=created_at,
            )
            for entry in entries
        ]
        written = self.store.batch_put(
            [_envelope_item(self.owner, budget) for budget in budgets],
            chunk_size=get_settings().batch_chunk_size,
            if_not_exists=True,
        )
        logger.info(
            f"envelope_budgets_created: owner={self.owner} template={template} "
            f"month={month} count={len(budgets)} written={written}"
        )
        if written < len(budgets):
            # Another request created some of these rows first.
            return self.existing_budgets(template, month)
        return budgets

    def rollover_amounts(self, template: str, previous: str) -> dict[str, Decimal]:
        """Unspent allocation per rollover-enabled category of ``previous``.

        Overspending is not carried forward; such categories are left out.
        """
        budgets = self.existing_budgets(template, previous)
        if not budgets:
            return {}
        spent = self.spending.actual_spending(previous)
        amounts: dict[str, Decimal] = {}
        for budget in budgets:
            if not budget.rollover_enabled:
                continue
            remaining = (
                budget.budget_amount
                - spent.get(budget.category, _ZERO)
                + budget.rollover_amount
            )
            if remaining > 0:
                amounts[budget.category] = remaining
        return amounts

    def update_budget_amounts(
        self, template: str, month: str, updates: list[BudgetAmountIn]
    ) -> None:
        template = _require(template, "template")
        month = _validate_month(month)
        known = {budget.category for budget in self.existing_budgets(template, month)}
        missing = sorted({u.category for u in updates} - known)
        if missing:
            raise ValidationError(
                f"No envelope budget for {', '.join(missing)} in {template} {month}"
            )
        pk = _envelope_pk(self.owner, template)
        for update in updates:
            self.store.update(
                pk, f"{month}#{update.category}", {"budget_amount": update.budget_amount}
            )
        logger.info(
            f"envelope_budgets_updated: owner={self.owner} template={template} "
            f"month={month} count={len(updates)}"
        )

    def analysis(self, template: str, month: str) -> dict[str, Any]:
        budgets = self.get_or_create(template, month)
        return analyze_budget(budgets, self.spending.actual_spending(month))


class RecurringTransactionService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = validate_owner(owner)
        self.store = ItemStore(session)

    def list(self) -> list[RecurringTransaction]:
        items = self.store.query(recurring_pk(self.owner))
        rules = [RecurringTransaction.from_item(item) for item in items]
        return sorted(rules, key=lambda r: (r.next_execution, r.name))

    def get(self, rule_id: str) -> RecurringTransaction:
        item = self.store.get(recurring_pk(self.owner), recurring_sk(rule_id))
        if not item:
            raise RecurringTransactionNotFound("Recurring transaction not found")
        return RecurringTransaction.from_item(item)

    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        rule_id = _time_id("recurring")
        now = _now()
        item = {
            "PK": recurring_pk(self.owner),
            "SK": recurring_sk(rule_id),
            "GSI1PK": "RECURRING_ACTIVE",
            "GSI1SK": active_index_sk(
                self.owner, rule_id, data.is_active, data.start_date
            ),
            "id": rule_id,
            "user_id": self.owner,
            **data.model_dump(),
            "next_execution": data.start_date,
            "last_executed": None,
            "execution_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        self.store.put(item)
        logger.info(
            f"recurring_created: owner={self.owner} id={rule_id} "
            f"frequency={data.frequency.value}"
        )
        return RecurringTransaction.from_item(self.store.get(item["PK"], item["SK"]))

    def update(self, rule_id: str, data: RecurringTransactionPatch) -> RecurringTransaction:
        rule = self.get(rule_id)
        patch: dict[str, Any] = data.model_dump(exclude_unset=True)
        nulls = sorted(
            key for key, value in patch.items() if value is None and key not in _CLEARABLE
        )
        if nulls:
            raise ValidationError(f"Fields may not be null: {', '.join(nulls)}")
        start_date = patch.get("start_date", rule.start_date)
        end_date = patch.get("end_date", rule.end_date)
        if end_date and end_date < start_date:
            raise ValidationError("End date must not be before start date")

        next_execution = rule.next_execution
        if "start_date" in patch and rule.execution_count == 0:
            next_execution = start_date
            patch["next_execution"] = next_execution
        is_active = patch.get("is_active", rule.is_active)
        patch["GSI1SK"] = active_index_sk(self.owner, rule.id, is_active, next_execution)
        patch["updated_at"] = _now()

        item = self.store.update(recurring_pk(self.owner), recurring_sk(rule.id), patch)
        if item is None:
            raise RecurringTransactionNotFound("Recurring transaction not found")
        return RecurringTransaction.from_item(item)

    def toggle(self, rule_id: str) -> RecurringTransaction:
        rule = self.get(rule_id)
        return self.update(
            rule.id, RecurringTransactionPatch(is_active=not rule.is_active)
        )

    def delete(self, rule_id: str) -> None:
        if not self.store.delete(recurring_pk(self.owner), recurring_sk(rule_id)):
            raise RecurringTransactionNotFound("Recurring transaction not found")
        logger.info(f"recurring_deleted: owner={self.owner} id={rule_id}")

    def execute(self, rule_id: str, today: Optional[date] = None) -> Execution:
        rule = self.get(rule_id)
        today = today or local_today()
        if not rule.is_active:
            raise ValidationError("Cannot execute inactive recurring transaction")
        engine = RecurringEngine(self.session)
        if rule.ended_by(today):
            engine.deactivate(rule)
            raise ValidationError("Recurring transaction has ended")
        return engine.execute(rule, today)

    def upcoming(
        self, days: int = 7, today: Optional[date] = None
    ) -> list[RecurringTransaction]:
        if days < 0:
            raise ValidationError("Days must not be negative")
        today = today or local_today()
        horizon = today + timedelta(days=days)
        return [
            rule
            for rule in self.list()
            if rule.is_active and today <= rule.next_execution <= horizon
        ]


@dataclass(frozen=True)
class Alert:
    id: str
    name: str
    type: AlertType
    condition: AlertCondition
    threshold: Decimal
    category: Optional[str]
    budget_template: Optional[str]
    month: Optional[str]
    is_active: bool
    notification_methods: list[str]
    description: str
    is_read: bool
    is_dismissed: bool
    created_at: datetime
    updated_at: datetime


def _alerts_pk(owner: str) -> str:
    return f"USER#{owner}#ALERT"


def _alert_month_key(owner: str, month: Optional[str]) -> str:
    return f"USER#{owner}#ALERT_MONTH#{month or _ANY_MONTH}"


def _alert_from_item(item: dict[str, Any]) -> Alert:
    return Alert(
        id=item["id"],
        name=item["name"],
        type=AlertType(item["type"]),
        condition=AlertCondition(item["condition"]),
        threshold=_decimal(item.get("threshold")),
        category=item.get("category"),
        budget_template=item.get("budget_template"),
        month=item.get("month"),
        is_active=bool(item.get("is_active", True)),
        notification_methods=list(item.get("notification_methods") or ["APP"]),
        description=item.get("description") or "",
        is_read=bool(item.get("is_read", False)),
        is_dismissed=bool(item.get("is_dismissed", False)),
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item["updated_at"]),
    )


class AlertService:
    """Stored spending alerts. Alerts are only kept here, never evaluated."""

    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = validate_owner(owner)
        self.store = ItemStore(session)

    def list(self) -> list[Alert]:
        alerts = [_alert_from_item(item) for item in self.store.query(_alerts_pk(self.owner))]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    def get(self, alert_id: str) -> Alert:
        item = self.store.get(_alerts_pk(self.owner), f"ALERT#{alert_id}")
        if not item:
            raise AlertNotFound("Alert not found")
        return _alert_from_item(item)

    def create(self, data: AlertIn) -> Alert:
        alert_id = _time_id("alert")
        now = _now()
        item = {
            "PK": _alerts_pk(self.owner),
            "SK": f"ALERT#{alert_id}",
            "GSI1PK": _alert_month_key(self.owner, data.month),
            "GSI1SK": f"{now.isoformat()}#{alert_id}",
            "id": alert_id,
            "user_id": self.owner,
            **data.model_dump(),
            "is_read": False,
            "is_dismissed": False,
            "created_at": now,
            "updated_at": now,
        }
        self.store.put(item)
        logger.info(
            f"alert_created: owner={self.owner} id={alert_id} type={data.type.value}"
        )
        return self.get(alert_id)

    def _patch(self, alert_id: str, patch: dict[str, Any]) -> Alert:
        patch["updated_at"] = _now()
        item = self.store.update(_alerts_pk(self.owner), f"ALERT#{alert_id}", patch)
        if item is None:
            raise AlertNotFound("Alert not found")
        return _alert_from_item(item)

    def update(self, alert_id: str, data: AlertPatch) -> Alert:
        patch: dict[str, Any] = data.model_dump(exclude_unset=True)
        if not patch:
            raise ValidationError("No valid fields provided for update")
        nulls = sorted(
            key
            for key, value in patch.items()
            if value is None and key not in _ALERT_CLEARABLE
        )
        if nulls:
            raise ValidationError(f"Fields may not be null: {', '.join(nulls)}")
        if "month" in patch:
            patch["GSI1PK"] = _alert_month_key(self.owner, patch["month"])
        alert = self._patch(alert_id, patch)
        logger.info(f"alert_updated: owner={self.owner} id={alert_id}")
        return alert

    def delete(self, alert_id: str) -> Alert:
        alert = self.get(alert_id)
        if not self.store.delete(_alerts_pk(self.owner), f"ALERT#{alert_id}"):
            raise AlertNotFound("Alert not found")
        logger.info(f"alert_deleted: owner={self.owner} id={alert_id}")
        return alert

    def mark_read(self, alert_id: str) -> Alert:
        return self._patch(alert_id, {"is_read": True})

    def dismiss(self, alert_id: str) -> Alert:
        return self._patch(alert_id, {"is_dismissed": True})

    def dismiss_all(self, month: str) -> int:
        """Dismiss the alerts of ``month`` together with alerts bound to no month."""
        month = _validate_month(month)
        items = self.store.query_index(
            _alert_month_key(self.owner, month)
        ) + self.store.query_index(_alert_month_key(self.owner, None))
        now = _now()
        for item in items:
            self.store.update(
                item["PK"], item["SK"], {"is_dismissed": True, "updated_at": now}
            )
        logger.info(
            f"alerts_dismissed: owner={self.owner} month={month} count={len(items)}"
        )
        return len(items)
