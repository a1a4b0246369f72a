from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Protocol

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


class BudgetLike(Protocol):
    category: str
    budget_amount: Decimal
    rollover_enabled: bool
    rollover_amount: Decimal


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return round2(_ZERO)
    return round2(part / whole * _HUNDRED)


def analyze_budget(
    budgets: Iterable[BudgetLike], actual_spending: Mapping[str, Decimal]
) -> dict[str, Any]:
    """Compare envelope budgets against actual spending for one month.

    Every budget row yields a category entry whose budgeted amount includes
    its rollover. Spending in categories without an envelope is reported as
    unbudgeted and counts towards the actual total only.
    """
    category_analysis: list[dict[str, Any]] = []
    total_budgeted = _ZERO
    total_actual = _ZERO
    over_budget = 0
    budgeted_categories: set[str] = set()

    for budget in budgets:
        budgeted_categories.add(budget.category)
        total_budget_amount = budget.budget_amount + budget.rollover_amount
        actual = Decimal(actual_spending.get(budget.category, _ZERO))
        if actual > total_budget_amount:
            over_budget += 1
        total_budgeted += total_budget_amount
        total_actual += actual
        category_analysis.append(
            {
                "category": budget.category,
                "budgeted": total_budget_amount,
                "actual": actual,
                "remaining": total_budget_amount - actual,
                "percentage": _percent(actual, total_budget_amount),
                "rollover_enabled": budget.rollover_enabled,
                "rollover_amount": budget.rollover_amount,
                "has_budget": True,
                "unbudgeted_spending": False,
            }
        )

    for category, amount in actual_spending.items():
        if category in budgeted_categories:
            continue
        actual = Decimal(amount)
        total_actual += actual
        category_analysis.append(
            {
                "category": category,
                "budgeted": _ZERO,
                "actual": actual,
                "remaining": -actual,
                "percentage": round2(_ZERO),
                "rollover_enabled": False,
                "rollover_amount": _ZERO,
                "has_budget": False,
                "unbudgeted_spending": True,
            }
        )

    total_budgeted = round2(total_budgeted)
    total_actual = round2(total_actual)
    return {
        "categoryAnalysis": category_analysis,
        "summary": {
            "totalBudgeted": total_budgeted,
            "totalActual": total_actual,
            "totalRemaining": round2(total_budgeted - total_actual),
            "overBudgetCategories": over_budget,
            "budgetUtilization": _percent(total_actual, total_budgeted),
        },
    }
