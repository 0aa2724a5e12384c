from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
WARNING_THRESHOLD = Decimal("75")
BUDGET_PERIODS = {"weekly", "monthly", "yearly"}
BUDGET_STATUSES = {"on-track", "warning", "exceeded"}


@dataclass(frozen=True)
class Transaction:
    amount: Decimal
    type: str
    date: date
    category_id: Optional[int] = None
    wallet_id: Optional[int] = None


@dataclass(frozen=True)
class Budget:
    amount: Decimal
    category_id: int
    period: str = "monthly"
    wallet_id: Optional[int] = None


@dataclass(frozen=True)
class BudgetEvaluation:
    spent: Decimal
    remaining: Decimal
    utilization: Decimal
    status: str
    start_date: date
    end_date: date


@dataclass(frozen=True)
class BudgetAlert:
    budget_id: int
    category_id: int
    status: str
    utilization: Decimal
    message: str


def normalize_period(value: Optional[str]) -> str:
    normalized = (value or "monthly").strip().lower()
    if normalized not in BUDGET_PERIODS:
        raise ValueError("Invalid budget period.")
    return normalized


def get_period_range(period: str, today: date) -> tuple[date, date]:
    """Window a budget's spending is counted in.

    Weekly budgets look back over the last seven days, monthly and yearly
    budgets cover the calendar month or year containing ``today``.
    """
    normalized = normalize_period(period)
    if normalized == "weekly":
        return today - timedelta(days=7), today
    if normalized == "yearly":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    last_day = monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def calculate_spent(
    budget: Budget,
    transactions: Iterable[Transaction],
    start_date: date,
    end_date: date,
) -> Decimal:
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date.")
    total = ZERO
    for txn in transactions:
        if txn.type.strip().lower() != "expense":
            continue
        if txn.category_id != budget.category_id:
            continue
        if budget.wallet_id is not None and txn.wallet_id != budget.wallet_id:
            continue
        if not start_date <= txn.date <= end_date:
            continue
        total += _coerce_amount(txn.amount)
    return total


def calculate_utilization(spent: Decimal, amount: Decimal) -> Decimal:
    amount = _coerce_amount(amount)
    if amount == ZERO:
        return ZERO
    return _coerce_amount(spent) / amount * HUNDRED


def get_budget_status(spent: Decimal, amount: Decimal) -> str:
    utilization = calculate_utilization(spent, amount)
    if utilization >= HUNDRED:
        return "exceeded"
    if utilization >= WARNING_THRESHOLD:
        return "warning"
    return "on-track"


def evaluate_budget(
    budget: Budget,
    transactions: Iterable[Transaction],
    today: date,
) -> BudgetEvaluation:
    if budget.amount <= ZERO:
        raise ValueError("Budget amount must be greater than zero.")
    start_date, end_date = get_period_range(budget.period, today)
    spent = calculate_spent(budget, transactions, start_date, end_date)
    amount = _coerce_amount(budget.amount)
    return BudgetEvaluation(
        spent=spent,
        remaining=amount - spent,
        utilization=calculate_utilization(spent, amount),
        status=get_budget_status(spent, amount),
        start_date=start_date,
        end_date=end_date,
    )


def build_alert(budget_id: int, category_id: int, evaluation: BudgetEvaluation) -> Optional[BudgetAlert]:
    if evaluation.status == "exceeded":
        over = (evaluation.utilization - HUNDRED).quantize(Decimal("1"))
        message = f"Budget exceeded by {over}%"
    elif evaluation.status == "warning":
        message = f"Budget at {evaluation.utilization.quantize(Decimal('1'))}% - approaching limit"
    else:
        return None
    return BudgetAlert(
        budget_id=budget_id,
        category_id=category_id,
        status=evaluation.status,
        utilization=evaluation.utilization,
        message=message,
    )


def summarize(amounts_and_spent: Iterable[tuple[Decimal, Decimal]]) -> tuple[Decimal, Decimal, Decimal]:
    """Return (total budget, total spent, overall utilization)."""
    total_budget = ZERO
    total_spent = ZERO
    for amount, spent in amounts_and_spent:
        total_budget += _coerce_amount(amount)
        total_spent += _coerce_amount(spent)
    return total_budget, total_spent, calculate_utilization(total_spent, total_budget)


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
