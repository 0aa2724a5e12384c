from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LedgerRow:
    amount: Decimal
    type: str
    date: date
    wallet_id: int
    category_id: Optional[int] = None


@dataclass(frozen=True)
class MonthlySummary:
    month: date
    income: Decimal
    expense: Decimal
    net_flow: Decimal


@dataclass(frozen=True)
class CategoryTotal:
    category_id: Optional[int]
    amount: Decimal
    count: int
    percentage: Decimal


@dataclass(frozen=True)
class WalletStats:
    wallet_id: int
    income: Decimal
    expense: Decimal


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    return shift_month(month_start(value), 1) - timedelta(days=1)


def in_month(row: LedgerRow, month: date) -> bool:
    return row.date.year == month.year and row.date.month == month.month


def filter_by_date_range(
    rows: Iterable[LedgerRow], start_date: date, end_date: date
) -> list[LedgerRow]:
    return [row for row in rows if start_date <= row.date <= end_date]


def sum_by_type(rows: Iterable[LedgerRow], txn_type: str) -> Decimal:
    return sum(
        (_coerce_amount(row.amount) for row in rows if row.type == txn_type),
        ZERO,
    )


def monthly_summary(rows: Iterable[LedgerRow], month: date) -> MonthlySummary:
    month_rows = [row for row in rows if in_month(row, month)]
    income = sum_by_type(month_rows, "income")
    expense = sum_by_type(month_rows, "expense")
    return MonthlySummary(
        month=month_start(month),
        income=income,
        expense=expense,
        net_flow=income - expense,
    )


def monthly_trend(rows: Iterable[LedgerRow], end_month: date, months: int) -> list[MonthlySummary]:
    if months < 1:
        raise ValueError("months must be at least 1.")
    row_list = list(rows)
    first = shift_month(month_start(end_month), -(months - 1))
    return [monthly_summary(row_list, shift_month(first, offset)) for offset in range(months)]


def category_breakdown(rows: Iterable[LedgerRow], txn_type: str) -> list[CategoryTotal]:
    """Group one transaction type by category, largest first."""
    totals: dict[Optional[int], Decimal] = {}
    counts: dict[Optional[int], int] = {}
    for row in rows:
        if row.type != txn_type:
            continue
        totals[row.category_id] = totals.get(row.category_id, ZERO) + _coerce_amount(row.amount)
        counts[row.category_id] = counts.get(row.category_id, 0) + 1

    grand_total = sum(totals.values(), ZERO)
    if grand_total <= ZERO:
        return []
    results = [
        CategoryTotal(
            category_id=category_id,
            amount=amount,
            count=counts[category_id],
            percentage=amount / grand_total * HUNDRED,
        )
        for category_id, amount in totals.items()
    ]
    results.sort(key=lambda item: item.amount, reverse=True)
    return results


def wallet_stats(rows: Iterable[LedgerRow], wallet_id: int, month: date) -> WalletStats:
    wallet_rows = [row for row in rows if row.wallet_id == wallet_id and in_month(row, month)]
    return WalletStats(
        wallet_id=wallet_id,
        income=sum_by_type(wallet_rows, "income"),
        expense=sum_by_type(wallet_rows, "expense"),
    )


def daily_average_spending(rows: Iterable[LedgerRow], today: date, days: int = 30) -> Decimal:
    if days < 1:
        raise ValueError("days must be at least 1.")
    start_date = today - timedelta(days=days)
    recent = [row for row in rows if row.date >= start_date]
    return sum_by_type(recent, "expense") / Decimal(days)


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
