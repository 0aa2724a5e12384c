from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Optional

EXPORT_HEADERS = ["Date", "Type", "Category", "Description", "Amount", "Wallet"]


@dataclass(frozen=True)
class ExportRow:
    date: date
    type: str
    amount: Decimal
    wallet_id: int
    category_id: Optional[int] = None
    description: Optional[str] = None


def category_label(row: ExportRow, category_names: Mapping[int, str]) -> str:
    if row.type == "transfer":
        return "Transfer"
    if row.category_id is None:
        return "Other"
    return category_names.get(row.category_id, "Other")


def format_amount(amount: Decimal) -> str:
    normalized = amount.normalize() if isinstance(amount, Decimal) else Decimal(str(amount))
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal("1")))
    return str(normalized)


def export_transactions_csv(
    rows: Iterable[ExportRow],
    category_names: Mapping[int, str],
    wallet_names: Mapping[int, str],
    include_summary: bool = False,
) -> str:
    # Stable sort: rows sharing a date keep the order they were passed in.
    ordered = sorted(rows, key=lambda row: row.date, reverse=True)
    buffer = io.StringIO()
    # QUOTE_MINIMAL quotes fields holding commas, quotes or newlines and doubles quotes.
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for row in ordered:
        writer.writerow(
            [
                row.date.isoformat(),
                row.type.capitalize(),
                category_label(row, category_names),
                row.description or "",
                format_amount(row.amount),
                wallet_names.get(row.wallet_id, "Unknown Wallet"),
            ]
        )

    if include_summary:
        income = sum((row.amount for row in ordered if row.type == "income"), Decimal("0"))
        expense = sum((row.amount for row in ordered if row.type == "expense"), Decimal("0"))
        writer.writerow([])
        writer.writerow(["Summary"])
        writer.writerow(["Total Income", format_amount(income)])
        writer.writerow(["Total Expense", format_amount(expense)])
        writer.writerow(["Net", format_amount(income - expense)])

    return buffer.getvalue()
