from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from duitr.statistics import LedgerRow, category_breakdown, sum_by_type

ZERO = Decimal("0")
HUNDRED = Decimal("100")
UNNAMED_CATEGORY = {"id": "Lain-lain", "en": "Other"}


@dataclass(frozen=True)
class CategoryAmount:
    category: str
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class FinanceSummary:
    start_date: date
    end_date: date
    total_income: Decimal
    total_expense: Decimal
    net_flow: Decimal
    income: list[CategoryAmount]
    expenses: list[CategoryAmount]


def build_finance_summary(
    rows: Iterable[LedgerRow],
    names: Mapping[int, str],
    start_date: date,
    end_date: date,
    language: str = "id",
) -> FinanceSummary:
    """Total income and expense for a period, grouped by category name."""
    period_rows = [row for row in rows if start_date <= row.date <= end_date]
    total_income = sum_by_type(period_rows, "income")
    total_expense = sum_by_type(period_rows, "expense")
    fallback = UNNAMED_CATEGORY.get(language, UNNAMED_CATEGORY["id"])

    def grouped(txn_type: str) -> list[CategoryAmount]:
        return [
            CategoryAmount(
                category=names.get(item.category_id, fallback) if item.category_id is not None else fallback,
                amount=item.amount,
                percentage=item.percentage.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
            )
            for item in category_breakdown(period_rows, txn_type)
        ]

    return FinanceSummary(
        start_date=start_date,
        end_date=end_date,
        total_income=total_income,
        total_expense=total_expense,
        net_flow=total_income - total_expense,
        income=grouped("income"),
        expenses=grouped("expense"),
    )


def format_rupiah(amount: Decimal) -> str:
    """``Decimal("1250000.5")`` -> ``"Rp1.250.001"``, Indonesian grouping."""
    rounded = amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    return f"{sign}Rp{abs(int(rounded)):,}".replace(",", ".")


def net_flow_percentage(summary: FinanceSummary) -> Decimal:
    if summary.total_income <= ZERO:
        return ZERO
    return (summary.net_flow / summary.total_income * HUNDRED).quantize(
        Decimal("0.1"), rounding=ROUND_HALF_UP
    )


def _category_lines(items: list[CategoryAmount], empty_text: str) -> str:
    if not items:
        return empty_text
    return "\n".join(
        f"- {item.category}: {format_rupiah(item.amount)} ({item.percentage}%)" for item in items
    )


def describe_summary(summary: FinanceSummary, language: str = "id") -> str:
    period = f"{summary.start_date.isoformat()} - {summary.end_date.isoformat()}"
    net_share = net_flow_percentage(summary)
    if language == "en":
        return (
            f"FINANCIAL EVALUATION\nPeriod: {period}\n\n"
            "SUMMARY\n"
            f"- Total income: {format_rupiah(summary.total_income)}\n"
            f"- Total expenses: {format_rupiah(summary.total_expense)}\n"
            f"- Net flow: {format_rupiah(summary.net_flow)} ({net_share}% of income)\n\n"
            f"INCOME DETAILS\n{_category_lines(summary.income, 'No income recorded.')}\n\n"
            f"EXPENSE DETAILS\n{_category_lines(summary.expenses, 'No expenses recorded.')}"
        )
    return (
        f"EVALUASI KEUANGAN\nPeriode: {period}\n\n"
        "RINGKASAN KEUANGAN\n"
        f"- Total Pemasukan: {format_rupiah(summary.total_income)}\n"
        f"- Total Pengeluaran: {format_rupiah(summary.total_expense)}\n"
        f"- Saldo Bersih: {format_rupiah(summary.net_flow)} ({net_share}% dari pemasukan)\n\n"
        f"DETAIL PEMASUKAN\n{_category_lines(summary.income, 'Tidak ada pemasukan yang tercatat.')}\n\n"
        f"DETAIL PENGELUARAN\n{_category_lines(summary.expenses, 'Tidak ada pengeluaran yang tercatat.')}"
    )


def build_insight_prompt(summary: FinanceSummary, language: str = "id") -> str:
    if language == "en":
        return (
            "You are a personal finance assistant who specialises in household budgets in Indonesia.\n\n"
            f"{describe_summary(summary, language)}\n\n"
            "YOUR TASKS:\n"
            "1. Financial status: rate the current condition (Healthy, Needs Attention or Critical) with a short reason.\n"
            "2. Patterns: point out 2-3 important patterns, including the dominant categories.\n"
            "3. Recommendations: give specific advice focused on the largest expense categories.\n"
            "4. Practical tips: give 1-2 realistic ways to save more or earn more.\n\n"
            "Answer in plain English, friendly but professional, in at most 5 paragraphs."
        )
    return (
        "Kamu adalah asisten keuangan pribadi yang ahli dalam analisis keuangan individu di Indonesia.\n\n"
        f"{describe_summary(summary, language)}\n\n"
        "TUGAS ANDA:\n"
        "1. Status Keuangan: berikan penilaian kondisi keuangan saat ini (Sehat/Perlu Perhatian/Kritis) beserta alasan singkat.\n"
        "2. Analisis Pola: identifikasi 2-3 pola penting, termasuk kategori yang dominan.\n"
        "3. Rekomendasi: berikan saran spesifik yang fokus pada kategori pengeluaran terbesar.\n"
        "4. Tips Praktis: berikan 1-2 strategi penghematan atau peningkatan pendapatan yang realistis.\n\n"
        "Gunakan bahasa Indonesia yang mudah dipahami, santai namun tetap profesional. Maksimal 5 paragraf."
    )


def build_question_prompt(summary: FinanceSummary, question: str, language: str = "id") -> str:
    question = question.strip()
    if language == "en":
        return (
            f"Based on the following financial evaluation:\n{describe_summary(summary, language)}\n\n"
            f'The user asks: "{question}"\n\n'
            "Give a helpful, actionable answer in 1-2 paragraphs."
        )
    return (
        f"Berdasarkan evaluasi keuangan berikut:\n{describe_summary(summary, language)}\n\n"
        f'User bertanya: "{question}"\n\n'
        "Berikan jawaban yang helpful dan actionable dalam 1-2 paragraf."
    )
