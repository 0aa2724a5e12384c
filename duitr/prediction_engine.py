from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from duitr.budget_engine import Transaction

ZERO = Decimal("0")
MEDIUM_RISK_RATIO = Decimal("0.85")
MIN_CONFIDENCE = Decimal("0.30")
MAX_CONFIDENCE = Decimal("0.95")
RISK_ORDER = {"low": 0, "medium": 1, "high": 2}


@dataclass(frozen=True)
class BudgetTarget:
    category_id: int
    limit: Decimal
    category_name: Optional[str] = None


@dataclass(frozen=True)
class BudgetPrediction:
    category_id: int
    category_name: str
    current_spend: Decimal
    budget_limit: Decimal
    projected_spend: Decimal
    overrun_amount: Decimal
    risk_level: str
    confidence: Decimal
    days_remaining: int
    recommended_daily_limit: Decimal
    insight: str


@dataclass(frozen=True)
class PredictionSet:
    predictions: List[BudgetPrediction]
    overall_risk: str
    summary: str


def predict_budget(
    target: BudgetTarget,
    transactions: Iterable[Transaction],
    today: date,
    language: str = "id",
) -> BudgetPrediction:
    if target.limit <= ZERO:
        raise ValueError("Budget limit must be greater than zero.")

    days_in_month = monthrange(today.year, today.month)[1]
    days_elapsed = today.day
    days_remaining = days_in_month - days_elapsed
    period_start = today.replace(day=1)

    current_spend = ZERO
    for txn in transactions:
        if txn.type != "expense" or txn.category_id != target.category_id:
            continue
        if period_start <= txn.date <= today:
            current_spend += _coerce_amount(txn.amount)

    limit = _coerce_amount(target.limit)
    projected = _money(current_spend / Decimal(days_elapsed) * Decimal(days_in_month))
    overrun = max(projected - limit, ZERO)
    risk_level = classify_risk(projected, limit)
    confidence = _confidence(days_elapsed, days_in_month)
    left = max(limit - current_spend, ZERO)
    recommended = _money(left / Decimal(days_remaining)) if days_remaining > 0 else left
    name = target.category_name or f"Category {target.category_id}"

    return BudgetPrediction(
        category_id=target.category_id,
        category_name=name,
        current_spend=current_spend,
        budget_limit=limit,
        projected_spend=projected,
        overrun_amount=overrun,
        risk_level=risk_level,
        confidence=confidence,
        days_remaining=days_remaining,
        recommended_daily_limit=recommended,
        insight=_insight(name, risk_level, overrun, recommended, language),
    )


def predict_budgets(
    targets: Iterable[BudgetTarget],
    transactions: Iterable[Transaction],
    today: date,
    language: str = "id",
) -> PredictionSet:
    txn_list = list(transactions)
    predictions = [predict_budget(target, txn_list, today, language) for target in targets]
    return summarize_predictions(predictions, language)


def summarize_predictions(
    predictions: List[BudgetPrediction], language: str = "id", cached: bool = False
) -> PredictionSet:
    overall = "low"
    for prediction in predictions:
        if RISK_ORDER[prediction.risk_level] > RISK_ORDER[overall]:
            overall = prediction.risk_level
    high = sum(1 for prediction in predictions if prediction.risk_level == "high")
    medium = sum(1 for prediction in predictions if prediction.risk_level == "medium")
    if language == "en":
        label = "Budget predictions (cached)" if cached else "Budget predictions"
        summary = f"{label}: {high} high risk, {medium} medium risk categories."
    else:
        label = "Prediksi budget (dari cache)" if cached else "Prediksi budget"
        summary = f"{label}: {high} kategori risiko tinggi, {medium} kategori risiko sedang."
    return PredictionSet(predictions=predictions, overall_risk=overall, summary=summary)


def classify_risk(projected: Decimal, limit: Decimal) -> str:
    if projected >= limit:
        return "high"
    if projected >= limit * MEDIUM_RISK_RATIO:
        return "medium"
    return "low"


def _confidence(days_elapsed: int, days_in_month: int) -> Decimal:
    progress = Decimal(days_elapsed) / Decimal(days_in_month)
    value = MIN_CONFIDENCE + (MAX_CONFIDENCE - MIN_CONFIDENCE) * progress
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _insight(
    name: str, risk_level: str, overrun: Decimal, recommended: Decimal, language: str
) -> str:
    if language == "en":
        if risk_level == "high":
            return f"{name} is on track to exceed its budget by {overrun}. Keep daily spending under {recommended}."
        if risk_level == "medium":
            return f"{name} is close to its limit. Keep daily spending under {recommended}."
        return f"{name} spending is within budget."
    if risk_level == "high":
        return f"{name} diperkirakan melebihi budget sebesar {overrun}. Batasi pengeluaran harian di bawah {recommended}."
    if risk_level == "medium":
        return f"{name} mendekati batas budget. Batasi pengeluaran harian di bawah {recommended}."
    return f"Pengeluaran {name} masih dalam batas budget."


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
