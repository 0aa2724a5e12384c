import unittest
from datetime import date
from decimal import Decimal

from duitr.budget_engine import Transaction
from duitr.prediction_engine import (
    BudgetTarget,
    classify_risk,
    predict_budget,
    predict_budgets,
    summarize_predictions,
)


class PredictionEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.today = date(2024, 5, 10)
        self.transactions = [
            Transaction(amount=Decimal("50000"), type="expense", date=date(2024, 5, 1), category_id=2),
            Transaction(amount=Decimal("25000"), type="expense", date=date(2024, 5, 9), category_id=2),
            Transaction(amount=Decimal("40000"), type="expense", date=date(2024, 4, 29), category_id=2),
            Transaction(amount=Decimal("70000"), type="income", date=date(2024, 5, 2), category_id=2),
            Transaction(amount=Decimal("5000"), type="expense", date=date(2024, 5, 3), category_id=3),
        ]

    def test_linear_projection_flags_high_risk(self) -> None:
        prediction = predict_budget(
            BudgetTarget(category_id=2, limit=Decimal("200000"), category_name="Dining"),
            self.transactions,
            self.today,
            language="en",
        )

        self.assertEqual(prediction.current_spend, Decimal("75000"))
        self.assertEqual(prediction.projected_spend, Decimal("232500.00"))
        self.assertEqual(prediction.overrun_amount, Decimal("32500.00"))
        self.assertEqual(prediction.risk_level, "high")
        self.assertEqual(prediction.days_remaining, 21)
        self.assertEqual(prediction.recommended_daily_limit, Decimal("5952.38"))
        self.assertEqual(prediction.confidence, Decimal("0.51"))
        self.assertIn("Dining", prediction.insight)

    def test_risk_levels(self) -> None:
        self.assertEqual(classify_risk(Decimal("100"), Decimal("100")), "high")
        self.assertEqual(classify_risk(Decimal("85"), Decimal("100")), "medium")
        self.assertEqual(classify_risk(Decimal("84.99"), Decimal("100")), "low")

    def test_confidence_grows_through_the_month(self) -> None:
        target = BudgetTarget(category_id=2, limit=Decimal("300000"))
        early = predict_budget(target, self.transactions, date(2024, 5, 1))
        late = predict_budget(target, self.transactions, date(2024, 5, 31))

        self.assertLess(early.confidence, late.confidence)
        self.assertEqual(late.confidence, Decimal("0.95"))
        self.assertEqual(late.days_remaining, 0)

    def test_missing_name_falls_back_to_category_id(self) -> None:
        prediction = predict_budget(
            BudgetTarget(category_id=3, limit=Decimal("100000")),
            self.transactions,
            self.today,
        )

        self.assertEqual(prediction.category_name, "Category 3")
        self.assertEqual(prediction.risk_level, "low")
        self.assertTrue(prediction.insight.startswith("Pengeluaran"))

    def test_overall_risk_is_worst_category(self) -> None:
        result = predict_budgets(
            [
                BudgetTarget(category_id=2, limit=Decimal("250000"), category_name="Dining"),
                BudgetTarget(category_id=3, limit=Decimal("100000"), category_name="Transport"),
            ],
            self.transactions,
            self.today,
            language="en",
        )

        self.assertEqual([item.risk_level for item in result.predictions], ["medium", "low"])
        self.assertEqual(result.overall_risk, "medium")
        self.assertEqual(result.summary, "Budget predictions: 0 high risk, 1 medium risk categories.")

    def test_cached_summary_is_labelled(self) -> None:
        result = summarize_predictions([], language="id", cached=True)

        self.assertEqual(result.overall_risk, "low")
        self.assertTrue(result.summary.startswith("Prediksi budget (dari cache)"))

    def test_zero_limit_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            predict_budget(BudgetTarget(category_id=2, limit=Decimal("0")), [], self.today)


if __name__ == "__main__":
    unittest.main()
