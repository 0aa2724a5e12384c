import unittest
from datetime import date
from decimal import Decimal

from duitr.budget_engine import (
    Budget,
    Transaction,
    build_alert,
    evaluate_budget,
    get_period_range,
    normalize_period,
    summarize,
)


class BudgetEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.transactions = [
            Transaction(
                amount=Decimal("50000"),
                type="expense",
                date=date(2024, 5, 1),
                category_id=2,
                wallet_id=1,
            ),
            Transaction(
                amount=Decimal("25000"),
                type="expense",
                date=date(2024, 5, 3),
                category_id=2,
                wallet_id=2,
            ),
            Transaction(
                amount=Decimal("10000"),
                type="expense",
                date=date(2024, 5, 2),
                category_id=3,
                wallet_id=1,
            ),
            Transaction(
                amount=Decimal("90000"),
                type="income",
                date=date(2024, 5, 2),
                category_id=2,
                wallet_id=1,
            ),
            Transaction(
                amount=Decimal("40000"),
                type="expense",
                date=date(2024, 4, 30),
                category_id=2,
                wallet_id=1,
            ),
        ]

    def test_monthly_budget_sums_matching_expenses(self) -> None:
        evaluation = evaluate_budget(
            Budget(amount=Decimal("100000"), category_id=2),
            self.transactions,
            date(2024, 5, 10),
        )

        self.assertEqual(evaluation.spent, Decimal("75000"))
        self.assertEqual(evaluation.remaining, Decimal("25000"))
        self.assertEqual(evaluation.utilization, Decimal("75"))
        self.assertEqual(evaluation.status, "warning")
        self.assertEqual(evaluation.start_date, date(2024, 5, 1))
        self.assertEqual(evaluation.end_date, date(2024, 5, 31))

    def test_wallet_scoped_budget_ignores_other_wallets(self) -> None:
        evaluation = evaluate_budget(
            Budget(amount=Decimal("100000"), category_id=2, wallet_id=2),
            self.transactions,
            date(2024, 5, 10),
        )

        self.assertEqual(evaluation.spent, Decimal("25000"))
        self.assertEqual(evaluation.status, "on-track")

    def test_exceeded_budget_has_negative_remaining(self) -> None:
        evaluation = evaluate_budget(
            Budget(amount=Decimal("60000"), category_id=2),
            self.transactions,
            date(2024, 5, 10),
        )

        self.assertEqual(evaluation.status, "exceeded")
        self.assertEqual(evaluation.remaining, Decimal("-15000"))

    def test_weekly_window_looks_back_seven_days(self) -> None:
        start, end = get_period_range("weekly", date(2024, 5, 3))

        self.assertEqual(start, date(2024, 4, 26))
        self.assertEqual(end, date(2024, 5, 3))

        evaluation = evaluate_budget(
            Budget(amount=Decimal("200000"), category_id=2, period="weekly"),
            self.transactions,
            date(2024, 5, 3),
        )
        self.assertEqual(evaluation.spent, Decimal("115000"))

    def test_yearly_window_covers_calendar_year(self) -> None:
        self.assertEqual(
            get_period_range("Yearly", date(2024, 5, 3)),
            (date(2024, 1, 1), date(2024, 12, 31)),
        )

    def test_unknown_period_is_rejected(self) -> None:
        self.assertEqual(normalize_period(None), "monthly")
        with self.assertRaises(ValueError):
            normalize_period("daily")

    def test_alert_messages(self) -> None:
        warning = evaluate_budget(
            Budget(amount=Decimal("100000"), category_id=2),
            self.transactions,
            date(2024, 5, 10),
        )
        exceeded = evaluate_budget(
            Budget(amount=Decimal("50000"), category_id=2),
            self.transactions,
            date(2024, 5, 10),
        )
        on_track = evaluate_budget(
            Budget(amount=Decimal("1000000"), category_id=2),
            self.transactions,
            date(2024, 5, 10),
        )

        self.assertEqual(build_alert(1, 2, warning).message, "Budget at 75% - approaching limit")
        self.assertEqual(build_alert(2, 2, exceeded).message, "Budget exceeded by 50%")
        self.assertIsNone(build_alert(3, 2, on_track))

    def test_summary_totals(self) -> None:
        total_budget, total_spent, utilization = summarize(
            [(Decimal("100"), Decimal("50")), (Decimal("300"), Decimal("150"))]
        )

        self.assertEqual(total_budget, Decimal("400"))
        self.assertEqual(total_spent, Decimal("200"))
        self.assertEqual(utilization, Decimal("50"))

    def test_empty_summary_has_zero_utilization(self) -> None:
        self.assertEqual(summarize([]), (Decimal("0"), Decimal("0"), Decimal("0")))


if __name__ == "__main__":
    unittest.main()
