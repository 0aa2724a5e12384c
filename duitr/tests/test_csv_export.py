import unittest
from datetime import date
from decimal import Decimal

from duitr.csv_export import ExportRow, export_transactions_csv, format_amount


class CsvExportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rows = [
            ExportRow(
                date=date(2024, 5, 1),
                type="income",
                amount=Decimal("5000000.00"),
                wallet_id=1,
                category_id=13,
                description="Gaji Mei",
            ),
            ExportRow(
                date=date(2024, 5, 3),
                type="expense",
                amount=Decimal("25000.50"),
                wallet_id=2,
                category_id=2,
                description='Nasi "padang", pedas',
            ),
            ExportRow(
                date=date(2024, 5, 2),
                type="transfer",
                amount=Decimal("100000"),
                wallet_id=1,
                category_id=18,
            ),
        ]
        self.categories = {13: "Salary", 2: "Dining", 18: "System Transfer"}
        self.wallets = {1: "BCA"}

    def test_rows_are_newest_first_and_escaped(self) -> None:
        content = export_transactions_csv(self.rows, self.categories, self.wallets)

        self.assertEqual(
            content.splitlines(),
            [
                "Date,Type,Category,Description,Amount,Wallet",
                '2024-05-03,Expense,Dining,"Nasi ""padang"", pedas",25000.5,Unknown Wallet',
                "2024-05-02,Transfer,Transfer,,100000,BCA",
                "2024-05-01,Income,Salary,Gaji Mei,5000000,BCA",
            ],
        )

    def test_same_day_rows_keep_input_order(self) -> None:
        rows = [
            ExportRow(date=date(2024, 5, 3), type="expense", amount=Decimal("2"), wallet_id=1, description="second"),
            ExportRow(date=date(2024, 5, 1), type="expense", amount=Decimal("3"), wallet_id=1, description="older"),
            ExportRow(date=date(2024, 5, 3), type="expense", amount=Decimal("1"), wallet_id=1, description="first"),
        ]

        lines = export_transactions_csv(rows, {}, self.wallets).splitlines()

        self.assertEqual([line.split(",")[3] for line in lines[1:]], ["second", "first", "older"])

    def test_summary_block(self) -> None:
        content = export_transactions_csv(self.rows, self.categories, self.wallets, include_summary=True)

        self.assertTrue(
            content.endswith(
                "\nSummary\nTotal Income,5000000\nTotal Expense,25000.5\nNet,4974999.5\n"
            )
        )

    def test_empty_export_has_header_only(self) -> None:
        self.assertEqual(export_transactions_csv([], {}, {}), "Date,Type,Category,Description,Amount,Wallet\n")

    def test_amount_formatting(self) -> None:
        self.assertEqual(format_amount(Decimal("1E+3")), "1000")
        self.assertEqual(format_amount(Decimal("12.30")), "12.3")


if __name__ == "__main__":
    unittest.main()
