import unittest
from decimal import Decimal

from duitr.balance_engine import (
    BalanceUpdate,
    InsufficientBalanceError,
    LedgerEntry,
    WalletState,
    apply_updates,
    balance_updates,
    balance_updates_for_deletion,
    balance_updates_for_update,
    net_balance_changes,
    new_balance,
    total_balance,
    transfer_impact,
    validate_entry,
)


class BalanceEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.wallets = [
            WalletState(1, Decimal("100000")),
            WalletState(2, Decimal("50000")),
        ]

    def test_income_and_expense_move_single_wallet(self) -> None:
        self.assertEqual(new_balance(Decimal("100"), Decimal("25"), "income"), Decimal("125"))
        self.assertEqual(new_balance(Decimal("100"), Decimal("25"), "expense"), Decimal("75"))
        self.assertEqual(
            new_balance(Decimal("100"), Decimal("25"), "transfer", is_source=False),
            Decimal("125"),
        )

    def test_transfer_charges_fee_to_source_only(self) -> None:
        entry = LedgerEntry(
            type="transfer",
            amount=Decimal("20000"),
            wallet_id=1,
            destination_wallet_id=2,
            fee=Decimal("2500"),
        )

        updates = balance_updates(entry, self.wallets)

        self.assertEqual(
            updates,
            [
                BalanceUpdate(1, Decimal("77500")),
                BalanceUpdate(2, Decimal("70000")),
            ],
        )

    def test_deleting_transfer_restores_both_wallets(self) -> None:
        entry = LedgerEntry(
            type="transfer",
            amount=Decimal("20000"),
            wallet_id=1,
            destination_wallet_id=2,
            fee=Decimal("2500"),
        )
        after = apply_updates(self.wallets, balance_updates(entry, self.wallets))

        restored = apply_updates(after, balance_updates_for_deletion(entry, after))

        self.assertEqual(restored, self.wallets)

    def test_deleting_expense_credits_wallet(self) -> None:
        entry = LedgerEntry(type="expense", amount=Decimal("15000"), wallet_id=1, category_id=2)

        updates = balance_updates_for_deletion(entry, self.wallets)

        self.assertEqual(updates, [BalanceUpdate(1, Decimal("115000"))])

    def test_expense_over_balance_is_rejected(self) -> None:
        entry = LedgerEntry(type="expense", amount=Decimal("100001"), wallet_id=1, category_id=2)

        with self.assertRaises(InsufficientBalanceError):
            validate_entry(entry, self.wallets)

    def test_transfer_needs_amount_plus_fee(self) -> None:
        entry = LedgerEntry(
            type="transfer",
            amount=Decimal("50000"),
            wallet_id=2,
            destination_wallet_id=1,
            fee=Decimal("1"),
        )

        with self.assertRaises(InsufficientBalanceError):
            validate_entry(entry, self.wallets)

    def test_transfer_to_same_wallet_is_rejected(self) -> None:
        entry = LedgerEntry(
            type="transfer",
            amount=Decimal("10"),
            wallet_id=1,
            destination_wallet_id=1,
        )

        with self.assertRaisesRegex(ValueError, "same wallet"):
            validate_entry(entry, self.wallets)

    def test_income_is_never_blocked_by_balance(self) -> None:
        entry = LedgerEntry(
            type="income",
            amount=Decimal("999999999"),
            wallet_id=2,
            category_id=13,
        )

        validate_entry(entry, self.wallets)

    def test_non_positive_amount_and_missing_category_are_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "greater than zero"):
            validate_entry(
                LedgerEntry(type="income", amount=Decimal("0"), wallet_id=1, category_id=13),
                self.wallets,
            )
        with self.assertRaisesRegex(ValueError, "Category"):
            validate_entry(
                LedgerEntry(type="income", amount=Decimal("5"), wallet_id=1),
                self.wallets,
            )

    def test_unknown_type_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            balance_updates(
                LedgerEntry(type="refund", amount=Decimal("5"), wallet_id=1),
                self.wallets,
            )

    def test_update_reports_each_wallet_once_with_final_balance(self) -> None:
        old = LedgerEntry(type="expense", amount=Decimal("10000"), wallet_id=1, category_id=2)
        new = LedgerEntry(type="expense", amount=Decimal("4000"), wallet_id=1, category_id=2)
        after_old = apply_updates(self.wallets, balance_updates(old, self.wallets))

        updates = balance_updates_for_update(old, new, after_old)

        self.assertEqual(updates, [BalanceUpdate(1, Decimal("96000"))])

    def test_update_moving_expense_between_wallets(self) -> None:
        old = LedgerEntry(type="expense", amount=Decimal("10000"), wallet_id=1, category_id=2)
        new = LedgerEntry(type="expense", amount=Decimal("10000"), wallet_id=2, category_id=2)

        updates = balance_updates_for_update(old, new, self.wallets)

        self.assertEqual(
            sorted(updates, key=lambda item: item.wallet_id),
            [BalanceUpdate(1, Decimal("110000")), BalanceUpdate(2, Decimal("40000"))],
        )

    def test_net_changes_drop_unchanged_wallets(self) -> None:
        old = LedgerEntry(type="income", amount=Decimal("500"), wallet_id=1, category_id=13)
        new = LedgerEntry(type="income", amount=Decimal("500"), wallet_id=1, category_id=14)

        self.assertEqual(net_balance_changes(old, new), {})
        self.assertEqual(net_balance_changes(None, new), {1: Decimal("500")})

    def test_transfer_impact_and_total_balance(self) -> None:
        impact = transfer_impact(self.wallets[0], self.wallets[1], Decimal("100"), Decimal("5"))

        self.assertEqual(impact.source_balance, Decimal("99895"))
        self.assertEqual(impact.destination_balance, Decimal("50100"))
        self.assertEqual(impact.total_fee, Decimal("5"))
        self.assertEqual(total_balance(self.wallets), Decimal("150000"))


if __name__ == "__main__":
    unittest.main()
