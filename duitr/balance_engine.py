from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
TRANSACTION_TYPES = {"income", "expense", "transfer"}


class InsufficientBalanceError(ValueError):
    """Raised when a wallet cannot cover an expense or transfer."""


@dataclass(frozen=True)
class WalletState:
    id: int
    balance: Decimal


@dataclass(frozen=True)
class LedgerEntry:
    type: str
    amount: Decimal
    wallet_id: int
    destination_wallet_id: Optional[int] = None
    fee: Optional[Decimal] = None
    category_id: Optional[int] = None


@dataclass(frozen=True)
class BalanceUpdate:
    wallet_id: int
    new_balance: Decimal


@dataclass(frozen=True)
class TransferImpact:
    source_balance: Decimal
    destination_balance: Decimal
    total_fee: Decimal


def new_balance(
    balance: Decimal,
    amount: Decimal,
    transaction_type: str,
    is_source: bool = True,
) -> Decimal:
    balance = _coerce_amount(balance)
    amount = _coerce_amount(amount)
    normalized = transaction_type.strip().lower()
    if normalized == "income":
        return balance + amount
    if normalized == "expense":
        return balance - amount
    if normalized == "transfer":
        return balance - amount if is_source else balance + amount
    return balance


def has_sufficient_balance(wallet: WalletState, amount: Decimal, fee: Decimal = ZERO) -> bool:
    return _coerce_amount(wallet.balance) >= _coerce_amount(amount) + _coerce_amount(fee)


def validate_entry(entry: LedgerEntry, wallets: Iterable[WalletState]) -> None:
    """Check an entry against the wallet balances it would be applied to.

    Raises ``ValueError`` (or ``InsufficientBalanceError``) on the first
    problem found.
    """
    by_id = _index_wallets(wallets)
    entry_type = _normalize_type(entry.type)
    amount = _coerce_amount(entry.amount)
    if amount <= ZERO:
        raise ValueError("Amount must be greater than zero.")

    wallet = by_id.get(entry.wallet_id)
    if wallet is None:
        raise ValueError("Wallet not found.")

    if entry_type == "transfer":
        if entry.destination_wallet_id is None:
            raise ValueError("Destination wallet is required for transfers.")
        if entry.destination_wallet_id == entry.wallet_id:
            raise ValueError("Cannot transfer to the same wallet.")
        if entry.destination_wallet_id not in by_id:
            raise ValueError("Destination wallet not found.")
        fee = _coerce_amount(entry.fee or ZERO)
        if fee < ZERO:
            raise ValueError("Transfer fee cannot be negative.")
        if not has_sufficient_balance(wallet, amount, fee):
            raise InsufficientBalanceError("Insufficient balance for transfer.")
        return

    if entry_type == "expense" and not has_sufficient_balance(wallet, amount):
        raise InsufficientBalanceError("Insufficient balance for expense.")
    if entry.category_id is None:
        raise ValueError("Category is required.")


def balance_updates(entry: LedgerEntry, wallets: Iterable[WalletState]) -> list[BalanceUpdate]:
    by_id = _index_wallets(wallets)
    source = by_id.get(entry.wallet_id)
    if source is None:
        return []

    entry_type = _normalize_type(entry.type)
    amount = _coerce_amount(entry.amount)
    if entry_type == "transfer" and entry.destination_wallet_id is not None:
        destination = by_id.get(entry.destination_wallet_id)
        if destination is None:
            return []
        fee = _coerce_amount(entry.fee or ZERO)
        return [
            BalanceUpdate(source.id, source.balance - amount - fee),
            BalanceUpdate(destination.id, destination.balance + amount),
        ]

    return [BalanceUpdate(source.id, new_balance(source.balance, amount, entry_type))]


def balance_updates_for_deletion(
    entry: LedgerEntry, wallets: Iterable[WalletState]
) -> list[BalanceUpdate]:
    by_id = _index_wallets(wallets)
    source = by_id.get(entry.wallet_id)
    if source is None:
        return []

    entry_type = _normalize_type(entry.type)
    amount = _coerce_amount(entry.amount)
    if entry_type == "transfer" and entry.destination_wallet_id is not None:
        destination = by_id.get(entry.destination_wallet_id)
        if destination is None:
            return []
        fee = _coerce_amount(entry.fee or ZERO)
        return [
            BalanceUpdate(source.id, source.balance + amount + fee),
            BalanceUpdate(destination.id, destination.balance - amount),
        ]

    reverse_type = "expense" if entry_type == "income" else "income"
    return [BalanceUpdate(source.id, new_balance(source.balance, amount, reverse_type))]


def apply_updates(
    wallets: Iterable[WalletState], updates: Iterable[BalanceUpdate]
) -> list[WalletState]:
    overrides = {update.wallet_id: update.new_balance for update in updates}
    return [
        WalletState(wallet.id, overrides.get(wallet.id, wallet.balance))
        for wallet in wallets
    ]


def balance_updates_for_update(
    old_entry: LedgerEntry,
    new_entry: LedgerEntry,
    wallets: Iterable[WalletState],
) -> list[BalanceUpdate]:
    """Reverse ``old_entry`` then apply ``new_entry``.

    Every wallet touched by either entry is reported once, with its final
    balance.
    """
    wallet_list = list(wallets)
    reversals = balance_updates_for_deletion(old_entry, wallet_list)
    intermediate = apply_updates(wallet_list, reversals)
    applied = balance_updates(new_entry, intermediate)

    final = {update.wallet_id: update.new_balance for update in reversals}
    final.update({update.wallet_id: update.new_balance for update in applied})
    return [BalanceUpdate(wallet_id, balance) for wallet_id, balance in final.items()]


def net_balance_changes(
    old_entry: Optional[LedgerEntry], new_entry: Optional[LedgerEntry]
) -> dict[int, Decimal]:
    changes: dict[int, Decimal] = {}
    if old_entry is not None:
        for wallet_id, delta in _entry_effects(old_entry):
            changes[wallet_id] = changes.get(wallet_id, ZERO) - delta
    if new_entry is not None:
        for wallet_id, delta in _entry_effects(new_entry):
            changes[wallet_id] = changes.get(wallet_id, ZERO) + delta
    return {wallet_id: delta for wallet_id, delta in changes.items() if delta != ZERO}


def transfer_impact(
    source: WalletState,
    destination: WalletState,
    amount: Decimal,
    fee: Decimal = ZERO,
) -> TransferImpact:
    amount = _coerce_amount(amount)
    fee = _coerce_amount(fee)
    return TransferImpact(
        source_balance=source.balance - amount - fee,
        destination_balance=destination.balance + amount,
        total_fee=fee,
    )


def total_balance(wallets: Iterable[WalletState]) -> Decimal:
    return sum((_coerce_amount(wallet.balance) for wallet in wallets), ZERO)


def _entry_effects(entry: LedgerEntry) -> list[tuple[int, Decimal]]:
    entry_type = _normalize_type(entry.type)
    amount = _coerce_amount(entry.amount)
    if entry_type == "income":
        return [(entry.wallet_id, amount)]
    if entry_type == "expense":
        return [(entry.wallet_id, -amount)]
    fee = _coerce_amount(entry.fee or ZERO)
    effects = [(entry.wallet_id, -(amount + fee))]
    if entry.destination_wallet_id is not None:
        effects.append((entry.destination_wallet_id, amount))
    return effects


def _normalize_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in TRANSACTION_TYPES:
        raise ValueError("Invalid transaction type.")
    return normalized


def _index_wallets(wallets: Iterable[WalletState]) -> dict[int, WalletState]:
    return {wallet.id: wallet for wallet in wallets}


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
