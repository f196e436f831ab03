"""
Credit ledger.

The ledger answers balance queries and applies debits for processed
incidents. Accounts are created lazily; the opening balance comes from a
``BalanceSource`` (a wallet or token balance in production, a fixed
starting grant by default).

Balance checks and debits are separate calls. A batch reads the balance
once and debits per completed item afterwards, so two concurrent batches
from the same submitter can both pass the check.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from django.conf import settings
from django.db import transaction

from apps.credits.models import CreditAccount, CreditTransaction, TransactionKind

logger = logging.getLogger(__name__)


# Minimum balance for each priority tier, highest first.
PRIORITY_TIERS = [
    (1000, "enterprise"),
    (100, "premium"),
    (0, "standard"),
]


def priority_tier(balance: int) -> str:
    """Map a balance onto its processing priority tier."""
    for minimum, tier in PRIORITY_TIERS:
        if balance >= minimum:
            return tier
    return "standard"


class BalanceSource(ABC):
    """Source of the opening balance for a submitter seen for the first time."""

    @abstractmethod
    def opening_balance(self, submitter: str) -> int:
        raise NotImplementedError


class StaticBalanceSource(BalanceSource):
    """Grants every new submitter the same starting balance."""

    def __init__(self, amount: int | None = None):
        self.amount = (
            amount if amount is not None else int(getattr(settings, "CREDITS_DEFAULT_BALANCE", 10))
        )

    def opening_balance(self, submitter: str) -> int:
        return self.amount


class BaseCreditLedger(ABC):
    """Interface consumed by the pipeline."""

    @abstractmethod
    def get_balance(self, submitter: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def debit(self, submitter: str, amount: int, reference: str = "", description: str = "") -> bool:
        """Remove ``amount`` credits. Returns False if the balance is insufficient."""
        raise NotImplementedError

    @abstractmethod
    def credit(self, submitter: str, amount: int, reference: str = "", description: str = "") -> int:
        """Add ``amount`` credits and return the new balance."""
        raise NotImplementedError

    def has_credits(self, submitter: str, required: int) -> bool:
        return self.get_balance(submitter) >= required


class LocalCreditLedger(BaseCreditLedger):
    """Ledger backed by CreditAccount / CreditTransaction rows."""

    def __init__(self, balance_source: BalanceSource | None = None):
        self.balance_source = balance_source if balance_source is not None else StaticBalanceSource()

    def _account(self, submitter: str, lock: bool = False) -> CreditAccount:
        queryset = CreditAccount.objects.select_for_update() if lock else CreditAccount.objects
        account = queryset.filter(submitter=submitter).first()
        if account is not None:
            return account

        opening = self.balance_source.opening_balance(submitter)
        account = CreditAccount.objects.create(submitter=submitter, balance=opening)
        CreditTransaction.objects.create(
            account=account,
            kind=TransactionKind.SEED,
            amount=opening,
            balance_after=opening,
            description="Opening balance",
        )
        logger.info(f"Created credit account for {submitter} with {opening} credits")
        return account

    def get_balance(self, submitter: str) -> int:
        with transaction.atomic():
            return self._account(submitter).balance

    def debit(self, submitter: str, amount: int, reference: str = "", description: str = "") -> bool:
        if amount <= 0:
            raise ValueError("debit amount must be positive")
        with transaction.atomic():
            account = self._account(submitter, lock=True)
            if account.balance < amount:
                logger.warning(
                    f"Debit refused for {submitter}: balance {account.balance} < {amount}",
                    extra={"submitter": submitter, "reference": reference},
                )
                return False
            account.balance -= amount
            account.save(update_fields=["balance", "updated_at"])
            CreditTransaction.objects.create(
                account=account,
                kind=TransactionKind.DEBIT,
                amount=-amount,
                balance_after=account.balance,
                reference=reference,
                description=description,
            )
        return True

    def credit(self, submitter: str, amount: int, reference: str = "", description: str = "") -> int:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        with transaction.atomic():
            account = self._account(submitter, lock=True)
            account.balance += amount
            account.save(update_fields=["balance", "updated_at"])
            CreditTransaction.objects.create(
                account=account,
                kind=TransactionKind.CREDIT,
                amount=amount,
                balance_after=account.balance,
                reference=reference,
                description=description,
            )
        return account.balance

    def transactions(self, submitter: str) -> list[CreditTransaction]:
        return list(CreditTransaction.objects.filter(account__submitter=submitter))


def get_credit_ledger() -> BaseCreditLedger:
    return LocalCreditLedger()
