from django.test import TestCase, override_settings

from apps.credits.ledger import LocalCreditLedger, StaticBalanceSource, priority_tier
from apps.credits.models import CreditAccount, CreditTransaction, TransactionKind
from apps.incidents.exceptions import ImmutableRecordError


class PriorityTierTests(TestCase):
    def test_tiers(self):
        self.assertEqual(priority_tier(0), "standard")
        self.assertEqual(priority_tier(99), "standard")
        self.assertEqual(priority_tier(100), "premium")
        self.assertEqual(priority_tier(1000), "enterprise")


class LocalCreditLedgerTests(TestCase):
    def setUp(self):
        self.ledger = LocalCreditLedger(balance_source=StaticBalanceSource(5))

    def test_new_submitter_gets_opening_balance(self):
        self.assertEqual(self.ledger.get_balance("wallet-a"), 5)
        account = CreditAccount.objects.get(submitter="wallet-a")
        seed = CreditTransaction.objects.get(account=account)
        self.assertEqual(seed.kind, TransactionKind.SEED)
        self.assertEqual(seed.balance_after, 5)

    @override_settings(CREDITS_DEFAULT_BALANCE=42)
    def test_default_opening_balance_from_settings(self):
        self.assertEqual(LocalCreditLedger().get_balance("wallet-b"), 42)

    def test_debit_reduces_balance_and_logs_reference(self):
        self.assertTrue(self.ledger.debit("wallet-a", 2, reference="incident-1"))
        self.assertEqual(self.ledger.get_balance("wallet-a"), 3)

        debit = CreditTransaction.objects.get(kind=TransactionKind.DEBIT)
        self.assertEqual(debit.amount, -2)
        self.assertEqual(debit.balance_after, 3)
        self.assertEqual(debit.reference, "incident-1")

    def test_debit_refused_when_insufficient(self):
        self.assertFalse(self.ledger.debit("wallet-a", 6))
        self.assertEqual(self.ledger.get_balance("wallet-a"), 5)
        self.assertFalse(CreditTransaction.objects.filter(kind=TransactionKind.DEBIT).exists())

    def test_credit_adds_balance(self):
        self.assertEqual(self.ledger.credit("wallet-a", 10, reference="topup"), 15)
        self.assertTrue(self.ledger.has_credits("wallet-a", 15))
        self.assertFalse(self.ledger.has_credits("wallet-a", 16))

    def test_non_positive_amounts_rejected(self):
        with self.assertRaises(ValueError):
            self.ledger.debit("wallet-a", 0)
        with self.assertRaises(ValueError):
            self.ledger.credit("wallet-a", -1)

    def test_transactions_are_append_only(self):
        self.ledger.debit("wallet-a", 1)
        entry = self.ledger.transactions("wallet-a")[-1]
        entry.description = "edited"
        with self.assertRaises(ImmutableRecordError):
            entry.save()
