"""Models for submitter credit balances and their transaction log."""

from django.db import models
from django.utils import timezone

from apps.incidents.models import AppendOnlyModel


class TransactionKind(models.TextChoices):
    DEBIT = "debit", "Debit"
    CREDIT = "credit", "Credit"
    SEED = "seed", "Seed"


class CreditAccount(models.Model):
    """Current credit balance of one submitter."""

    submitter = models.CharField(
        max_length=255,
        unique=True,
        help_text="Submitter identifier (wallet address or user id).",
    )
    balance = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["submitter"]

    def __str__(self):
        return f"{self.submitter}: {self.balance}"


class CreditTransaction(AppendOnlyModel):
    """Append-only record of one balance movement."""

    account = models.ForeignKey(
        CreditAccount,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    kind = models.CharField(max_length=10, choices=TransactionKind.choices)
    amount = models.IntegerField(help_text="Signed change applied to the balance.")
    balance_after = models.IntegerField()
    reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Incident or batch identifier the movement belongs to.",
    )
    description = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["account", "created_at", "id"]

    def __str__(self):
        return f"{self.account.submitter} {self.kind} {self.amount:+d}"
