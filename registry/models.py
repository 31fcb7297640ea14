# registry/models.py
from django.db import models

from .constants import (
    TX_KIND_PROJECT_REGISTRATION,
    TX_KIND_SUBMISSION_MINT,
    TX_STATUS_PENDING,
    TX_STATUS_CONFIRMED,
    TX_STATUS_FAILED,
)


class Transaction(models.Model):
    """
    Append-mostly audit ledger of every anchoring / minting attempt.

    One row per attempt. Retries append new rows for the same subject;
    `transaction_hash` is never rewritten. Only `status` moves, and only
    through registry.ledger.reconcile().
    """
    KIND_PROJECT_REGISTRATION = TX_KIND_PROJECT_REGISTRATION
    KIND_SUBMISSION_MINT = TX_KIND_SUBMISSION_MINT

    KIND_CHOICES = [
        (KIND_PROJECT_REGISTRATION, "Project registration"),
        (KIND_SUBMISSION_MINT, "Submission mint"),
    ]

    STATUS_PENDING = TX_STATUS_PENDING
    STATUS_CONFIRMED = TX_STATUS_CONFIRMED
    STATUS_FAILED = TX_STATUS_FAILED

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.CharField(max_length=64, primary_key=True)
    kind = models.CharField(max_length=32, choices=KIND_CHOICES)
    # Project.id or Submission.id depending on kind
    subject_id = models.CharField(max_length=64, db_index=True)
    # Null when the attempt never reached the chain (client unavailable, pre-send failure)
    transaction_hash = models.CharField(max_length=80, blank=True, null=True, db_index=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)

    # Snapshot of what was submitted to the chain, plus error / error_kind on failure
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["subject_id", "-created_at"], name="tx_subject_created_idx"),
            models.Index(fields=["status", "kind"], name="tx_status_kind_idx"),
        ]

    @property
    def is_final(self) -> bool:
        return self.status in (self.STATUS_CONFIRMED, self.STATUS_FAILED)

    def __str__(self):
        return f"{self.kind} {self.subject_id} [{self.status}] {self.transaction_hash or '-'}"
