from django.db import models
from django.conf import settings

from registry.constants import CHAIN_STATUS_CHOICES, CHAIN_NOT_ATTEMPTED


class Submission(models.Model):
    """
    A writer's content submitted to a project.

    content_ref points at an immutable content-store object. token_ref is
    only ever set after both the content write and the mint succeeded.
    """
    STATUS_PENDING = "pending"
    STATUS_ACCEPTED = "accepted"
    STATUS_REJECTED = "rejected"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_ACCEPTED, "Accepted"),
        (STATUS_REJECTED, "Rejected"),
    ]

    id = models.CharField(max_length=64, primary_key=True, editable=False)
    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.PROTECT,
        related_name="submissions"
    )
    writer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="submissions"
    )
    title = models.CharField(max_length=255)
    metadata = models.JSONField(default=dict, blank=True)

    content_ref = models.CharField(max_length=255)
    content_hash = models.CharField(max_length=64)
    content_size = models.PositiveIntegerField(default=0)

    # Scoring oracle output, stored once; null when the oracle was unavailable
    score = models.JSONField(blank=True, null=True)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)

    mint_status = models.CharField(
        max_length=16,
        choices=CHAIN_STATUS_CHOICES,
        default=CHAIN_NOT_ATTEMPTED,
        db_index=True,
    )
    # {"token_id": "...", "transaction_hash": "0x…"}
    token_ref = models.JSONField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["project", "writer"],
                name="uniq_submission_project_writer",
            ),
        ]
        indexes = [
            models.Index(fields=["project", "-created_at"], name="sub_project_created_idx"),
            models.Index(fields=["writer", "-created_at"], name="sub_writer_created_idx"),
        ]

    def __str__(self):
        return f"{self.title} ({self.id})"
