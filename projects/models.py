from django.db import models
from django.conf import settings

from registry.constants import CHAIN_STATUS_CHOICES, CHAIN_NOT_ATTEMPTED


class Project(models.Model):
    """
    A producer's posted project.

    The local row is authoritative for the marketplace; chain anchoring is a
    supplementary integrity record tracked by chain_status / chain_ref.
    """
    STATUS_DRAFT = "draft"
    STATUS_OPEN = "open"
    STATUS_FUNDED = "funded"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_OPEN, "Open"),
        (STATUS_FUNDED, "Funded"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    # Owner may edit business fields only in these states
    EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_OPEN)
    # "published" is the legacy listing status some imported projects still carry
    SUBMITTABLE_STATUSES = (STATUS_OPEN, "published")

    id = models.CharField(max_length=64, primary_key=True, editable=False)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="owned_projects"
    )
    title = models.CharField(max_length=255)
    description = models.TextField()
    budget = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    deadline = models.DateTimeField(blank=True, null=True)
    requirements = models.JSONField(default=list, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=32,
        choices=STATUS_CHOICES,
        default=STATUS_OPEN
    )

    chain_status = models.CharField(
        max_length=16,
        choices=CHAIN_STATUS_CHOICES,
        default=CHAIN_NOT_ATTEMPTED,
        db_index=True,
    )
    # {"hash": "0x…", "transaction_hash": "0x…" | None} once anchoring was attempted
    chain_ref = models.JSONField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["owner", "-created_at"], name="project_owner_created_idx"),
            models.Index(fields=["status"], name="project_status_idx"),
        ]

    @property
    def is_open_for_submissions(self) -> bool:
        return self.status in self.SUBMITTABLE_STATUSES

    def __str__(self):
        return f"{self.title} ({self.id})"
