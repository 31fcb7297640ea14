import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("projects", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Submission",
            fields=[
                ("id", models.CharField(editable=False, max_length=64, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=255)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("content_ref", models.CharField(max_length=255)),
                ("content_hash", models.CharField(max_length=64)),
                ("content_size", models.PositiveIntegerField(default=0)),
                ("score", models.JSONField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("accepted", "Accepted"), ("rejected", "Rejected")],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "mint_status",
                    models.CharField(
                        choices=[
                            ("not_attempted", "Not attempted"),
                            ("pending", "Pending"),
                            ("confirmed", "Confirmed"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="not_attempted",
                        max_length=16,
                    ),
                ),
                ("token_ref", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="submissions",
                        to="projects.project",
                    ),
                ),
                (
                    "writer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="submissions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["project", "-created_at"], name="sub_project_created_idx"),
                    models.Index(fields=["writer", "-created_at"], name="sub_writer_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("project", "writer"), name="uniq_submission_project_writer"),
                ],
            },
        ),
    ]
