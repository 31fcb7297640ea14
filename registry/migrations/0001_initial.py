from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("project_registration", "Project registration"),
                            ("submission_mint", "Submission mint"),
                        ],
                        max_length=32,
                    ),
                ),
                ("subject_id", models.CharField(db_index=True, max_length=64)),
                ("transaction_hash", models.CharField(blank=True, db_index=True, max_length=80, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("confirmed", "Confirmed"), ("failed", "Failed")],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["subject_id", "-created_at"], name="tx_subject_created_idx"),
                    models.Index(fields=["status", "kind"], name="tx_status_kind_idx"),
                ],
            },
        ),
    ]
