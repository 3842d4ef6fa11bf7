import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("customers", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ScratchCard",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=16, unique=True)),
                (
                    "prize_kind",
                    models.CharField(
                        choices=[
                            ("percentage_discount", "Percentage discount"),
                            ("amount_discount", "Amount discount"),
                            ("better_luck", "Better luck next time"),
                        ],
                        max_length=32,
                    ),
                ),
                ("prize_value", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("issued_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("is_scratched", models.BooleanField(default=False)),
                ("scratched_at", models.DateTimeField(blank=True, null=True)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="scratch_cards",
                        to="customers.customer",
                    ),
                ),
            ],
            options={
                "ordering": ["-issued_at"],
                "indexes": [
                    models.Index(fields=["customer", "issued_at"], name="card_customer_issued_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            models.Q(("expires_at__isnull", True), ("is_scratched", False), ("scratched_at__isnull", True))
                            | models.Q(("expires_at__isnull", False), ("is_scratched", True), ("scratched_at__isnull", False))
                        ),
                        name="card_scratch_fields_consistent",
                    ),
                    models.CheckConstraint(condition=models.Q(("prize_value__gte", 0)), name="card_prize_value_gte_zero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="RewardAccount",
            fields=[
                (
                    "customer",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        primary_key=True,
                        related_name="reward_account",
                        serialize=False,
                        to="customers.customer",
                    ),
                ),
                ("issued_count", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="CardNotification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("phone", models.CharField(max_length=50)),
                ("cards_minted", models.PositiveIntegerField()),
                ("total_purchase", models.DecimalField(decimal_places=2, max_digits=14)),
                ("message", models.TextField()),
                (
                    "status",
                    models.CharField(
                        choices=[("PENDING", "Pending"), ("SENT", "Sent"), ("FAILED", "Failed")],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="card_notifications",
                        to="customers.customer",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="cardnotif_status_created_idx"),
                ],
            },
        ),
    ]
