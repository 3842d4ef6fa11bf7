import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone


class PrizeKind(models.TextChoices):
    PERCENTAGE_DISCOUNT = "percentage_discount", "Percentage discount"
    AMOUNT_DISCOUNT = "amount_discount", "Amount discount"
    BETTER_LUCK = "better_luck", "Better luck next time"


class CardState(models.TextChoices):
    # Derived on read from is_scratched/expires_at, never stored.
    UNSCRATCHED = "unscratched", "Unscratched"
    ACTIVE = "scratched_active", "Scratched, claimable"
    EXPIRED = "scratched_expired", "Scratched, expired"


class ScratchCard(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="scratch_cards")
    code = models.CharField(max_length=16, unique=True)
    prize_kind = models.CharField(max_length=32, choices=PrizeKind.choices)
    prize_value = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    issued_at = models.DateTimeField(default=timezone.now)
    is_scratched = models.BooleanField(default=False)
    scratched_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-issued_at"]
        indexes = [
            models.Index(fields=["customer", "issued_at"], name="card_customer_issued_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(is_scratched=False, scratched_at__isnull=True, expires_at__isnull=True)
                    | Q(is_scratched=True, scratched_at__isnull=False, expires_at__isnull=False)
                ),
                name="card_scratch_fields_consistent",
            ),
            models.CheckConstraint(condition=Q(prize_value__gte=0), name="card_prize_value_gte_zero"),
        ]

    def __str__(self):
        return f"{self.code} ({self.customer_id})"


class RewardAccount(models.Model):
    """Per-customer issuance counter, bumped with compare-and-swap on every mint batch."""

    customer = models.OneToOneField(
        "customers.Customer",
        on_delete=models.PROTECT,
        primary_key=True,
        related_name="reward_account",
    )
    issued_count = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.customer_id}: {self.issued_count}"


class NotificationStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SENT = "SENT", "Sent"
    FAILED = "FAILED", "Failed"


class CardNotification(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="card_notifications")
    phone = models.CharField(max_length=50)
    cards_minted = models.PositiveIntegerField()
    total_purchase = models.DecimalField(max_digits=14, decimal_places=2)
    message = models.TextField()
    status = models.CharField(max_length=16, choices=NotificationStatus.choices, default=NotificationStatus.PENDING)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="cardnotif_status_created_idx"),
        ]
