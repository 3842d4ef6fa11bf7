import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import DecimalField, Sum, Value
from django.db.models.functions import Coalesce


class Purchase(models.Model):
    """One line of the append-only purchase ledger."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="purchases")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    recorded_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="recorded_purchases")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["customer", "created_at"], name="purchase_customer_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="purchase_amount_gt_zero"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Purchases are append-only and cannot be changed.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Purchases are append-only and cannot be deleted.")

    @classmethod
    def total_for_customer(cls, customer_id):
        money = DecimalField(max_digits=14, decimal_places=2)
        total = cls.objects.filter(customer_id=customer_id).aggregate(
            total=Coalesce(Sum("amount"), Value(0, output_field=money), output_field=money)
        )["total"]
        return Decimal(total).quantize(Decimal("0.01"))

    def __str__(self):
        return f"{self.customer_id}: {self.amount}"
