import re
import uuid

from django.core.exceptions import ValidationError
from django.db import models


def normalize_phone(value):
    raw = str(value or "").strip()
    normalized = re.sub(r"\D+", "", raw)
    return normalized or raw


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="customers")
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=50)
    phone_normalized = models.CharField(max_length=50)
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "phone_normalized"], name="customer_owner_phone_unique"),
        ]
        indexes = [
            models.Index(fields=["phone_normalized"], name="customer_phone_norm_idx"),
            models.Index(fields=["name"], name="customer_name_idx"),
        ]

    def clean(self):
        if not self.phone:
            raise ValidationError("phone is required")
        normalized = normalize_phone(self.phone)
        if not normalized:
            raise ValidationError("phone must contain at least one digit")
        self.phone_normalized = normalized

    def save(self, *args, **kwargs):
        self.phone = str(self.phone or "").strip()
        self.name = str(self.name or "").strip()
        self.phone_normalized = normalize_phone(self.phone)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} ({self.phone})"
