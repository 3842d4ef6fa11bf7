from django.contrib.auth.models import AbstractUser
from django.db import models


class UserRole(models.TextChoices):
    ADMIN = "ADMIN", "Admin"
    SHOPKEEPER = "SHOPKEEPER", "Shopkeeper"


class User(AbstractUser):
    role = models.CharField(max_length=20, choices=UserRole.choices, default=UserRole.SHOPKEEPER)
    shop_name = models.CharField(max_length=255, blank=True)

    def __str__(self):
        return self.shop_name or self.username
