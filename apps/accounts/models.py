import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models


class UserRole(models.TextChoices):
    SUPERADMIN = "SUPERADMIN", "Super Admin"
    ADMIN = "ADMIN", "Admin"
    SALESMAN = "SALESMAN", "Sales Man"
    DELIVERY = "DELIVERY", "Delivery Man"
    CUSTOMER = "CUSTOMER", "Customer"


ADMIN_ROLES = frozenset({UserRole.SUPERADMIN, UserRole.ADMIN})
FIELD_ROLES = frozenset({UserRole.SALESMAN, UserRole.DELIVERY})


class User(AbstractUser):
    role = models.CharField(max_length=20, choices=UserRole.choices, default=UserRole.SALESMAN)


class Role(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=40, unique=True)
    permissions = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def save(self, *args, **kwargs):
        self.name = (self.name or "").strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name
