import re
import uuid
from decimal import Decimal

from django.db import models


def normalize_phone(value):
    raw = str(value or "").strip()
    normalized = re.sub(r"\D+", "", raw)
    return normalized or raw


class BillingType(models.TextChoices):
    CREDIT_CYCLE = "credit_cycle", "Credit cycle"
    IMMEDIATE = "immediate", "Immediate"


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        "accounts.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="customer_profile"
    )
    name = models.CharField(max_length=255)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=50, blank=True)
    phone_normalized = models.CharField(max_length=50, blank=True, db_index=True)
    address = models.CharField(max_length=255, blank=True)
    pincode = models.CharField(max_length=12, blank=True)
    credit_limit = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    balance_credit_limit = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    billing_type = models.CharField(max_length=16, choices=BillingType.choices, default=BillingType.CREDIT_CYCLE)
    created_by = models.ForeignKey(
        "accounts.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="customers_created"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name"], name="customer_name_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(credit_limit__gte=0), name="customer_credit_limit_gte_zero"),
            models.CheckConstraint(
                condition=models.Q(balance_credit_limit__gte=0), name="customer_balance_credit_gte_zero"
            ),
        ]

    def save(self, *args, **kwargs):
        self.name = str(self.name or "").strip()
        self.email = str(self.email or "").strip().lower()
        self.phone = str(self.phone or "").strip()
        self.phone_normalized = normalize_phone(self.phone)
        super().save(*args, **kwargs)

    @property
    def used_credit(self):
        return (self.credit_limit - self.balance_credit_limit).quantize(Decimal("0.01"))

    def __str__(self):
        return f"{self.name} <{self.email}>"


class CustomerRequestStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"


CUSTOMER_REQUEST_TRANSITIONS = {
    (CustomerRequestStatus.PENDING, "accept"): CustomerRequestStatus.ACCEPTED,
    (CustomerRequestStatus.PENDING, "reject"): CustomerRequestStatus.REJECTED,
}


class CustomerRequest(models.Model):
    """A salesman's proposal for a new customer, waiting on an admin."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField()
    phone = models.CharField(max_length=50)
    address = models.CharField(max_length=255)
    pincode = models.CharField(max_length=12)
    credit_limit = models.DecimalField(max_digits=12, decimal_places=2)
    billing_type = models.CharField(max_length=16, choices=BillingType.choices, default=BillingType.CREDIT_CYCLE)
    status = models.CharField(
        max_length=10, choices=CustomerRequestStatus.choices, default=CustomerRequestStatus.PENDING
    )
    rejection_reason = models.CharField(max_length=255, blank=True)
    requested_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="customer_requests")
    decided_by = models.ForeignKey(
        "accounts.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="customer_requests_decided"
    )
    decided_at = models.DateTimeField(null=True, blank=True)
    customer = models.OneToOneField(
        Customer, on_delete=models.SET_NULL, null=True, blank=True, related_name="onboarding_request"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="customer_request_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(credit_limit__gte=0), name="customer_request_credit_limit_gte_zero"
            ),
        ]

    def save(self, *args, **kwargs):
        self.name = str(self.name or "").strip()
        self.email = str(self.email or "").strip().lower()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} ({self.status})"
