import uuid

from django.db import models

from apps.wallet.models import CollectionMethod, RecipientType


class BillStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PENDING_PAYMENT = "pending_payment", "Payment requested"
    PARTIAL = "partial", "Partially paid"
    PAID = "paid", "Paid"
    OVERDUE = "overdue", "Overdue"


OPEN_BILL_STATUSES = (BillStatus.PENDING, BillStatus.PENDING_PAYMENT, BillStatus.PARTIAL, BillStatus.OVERDUE)


class PaymentRequestStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"


PAYMENT_REQUEST_TRANSITIONS = {
    (PaymentRequestStatus.PENDING, "accept"): PaymentRequestStatus.ACCEPTED,
    (PaymentRequestStatus.PENDING, "reject"): PaymentRequestStatus.REJECTED,
}


class Bill(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="bills")
    cycle_start = models.DateField()
    cycle_end = models.DateField()
    total_used = models.DecimalField(max_digits=12, decimal_places=2)
    amount_due = models.DecimalField(max_digits=12, decimal_places=2)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    due_date = models.DateField()
    status = models.CharField(max_length=16, choices=BillStatus.choices, default=BillStatus.PENDING)
    generated_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="bills_generated")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-cycle_end", "-created_at"]
        indexes = [
            models.Index(fields=["status", "due_date"], name="bill_status_due_idx"),
            models.Index(fields=["customer", "cycle_end"], name="bill_customer_cycle_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount_due__gte=0), name="bill_amount_due_gte_zero"),
            models.CheckConstraint(condition=models.Q(paid_amount__gte=0), name="bill_paid_amount_gte_zero"),
            models.CheckConstraint(condition=models.Q(cycle_end__gte=models.F("cycle_start")), name="bill_cycle_order"),
        ]

    def __str__(self):
        return f"{self.customer_id} {self.cycle_start}..{self.cycle_end}"


class PaymentRequest(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    bill = models.ForeignKey(Bill, on_delete=models.PROTECT, related_name="payment_requests")
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="payment_requests")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=10, choices=CollectionMethod.choices)
    cheque_number = models.CharField(max_length=40, blank=True)
    cheque_bank = models.CharField(max_length=120, blank=True)
    cheque_date = models.DateField(null=True, blank=True)
    recipient = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="payment_requests")
    recipient_type = models.CharField(max_length=10, choices=RecipientType.choices)
    status = models.CharField(max_length=10, choices=PaymentRequestStatus.choices, default=PaymentRequestStatus.PENDING)
    note = models.CharField(max_length=255, blank=True)
    requested_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="payment_requests_made")
    decided_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["recipient", "status"], name="payreq_recipient_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="payreq_amount_gt_zero"),
        ]

    def cheque_details(self):
        return {"number": self.cheque_number, "bank": self.cheque_bank, "date": self.cheque_date}
