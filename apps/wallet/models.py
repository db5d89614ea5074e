import uuid

from django.db import models


class CollectionMethod(models.TextChoices):
    CASH = "cash", "Cash"
    CHEQUE = "cheque", "Cheque"


class RecipientType(models.TextChoices):
    DELIVERY = "delivery", "Delivery"
    SALES = "sales", "Sales"


class TransactionStatus(models.TextChoices):
    RECEIVED = "received", "Received"
    PENDING = "pending", "Pending approval"
    PAID_TO_ADMIN = "paid_to_admin", "Paid to admin"


class ForwardStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"


TRANSACTION_TRANSITIONS = {
    (TransactionStatus.RECEIVED, "forward"): TransactionStatus.PENDING,
    (TransactionStatus.PENDING, "accept"): TransactionStatus.PAID_TO_ADMIN,
    (TransactionStatus.PENDING, "reject"): TransactionStatus.RECEIVED,
}


class BillTransaction(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="bill_transactions")
    recipient = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="wallet_transactions")
    recipient_type = models.CharField(max_length=10, choices=RecipientType.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=10, choices=CollectionMethod.choices)
    cheque_number = models.CharField(max_length=40, blank=True)
    cheque_bank = models.CharField(max_length=120, blank=True)
    cheque_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=TransactionStatus.choices, default=TransactionStatus.RECEIVED)
    order = models.ForeignKey(
        "orders.Order", on_delete=models.SET_NULL, null=True, blank=True, related_name="bill_transactions"
    )
    bill = models.ForeignKey("billing.Bill", on_delete=models.SET_NULL, null=True, blank=True, related_name="transactions")
    payment_request = models.ForeignKey(
        "billing.PaymentRequest", on_delete=models.SET_NULL, null=True, blank=True, related_name="transactions"
    )
    note = models.CharField(max_length=255, blank=True)
    forwarded_at = models.DateTimeField(null=True, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["recipient", "status"], name="billtxn_recipient_status_idx"),
            models.Index(fields=["status", "method"], name="billtxn_status_method_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="billtxn_amount_gt_zero"),
        ]


class ForwardRequest(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction = models.ForeignKey(BillTransaction, on_delete=models.CASCADE, related_name="forward_requests")
    sender = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="forward_requests")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=10, choices=CollectionMethod.choices)
    status = models.CharField(max_length=10, choices=ForwardStatus.choices, default=ForwardStatus.PENDING)
    decided_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="forward_decisions"
    )
    decided_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="forward_status_created_idx"),
        ]
