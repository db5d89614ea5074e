import uuid
from decimal import Decimal

from django.db import models
from django.utils import timezone


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


class AssignmentStatus(models.TextChoices):
    PENDING_ASSIGNMENT = "pending_assignment", "Pending assignment"
    ASSIGNED = "assigned", "Assigned"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"


class DeliveryState(models.TextChoices):
    NOT_DELIVERED = "not_delivered", "Not delivered"
    PARTIALLY_DELIVERED = "partially_delivered", "Partially delivered"
    FULLY_DELIVERED = "fully_delivered", "Fully delivered"


class OrderPayment(models.TextChoices):
    CREDIT = "credit", "Credit"
    CASH = "cash", "Cash"


class DeliveryPaymentMethod(models.TextChoices):
    CREDIT = "credit", "Credit"
    CASH = "cash", "Cash"
    CHEQUE = "cheque", "Cheque"


class RequestStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


ASSIGNMENT_TRANSITIONS = {
    (AssignmentStatus.PENDING_ASSIGNMENT, "assign"): AssignmentStatus.ASSIGNED,
    (AssignmentStatus.ASSIGNED, "accept"): AssignmentStatus.ACCEPTED,
    (AssignmentStatus.ASSIGNED, "reject"): AssignmentStatus.REJECTED,
}

# "deliver" keeps a partly delivered order pending, "complete" closes it.
STATUS_TRANSITIONS = {
    (OrderStatus.PENDING, "deliver"): OrderStatus.PENDING,
    (OrderStatus.PENDING, "complete"): OrderStatus.DELIVERED,
    (OrderStatus.PENDING, "cancel"): OrderStatus.CANCELLED,
}

REQUEST_TRANSITIONS = {
    (RequestStatus.PENDING, "approve"): RequestStatus.APPROVED,
    (RequestStatus.PENDING, "reject"): RequestStatus.REJECTED,
}


def delivery_state(quantity, delivered_quantity):
    if delivered_quantity <= 0:
        return DeliveryState.NOT_DELIVERED
    if delivered_quantity < quantity:
        return DeliveryState.PARTIALLY_DELIVERED
    return DeliveryState.FULLY_DELIVERED


class OrderRequest(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="order_requests")
    requested_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="order_requests")
    payment = models.CharField(max_length=10, choices=OrderPayment.choices)
    remarks = models.CharField(max_length=255, blank=True)
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=10, choices=RequestStatus.choices, default=RequestStatus.PENDING)
    decided_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="order_requests_decided"
    )
    decided_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.CharField(max_length=255, blank=True)
    requested_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-requested_at"]
        indexes = [
            models.Index(fields=["status", "requested_at"], name="orderrequest_status_idx"),
        ]


class OrderRequestLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request = models.ForeignKey(OrderRequest, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT)
    unit = models.CharField(max_length=16)
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    line_total = models.DecimalField(max_digits=12, decimal_places=2)
    remarks = models.CharField(max_length=255, blank=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="orderrequestline_qty_gt_zero"),
        ]


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="orders")
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name="orders")
    unit = models.CharField(max_length=16)
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    delivered_quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment = models.CharField(max_length=10, choices=OrderPayment.choices)
    remarks = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=12, choices=OrderStatus.choices, default=OrderStatus.PENDING)
    assignment_status = models.CharField(
        max_length=20, choices=AssignmentStatus.choices, default=AssignmentStatus.PENDING_ASSIGNMENT
    )
    order_date = models.DateField(default=timezone.localdate)
    created_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="orders_created")
    assigned_to = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="assigned_orders"
    )
    assigned_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.CharField(max_length=255, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="orders_cancelled"
    )
    request = models.ForeignKey(OrderRequest, on_delete=models.SET_NULL, null=True, blank=True, related_name="orders")
    bill = models.ForeignKey("billing.Bill", on_delete=models.SET_NULL, null=True, blank=True, related_name="orders")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "assignment_status"], name="order_status_assignment_idx"),
            models.Index(fields=["assigned_to", "assignment_status"], name="order_assignee_idx"),
            models.Index(fields=["customer", "order_date"], name="order_customer_date_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="order_qty_gt_zero"),
            models.CheckConstraint(condition=models.Q(delivered_quantity__gte=0), name="order_delivered_gte_zero"),
            models.CheckConstraint(
                condition=models.Q(delivered_quantity__lte=models.F("quantity")),
                name="order_delivered_lte_qty",
            ),
            models.CheckConstraint(condition=models.Q(unit_price__gte=0), name="order_unit_price_gte_zero"),
        ]

    @property
    def remaining_quantity(self):
        return (self.quantity - self.delivered_quantity).quantize(Decimal("0.01"))

    @property
    def delivery_state(self):
        return delivery_state(self.quantity, self.delivered_quantity)

    def __str__(self):
        return f"{self.product_id} x {self.quantity} for {self.customer_id}"


class OrderDelivery(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="deliveries")
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=10, choices=DeliveryPaymentMethod.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    delivered_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="order_deliveries")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="orderdelivery_qty_gt_zero"),
        ]
