import datetime
import logging
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.audit.services import record_audit
from apps.billing.models import (
    OPEN_BILL_STATUSES,
    PAYMENT_REQUEST_TRANSITIONS,
    Bill,
    BillStatus,
    PaymentRequest,
    PaymentRequestStatus,
)
from apps.common.exceptions import InvalidTransition, NotFound, PermissionDenied, ValidationError
from apps.common.permissions import is_admin, resolve_role
from apps.common.transitions import advance
from apps.customers.models import BillingType
from apps.customers.services import restore_credit
from apps.orders.models import Order, OrderPayment, OrderStatus
from apps.wallet.models import CollectionMethod
from apps.wallet.services import RECIPIENT_TYPE_BY_ROLE, clean_cheque, parse_amount, record_collection

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


def bill_due_date(customer, cycle_end):
    if customer.billing_type == BillingType.IMMEDIATE:
        grace_days = settings.IMMEDIATE_BILL_GRACE_DAYS
    else:
        grace_days = settings.CREDIT_BILL_GRACE_DAYS
    return cycle_end + datetime.timedelta(days=grace_days)


def lock_bill(bill_id):
    try:
        return Bill.objects.select_for_update().get(pk=bill_id)
    except Bill.DoesNotExist:
        raise NotFound("Bill not found.") from None


def generate_bill(*, customer, cycle_start, cycle_end, actor):
    """Bill every unbilled credit order of ``customer`` dated inside the cycle."""
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can generate bills.")
    if cycle_end < cycle_start:
        raise ValidationError({"cycle_end": "Cycle end must not be before cycle start."})

    with transaction.atomic():
        orders = list(
            Order.objects.select_for_update()
            .filter(
                customer=customer,
                payment=OrderPayment.CREDIT,
                bill__isnull=True,
                order_date__gte=cycle_start,
                order_date__lte=cycle_end,
            )
            .exclude(status=OrderStatus.CANCELLED)
        )
        if not orders:
            raise ValidationError("No unbilled credit orders fall inside this cycle.")

        total = sum((order.total_amount for order in orders), Decimal("0.00")).quantize(TWO_PLACES)
        bill = Bill.objects.create(
            customer=customer,
            cycle_start=cycle_start,
            cycle_end=cycle_end,
            total_used=total,
            amount_due=total,
            due_date=bill_due_date(customer, cycle_end),
            generated_by=actor,
        )
        Order.objects.filter(pk__in=[order.pk for order in orders]).update(bill=bill)
        record_audit(
            actor=actor,
            action="billing.bill.generate",
            entity_type="bill",
            entity_id=bill.id,
            payload={"customer_id": str(customer.id), "orders": len(orders), "total": str(total)},
        )
    logger.info("Bill %s generated for customer %s: %s over %d orders", bill.id, customer.id, total, len(orders))
    return bill


def generate_invoice_bill(*, order, actor):
    """Bill a fully delivered credit order of an immediate-billing customer.

    Returns the order's existing bill if it already has one and None when the
    order is not billed per delivery. Caller owns the transaction.
    """
    customer = order.customer
    if customer.billing_type != BillingType.IMMEDIATE or order.payment != OrderPayment.CREDIT:
        return None
    if order.bill_id:
        return order.bill

    total = (order.delivered_quantity * order.unit_price).quantize(TWO_PLACES)
    if total <= 0:
        return None
    billed_on = timezone.localdate()
    bill = Bill.objects.create(
        customer=customer,
        cycle_start=billed_on,
        cycle_end=billed_on,
        total_used=total,
        amount_due=total,
        due_date=bill_due_date(customer, billed_on),
        generated_by=actor,
    )
    order.bill = bill
    order.save(update_fields=["bill", "updated_at"])
    record_audit(
        actor=actor,
        action="billing.bill.invoice",
        entity_type="bill",
        entity_id=bill.id,
        payload={"customer_id": str(customer.id), "order_id": str(order.id), "total": str(total)},
    )
    logger.info("Bill %s generated on delivery of order %s: %s", bill.id, order.id, total)
    return bill


def mark_overdue(today=None):
    """Flag unpaid, untouched bills whose due date has passed."""
    today = today or timezone.localdate()
    marked = 0
    candidates = Bill.objects.filter(status=BillStatus.PENDING, due_date__lt=today).values_list("pk", flat=True)
    for bill_id in list(candidates):
        with transaction.atomic():
            bill = lock_bill(bill_id)
            if bill.status != BillStatus.PENDING or bill.due_date >= today:
                continue
            bill.status = BillStatus.OVERDUE
            bill.save(update_fields=["status", "updated_at"])
            record_audit(
                actor=None,
                action="billing.bill.overdue",
                entity_type="bill",
                entity_id=bill.id,
                payload={"due_date": bill.due_date.isoformat(), "amount_due": str(bill.amount_due)},
            )
            marked += 1
    if marked:
        logger.info("Marked %d bills overdue", marked)
    return marked


def create_payment_request(*, actor, bill, amount, method, recipient, recipient_type, cheque=None, note=""):
    if not is_admin(actor) and bill.customer.user_id != actor.id:
        raise PermissionDenied("You can only request payments for your own bills.")
    amount = parse_amount(amount)
    if method not in CollectionMethod.values:
        raise ValidationError({"method": "Method must be cash or cheque."})
    cheque_fields = clean_cheque(method, cheque)
    if RECIPIENT_TYPE_BY_ROLE.get(resolve_role(recipient)) != recipient_type:
        raise ValidationError({"recipient": f"Recipient is not a {recipient_type} user."})

    with transaction.atomic():
        current = lock_bill(bill.pk)
        if current.status not in OPEN_BILL_STATUSES:
            raise InvalidTransition("This bill is already paid.")
        if amount > current.amount_due:
            raise ValidationError({"amount": f"Amount cannot exceed the {current.amount_due} still due."})
        payment_request = PaymentRequest.objects.create(
            bill=current,
            customer=current.customer,
            amount=amount,
            method=method,
            recipient=recipient,
            recipient_type=recipient_type,
            requested_by=actor,
            note=(note or "").strip(),
            **cheque_fields,
        )
        current.status = BillStatus.PENDING_PAYMENT
        current.save(update_fields=["status", "updated_at"])
        record_audit(
            actor=actor,
            action="billing.payment_request.create",
            entity_type="payment_request",
            entity_id=payment_request.id,
            payload={"bill_id": str(current.id), "amount": str(amount), "method": method},
        )
    logger.info("Payment request %s for bill %s sent to %s", payment_request.id, current.id, recipient.username)
    return payment_request


def _lock_payment_request(payment_request_id):
    try:
        return PaymentRequest.objects.select_for_update().get(pk=payment_request_id)
    except PaymentRequest.DoesNotExist:
        raise NotFound("Payment request not found.") from None


def _settled_status(bill):
    if bill.amount_due <= 0:
        return BillStatus.PAID
    if bill.paid_amount > 0:
        return BillStatus.PARTIAL
    return BillStatus.PENDING


def accept_payment_request(*, payment_request, actor):
    """Collect the requested money, never more than the bill still owes."""
    with transaction.atomic():
        current = _lock_payment_request(payment_request.pk)
        if current.recipient_id != actor.id:
            raise PermissionDenied("Only the chosen recipient can accept this payment request.")
        current.status = advance(PAYMENT_REQUEST_TRANSITIONS, current.status, "accept", "payment request")
        bill = lock_bill(current.bill_id)
        amount = min(current.amount, bill.amount_due)
        if amount <= 0:
            raise InvalidTransition("This bill has nothing left to pay.")

        bill.paid_amount = (bill.paid_amount + amount).quantize(TWO_PLACES)
        bill.amount_due = (bill.amount_due - amount).quantize(TWO_PLACES)
        still_waiting = (
            bill.payment_requests.filter(status=PaymentRequestStatus.PENDING).exclude(pk=current.pk).exists()
        )
        if bill.amount_due > 0 and still_waiting:
            bill.status = BillStatus.PENDING_PAYMENT
        else:
            bill.status = _settled_status(bill)
        bill.save(update_fields=["paid_amount", "amount_due", "status", "updated_at"])

        current.amount = amount
        current.decided_at = timezone.now()
        current.save(update_fields=["status", "amount", "decided_at", "updated_at"])

        restore_credit(bill.customer, amount)
        bill_transaction = record_collection(
            actor=actor,
            customer=bill.customer,
            amount=amount,
            method=current.method,
            cheque=current.cheque_details(),
            bill=bill,
            payment_request=current,
            note=f"Bill payment {bill.id}",
        )
        record_audit(
            actor=actor,
            action="billing.payment_request.accept",
            entity_type="payment_request",
            entity_id=current.id,
            payload={"bill_id": str(bill.id), "amount": str(amount), "bill_status": bill.status},
        )
    logger.info("Payment request %s accepted: %s applied to bill %s", current.id, amount, bill.id)
    return current, bill_transaction


def reject_payment_request(*, payment_request, actor, reason=""):
    with transaction.atomic():
        current = _lock_payment_request(payment_request.pk)
        if current.recipient_id != actor.id:
            raise PermissionDenied("Only the chosen recipient can reject this payment request.")
        current.status = advance(PAYMENT_REQUEST_TRANSITIONS, current.status, "reject", "payment request")
        current.decided_at = timezone.now()
        current.save(update_fields=["status", "decided_at", "updated_at"])

        bill = lock_bill(current.bill_id)
        still_waiting = bill.payment_requests.filter(status=PaymentRequestStatus.PENDING).exists()
        if bill.status == BillStatus.PENDING_PAYMENT and not still_waiting:
            bill.status = _settled_status(bill)
            bill.save(update_fields=["status", "updated_at"])
        record_audit(
            actor=actor,
            action="billing.payment_request.reject",
            entity_type="payment_request",
            entity_id=current.id,
            payload={"bill_id": str(bill.id), "reason": (reason or "").strip()},
        )
    logger.info("Payment request %s rejected", current.id)
    return current
