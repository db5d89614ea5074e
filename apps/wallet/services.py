import datetime
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from django.utils.dateparse import parse_date

from apps.accounts.models import UserRole
from apps.audit.services import record_audit
from apps.common.exceptions import NotFound, PermissionDenied, ValidationError
from apps.common.permissions import is_admin, resolve_role
from apps.common.transitions import advance
from apps.wallet.models import (
    TRANSACTION_TRANSITIONS,
    BillTransaction,
    CollectionMethod,
    ForwardRequest,
    ForwardStatus,
    RecipientType,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

RECIPIENT_TYPE_BY_ROLE = {
    UserRole.DELIVERY: RecipientType.DELIVERY,
    UserRole.SALESMAN: RecipientType.SALES,
}


def parse_amount(value, field="amount"):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: "A valid amount is required."}) from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError({field: "Amount must be greater than 0."})
    return amount.quantize(TWO_PLACES)


def clean_cheque(method, cheque):
    """Return the cheque columns for ``method``; every cheque field is mandatory."""
    if method != CollectionMethod.CHEQUE:
        return {"cheque_number": "", "cheque_bank": "", "cheque_date": None}

    cheque = cheque or {}
    number = str(cheque.get("number") or "").strip()
    bank = str(cheque.get("bank") or "").strip()
    raw_date = cheque.get("date")
    missing = [name for name, value in (("number", number), ("bank", bank), ("date", raw_date)) if not value]
    if missing:
        raise ValidationError({"cheque": f"Cheque {', '.join(missing)} required."})

    if isinstance(raw_date, datetime.date):
        cheque_date = raw_date
    else:
        cheque_date = parse_date(str(raw_date).strip())
        if cheque_date is None:
            raise ValidationError({"cheque": "Cheque date must be YYYY-MM-DD."})
    return {"cheque_number": number, "cheque_bank": bank, "cheque_date": cheque_date}


def recipient_type_for(user):
    recipient_type = RECIPIENT_TYPE_BY_ROLE.get(resolve_role(user))
    if recipient_type is None:
        raise PermissionDenied("Only delivery and sales users hold a wallet.")
    return recipient_type


def lock_transaction(transaction_id):
    try:
        return BillTransaction.objects.select_for_update().get(pk=transaction_id)
    except BillTransaction.DoesNotExist:
        raise NotFound("Transaction not found.") from None


def record_collection(*, actor, customer, amount, method, cheque=None, order=None, bill=None, payment_request=None, note=""):
    amount = parse_amount(amount)
    if method not in CollectionMethod.values:
        raise ValidationError({"method": "Method must be cash or cheque."})
    cheque_fields = clean_cheque(method, cheque)
    recipient_type = recipient_type_for(actor)

    with transaction.atomic():
        bill_transaction = BillTransaction.objects.create(
            customer=customer,
            recipient=actor,
            recipient_type=recipient_type,
            amount=amount,
            method=method,
            order=order,
            bill=bill,
            payment_request=payment_request,
            note=note,
            **cheque_fields,
        )
        record_audit(
            actor=actor,
            action="wallet.collection.record",
            entity_type="bill_transaction",
            entity_id=bill_transaction.id,
            payload={"customer_id": str(customer.id), "amount": str(amount), "method": method},
        )
    logger.info("Recorded %s %s collection %s for %s", amount, method, bill_transaction.id, actor.username)
    return bill_transaction


def request_forward(*, bill_transaction, actor):
    with transaction.atomic():
        current = lock_transaction(bill_transaction.pk)
        if current.recipient_id != actor.id:
            raise PermissionDenied("Only the collecting user can forward this payment.")
        current.status = advance(TRANSACTION_TRANSITIONS, current.status, "forward", "transaction")
        current.forwarded_at = timezone.now()
        current.save(update_fields=["status", "forwarded_at", "updated_at"])
        forward = ForwardRequest.objects.create(
            transaction=current,
            sender=actor,
            amount=current.amount,
            method=current.method,
        )
        record_audit(
            actor=actor,
            action="wallet.forward.request",
            entity_type="bill_transaction",
            entity_id=current.id,
            payload={"forward_request_id": str(forward.id), "amount": str(current.amount)},
        )
    logger.info("Transaction %s forwarded to admin", current.id)
    return current


def _decide(*, bill_transaction, actor, event, forward_status):
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can settle forwarded payments.")
    with transaction.atomic():
        current = lock_transaction(bill_transaction.pk)
        current.status = advance(TRANSACTION_TRANSITIONS, current.status, event, "transaction")
        now = timezone.now()
        if current.status == TransactionStatus.PAID_TO_ADMIN:
            current.settled_at = now
        else:
            current.forwarded_at = None
        current.save(update_fields=["status", "forwarded_at", "settled_at", "updated_at"])
        current.forward_requests.filter(status=ForwardStatus.PENDING).update(
            status=forward_status, decided_by=actor, decided_at=now
        )
        record_audit(
            actor=actor,
            action=f"wallet.forward.{event}",
            entity_type="bill_transaction",
            entity_id=current.id,
            payload={"amount": str(current.amount), "status": current.status},
        )
    logger.info("Transaction %s %sed by %s", current.id, event, actor.username)
    return current


def admin_accept(*, bill_transaction, actor):
    return _decide(bill_transaction=bill_transaction, actor=actor, event="accept", forward_status=ForwardStatus.ACCEPTED)


def admin_reject(*, bill_transaction, actor):
    return _decide(bill_transaction=bill_transaction, actor=actor, event="reject", forward_status=ForwardStatus.REJECTED)


def _totals_by_method(queryset):
    totals = {"total": ZERO, CollectionMethod.CASH.value: ZERO, CollectionMethod.CHEQUE.value: ZERO}
    for row in queryset.values("method").annotate(amount=Sum("amount")).order_by("method"):
        amount = Decimal(row["amount"] or 0).quantize(TWO_PLACES)
        totals[row["method"]] = amount
        totals["total"] += amount
    return totals


def admin_totals():
    """Money handed over to the admin and money waiting for a decision.

    ``received`` rows still sit with the field actor and count in neither.
    """
    return {
        "collected": _totals_by_method(BillTransaction.objects.filter(status=TransactionStatus.PAID_TO_ADMIN)),
        "pending_approval": _totals_by_method(BillTransaction.objects.filter(status=TransactionStatus.PENDING)),
    }


def actor_wallet(actor):
    mine = BillTransaction.objects.filter(recipient=actor)
    return {
        "ready_to_send": _totals_by_method(
            mine.filter(status__in=[TransactionStatus.RECEIVED, TransactionStatus.PENDING])
        ),
        "received": _totals_by_method(mine.filter(status=TransactionStatus.RECEIVED)),
        "pending": _totals_by_method(mine.filter(status=TransactionStatus.PENDING)),
        "paid_to_admin": _totals_by_method(mine.filter(status=TransactionStatus.PAID_TO_ADMIN)),
    }
