import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone
from django.utils.crypto import get_random_string

from apps.accounts.models import User, UserRole
from apps.audit.services import record_audit
from apps.common.exceptions import InsufficientCredit, NotFound, PermissionDenied, ValidationError
from apps.common.permissions import has_capability, is_admin, resolve_role
from apps.common.transitions import advance
from apps.customers.models import (
    CUSTOMER_REQUEST_TRANSITIONS,
    Customer,
    CustomerRequest,
    CustomerRequestStatus,
)

logger = logging.getLogger(__name__)


def lock_customer(customer_id):
    return Customer.objects.select_for_update().get(pk=customer_id)


def consume_credit(customer, amount):
    """Reserve ``amount`` of the customer's balance credit limit.

    Caller owns the transaction. The customer row is locked for the rest of it.
    """
    amount = Decimal(amount).quantize(Decimal("0.01"))
    customer = lock_customer(customer.pk)
    if customer.balance_credit_limit - amount < 0:
        logger.warning(
            "Credit refused for customer %s: requested=%s balance=%s", customer.pk, amount, customer.balance_credit_limit
        )
        raise InsufficientCredit(
            f"Insufficient credit for {customer.name}: {customer.balance_credit_limit} available, {amount} required."
        )
    customer.balance_credit_limit = (customer.balance_credit_limit - amount).quantize(Decimal("0.01"))
    customer.save(update_fields=["balance_credit_limit", "updated_at"])
    return customer


def restore_credit(customer, amount):
    amount = Decimal(amount).quantize(Decimal("0.01"))
    customer = lock_customer(customer.pk)
    # Never hand back more than the configured limit.
    customer.balance_credit_limit = min(customer.credit_limit, customer.balance_credit_limit + amount).quantize(
        Decimal("0.01")
    )
    customer.save(update_fields=["balance_credit_limit", "updated_at"])
    return customer


def set_credit_limit(customer, new_limit):
    """Move the ceiling and shift the available balance by the same delta."""
    new_limit = Decimal(new_limit).quantize(Decimal("0.01"))
    customer = lock_customer(customer.pk)
    used = customer.credit_limit - customer.balance_credit_limit
    if new_limit < used:
        raise ValidationError({"credit_limit": f"Credit limit cannot go below the {used} already in use."})
    customer.credit_limit = new_limit
    customer.balance_credit_limit = (new_limit - used).quantize(Decimal("0.01"))
    customer.save(update_fields=["credit_limit", "balance_credit_limit", "updated_at"])
    return customer


def customer_for_user(user):
    return Customer.objects.filter(user=user).first()


def ensure_can_act_for(actor, customer):
    if is_admin(actor) or has_capability(actor, "customers.view"):
        return
    if customer.user_id != actor.id:
        raise PermissionDenied("You can only act on your own customer profile.")


DEFAULT_REJECTION_REASON = "No reason provided"
TEMPORARY_PASSWORD_LENGTH = 20


def _email_taken(email):
    if Customer.objects.filter(email=email).exists():
        return True
    open_statuses = [CustomerRequestStatus.PENDING, CustomerRequestStatus.ACCEPTED]
    return CustomerRequest.objects.filter(email=email, status__in=open_statuses).exists()


def submit_customer_request(*, actor, name, email, phone, address, pincode, credit_limit, billing_type):
    if resolve_role(actor) != UserRole.SALESMAN:
        raise PermissionDenied("Only salesmen submit customer requests.")
    email = str(email or "").strip().lower()
    if _email_taken(email):
        raise ValidationError({"email": "Email already belongs to a customer or an open request."})

    with transaction.atomic():
        customer_request = CustomerRequest.objects.create(
            name=name,
            email=email,
            phone=str(phone or "").strip(),
            address=str(address or "").strip(),
            pincode=str(pincode or "").strip(),
            credit_limit=Decimal(credit_limit).quantize(Decimal("0.01")),
            billing_type=billing_type,
            requested_by=actor,
        )
        record_audit(
            actor=actor,
            action="customers.request.submit",
            entity_type="customer_request",
            entity_id=customer_request.id,
            payload={"email": email, "credit_limit": str(customer_request.credit_limit)},
        )
    logger.info("Customer request %s submitted by %s", customer_request.id, actor.username)
    return customer_request


def lock_customer_request(request_id):
    try:
        return CustomerRequest.objects.select_for_update().get(pk=request_id)
    except CustomerRequest.DoesNotExist:
        raise NotFound("Customer request not found.") from None


def accept_customer_request(*, customer_request, actor):
    """Create the login and the customer profile in one step.

    Returns ``(customer_request, customer, temporary_password)``; the password
    is only ever handed out here.
    """
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can accept customer requests.")

    with transaction.atomic():
        current = lock_customer_request(customer_request.pk)
        next_status = advance(CUSTOMER_REQUEST_TRANSITIONS, current.status, "accept", "customer request")
        if Customer.objects.filter(email=current.email).exists():
            raise ValidationError({"email": "A customer with this email already exists."})
        if User.objects.filter(username=current.email).exists():
            raise ValidationError({"email": "A user with this email already exists."})

        password = get_random_string(TEMPORARY_PASSWORD_LENGTH)
        user = User.objects.create_user(
            username=current.email,
            email=current.email,
            password=password,
            first_name=current.name[:150],
            role=UserRole.CUSTOMER,
        )
        customer = Customer.objects.create(
            user=user,
            name=current.name,
            email=current.email,
            phone=current.phone,
            address=current.address,
            pincode=current.pincode,
            credit_limit=current.credit_limit,
            balance_credit_limit=current.credit_limit,
            billing_type=current.billing_type,
            created_by=current.requested_by,
        )
        current.status = next_status
        current.customer = customer
        current.decided_by = actor
        current.decided_at = timezone.now()
        current.save(update_fields=["status", "customer", "decided_by", "decided_at", "updated_at"])
        record_audit(
            actor=actor,
            action="customers.request.accept",
            entity_type="customer_request",
            entity_id=current.id,
            payload={"customer_id": str(customer.id), "username": user.username},
        )
    logger.info("Customer request %s accepted as customer %s", current.id, customer.id)
    return current, customer, password


def reject_customer_request(*, customer_request, actor, reason=""):
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can reject customer requests.")

    with transaction.atomic():
        current = lock_customer_request(customer_request.pk)
        current.status = advance(CUSTOMER_REQUEST_TRANSITIONS, current.status, "reject", "customer request")
        current.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
        current.decided_by = actor
        current.decided_at = timezone.now()
        current.save(update_fields=["status", "rejection_reason", "decided_by", "decided_at", "updated_at"])
        record_audit(
            actor=actor,
            action="customers.request.reject",
            entity_type="customer_request",
            entity_id=current.id,
            payload={"reason": current.rejection_reason},
        )
    logger.info("Customer request %s rejected", current.id)
    return current
