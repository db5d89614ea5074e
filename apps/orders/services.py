import logging
import uuid
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.accounts.models import UserRole
from apps.audit.services import record_audit
from apps.billing.services import generate_invoice_bill
from apps.catalog.models import allows_fraction, is_whole
from apps.common.exceptions import InvalidTransition, NotFound, PermissionDenied, QuantityExceeded, ValidationError
from apps.common.permissions import is_admin, resolve_role
from apps.common.transitions import advance
from apps.customers.services import consume_credit, ensure_can_act_for, restore_credit
from apps.inventory.services import release_stock, reserve_stock
from apps.orders.models import (
    ASSIGNMENT_TRANSITIONS,
    REQUEST_TRANSITIONS,
    STATUS_TRANSITIONS,
    AssignmentStatus,
    DeliveryPaymentMethod,
    Order,
    OrderDelivery,
    OrderPayment,
    OrderRequest,
    OrderRequestLine,
    OrderStatus,
)
from apps.wallet.services import parse_amount, record_collection

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
MIN_ORDER_QUANTITY = Decimal("1")
DEFAULT_REJECTION_REASON = "No reason provided"
INVOICE_KINDS = ("delivered", "pending")


def money(value):
    return Decimal(value).quantize(TWO_PLACES)


def parse_quantity(value, unit, *, minimum=None, field="quantity"):
    """Validate a quantity for ``unit``.

    With ``minimum`` the quantity must be at least that much, otherwise it
    only has to be positive. Units outside the fractional allow-list take
    whole numbers only.
    """
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: "A valid quantity is required."}) from None
    if not quantity.is_finite():
        raise ValidationError({field: "A valid quantity is required."})
    if minimum is not None and quantity < minimum:
        raise ValidationError({field: f"Quantity must be at least {minimum}."})
    if quantity <= 0:
        raise ValidationError({field: "Quantity must be greater than 0."})
    if quantity != quantity.quantize(TWO_PLACES):
        raise ValidationError({field: "Quantity allows at most two decimal places."})
    if not allows_fraction(unit) and not is_whole(quantity):
        raise ValidationError({field: f"Quantity must be a whole number for unit '{unit}'."})
    return quantity.quantize(TWO_PLACES)


def parse_payment(value, choices=OrderPayment, field="payment"):
    value = str(value or "").strip().lower()
    if value not in choices.values:
        raise ValidationError({field: f"Must be one of: {', '.join(choices.values)}."})
    return value


def lock_order(order_id):
    try:
        return Order.objects.select_for_update().get(pk=order_id)
    except Order.DoesNotExist:
        raise NotFound("Order not found.") from None


def order_snapshot(order):
    return {
        "customer_id": str(order.customer_id),
        "product_id": str(order.product_id),
        "quantity": str(order.quantity),
        "delivered_quantity": str(order.delivered_quantity),
        "total_amount": str(order.total_amount),
        "payment": order.payment,
        "status": order.status,
        "assignment_status": order.assignment_status,
    }


def create_order(*, actor, customer, product, quantity, payment, remarks="", unit_price=None, request=None):
    payment = parse_payment(payment)
    quantity = parse_quantity(quantity, product.unit, minimum=MIN_ORDER_QUANTITY)
    ensure_can_act_for(actor, customer)
    if not product.is_active:
        raise ValidationError({"product": f"{product.name} is not available for ordering."})

    unit_price = money(product.price if unit_price is None else unit_price)
    order = Order(
        customer=customer,
        product=product,
        unit=product.unit,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=money(quantity * unit_price),
        payment=payment,
        remarks=(remarks or "").strip(),
        created_by=actor,
        request=request,
    )
    with transaction.atomic():
        reserve_stock(
            product=product,
            quantity=quantity,
            reference_type="order",
            reference_id=order.id,
            actor=actor,
            note=f"Reserved for {customer.name}",
        )
        if payment == OrderPayment.CREDIT:
            consume_credit(customer, order.total_amount)
        order.save(force_insert=True)
        record_audit(
            actor=actor,
            action="orders.order.create",
            entity_type="order",
            entity_id=order.id,
            payload=order_snapshot(order),
        )
    logger.info("Order %s created for customer %s (%s %s)", order.id, customer.id, quantity, order.unit)
    return order


def update_order(*, order, actor, quantity=None, payment=None, remarks=None):
    """Change quantity, payment or remarks of an order nobody has been assigned yet.

    The old reservation and credit are handed back before the new ones are
    taken, so a failing stock or credit check leaves the order untouched.
    """
    ensure_can_act_for(actor, order.customer)

    with transaction.atomic():
        current = lock_order(order.pk)
        if current.status != OrderStatus.PENDING or current.assignment_status != AssignmentStatus.PENDING_ASSIGNMENT:
            logger.warning("Refused update on order %s (%s/%s)", current.id, current.status, current.assignment_status)
            raise InvalidTransition("Only pending orders that are not yet assigned can be updated.")

        before = order_snapshot(current)
        new_quantity = current.quantity
        if quantity is not None:
            new_quantity = parse_quantity(quantity, current.unit, minimum=MIN_ORDER_QUANTITY)
        new_payment = current.payment if payment is None else parse_payment(payment)

        if new_quantity != current.quantity or new_payment != current.payment:
            revision = f"{current.id}:{uuid.uuid4().hex[:8]}"
            release_stock(
                product=current.product,
                quantity=current.quantity,
                reference_type="order_update_release",
                reference_id=revision,
                actor=actor,
                note=f"Released for update of order {current.id}",
            )
            if current.payment == OrderPayment.CREDIT:
                restore_credit(current.customer, current.total_amount)

            current.quantity = new_quantity
            current.payment = new_payment
            current.total_amount = money(new_quantity * current.unit_price)
            reserve_stock(
                product=current.product,
                quantity=new_quantity,
                reference_type="order_update",
                reference_id=revision,
                actor=actor,
                note=f"Reserved for update of order {current.id}",
            )
            if new_payment == OrderPayment.CREDIT:
                consume_credit(current.customer, current.total_amount)
        if remarks is not None:
            current.remarks = remarks.strip()

        current.save(update_fields=["quantity", "payment", "total_amount", "remarks", "updated_at"])
        record_audit(
            actor=actor,
            action="orders.order.update",
            entity_type="order",
            entity_id=current.id,
            payload={"before": before, "after": order_snapshot(current)},
        )
    logger.info("Order %s updated by %s", current.id, actor.username)
    return current


def assign(*, order, actor, delivery_actor):
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can assign orders.")
    if delivery_actor is None or not delivery_actor.is_active or resolve_role(delivery_actor) != UserRole.DELIVERY:
        raise ValidationError({"assigned_to": "Orders can only be assigned to an active delivery user."})

    with transaction.atomic():
        current = lock_order(order.pk)
        if current.status != OrderStatus.PENDING:
            raise InvalidTransition(f"Cannot assign an order that is {current.status}.")
        current.assignment_status = advance(ASSIGNMENT_TRANSITIONS, current.assignment_status, "assign", "order")
        current.assigned_to = delivery_actor
        current.assigned_at = timezone.now()
        current.save(update_fields=["assignment_status", "assigned_to", "assigned_at", "updated_at"])
        record_audit(
            actor=actor,
            action="orders.order.assign",
            entity_type="order",
            entity_id=current.id,
            payload={"assigned_to": delivery_actor.username},
        )
    logger.info("Order %s assigned to %s", current.id, delivery_actor.username)
    return current


def _ensure_assignee(order, actor, verb):
    if order.assigned_to_id != actor.id:
        raise PermissionDenied(f"Only the assigned delivery user can {verb} this order.")


def accept(*, order, actor):
    with transaction.atomic():
        current = lock_order(order.pk)
        _ensure_assignee(current, actor, "accept")
        current.assignment_status = advance(ASSIGNMENT_TRANSITIONS, current.assignment_status, "accept", "order")
        current.accepted_at = timezone.now()
        current.save(update_fields=["assignment_status", "accepted_at", "updated_at"])
        record_audit(actor=actor, action="orders.order.accept", entity_type="order", entity_id=current.id)
    logger.info("Order %s accepted by %s", current.id, actor.username)
    return current


def reject(*, order, actor, reason=""):
    with transaction.atomic():
        current = lock_order(order.pk)
        _ensure_assignee(current, actor, "reject")
        current.assignment_status = advance(ASSIGNMENT_TRANSITIONS, current.assignment_status, "reject", "order")
        current.rejected_at = timezone.now()
        current.rejection_reason = (reason or "").strip()
        current.save(update_fields=["assignment_status", "rejected_at", "rejection_reason", "updated_at"])
        record_audit(
            actor=actor,
            action="orders.order.reject",
            entity_type="order",
            entity_id=current.id,
            payload={"reason": current.rejection_reason},
        )
    logger.info("Order %s rejected by %s", current.id, actor.username)
    return current


def deliver(*, order, actor, quantity, payment_method, cheque=None, amount=None):
    """Record a (possibly partial) delivery and any money collected with it.

    Returns ``(order, delivery, bill_transaction)``; the transaction is None
    for credit deliveries.
    """
    payment_method = parse_payment(payment_method, DeliveryPaymentMethod, field="payment_method")
    quantity = parse_quantity(quantity, order.unit)

    with transaction.atomic():
        current = lock_order(order.pk)
        _ensure_assignee(current, actor, "deliver")
        if current.assignment_status != AssignmentStatus.ACCEPTED or current.status == OrderStatus.CANCELLED:
            logger.warning("Refused delivery on order %s (%s/%s)", current.id, current.status, current.assignment_status)
            raise InvalidTransition("Only accepted, uncancelled orders can be delivered.")
        on_credit = current.payment == OrderPayment.CREDIT
        if on_credit and payment_method != DeliveryPaymentMethod.CREDIT:
            raise ValidationError({"payment_method": "Credit orders are settled through their bill, not on delivery."})
        if not on_credit and payment_method == DeliveryPaymentMethod.CREDIT:
            raise ValidationError({"payment_method": "Cash orders must be collected in cash or by cheque."})

        # Compare-and-update: only lands while the remaining quantity still covers it.
        updated = Order.objects.filter(
            pk=current.pk,
            status=OrderStatus.PENDING,
            assignment_status=AssignmentStatus.ACCEPTED,
            delivered_quantity__lte=F("quantity") - quantity,
        ).update(delivered_quantity=F("delivered_quantity") + quantity, updated_at=timezone.now())
        if not updated:
            logger.warning("Delivery of %s on order %s exceeds remaining %s", quantity, current.id, current.remaining_quantity)
            raise QuantityExceeded(
                f"Cannot deliver {quantity} {current.unit}; only {current.remaining_quantity} remaining."
            )

        current.refresh_from_db()
        event = "complete" if current.delivered_quantity >= current.quantity else "deliver"
        next_status = advance(STATUS_TRANSITIONS, current.status, event, "order")
        if next_status != current.status:
            current.status = next_status
            current.save(update_fields=["status", "updated_at"])
        if current.status == OrderStatus.DELIVERED:
            generate_invoice_bill(order=current, actor=actor)

        collected = money(quantity * current.unit_price) if amount in (None, "") else parse_amount(amount)
        delivery = OrderDelivery.objects.create(
            order=current,
            quantity=quantity,
            payment_method=payment_method,
            amount=collected,
            delivered_by=actor,
        )
        bill_transaction = None
        if payment_method != DeliveryPaymentMethod.CREDIT:
            bill_transaction = record_collection(
                actor=actor,
                customer=current.customer,
                amount=collected,
                method=payment_method,
                cheque=cheque,
                order=current,
                note=f"Collected on delivery of order {current.id}",
            )
        record_audit(
            actor=actor,
            action="orders.order.deliver",
            entity_type="order",
            entity_id=current.id,
            payload={
                "quantity": str(quantity),
                "delivered_quantity": str(current.delivered_quantity),
                "payment_method": payment_method,
                "amount": str(collected),
            },
        )
    logger.info("Order %s delivered %s (%s/%s)", current.id, quantity, current.delivered_quantity, current.quantity)
    return current, delivery, bill_transaction


def _release_reservation(order, actor, reference_type):
    release_stock(
        product=order.product,
        quantity=order.quantity - order.delivered_quantity,
        reference_type=reference_type,
        reference_id=order.id,
        actor=actor,
        note=f"Released from order {order.id}",
    )
    if order.payment == OrderPayment.CREDIT:
        restore_credit(order.customer, order.total_amount)


def cancel(*, order, actor):
    with transaction.atomic():
        current = lock_order(order.pk)
        if not (is_admin(actor) or current.assigned_to_id == actor.id):
            raise PermissionDenied("Only the assigned delivery user or an admin can cancel this order.")
        if current.assignment_status != AssignmentStatus.ACCEPTED or current.delivered_quantity > 0:
            logger.warning("Refused cancel on order %s (%s, delivered %s)", current.id, current.assignment_status, current.delivered_quantity)
            raise InvalidTransition("Only accepted orders with nothing delivered can be cancelled.")
        current.status = advance(STATUS_TRANSITIONS, current.status, "cancel", "order")
        current.cancelled_at = timezone.now()
        current.cancelled_by = actor
        current.save(update_fields=["status", "cancelled_at", "cancelled_by", "updated_at"])
        _release_reservation(current, actor, "order_cancel")
        record_audit(
            actor=actor,
            action="orders.order.cancel",
            entity_type="order",
            entity_id=current.id,
            payload=order_snapshot(current),
        )
    logger.info("Order %s cancelled by %s", current.id, actor.username)
    return current


def delete_order(*, order, actor):
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can delete orders.")
    with transaction.atomic():
        current = lock_order(order.pk)
        if current.delivered_quantity > 0:
            raise InvalidTransition("Orders with deliveries cannot be deleted.")
        if current.bill_id:
            raise InvalidTransition("Billed orders cannot be deleted.")
        snapshot = order_snapshot(current)
        order_id = current.id
        if current.status == OrderStatus.PENDING:
            _release_reservation(current, actor, "order_delete")
        current.delete()
        record_audit(actor=actor, action="orders.order.delete", entity_type="order", entity_id=order_id, payload=snapshot)
    logger.info("Order %s deleted by %s", order_id, actor.username)


def invoice(order, kind):
    if kind not in INVOICE_KINDS:
        raise ValidationError({"kind": f"Must be one of: {', '.join(INVOICE_KINDS)}."})

    if kind == "delivered":
        quantity = order.delivered_quantity
    elif order.status == OrderStatus.CANCELLED:
        quantity = Decimal("0")
    else:
        quantity = order.remaining_quantity
    if quantity <= 0:
        raise ValidationError({"kind": f"Order has no {kind} quantity to invoice."})

    customer = order.customer
    data = {
        "order_id": str(order.id),
        "kind": kind,
        "order_date": order.order_date.isoformat(),
        "generated_at": timezone.now().isoformat(),
        "customer": {
            "id": str(customer.id),
            "name": customer.name,
            "email": customer.email,
            "phone": customer.phone,
            "address": customer.address,
            "pincode": customer.pincode,
        },
        "product": order.product.name,
        "unit": order.unit,
        "quantity": str(money(quantity)),
        "unit_price": str(order.unit_price),
        "amount": str(money(quantity * order.unit_price)),
        "payment": order.payment,
    }
    if kind == "delivered":
        data["deliveries"] = [
            {
                "quantity": str(delivery.quantity),
                "payment_method": delivery.payment_method,
                "amount": str(delivery.amount),
                "delivered_at": delivery.created_at.isoformat(),
            }
            for delivery in order.deliveries.all()
        ]
    return data


def submit_request(*, actor, customer, lines, payment, remarks=""):
    payment = parse_payment(payment)
    if not lines:
        raise ValidationError({"lines": "At least one line is required."})
    ensure_can_act_for(actor, customer)

    prepared = []
    for index, line in enumerate(lines):
        product = line["product"]
        if not product.is_active:
            raise ValidationError({"lines": f"Line {index + 1}: {product.name} is not available for ordering."})
        quantity = parse_quantity(line.get("quantity"), product.unit, minimum=MIN_ORDER_QUANTITY, field=f"lines[{index}]")
        unit_price = money(product.price)
        prepared.append(
            OrderRequestLine(
                product=product,
                unit=product.unit,
                quantity=quantity,
                unit_price=unit_price,
                line_total=money(quantity * unit_price),
                remarks=(line.get("remarks") or "").strip(),
            )
        )

    with transaction.atomic():
        order_request = OrderRequest.objects.create(
            customer=customer,
            requested_by=actor,
            payment=payment,
            remarks=(remarks or "").strip(),
            grand_total=sum((line.line_total for line in prepared), Decimal("0.00")),
        )
        for line in prepared:
            line.request = order_request
        OrderRequestLine.objects.bulk_create(prepared)
        record_audit(
            actor=actor,
            action="orders.request.submit",
            entity_type="order_request",
            entity_id=order_request.id,
            payload={"lines": len(prepared), "grand_total": str(order_request.grand_total), "payment": payment},
        )
    logger.info("Order request %s submitted for customer %s", order_request.id, customer.id)
    return order_request


def _lock_request(request_id):
    try:
        return OrderRequest.objects.select_for_update().get(pk=request_id)
    except OrderRequest.DoesNotExist:
        raise NotFound("Order request not found.") from None


def approve_request(*, order_request, actor):
    """Turn every line into an Order; one failing line rolls back all of them."""
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can approve order requests.")

    with transaction.atomic():
        current = _lock_request(order_request.pk)
        next_status = advance(REQUEST_TRANSITIONS, current.status, "approve", "order request")
        orders = [
            create_order(
                actor=actor,
                customer=current.customer,
                product=line.product,
                quantity=line.quantity,
                payment=current.payment,
                remarks=line.remarks or current.remarks,
                unit_price=line.unit_price,
                request=current,
            )
            for line in current.lines.select_related("product")
        ]
        current.status = next_status
        current.decided_by = actor
        current.decided_at = timezone.now()
        current.save(update_fields=["status", "decided_by", "decided_at", "updated_at"])
        record_audit(
            actor=actor,
            action="orders.request.approve",
            entity_type="order_request",
            entity_id=current.id,
            payload={"order_ids": [str(order.id) for order in orders]},
        )
    logger.info("Order request %s approved into %d orders", current.id, len(orders))
    return current, orders


def reject_request(*, order_request, actor, reason=""):
    if not is_admin(actor):
        raise PermissionDenied("Only an admin can reject order requests.")

    with transaction.atomic():
        current = _lock_request(order_request.pk)
        current.status = advance(REQUEST_TRANSITIONS, current.status, "reject", "order request")
        current.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
        current.decided_by = actor
        current.decided_at = timezone.now()
        current.save(update_fields=["status", "rejection_reason", "decided_by", "decided_at", "updated_at"])
        record_audit(
            actor=actor,
            action="orders.request.reject",
            entity_type="order_request",
            entity_id=current.id,
            payload={"reason": current.rejection_reason},
        )
    logger.info("Order request %s rejected", current.id)
    return current
