import logging
from decimal import Decimal

from apps.catalog.models import Product
from apps.common.exceptions import InsufficientStock
from apps.inventory.models import InventoryMovement, MovementType

logger = logging.getLogger(__name__)


def lock_product(product_id):
    return Product.objects.select_for_update().get(pk=product_id)


def reserve_stock(*, product, quantity, reference_type, reference_id, actor, note=""):
    """Take ``quantity`` out of the product's stock for an order.

    Must run inside a transaction; the product row stays locked until commit
    so two orders cannot both consume the last units.
    """
    quantity = Decimal(quantity)
    product = lock_product(product.pk)
    available = InventoryMovement.current_stock(product.pk)
    if quantity > available:
        logger.warning("Stock check failed for %s: requested=%s available=%s", product.pk, quantity, available)
        raise InsufficientStock(f"Insufficient product quantity for {product.name}: {available} available.")
    return InventoryMovement.objects.create(
        product=product,
        movement_type=MovementType.RESERVED,
        quantity_delta=-quantity,
        reference_type=reference_type,
        reference_id=str(reference_id),
        note=note,
        created_by=actor,
    )


def release_stock(*, product, quantity, reference_type, reference_id, actor, note=""):
    quantity = Decimal(quantity)
    if quantity <= 0:
        return None
    return InventoryMovement.objects.create(
        product=product,
        movement_type=MovementType.RELEASED,
        quantity_delta=quantity,
        reference_type=reference_type,
        reference_id=str(reference_id),
        note=note,
        created_by=actor,
    )
