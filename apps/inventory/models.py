import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import DecimalField, Sum
from django.db.models.functions import Coalesce

STOCK_FIELD = DecimalField(max_digits=12, decimal_places=2)


class MovementType(models.TextChoices):
    INBOUND = "INBOUND", "Goods received"
    OUTBOUND = "OUTBOUND", "Goods written off"
    ADJUSTMENT = "ADJUSTMENT", "Stock count correction"
    RESERVED = "RESERVED", "Reserved for order"
    RELEASED = "RELEASED", "Released from order"


# Sign each movement type must carry; adjustments go either way.
MOVEMENT_DIRECTION = {
    MovementType.INBOUND: 1,
    MovementType.OUTBOUND: -1,
    MovementType.RESERVED: -1,
    MovementType.RELEASED: 1,
}


class MovementQuerySet(models.QuerySet):
    def stock_of(self, product_id):
        return self.filter(product_id=product_id).aggregate(
            total=Coalesce(Sum("quantity_delta"), 0, output_field=STOCK_FIELD)
        )["total"]

    def stock_by_product(self):
        return (
            self.values("product_id", "product__name", "product__unit")
            .annotate(stock=Coalesce(Sum("quantity_delta"), 0, output_field=STOCK_FIELD))
            .order_by("product__name")
        )


class InventoryMovement(models.Model):
    """One signed change to a product's stock; stock is the sum of all of them."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name="movements")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)
    quantity_delta = models.DecimalField(max_digits=12, decimal_places=2)
    reference_type = models.CharField(max_length=64)
    reference_id = models.CharField(max_length=64)
    note = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="inventory_movements")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = MovementQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["product", "created_at"], name="movement_product_created_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="movement_reference_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["reference_type", "reference_id", "product"],
                name="unique_inventory_reference_product",
            ),
            models.CheckConstraint(condition=~models.Q(quantity_delta=0), name="movement_delta_not_zero"),
        ]

    def clean(self):
        if self.quantity_delta == 0:
            raise ValidationError({"quantity_delta": "quantity_delta cannot be zero"})

        direction = MOVEMENT_DIRECTION.get(self.movement_type)
        if direction is not None and (self.quantity_delta > 0) != (direction > 0):
            sign = "positive" if direction > 0 else "negative"
            raise ValidationError({"quantity_delta": f"{self.get_movement_type_display()} must be {sign}"})

        if self.quantity_delta < 0 and self.current_stock(self.product_id) + self.quantity_delta < 0:
            raise ValidationError({"quantity_delta": "insufficient stock"})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    @staticmethod
    def current_stock(product_id):
        return InventoryMovement.objects.stock_of(product_id)
