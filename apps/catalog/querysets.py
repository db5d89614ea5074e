from django.db.models import DecimalField, OuterRef, Subquery, Sum, Value
from django.db.models.functions import Coalesce

from apps.inventory.models import InventoryMovement


QUANTITY_FIELD = DecimalField(max_digits=12, decimal_places=2)


def with_stock(queryset):
    stock_subquery = (
        InventoryMovement.objects.filter(product_id=OuterRef("pk"))
        .values("product_id")
        .annotate(total=Coalesce(Sum("quantity_delta"), Value(0, output_field=QUANTITY_FIELD)))
        .values("total")
    )
    return queryset.annotate(
        stock=Coalesce(Subquery(stock_subquery, output_field=QUANTITY_FIELD), Value(0, output_field=QUANTITY_FIELD)),
    )
