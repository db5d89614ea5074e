from django.contrib import admin

from apps.orders.models import Order, OrderDelivery, OrderRequest, OrderRequestLine


class OrderDeliveryInline(admin.TabularInline):
    model = OrderDelivery
    extra = 0
    readonly_fields = ("quantity", "payment_method", "amount", "delivered_by", "created_at")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "customer",
        "product",
        "quantity",
        "delivered_quantity",
        "payment",
        "status",
        "assignment_status",
        "assigned_to",
        "order_date",
    )
    list_filter = ("status", "assignment_status", "payment")
    search_fields = ("customer__name", "product__name", "remarks")
    raw_id_fields = ("customer", "product", "created_by", "assigned_to", "cancelled_by", "request", "bill")
    inlines = [OrderDeliveryInline]


class OrderRequestLineInline(admin.TabularInline):
    model = OrderRequestLine
    extra = 0


@admin.register(OrderRequest)
class OrderRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "payment", "grand_total", "status", "requested_at", "decided_by")
    list_filter = ("status", "payment")
    search_fields = ("customer__name", "remarks")
    inlines = [OrderRequestLineInline]
