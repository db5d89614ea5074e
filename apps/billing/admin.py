from django.contrib import admin

from apps.billing.models import Bill, PaymentRequest


@admin.register(Bill)
class BillAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "cycle_start", "cycle_end", "total_used", "amount_due", "due_date", "status")
    list_filter = ("status",)
    search_fields = ("customer__name", "customer__email")
    raw_id_fields = ("customer", "generated_by")


@admin.register(PaymentRequest)
class PaymentRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "bill", "customer", "amount", "method", "recipient", "status", "created_at")
    list_filter = ("status", "method", "recipient_type")
    raw_id_fields = ("bill", "customer", "recipient", "requested_by")
