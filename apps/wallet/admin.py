from django.contrib import admin

from apps.wallet.models import BillTransaction, ForwardRequest


@admin.register(BillTransaction)
class BillTransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "recipient", "recipient_type", "amount", "method", "status", "created_at")
    list_filter = ("status", "method", "recipient_type")
    search_fields = ("customer__name", "recipient__username", "cheque_number")
    raw_id_fields = ("customer", "recipient", "order", "bill", "payment_request")


@admin.register(ForwardRequest)
class ForwardRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "transaction", "sender", "amount", "method", "status", "decided_by", "created_at")
    list_filter = ("status", "method")
