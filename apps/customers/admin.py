from django.contrib import admin

from apps.customers.models import Customer, CustomerRequest


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "email", "phone", "billing_type", "credit_limit", "balance_credit_limit")
    list_filter = ("billing_type",)
    search_fields = ("name", "email", "phone", "phone_normalized", "pincode")
    readonly_fields = ("phone_normalized", "created_at", "updated_at")


@admin.register(CustomerRequest)
class CustomerRequestAdmin(admin.ModelAdmin):
    list_display = ("name", "email", "status", "credit_limit", "requested_by", "created_at")
    list_filter = ("status", "billing_type")
    search_fields = ("name", "email", "phone")
    readonly_fields = ("customer", "decided_by", "decided_at", "created_at", "updated_at")
