from django.contrib.auth import get_user_model
from rest_framework import serializers

from apps.catalog.models import Product
from apps.customers.models import Customer
from apps.orders.models import (
    DeliveryPaymentMethod,
    Order,
    OrderDelivery,
    OrderPayment,
    OrderRequest,
    OrderRequestLine,
)

User = get_user_model()


class OrderDeliverySerializer(serializers.ModelSerializer):
    delivered_by_username = serializers.CharField(source="delivered_by.username", read_only=True)

    class Meta:
        model = OrderDelivery
        fields = ["id", "quantity", "payment_method", "amount", "delivered_by", "delivered_by_username", "created_at"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)
    assigned_to_username = serializers.CharField(source="assigned_to.username", read_only=True, allow_null=True)
    created_by_username = serializers.CharField(source="created_by.username", read_only=True)
    remaining_quantity = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    delivery_state = serializers.CharField(read_only=True)
    deliveries = OrderDeliverySerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "customer",
            "customer_name",
            "product",
            "product_name",
            "unit",
            "quantity",
            "delivered_quantity",
            "remaining_quantity",
            "unit_price",
            "total_amount",
            "payment",
            "remarks",
            "status",
            "assignment_status",
            "delivery_state",
            "order_date",
            "created_by",
            "created_by_username",
            "assigned_to",
            "assigned_to_username",
            "assigned_at",
            "accepted_at",
            "rejected_at",
            "rejection_reason",
            "cancelled_at",
            "request",
            "bill",
            "deliveries",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OrderCreateSerializer(serializers.Serializer):
    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all(), required=False)
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment = serializers.ChoiceField(choices=OrderPayment.choices)
    remarks = serializers.CharField(required=False, allow_blank=True, max_length=255)


class OrderUpdateSerializer(serializers.Serializer):
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    payment = serializers.ChoiceField(choices=OrderPayment.choices, required=False)
    remarks = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide quantity, payment or remarks to update.")
        return attrs


class OrderAssignSerializer(serializers.Serializer):
    assigned_to = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class ChequeSerializer(serializers.Serializer):
    number = serializers.CharField(required=False, allow_blank=True, max_length=40)
    bank = serializers.CharField(required=False, allow_blank=True, max_length=120)
    date = serializers.DateField(required=False, allow_null=True)


class OrderDeliverSerializer(serializers.Serializer):
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_method = serializers.ChoiceField(choices=DeliveryPaymentMethod.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    cheque = ChequeSerializer(required=False)


class OrderRequestLineSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = OrderRequestLine
        fields = ["id", "product", "product_name", "unit", "quantity", "unit_price", "line_total", "remarks"]
        read_only_fields = fields


class OrderRequestSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    requested_by_username = serializers.CharField(source="requested_by.username", read_only=True)
    decided_by_username = serializers.CharField(source="decided_by.username", read_only=True, allow_null=True)
    lines = OrderRequestLineSerializer(many=True, read_only=True)
    order_ids = serializers.PrimaryKeyRelatedField(source="orders", many=True, read_only=True)

    class Meta:
        model = OrderRequest
        fields = [
            "id",
            "customer",
            "customer_name",
            "requested_by",
            "requested_by_username",
            "payment",
            "remarks",
            "grand_total",
            "status",
            "decided_by",
            "decided_by_username",
            "decided_at",
            "rejection_reason",
            "requested_at",
            "lines",
            "order_ids",
        ]
        read_only_fields = fields


class OrderRequestLineInputSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    remarks = serializers.CharField(required=False, allow_blank=True, max_length=255)


class OrderRequestCreateSerializer(serializers.Serializer):
    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all(), required=False)
    payment = serializers.ChoiceField(choices=OrderPayment.choices)
    remarks = serializers.CharField(required=False, allow_blank=True, max_length=255)
    lines = OrderRequestLineInputSerializer(many=True)

    def validate_lines(self, value):
        if not value:
            raise serializers.ValidationError("At least one line is required.")
        return value
