from django.contrib.auth import get_user_model
from rest_framework import serializers

from apps.billing.models import Bill, PaymentRequest
from apps.customers.models import Customer
from apps.wallet.models import CollectionMethod, RecipientType

User = get_user_model()


class BillSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    order_ids = serializers.PrimaryKeyRelatedField(source="orders", many=True, read_only=True)

    class Meta:
        model = Bill
        fields = [
            "id",
            "customer",
            "customer_name",
            "cycle_start",
            "cycle_end",
            "total_used",
            "amount_due",
            "paid_amount",
            "due_date",
            "status",
            "order_ids",
            "generated_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BillGenerateSerializer(serializers.Serializer):
    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all())
    cycle_start = serializers.DateField()
    cycle_end = serializers.DateField()

    def validate(self, attrs):
        if attrs["cycle_end"] < attrs["cycle_start"]:
            raise serializers.ValidationError({"cycle_end": "Cycle end must not be before cycle start."})
        return attrs


class PaymentRequestSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    recipient_username = serializers.CharField(source="recipient.username", read_only=True)

    class Meta:
        model = PaymentRequest
        fields = [
            "id",
            "bill",
            "customer",
            "customer_name",
            "amount",
            "method",
            "cheque_number",
            "cheque_bank",
            "cheque_date",
            "recipient",
            "recipient_username",
            "recipient_type",
            "status",
            "note",
            "requested_by",
            "decided_at",
            "created_at",
        ]
        read_only_fields = fields


class PaymentRequestCreateSerializer(serializers.Serializer):
    bill = serializers.PrimaryKeyRelatedField(queryset=Bill.objects.select_related("customer"))
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    method = serializers.ChoiceField(choices=CollectionMethod.choices)
    recipient = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    recipient_type = serializers.ChoiceField(choices=RecipientType.choices)
    cheque_number = serializers.CharField(required=False, allow_blank=True, max_length=40)
    cheque_bank = serializers.CharField(required=False, allow_blank=True, max_length=120)
    cheque_date = serializers.DateField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def cheque(self):
        data = self.validated_data
        return {"number": data.get("cheque_number"), "bank": data.get("cheque_bank"), "date": data.get("cheque_date")}
