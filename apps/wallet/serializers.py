from rest_framework import serializers

from apps.customers.models import Customer
from apps.wallet.models import BillTransaction, CollectionMethod, ForwardRequest


class BillTransactionSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    recipient_username = serializers.CharField(source="recipient.username", read_only=True)

    class Meta:
        model = BillTransaction
        fields = [
            "id",
            "customer",
            "customer_name",
            "recipient",
            "recipient_username",
            "recipient_type",
            "amount",
            "method",
            "cheque_number",
            "cheque_bank",
            "cheque_date",
            "status",
            "order",
            "bill",
            "payment_request",
            "note",
            "forwarded_at",
            "settled_at",
            "created_at",
        ]
        read_only_fields = fields


class ForwardRequestSerializer(serializers.ModelSerializer):
    sender_username = serializers.CharField(source="sender.username", read_only=True)
    decided_by_username = serializers.CharField(source="decided_by.username", read_only=True, allow_null=True)
    customer_name = serializers.CharField(source="transaction.customer.name", read_only=True)

    class Meta:
        model = ForwardRequest
        fields = [
            "id",
            "transaction",
            "customer_name",
            "sender",
            "sender_username",
            "amount",
            "method",
            "status",
            "decided_by",
            "decided_by_username",
            "decided_at",
            "created_at",
        ]
        read_only_fields = fields


class CollectionCreateSerializer(serializers.Serializer):
    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all())
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    method = serializers.ChoiceField(choices=CollectionMethod.choices)
    cheque_number = serializers.CharField(required=False, allow_blank=True, max_length=40)
    cheque_bank = serializers.CharField(required=False, allow_blank=True, max_length=120)
    cheque_date = serializers.DateField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def cheque(self):
        data = self.validated_data
        return {"number": data.get("cheque_number"), "bank": data.get("cheque_bank"), "date": data.get("cheque_date")}
