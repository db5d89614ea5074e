from rest_framework import serializers

from apps.customers.models import BillingType, Customer, CustomerRequest


class CustomerSerializer(serializers.ModelSerializer):
    used_credit = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = Customer
        fields = [
            "id",
            "user",
            "username",
            "name",
            "email",
            "phone",
            "address",
            "pincode",
            "credit_limit",
            "balance_credit_limit",
            "used_credit",
            "billing_type",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "balance_credit_limit", "created_at", "updated_at"]

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("name is required")
        return value

    def validate_email(self, value):
        value = value.strip().lower()
        queryset = Customer.objects.filter(email=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError("A customer with this email already exists.")
        return value

    def validate_credit_limit(self, value):
        if value < 0:
            raise serializers.ValidationError("credit_limit must be greater than or equal to 0")
        return value

    def validate_user(self, value):
        if value is not None and value.role != "CUSTOMER":
            raise serializers.ValidationError("Linked user must have the CUSTOMER role.")
        return value

    def create(self, validated_data):
        validated_data["balance_credit_limit"] = validated_data.get("credit_limit", 0)
        return super().create(validated_data)


class CustomerRequestSerializer(serializers.ModelSerializer):
    requested_by_username = serializers.CharField(source="requested_by.username", read_only=True)
    decided_by_username = serializers.CharField(source="decided_by.username", read_only=True, allow_null=True)

    class Meta:
        model = CustomerRequest
        fields = [
            "id",
            "name",
            "email",
            "phone",
            "address",
            "pincode",
            "credit_limit",
            "billing_type",
            "status",
            "rejection_reason",
            "requested_by",
            "requested_by_username",
            "decided_by",
            "decided_by_username",
            "decided_at",
            "customer",
            "created_at",
        ]
        read_only_fields = fields


class CustomerRequestCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=50)
    address = serializers.CharField(max_length=255)
    pincode = serializers.CharField(max_length=12)
    credit_limit = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    billing_type = serializers.ChoiceField(choices=BillingType.choices, default=BillingType.CREDIT_CYCLE)

    def validate(self, attrs):
        for field in ("name", "phone", "address", "pincode"):
            attrs[field] = attrs[field].strip()
            if not attrs[field]:
                raise serializers.ValidationError({field: "This field may not be blank."})
        return attrs


class RejectionSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
