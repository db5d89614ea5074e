from rest_framework import serializers

from apps.inventory.models import MOVEMENT_DIRECTION, InventoryMovement, MovementType


class InventoryMovementSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    product_unit = serializers.CharField(source="product.unit", read_only=True)
    created_by_username = serializers.CharField(source="created_by.username", read_only=True)

    class Meta:
        model = InventoryMovement
        fields = [
            "id",
            "product",
            "product_name",
            "product_unit",
            "movement_type",
            "quantity_delta",
            "reference_type",
            "reference_id",
            "note",
            "created_by",
            "created_by_username",
            "created_at",
        ]
        read_only_fields = ["id", "created_by", "created_at"]

    def validate_movement_type(self, value):
        # Reservations belong to orders and are never posted by hand.
        if value in (MovementType.RESERVED, MovementType.RELEASED):
            raise serializers.ValidationError("Order reservations cannot be recorded manually.")
        return value

    def validate(self, attrs):
        quantity_delta = attrs["quantity_delta"]
        if quantity_delta == 0:
            raise serializers.ValidationError({"quantity_delta": "quantity_delta cannot be zero"})
        direction = MOVEMENT_DIRECTION.get(attrs["movement_type"])
        if direction is not None and (quantity_delta > 0) != (direction > 0):
            sign = "positive" if direction > 0 else "negative"
            raise serializers.ValidationError({"quantity_delta": f"{attrs['movement_type']} movements must be {sign}"})
        if quantity_delta < 0 and InventoryMovement.current_stock(attrs["product"].id) + quantity_delta < 0:
            raise serializers.ValidationError({"quantity_delta": "insufficient stock"})
        return attrs

    def create(self, validated_data):
        validated_data["created_by"] = self.context["request"].user
        return super().create(validated_data)
