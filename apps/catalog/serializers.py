import uuid

from django.db import transaction
from rest_framework import serializers

from apps.catalog.models import Category, Product, SubCategory
from apps.inventory.models import InventoryMovement, MovementType


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "normalized_name", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "normalized_name", "created_at", "updated_at"]


class SubCategorySerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True)

    class Meta:
        model = SubCategory
        fields = ["id", "category", "category_name", "name", "normalized_name", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "normalized_name", "created_at", "updated_at"]


class ProductSerializer(serializers.ModelSerializer):
    stock = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, write_only=True, min_value=0)
    stock_adjust_reason = serializers.CharField(write_only=True, required=False, allow_blank=True)
    category_name = serializers.CharField(source="category.name", read_only=True)
    subcategory_name = serializers.CharField(source="subcategory.name", read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "price",
            "unit",
            "category",
            "category_name",
            "subcategory",
            "subcategory_name",
            "category_label",
            "subcategory_label",
            "is_active",
            "stock",
            "stock_adjust_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "category_label", "subcategory_label", "created_at", "updated_at"]

    def validate_price(self, value):
        if value < 0:
            raise serializers.ValidationError("price must be greater than or equal to 0")
        return value

    def validate(self, attrs):
        category = attrs.get("category", getattr(self.instance, "category", None))
        subcategory = attrs.get("subcategory", getattr(self.instance, "subcategory", None))
        if subcategory and category and subcategory.category_id != category.id:
            raise serializers.ValidationError({"subcategory": "Sub-category does not belong to the selected category."})
        if subcategory and not category:
            attrs["category"] = subcategory.category
        return attrs

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get("request")
        if request and request.method in {"POST", "PUT", "PATCH"}:
            current_stock = InventoryMovement.current_stock(instance.id)
        else:
            current_stock = getattr(instance, "stock", None)
            if current_stock is None:
                current_stock = InventoryMovement.current_stock(instance.id)
        data["stock"] = f"{current_stock:.2f}"
        return data

    def _create_stock_movement(self, product: Product, target_stock, reason: str, reference_type: str):
        current_stock = InventoryMovement.current_stock(product.id)
        quantity_delta = target_stock - current_stock

        if quantity_delta == 0:
            return

        if not reason.strip():
            raise serializers.ValidationError({"stock_adjust_reason": "A reason is required to adjust stock."})

        InventoryMovement.objects.create(
            product=product,
            movement_type=MovementType.ADJUSTMENT,
            quantity_delta=quantity_delta,
            reference_type=reference_type,
            reference_id=str(uuid.uuid4()),
            note=reason.strip(),
            created_by=self.context["request"].user,
        )

    def create(self, validated_data):
        target_stock = validated_data.pop("stock", None)
        stock_adjust_reason = validated_data.pop("stock_adjust_reason", "")

        with transaction.atomic():
            product = super().create(validated_data)
            if target_stock is not None:
                self._create_stock_movement(
                    product, target_stock, stock_adjust_reason or "Opening stock", "product_create_adjustment"
                )
        return product

    def update(self, instance, validated_data):
        target_stock = validated_data.pop("stock", None)
        stock_adjust_reason = validated_data.pop("stock_adjust_reason", "")

        with transaction.atomic():
            product = super().update(instance, validated_data)
            if target_stock is not None:
                self._create_stock_movement(product, target_stock, stock_adjust_reason, "manual_stock_adjustment")
        return product
