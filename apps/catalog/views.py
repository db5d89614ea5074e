from django.db import transaction
from django.db.models import ProtectedError, Q
from rest_framework import viewsets

from apps.audit.services import record_audit
from apps.catalog.models import Category, Product, SubCategory
from apps.catalog.querysets import with_stock
from apps.catalog.serializers import CategorySerializer, ProductSerializer, SubCategorySerializer
from apps.common.exceptions import ValidationError
from apps.common.permissions import RolePermission
from apps.inventory.models import InventoryMovement

CATALOG_CAPABILITIES = {
    "list": ["catalog.view"],
    "retrieve": ["catalog.view"],
    "create": ["catalog.manage"],
    "partial_update": ["catalog.manage"],
    "update": ["catalog.manage"],
    "destroy": ["catalog.manage"],
}


def product_snapshot(product, stock=None):
    return {
        "name": product.name,
        "price": str(product.price),
        "unit": product.unit,
        "category": product.category_label,
        "subcategory": product.subcategory_label,
        "stock": str(stock if stock is not None else InventoryMovement.current_stock(product.id)),
        "is_active": product.is_active,
    }


class ProductViewSet(viewsets.ModelViewSet):
    serializer_class = ProductSerializer
    permission_classes = [RolePermission]
    capability_map = CATALOG_CAPABILITIES

    def get_queryset(self):
        queryset = with_stock(Product.objects.select_related("category", "subcategory"))
        query = self.request.query_params.get("q")
        if query:
            query = query.strip()
            queryset = queryset.filter(
                Q(name__icontains=query) | Q(category_label__icontains=query) | Q(subcategory_label__icontains=query)
            )

        category_id = self.request.query_params.get("category")
        if category_id:
            queryset = queryset.filter(category_id=category_id)

        subcategory_id = self.request.query_params.get("subcategory")
        if subcategory_id:
            queryset = queryset.filter(subcategory_id=subcategory_id)

        has_stock = self.request.query_params.get("has_stock")
        if has_stock is not None:
            normalized_has_stock = has_stock.strip().lower()
            if normalized_has_stock in {"1", "true", "yes"}:
                queryset = queryset.filter(stock__gt=0)
            elif normalized_has_stock in {"0", "false", "no"}:
                queryset = queryset.filter(stock__lte=0)
        return queryset

    def perform_create(self, serializer):
        product = serializer.save()
        record_audit(
            actor=self.request.user,
            action="catalog.product.create",
            entity_type="product",
            entity_id=product.id,
            payload=product_snapshot(product),
        )

    def perform_update(self, serializer):
        old_product = self.get_object()
        before = product_snapshot(old_product, getattr(old_product, "stock", None))
        product = serializer.save()
        record_audit(
            actor=self.request.user,
            action="catalog.product.update",
            entity_type="product",
            entity_id=product.id,
            payload={"before": before, "after": product_snapshot(product)},
        )

    def perform_destroy(self, instance):
        snapshot = product_snapshot(instance, getattr(instance, "stock", None))
        product_id = instance.id
        try:
            with transaction.atomic():
                super().perform_destroy(instance)
        except ProtectedError:
            raise ValidationError("Product has stock movements or orders and cannot be deleted; deactivate it instead.")
        record_audit(
            actor=self.request.user,
            action="catalog.product.delete",
            entity_type="product",
            entity_id=product_id,
            payload=snapshot,
        )


class CategoryViewSet(viewsets.ModelViewSet):
    queryset = Category.objects.all().order_by("name")
    serializer_class = CategorySerializer
    permission_classes = [RolePermission]
    capability_map = CATALOG_CAPABILITIES

    def get_queryset(self):
        queryset = super().get_queryset()
        query = self.request.query_params.get("q")
        if query:
            query = query.strip()
            queryset = queryset.filter(Q(name__icontains=query) | Q(normalized_name__icontains=query))
        return queryset


class SubCategoryViewSet(viewsets.ModelViewSet):
    queryset = SubCategory.objects.select_related("category").order_by("category__name", "name")
    serializer_class = SubCategorySerializer
    permission_classes = [RolePermission]
    capability_map = CATALOG_CAPABILITIES

    def get_queryset(self):
        queryset = super().get_queryset()
        category_id = self.request.query_params.get("category")
        if category_id:
            queryset = queryset.filter(category_id=category_id)
        query = self.request.query_params.get("q")
        if query:
            query = query.strip()
            queryset = queryset.filter(Q(name__icontains=query) | Q(normalized_name__icontains=query))
        return queryset
