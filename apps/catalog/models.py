import uuid
from decimal import Decimal

from django.db import models


def normalize_taxonomy_name(value: str) -> str:
    return (value or "").strip().upper()


class Unit(models.TextChoices):
    PIECE = "piece", "Piece"
    BOX = "box", "Box"
    PACK = "pack", "Pack"
    DOZEN = "dozen", "Dozen"
    KG = "kg", "Kilogram"
    GRAM = "gram", "Gram"
    LITER = "liter", "Liter"
    ML = "ml", "Millilitre"
    METER = "meter", "Meter"
    CM = "cm", "Centimeter"
    INCH = "inch", "Inch"


FRACTIONAL_UNITS = frozenset({Unit.KG, Unit.GRAM, Unit.LITER, Unit.ML, Unit.METER, Unit.CM, Unit.INCH})


def allows_fraction(unit) -> bool:
    return str(unit or "").strip().lower() in FRACTIONAL_UNITS


def is_whole(quantity: Decimal) -> bool:
    return quantity == quantity.to_integral_value()


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=80, unique=True)
    normalized_name = models.CharField(max_length=80, unique=True, db_index=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "categories"

    def save(self, *args, **kwargs):
        self.name = (self.name or "").strip()
        self.normalized_name = normalize_taxonomy_name(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class SubCategory(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    category = models.ForeignKey(Category, on_delete=models.CASCADE, related_name="subcategories")
    name = models.CharField(max_length=80)
    normalized_name = models.CharField(max_length=80, db_index=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "subcategories"
        constraints = [
            models.UniqueConstraint(fields=["category", "normalized_name"], name="unique_subcategory_per_category"),
        ]

    def save(self, *args, **kwargs):
        self.name = (self.name or "").strip()
        self.normalized_name = normalize_taxonomy_name(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.category.name} / {self.name}"


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, db_index=True)
    category = models.ForeignKey(Category, null=True, blank=True, on_delete=models.SET_NULL, related_name="products")
    subcategory = models.ForeignKey(SubCategory, null=True, blank=True, on_delete=models.SET_NULL, related_name="products")
    category_label = models.CharField(max_length=80, blank=True)
    subcategory_label = models.CharField(max_length=80, blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    unit = models.CharField(max_length=16, choices=Unit.choices, default=Unit.PIECE)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(condition=models.Q(price__gte=0), name="product_price_gte_zero"),
        ]

    def save(self, *args, **kwargs):
        if self.category_id:
            self.category_label = self.category.name
        if self.subcategory_id:
            self.subcategory_label = self.subcategory.name
        super().save(*args, **kwargs)

    @property
    def allows_fraction(self):
        return allows_fraction(self.unit)

    def __str__(self):
        return f"{self.name} ({self.unit})"
