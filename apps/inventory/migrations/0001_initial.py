import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="InventoryMovement",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "movement_type",
                    models.CharField(
                        choices=[
                            ("INBOUND", "Goods received"),
                            ("OUTBOUND", "Goods written off"),
                            ("ADJUSTMENT", "Stock count correction"),
                            ("RESERVED", "Reserved for order"),
                            ("RELEASED", "Released from order"),
                        ],
                        max_length=20,
                    ),
                ),
                ("quantity_delta", models.DecimalField(decimal_places=2, max_digits=12)),
                ("reference_type", models.CharField(max_length=64)),
                ("reference_id", models.CharField(max_length=64)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_movements",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="catalog.product",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["product", "created_at"], name="movement_product_created_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="movement_reference_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("reference_type", "reference_id", "product"),
                        name="unique_inventory_reference_product",
                    ),
                    models.CheckConstraint(condition=~models.Q(("quantity_delta", 0)), name="movement_delta_not_zero"),
                ],
            },
        ),
    ]
