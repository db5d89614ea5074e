import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("phone", models.CharField(blank=True, max_length=50)),
                ("phone_normalized", models.CharField(blank=True, db_index=True, max_length=50)),
                ("address", models.CharField(blank=True, max_length=255)),
                ("pincode", models.CharField(blank=True, max_length=12)),
                ("credit_limit", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("balance_credit_limit", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                (
                    "billing_type",
                    models.CharField(
                        choices=[("credit_cycle", "Credit cycle"), ("immediate", "Immediate")],
                        default="credit_cycle",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="customers_created",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="customer_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
                "indexes": [models.Index(fields=["name"], name="customer_name_idx")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("credit_limit__gte", 0)), name="customer_credit_limit_gte_zero"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance_credit_limit__gte", 0)), name="customer_balance_credit_gte_zero"
                    ),
                ],
            },
        ),
    ]
