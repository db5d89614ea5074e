from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework import status
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.catalog.models import Product, Unit
from apps.common.exceptions import InsufficientStock
from apps.inventory.models import InventoryMovement, MovementType
from apps.inventory.services import release_stock, reserve_stock

User = get_user_model()


class InventoryAuditTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.delivery = User.objects.create_user(username="driver", password="drive123", role="DELIVERY")
        self.product = Product.objects.create(name="Basmati Rice", price=Decimal("90.00"), unit=Unit.KG)
        self.other_product = Product.objects.create(name="Soap Bar", price=Decimal("35.00"), unit=Unit.PIECE)

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def test_inventory_adjustment_create_is_audited(self):
        self.auth_as("admin", "admin123")
        response = self.client.post(
            "/api/v1/inventory/movements/",
            {
                "product": str(self.product.id),
                "movement_type": MovementType.ADJUSTMENT,
                "quantity_delta": "3.50",
                "reference_type": "manual_adjustment",
                "reference_id": "adj-001",
                "note": "Recount",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        movement_id = response.data["id"]
        self.assertTrue(AuditLog.objects.filter(action="inventory.adjustment.create", entity_id=movement_id).exists())

    def test_negative_movement_beyond_stock_is_rejected(self):
        self.auth_as("admin", "admin123")
        response = self.client.post(
            "/api/v1/inventory/movements/",
            {
                "product": str(self.product.id),
                "movement_type": MovementType.OUTBOUND,
                "quantity_delta": "-1.00",
                "reference_type": "manual_adjustment",
                "reference_id": "adj-002",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("quantity_delta", response.data["fields"])

    def test_movement_sign_must_match_type(self):
        self.auth_as("admin", "admin123")
        response = self.client.post(
            "/api/v1/inventory/movements/",
            {
                "product": str(self.product.id),
                "movement_type": MovementType.INBOUND,
                "quantity_delta": "-2.00",
                "reference_type": "receipt",
                "reference_id": "rcpt-neg",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("quantity_delta", response.data["fields"])

    def test_reservations_cannot_be_posted_by_hand(self):
        self.auth_as("admin", "admin123")
        response = self.client.post(
            "/api/v1/inventory/movements/",
            {
                "product": str(self.product.id),
                "movement_type": MovementType.RELEASED,
                "quantity_delta": "2.00",
                "reference_type": "order",
                "reference_id": "made-up",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("movement_type", response.data["fields"])

    def test_inventory_movements_list_can_filter_by_product(self):
        self.auth_as("admin", "admin123")
        InventoryMovement.objects.create(
            product=self.product,
            movement_type=MovementType.INBOUND,
            quantity_delta=Decimal("5.00"),
            reference_type="receipt",
            reference_id="rcpt-1",
            created_by=self.admin,
        )
        InventoryMovement.objects.create(
            product=self.other_product,
            movement_type=MovementType.INBOUND,
            quantity_delta=Decimal("1.00"),
            reference_type="receipt",
            reference_id="rcpt-2",
            created_by=self.admin,
        )

        response = self.client.get(f"/api/v1/inventory/movements/?product={self.product.id}")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        item = response.data["results"][0]
        self.assertEqual(item["product_name"], "Basmati Rice")
        self.assertEqual(item["product_unit"], Unit.KG)
        self.assertEqual(item["created_by_username"], "admin")

    def test_stocks_view_sums_movements(self):
        self.auth_as("admin", "admin123")
        InventoryMovement.objects.create(
            product=self.product,
            movement_type=MovementType.INBOUND,
            quantity_delta=Decimal("10.00"),
            reference_type="receipt",
            reference_id="rcpt-3",
            created_by=self.admin,
        )
        InventoryMovement.objects.create(
            product=self.product,
            movement_type=MovementType.RESERVED,
            quantity_delta=Decimal("-2.50"),
            reference_type="order",
            reference_id="ord-1",
            created_by=self.admin,
        )

        response = self.client.get(f"/api/v1/inventory/stocks/?product={self.product.id}")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["stock"], Decimal("7.50"))

    def test_delivery_user_cannot_read_inventory(self):
        self.auth_as("driver", "drive123")
        response = self.client.get("/api/v1/inventory/movements/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class StockReservationTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.product = Product.objects.create(name="Sunflower Oil", price=Decimal("150.00"), unit=Unit.LITER)
        InventoryMovement.objects.create(
            product=self.product,
            movement_type=MovementType.INBOUND,
            quantity_delta=Decimal("4.00"),
            reference_type="receipt",
            reference_id="rcpt-oil",
            created_by=self.admin,
        )

    def test_reserve_and_release_adjust_stock(self):
        with transaction.atomic():
            reserve_stock(
                product=self.product,
                quantity=Decimal("3.00"),
                reference_type="order",
                reference_id="ord-1",
                actor=self.admin,
            )
        self.assertEqual(InventoryMovement.current_stock(self.product.id), Decimal("1.00"))

        release_stock(
            product=self.product,
            quantity=Decimal("3.00"),
            reference_type="order_cancel",
            reference_id="ord-1",
            actor=self.admin,
        )
        self.assertEqual(InventoryMovement.current_stock(self.product.id), Decimal("4.00"))

    def test_reserve_more_than_available_raises(self):
        with self.assertRaises(InsufficientStock):
            with transaction.atomic():
                reserve_stock(
                    product=self.product,
                    quantity=Decimal("4.50"),
                    reference_type="order",
                    reference_id="ord-2",
                    actor=self.admin,
                )
        self.assertEqual(InventoryMovement.current_stock(self.product.id), Decimal("4.00"))
