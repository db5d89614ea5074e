from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.catalog.models import Category, Product, SubCategory, Unit, allows_fraction
from apps.inventory.models import InventoryMovement, MovementType

User = get_user_model()


class CatalogAuditTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")

    def auth_as_admin(self):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": "admin", "password": "admin123"},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def test_product_create_update_delete_are_audited(self):
        self.auth_as_admin()
        created = self.client.post(
            "/api/v1/products/",
            {"name": "Toor Dal", "price": "120.00", "unit": Unit.KG, "is_active": True},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        product_id = created.data["id"]
        self.assertEqual(created.data["stock"], "0.00")

        updated = self.client.patch(f"/api/v1/products/{product_id}/", {"price": "125.00"}, format="json")
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.data["price"], "125.00")

        deleted = self.client.delete(f"/api/v1/products/{product_id}/")
        self.assertEqual(deleted.status_code, 204)

        self.assertTrue(AuditLog.objects.filter(action="catalog.product.create", entity_id=product_id).exists())
        self.assertTrue(AuditLog.objects.filter(action="catalog.product.update", entity_id=product_id).exists())
        self.assertTrue(AuditLog.objects.filter(action="catalog.product.delete", entity_id=product_id).exists())

    def test_product_create_with_opening_stock_records_movement(self):
        self.auth_as_admin()
        created = self.client.post(
            "/api/v1/products/",
            {"name": "Green Tea", "price": "240.00", "unit": Unit.BOX, "stock": "12.00"},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.data["stock"], "12.00")
        movement = InventoryMovement.objects.get(product_id=created.data["id"])
        self.assertEqual(movement.movement_type, MovementType.ADJUSTMENT)
        self.assertEqual(movement.note, "Opening stock")

    def test_product_with_movements_cannot_be_deleted(self):
        self.auth_as_admin()
        created = self.client.post(
            "/api/v1/products/",
            {"name": "Green Tea", "price": "240.00", "unit": Unit.BOX, "stock": "12.00"},
            format="json",
        )
        product_id = created.data["id"]

        deleted = self.client.delete(f"/api/v1/products/{product_id}/")
        self.assertEqual(deleted.status_code, 400)
        self.assertTrue(Product.objects.filter(pk=product_id).exists())
        self.assertFalse(AuditLog.objects.filter(action="catalog.product.delete", entity_id=product_id).exists())

    def test_product_stock_adjustment_requires_reason_and_creates_inventory_movement(self):
        self.auth_as_admin()
        product = Product.objects.create(name="Mustard Oil", price=Decimal("180.00"), unit=Unit.LITER)

        missing_reason = self.client.patch(f"/api/v1/products/{product.id}/", {"stock": "5.00"}, format="json")
        self.assertEqual(missing_reason.status_code, 400)
        self.assertIn("stock_adjust_reason", missing_reason.data["fields"])
        self.assertEqual(InventoryMovement.objects.filter(product=product).count(), 0)

        adjusted = self.client.patch(
            f"/api/v1/products/{product.id}/",
            {"stock": "5.00", "stock_adjust_reason": "Stock count"},
            format="json",
        )
        self.assertEqual(adjusted.status_code, 200)
        self.assertEqual(adjusted.data["stock"], "5.00")

        movement = InventoryMovement.objects.get(product=product)
        self.assertEqual(str(movement.quantity_delta), "5.00")
        self.assertEqual(movement.note, "Stock count")

    def test_subcategory_must_belong_to_category(self):
        self.auth_as_admin()
        grocery = Category.objects.create(name="Grocery")
        household = Category.objects.create(name="Household")
        cleaners = SubCategory.objects.create(category=household, name="Cleaners")

        response = self.client.post(
            "/api/v1/products/",
            {"name": "Floor Cleaner", "price": "99.00", "category": str(grocery.id), "subcategory": str(cleaners.id)},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("subcategory", response.data["fields"])

    def test_salesman_can_read_but_not_write_products(self):
        User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": "seller", "password": "sell123"},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

        self.assertEqual(self.client.get("/api/v1/products/").status_code, 200)
        response = self.client.post("/api/v1/products/", {"name": "X", "price": "1.00"}, format="json")
        self.assertEqual(response.status_code, 403)


class TaxonomyTests(APITestCase):
    def test_names_are_normalized(self):
        category = Category.objects.create(name="  Dairy ")
        subcategory = SubCategory.objects.create(category=category, name="paneer")
        self.assertEqual(category.name, "Dairy")
        self.assertEqual(category.normalized_name, "DAIRY")
        self.assertEqual(subcategory.normalized_name, "PANEER")

    def test_product_copies_taxonomy_labels(self):
        category = Category.objects.create(name="Dairy")
        subcategory = SubCategory.objects.create(category=category, name="Milk")
        product = Product.objects.create(
            name="Toned Milk", price=Decimal("28.00"), unit=Unit.LITER, category=category, subcategory=subcategory
        )
        self.assertEqual(product.category_label, "Dairy")
        self.assertEqual(product.subcategory_label, "Milk")

    def test_fractional_units(self):
        self.assertTrue(allows_fraction(Unit.KG))
        self.assertTrue(allows_fraction("Liter"))
        self.assertFalse(allows_fraction(Unit.PIECE))
        self.assertFalse(allows_fraction(Unit.DOZEN))


class ProductListFiltersTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin_filters", password="admin123", role="ADMIN")
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": "admin_filters", "password": "admin123"},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

        self.grocery = Category.objects.create(name="Grocery")
        self.household = Category.objects.create(name="Household")

        self.product_with_stock = Product.objects.create(
            name="Wheat Flour", price=Decimal("45.00"), unit=Unit.KG, category=self.grocery
        )
        self.product_without_stock = Product.objects.create(
            name="Dish Soap", price=Decimal("60.00"), unit=Unit.PIECE, category=self.household
        )

        InventoryMovement.objects.create(
            product=self.product_with_stock,
            movement_type=MovementType.INBOUND,
            quantity_delta=Decimal("3.00"),
            reference_type="seed",
            reference_id="seed-1",
            note="seed",
            created_by=self.admin,
        )

    def test_products_list_filters_by_category_query_and_stock(self):
        by_category = self.client.get(f"/api/v1/products/?category={self.household.id}")
        self.assertEqual(by_category.status_code, 200)
        self.assertEqual(by_category.data["count"], 1)
        self.assertEqual(by_category.data["results"][0]["name"], "Dish Soap")

        by_query = self.client.get("/api/v1/products/?q=wheat")
        self.assertEqual(by_query.data["count"], 1)
        self.assertEqual(by_query.data["results"][0]["name"], "Wheat Flour")

        with_stock = self.client.get("/api/v1/products/?has_stock=true")
        self.assertEqual(with_stock.status_code, 200)
        self.assertEqual(with_stock.data["count"], 1)
        self.assertEqual(with_stock.data["results"][0]["stock"], "3.00")

        without_stock = self.client.get("/api/v1/products/?has_stock=false")
        self.assertEqual(without_stock.data["count"], 1)
        self.assertEqual(without_stock.data["results"][0]["name"], "Dish Soap")


class SeedTaxonomyTests(APITestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_product_taxonomy", stdout=StringIO())
        call_command("seed_product_taxonomy", stdout=StringIO())
        self.assertEqual(Category.objects.count(), 3)
        self.assertEqual(SubCategory.objects.count(), 8)
        self.assertTrue(SubCategory.objects.filter(category__name="Dry Goods", name="Rice").exists())
