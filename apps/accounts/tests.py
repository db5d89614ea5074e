from io import StringIO

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management import call_command
from rest_framework.test import APITestCase

from apps.accounts.models import Role
from apps.accounts.services import ADMIN_MENU_PERMISSIONS, PermissionContext, expand_permissions
from apps.audit.models import AuditLog
from apps.common.permissions import has_capability, resolve_role
from apps.customers.models import CustomerRequest

User = get_user_model()


class PermissionContextTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        Role.objects.create(name="salesman", permissions=["menu.dashboard", "menu.customers"])

    def test_everything_allowed_until_loaded(self):
        context = PermissionContext(self.seller)
        self.assertTrue(context.loading)
        self.assertTrue(context.has_permission("menu.settings"))
        self.assertEqual(context.permissions, [])

    def test_loaded_permissions_expand_parent_menus(self):
        context = PermissionContext(self.seller).reload()
        self.assertFalse(context.loading)
        self.assertEqual(context.role, "SALESMAN")
        self.assertTrue(context.has_permission("menu.customers.list"))
        self.assertFalse(context.has_permission("menu.settings"))

    def test_admin_passes_every_check(self):
        context = PermissionContext(self.admin).reload()
        self.assertTrue(context.has_permission("menu.anything"))
        self.assertEqual(context.permissions, list(ADMIN_MENU_PERMISSIONS))
        self.assertNotIn("menu.deliveries", context.permissions)

    def test_unknown_role_gets_nothing(self):
        driver = User.objects.create_user(username="driver", password="drive123", role="DELIVERY")
        context = PermissionContext(driver).reload()
        self.assertFalse(context.has_permission("menu.dashboard"))

    def test_clear_returns_to_loading(self):
        context = PermissionContext(self.seller).reload()
        context.clear()
        self.assertTrue(context.loading)
        self.assertIsNone(context.role)

    def test_expand_keeps_order_without_duplicates(self):
        self.assertEqual(
            expand_permissions(["menu.users", "menu.users.list"]),
            ["menu.users", "menu.users.list", "menu.users.roles"],
        )

    def test_group_membership_outranks_role_column(self):
        Group.objects.get_or_create(name="ADMIN")[0].user_set.add(self.seller)
        self.assertEqual(resolve_role(self.seller), "ADMIN")
        self.assertTrue(has_capability(self.seller, "orders.assign"))


class RoleApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def test_unauthenticated_requests_are_refused(self):
        self.assertEqual(self.client.get("/api/v1/roles/").status_code, 401)

    def test_me_returns_role(self):
        self.auth_as("seller", "sell123")
        response = self.client.get("/api/v1/auth/me/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["role"], "SALESMAN")

    def test_my_permissions_endpoint(self):
        Role.objects.create(name="SALESMAN", permissions=["menu.sales"])
        self.auth_as("seller", "sell123")
        response = self.client.get("/api/v1/roles/my-permissions/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["role"], "SALESMAN")
        self.assertEqual(response.data["permissions"], ["menu.sales", "menu.sales.orders", "menu.sales.reports"])

    def test_role_crud_is_audited(self):
        self.auth_as("admin", "admin123")
        created = self.client.post(
            "/api/v1/roles/", {"name": " delivery ", "permissions": ["menu.deliveries", "menu.deliveries"]}, format="json"
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.data["name"], "DELIVERY")
        self.assertEqual(created.data["permissions"], ["menu.deliveries"])

        updated = self.client.patch(
            f"/api/v1/roles/{created.data['id']}/", {"permissions": ["menu.wallet"]}, format="json"
        )
        self.assertEqual(updated.status_code, 200)
        deleted = self.client.delete(f"/api/v1/roles/{created.data['id']}/")
        self.assertEqual(deleted.status_code, 204)

        actions = set(AuditLog.objects.values_list("action", flat=True))
        self.assertTrue({"roles.create", "roles.update", "roles.delete"} <= actions)

    def test_invalid_permission_key_rejected(self):
        self.auth_as("admin", "admin123")
        response = self.client.post("/api/v1/roles/", {"name": "x", "permissions": ["Not A Key"]}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("permissions", response.data["fields"])

    def test_salesman_cannot_manage_roles_or_users(self):
        self.auth_as("seller", "sell123")
        self.assertEqual(self.client.get("/api/v1/roles/").status_code, 403)
        self.assertEqual(self.client.get("/api/v1/users/").status_code, 403)

    def test_admin_creates_user_and_filters_by_role(self):
        self.auth_as("admin", "admin123")
        created = self.client.post(
            "/api/v1/users/",
            {"username": "driver", "password": "drive123", "role": "DELIVERY"},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        self.assertNotIn("password", created.data)
        self.assertTrue(AuditLog.objects.filter(action="users.create").exists())

        drivers = self.client.get("/api/v1/users/?role=delivery")
        self.assertEqual([row["username"] for row in drivers.data["results"]], ["driver"])

    def test_user_with_activity_cannot_be_deleted(self):
        CustomerRequest.objects.create(
            name="Gupta Traders",
            email="gupta@example.com",
            phone="9876543210",
            address="12 Market Road",
            pincode="560001",
            credit_limit="1000.00",
            requested_by=self.seller,
        )
        idle = User.objects.create_user(username="idle", password="idle123", role="DELIVERY")

        self.auth_as("admin", "admin123")
        refused = self.client.delete(f"/api/v1/users/{self.seller.id}/")
        self.assertEqual(refused.status_code, 400)
        self.assertTrue(User.objects.filter(pk=self.seller.pk).exists())
        self.assertFalse(AuditLog.objects.filter(action="users.delete").exists())

        removed = self.client.delete(f"/api/v1/users/{idle.id}/")
        self.assertEqual(removed.status_code, 204)
        self.assertTrue(AuditLog.objects.filter(action="users.delete", entity_id=str(idle.id)).exists())

    def test_user_requires_password(self):
        self.auth_as("admin", "admin123")
        response = self.client.post("/api/v1/users/", {"username": "nopass", "role": "DELIVERY"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("password", response.data["fields"])


class SeedRolesTests(APITestCase):
    def test_seed_roles_keeps_existing_sets(self):
        Role.objects.create(name="DELIVERY", permissions=["menu.wallet"])
        out = StringIO()
        call_command("seed_roles", stdout=out)
        self.assertIn("DELIVERY: exists", out.getvalue())
        self.assertIn("SALESMAN: created", out.getvalue())
        self.assertEqual(Role.objects.get(name="DELIVERY").permissions, ["menu.wallet"])
        self.assertIn("menu.customer.orders", Role.objects.get(name="CUSTOMER").permissions)
