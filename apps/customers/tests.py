from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.common.exceptions import InsufficientCredit, PermissionDenied
from apps.customers import services
from apps.customers.models import BillingType, Customer, CustomerRequest, CustomerRequestStatus

User = get_user_model()


class CustomerApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        self.driver = User.objects.create_user(username="driver", password="drive123", role="DELIVERY")
        self.shopper = User.objects.create_user(username="shopper", password="shop123", role="CUSTOMER")

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def test_salesman_creates_customer_with_full_balance(self):
        self.auth_as("seller", "sell123")
        response = self.client.post(
            "/api/v1/customers/",
            {
                "name": "  Sharma Stores ",
                "email": "Sharma@Example.com",
                "phone": "+91 98765-43210",
                "pincode": "560001",
                "credit_limit": "2500.00",
                "user": self.shopper.id,
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["name"], "Sharma Stores")
        self.assertEqual(response.data["email"], "sharma@example.com")
        self.assertEqual(response.data["balance_credit_limit"], "2500.00")
        self.assertEqual(response.data["used_credit"], "0.00")
        self.assertTrue(AuditLog.objects.filter(action="customers.customer.create").exists())

        search = self.client.get("/api/v1/customers/?q=9876543210")
        self.assertEqual(search.data["count"], 1)

    def test_duplicate_email_rejected(self):
        Customer.objects.create(name="Existing", email="shop@example.com")
        self.auth_as("admin", "admin123")
        response = self.client.post(
            "/api/v1/customers/", {"name": "Another", "email": "SHOP@example.com"}, format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("email", response.data["fields"])

    def test_linked_user_must_be_customer_role(self):
        self.auth_as("admin", "admin123")
        response = self.client.post(
            "/api/v1/customers/",
            {"name": "Driver Shop", "email": "driver@example.com", "user": self.driver.id},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("user", response.data["fields"])

    def test_balance_is_read_only(self):
        customer = Customer.objects.create(
            name="Sharma", email="sharma@example.com", credit_limit=Decimal("1000"), balance_credit_limit=Decimal("1000")
        )
        self.auth_as("admin", "admin123")
        self.client.patch(f"/api/v1/customers/{customer.id}/", {"balance_credit_limit": "99999"}, format="json")
        customer.refresh_from_db()
        self.assertEqual(customer.balance_credit_limit, Decimal("1000.00"))

    def test_raising_limit_shifts_balance(self):
        customer = Customer.objects.create(
            name="Sharma", email="sharma@example.com", credit_limit=Decimal("1000"), balance_credit_limit=Decimal("600")
        )
        self.auth_as("admin", "admin123")
        response = self.client.patch(f"/api/v1/customers/{customer.id}/", {"credit_limit": "1500.00"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["credit_limit"], "1500.00")
        self.assertEqual(response.data["balance_credit_limit"], "1100.00")

        too_low = self.client.patch(f"/api/v1/customers/{customer.id}/", {"credit_limit": "300.00"}, format="json")
        self.assertEqual(too_low.status_code, 400)
        self.assertIn("credit_limit", too_low.data["fields"])

    def test_customer_reads_own_profile_only(self):
        Customer.objects.create(user=self.shopper, name="Sharma", email="sharma@example.com")
        self.auth_as("shopper", "shop123")
        me = self.client.get("/api/v1/customers/me/")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.data["name"], "Sharma")
        self.assertEqual(self.client.get("/api/v1/customers/").status_code, 403)

    def test_delivery_cannot_manage_customers(self):
        self.auth_as("driver", "drive123")
        self.assertEqual(self.client.get("/api/v1/customers/").status_code, 403)
        response = self.client.post("/api/v1/customers/", {"name": "X", "email": "x@example.com"}, format="json")
        self.assertEqual(response.status_code, 403)


class CreditServiceTests(APITestCase):
    def setUp(self):
        self.customer = Customer.objects.create(
            name="Sharma", email="sharma@example.com", credit_limit=Decimal("1000"), balance_credit_limit=Decimal("1000")
        )

    def test_consume_and_restore(self):
        with transaction.atomic():
            services.consume_credit(self.customer, Decimal("400"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance_credit_limit, Decimal("600.00"))
        self.assertEqual(self.customer.used_credit, Decimal("400.00"))

        with transaction.atomic():
            services.restore_credit(self.customer, Decimal("900"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance_credit_limit, Decimal("1000.00"))

    def test_consume_beyond_balance_raises(self):
        with self.assertRaises(InsufficientCredit):
            with transaction.atomic():
                services.consume_credit(self.customer, Decimal("1000.01"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance_credit_limit, Decimal("1000.00"))

    def test_customer_cannot_act_for_others(self):
        shopper = User.objects.create_user(username="shopper", password="shop123", role="CUSTOMER")
        seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        with self.assertRaises(PermissionDenied):
            services.ensure_can_act_for(shopper, self.customer)
        services.ensure_can_act_for(seller, self.customer)

        self.customer.user = shopper
        self.customer.save()
        services.ensure_can_act_for(shopper, self.customer)


class CustomerRequestTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        self.other_seller = User.objects.create_user(username="seller2", password="sell123", role="SALESMAN")
        self.driver = User.objects.create_user(username="driver", password="drive123", role="DELIVERY")

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def submit(self, email="gupta@example.com", **overrides):
        payload = {
            "name": "Gupta Traders",
            "email": email,
            "phone": "98765 43210",
            "address": "12 Market Road",
            "pincode": "560001",
            "credit_limit": "3000.00",
            "billing_type": BillingType.IMMEDIATE,
        }
        payload.update(overrides)
        return self.client.post("/api/v1/customer-requests/", payload, format="json")

    def test_accepted_request_creates_customer_and_login(self):
        self.auth_as("seller", "sell123")
        created = self.submit(email="Gupta@Example.com")
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.data["status"], CustomerRequestStatus.PENDING)
        self.assertEqual(created.data["email"], "gupta@example.com")
        self.assertEqual(len(self.client.get("/api/v1/customer-requests/mine/").data), 1)

        self.auth_as("admin", "admin123")
        pending = self.client.get("/api/v1/customer-requests/pending/")
        self.assertEqual([row["id"] for row in pending.data], [created.data["id"]])

        accepted = self.client.post(f"/api/v1/customer-requests/{created.data['id']}/accept/")
        self.assertEqual(accepted.status_code, 200)
        self.assertEqual(accepted.data["status"], CustomerRequestStatus.ACCEPTED)
        customer = Customer.objects.get(email="gupta@example.com")
        self.assertEqual(str(accepted.data["customer"]), str(customer.id))
        self.assertEqual(customer.balance_credit_limit, Decimal("3000.00"))
        self.assertEqual(customer.billing_type, BillingType.IMMEDIATE)
        self.assertEqual(customer.created_by, self.seller)
        self.assertEqual(customer.user.role, "CUSTOMER")
        self.assertTrue(AuditLog.objects.filter(action="customers.request.accept").exists())
        self.assertEqual(self.client.get("/api/v1/customer-requests/pending/").data, [])

        credentials = accepted.data["credentials"]
        self.auth_as(credentials["username"], credentials["temporary_password"])
        me = self.client.get("/api/v1/customers/me/")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.data["name"], "Gupta Traders")

        self.auth_as("admin", "admin123")
        again = self.client.post(f"/api/v1/customer-requests/{created.data['id']}/accept/")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["code"], "invalid_transition")

    def test_email_already_in_use_is_refused(self):
        Customer.objects.create(name="Existing", email="taken@example.com")
        self.auth_as("seller", "sell123")
        taken = self.submit(email="taken@example.com")
        self.assertEqual(taken.status_code, 400)
        self.assertIn("email", taken.data["fields"])

        self.assertEqual(self.submit().status_code, 201)
        duplicate = self.submit()
        self.assertEqual(duplicate.status_code, 400)
        self.assertIn("email", duplicate.data["fields"])

    def test_missing_fields_are_refused(self):
        self.auth_as("seller", "sell123")
        response = self.submit(address="   ", credit_limit="-1")
        self.assertEqual(response.status_code, 400)
        self.assertFalse(CustomerRequest.objects.exists())

    def test_reject_stores_default_reason(self):
        self.auth_as("seller", "sell123")
        request_id = self.submit().data["id"]

        self.auth_as("admin", "admin123")
        rejected = self.client.post(f"/api/v1/customer-requests/{request_id}/reject/", {}, format="json")
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(rejected.data["status"], CustomerRequestStatus.REJECTED)
        self.assertEqual(rejected.data["rejection_reason"], "No reason provided")
        self.assertFalse(Customer.objects.filter(email="gupta@example.com").exists())

        self.auth_as("seller", "sell123")
        self.assertEqual(self.submit().status_code, 201)

    def test_salesmen_see_only_their_requests_and_cannot_decide(self):
        self.auth_as("seller", "sell123")
        request_id = self.submit().data["id"]
        self.assertEqual(self.client.post(f"/api/v1/customer-requests/{request_id}/accept/").status_code, 403)
        self.assertEqual(self.client.get("/api/v1/customer-requests/pending/").status_code, 403)

        self.auth_as("seller2", "sell123")
        self.assertEqual(self.client.get("/api/v1/customer-requests/").data["count"], 0)
        self.assertEqual(self.client.get(f"/api/v1/customer-requests/{request_id}/").status_code, 404)

    def test_delivery_cannot_submit(self):
        self.auth_as("driver", "drive123")
        self.assertEqual(self.submit().status_code, 403)
