from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.common.exceptions import PermissionDenied
from apps.customers.models import Customer
from apps.wallet import services
from apps.wallet.models import BillTransaction, ForwardRequest, ForwardStatus, RecipientType, TransactionStatus

User = get_user_model()


class WalletFixtureMixin:
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.driver = User.objects.create_user(username="driver", password="drive123", role="DELIVERY")
        self.seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        self.shopper = User.objects.create_user(username="shopper", password="shop123", role="CUSTOMER")
        self.customer = Customer.objects.create(name="Sharma Stores", email="sharma@example.com")

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def collect(self, amount, method="cash", actor=None, **cheque):
        return services.record_collection(
            actor=actor or self.driver,
            customer=self.customer,
            amount=amount,
            method=method,
            cheque=cheque or None,
        )


class CollectionTests(WalletFixtureMixin, APITestCase):
    def test_driver_records_cash_collection(self):
        self.auth_as("driver", "drive123")
        response = self.client.post(
            "/api/v1/wallet/",
            {"customer": str(self.customer.id), "amount": "150.00", "method": "cash"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], TransactionStatus.RECEIVED)
        self.assertEqual(response.data["recipient_type"], RecipientType.DELIVERY)
        self.assertTrue(AuditLog.objects.filter(action="wallet.collection.record").exists())

    def test_salesman_collection_is_tagged_sales(self):
        bill_transaction = self.collect("80.00", actor=self.seller)
        self.assertEqual(bill_transaction.recipient_type, RecipientType.SALES)

    def test_cheque_requires_every_detail(self):
        self.auth_as("driver", "drive123")
        response = self.client.post(
            "/api/v1/wallet/",
            {
                "customer": str(self.customer.id),
                "amount": "250.00",
                "method": "cheque",
                "cheque_number": "000123",
                "cheque_date": "2026-10-01",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("cheque", response.data["fields"])
        self.assertFalse(BillTransaction.objects.exists())

    def test_cheque_details_are_stored(self):
        bill_transaction = self.collect("250.00", "cheque", number="000123", bank="State Bank", date="2026-10-01")
        self.assertEqual(bill_transaction.cheque_bank, "State Bank")
        self.assertEqual(bill_transaction.cheque_date.isoformat(), "2026-10-01")

    def test_failed_audit_discards_the_collection(self):
        with mock.patch("apps.wallet.services.record_audit", side_effect=DatabaseError("audit unavailable")):
            with self.assertRaises(DatabaseError):
                self.collect("150.00")
        self.assertFalse(BillTransaction.objects.exists())

    def test_non_positive_amount_rejected(self):
        self.auth_as("driver", "drive123")
        response = self.client.post(
            "/api/v1/wallet/",
            {"customer": str(self.customer.id), "amount": "0", "method": "cash"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.data["fields"])

    def test_customer_cannot_collect(self):
        self.auth_as("shopper", "shop123")
        response = self.client.post(
            "/api/v1/wallet/",
            {"customer": str(self.customer.id), "amount": "10.00", "method": "cash"},
            format="json",
        )
        self.assertEqual(response.status_code, 403)


class ForwardFlowTests(WalletFixtureMixin, APITestCase):
    def test_summary_counts_only_forwarded_money(self):
        cash = self.collect("100.00")
        cheque = self.collect("250.00", "cheque", number="000123", bank="State Bank", date="2026-10-01")
        self.collect("50.00")

        self.auth_as("driver", "drive123")
        self.client.post(f"/api/v1/wallet/{cash.id}/forward/")
        self.client.post(f"/api/v1/wallet/{cheque.id}/forward/")

        self.auth_as("admin", "admin123")
        accepted = self.client.post(f"/api/v1/wallet/{cash.id}/accept/")
        self.assertEqual(accepted.data["status"], TransactionStatus.PAID_TO_ADMIN)

        summary = self.client.get("/api/v1/wallet/summary/")
        self.assertEqual(summary.status_code, 200)
        self.assertEqual(summary.data["collected"], {"total": "100.00", "cash": "100.00", "cheque": "0.00"})
        self.assertEqual(summary.data["pending_approval"], {"total": "250.00", "cash": "0.00", "cheque": "250.00"})

        self.auth_as("driver", "drive123")
        mine = self.client.get("/api/v1/wallet/mine/")
        self.assertEqual(mine.data["totals"]["ready_to_send"]["total"], "300.00")
        self.assertEqual(mine.data["totals"]["paid_to_admin"]["total"], "100.00")
        self.assertEqual(len(mine.data["transactions"]), 3)

        cheques = self.client.get("/api/v1/wallet/mine/?method=cheque")
        self.assertEqual(len(cheques.data["transactions"]), 1)

    def test_reject_then_resend_counts_once(self):
        bill_transaction = self.collect("100.00")

        self.auth_as("driver", "drive123")
        self.client.post(f"/api/v1/wallet/{bill_transaction.id}/forward/")

        self.auth_as("admin", "admin123")
        rejected = self.client.post(f"/api/v1/wallet/{bill_transaction.id}/reject/")
        self.assertEqual(rejected.data["status"], TransactionStatus.RECEIVED)

        self.auth_as("driver", "drive123")
        resent = self.client.post(f"/api/v1/wallet/{bill_transaction.id}/forward/")
        self.assertEqual(resent.data["status"], TransactionStatus.PENDING)

        self.auth_as("admin", "admin123")
        self.client.post(f"/api/v1/wallet/{bill_transaction.id}/accept/")
        summary = self.client.get("/api/v1/wallet/summary/")
        self.assertEqual(summary.data["collected"]["total"], "100.00")
        self.assertEqual(summary.data["pending_approval"]["total"], "0.00")

        statuses = sorted(ForwardRequest.objects.values_list("status", flat=True))
        self.assertEqual(statuses, sorted([ForwardStatus.REJECTED, ForwardStatus.ACCEPTED]))

    def test_accept_requires_pending_transaction(self):
        bill_transaction = self.collect("100.00")
        self.auth_as("admin", "admin123")
        response = self.client.post(f"/api/v1/wallet/{bill_transaction.id}/accept/")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_transition")

    def test_forward_twice_is_refused(self):
        bill_transaction = self.collect("100.00")
        self.auth_as("driver", "drive123")
        self.client.post(f"/api/v1/wallet/{bill_transaction.id}/forward/")
        again = self.client.post(f"/api/v1/wallet/{bill_transaction.id}/forward/")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["code"], "invalid_transition")

    def test_only_collector_can_forward(self):
        bill_transaction = self.collect("100.00")
        with self.assertRaises(PermissionDenied):
            services.request_forward(bill_transaction=bill_transaction, actor=self.seller)

        self.auth_as("seller", "sell123")
        response = self.client.post(f"/api/v1/wallet/{bill_transaction.id}/forward/")
        self.assertEqual(response.status_code, 404)

    def test_field_users_cannot_settle(self):
        bill_transaction = self.collect("100.00")
        services.request_forward(bill_transaction=bill_transaction, actor=self.driver)
        self.auth_as("driver", "drive123")
        response = self.client.post(f"/api/v1/wallet/{bill_transaction.id}/accept/")
        self.assertEqual(response.status_code, 403)

    def test_forward_request_queue_defaults_to_pending(self):
        first = self.collect("100.00")
        second = self.collect("40.00")
        services.request_forward(bill_transaction=first, actor=self.driver)
        services.request_forward(bill_transaction=second, actor=self.driver)
        services.admin_accept(bill_transaction=second, actor=self.admin)

        self.auth_as("admin", "admin123")
        pending = self.client.get("/api/v1/forward-requests/")
        self.assertEqual(pending.data["count"], 1)
        self.assertEqual(pending.data["results"][0]["amount"], "100.00")
        everything = self.client.get("/api/v1/forward-requests/?status=all")
        self.assertEqual(everything.data["count"], 2)
