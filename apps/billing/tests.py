import datetime
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.utils import timezone
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.billing import services
from apps.billing.models import Bill, BillStatus, PaymentRequestStatus
from apps.catalog.models import Product, Unit
from apps.customers.models import BillingType, Customer
from apps.inventory.models import InventoryMovement, MovementType
from apps.orders import services as order_services
from apps.orders.models import Order
from apps.wallet.models import BillTransaction, RecipientType, TransactionStatus

User = get_user_model()


class BillingFixtureMixin:
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.driver = User.objects.create_user(username="driver", password="drive123", role="DELIVERY")
        self.seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        self.shopper = User.objects.create_user(username="shopper", password="shop123", role="CUSTOMER")
        self.customer = Customer.objects.create(
            user=self.shopper,
            name="Sharma Stores",
            email="sharma@example.com",
            credit_limit=Decimal("5000.00"),
            balance_credit_limit=Decimal("5000.00"),
        )
        self.rice = Product.objects.create(name="Basmati Rice", price=Decimal("100.00"), unit=Unit.KG)
        InventoryMovement.objects.create(
            product=self.rice,
            movement_type=MovementType.INBOUND,
            quantity_delta=Decimal("100.00"),
            reference_type="receipt",
            reference_id="seed-rice",
            created_by=self.admin,
        )
        self.today = timezone.localdate()

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def order(self, quantity, payment="credit", days_ago=0):
        order = order_services.create_order(
            actor=self.admin, customer=self.customer, product=self.rice, quantity=quantity, payment=payment
        )
        if days_ago:
            Order.objects.filter(pk=order.pk).update(order_date=self.today - datetime.timedelta(days=days_ago))
        return order

    def bill(self, amount="1000.00", due_in_days=30):
        return Bill.objects.create(
            customer=self.customer,
            cycle_start=self.today - datetime.timedelta(days=30),
            cycle_end=self.today,
            total_used=Decimal(amount),
            amount_due=Decimal(amount),
            due_date=self.today + datetime.timedelta(days=due_in_days),
            generated_by=self.admin,
        )

    def balance(self):
        return Customer.objects.get(pk=self.customer.pk).balance_credit_limit


class BillGenerationTests(BillingFixtureMixin, APITestCase):
    def test_generate_bills_unbilled_credit_orders_in_cycle(self):
        first = self.order("10", days_ago=3)
        second = self.order("3", days_ago=1)
        self.order("2", payment="cash", days_ago=1)
        self.order("1", days_ago=20)

        self.auth_as("admin", "admin123")
        response = self.client.post(
            "/api/v1/bills/generate/",
            {
                "customer": str(self.customer.id),
                "cycle_start": (self.today - datetime.timedelta(days=7)).isoformat(),
                "cycle_end": self.today.isoformat(),
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["total_used"], "1300.00")
        self.assertEqual(response.data["amount_due"], "1300.00")
        self.assertEqual(response.data["status"], BillStatus.PENDING)
        self.assertEqual(response.data["due_date"], (self.today + datetime.timedelta(days=30)).isoformat())
        self.assertEqual(
            sorted(str(order_id) for order_id in response.data["order_ids"]), sorted([str(first.id), str(second.id)])
        )
        self.assertTrue(AuditLog.objects.filter(action="billing.bill.generate").exists())

        again = self.client.post(
            "/api/v1/bills/generate/",
            {
                "customer": str(self.customer.id),
                "cycle_start": (self.today - datetime.timedelta(days=7)).isoformat(),
                "cycle_end": self.today.isoformat(),
            },
            format="json",
        )
        self.assertEqual(again.status_code, 400)

    def test_immediate_billing_uses_short_grace(self):
        Customer.objects.filter(pk=self.customer.pk).update(billing_type=BillingType.IMMEDIATE)
        self.customer.refresh_from_db()
        self.order("2")
        bill = services.generate_bill(
            customer=self.customer, cycle_start=self.today, cycle_end=self.today, actor=self.admin
        )
        self.assertEqual(bill.due_date, self.today + datetime.timedelta(days=1))

    def test_only_admin_generates(self):
        self.auth_as("seller", "sell123")
        response = self.client.post(
            "/api/v1/bills/generate/",
            {"customer": str(self.customer.id), "cycle_start": self.today.isoformat(), "cycle_end": self.today.isoformat()},
            format="json",
        )
        self.assertEqual(response.status_code, 403)

    def test_billed_order_cannot_be_deleted(self):
        order = self.order("2")
        services.generate_bill(customer=self.customer, cycle_start=self.today, cycle_end=self.today, actor=self.admin)
        self.auth_as("admin", "admin123")
        response = self.client.delete(f"/api/v1/orders/{order.id}/")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_transition")


class OverdueTests(BillingFixtureMixin, APITestCase):
    def test_listing_marks_past_due_bills_overdue(self):
        late = self.bill(due_in_days=-1)
        current = self.bill(due_in_days=5)

        self.auth_as("shopper", "shop123")
        response = self.client.get("/api/v1/bills/")
        self.assertEqual(response.status_code, 200)
        statuses = {row["id"]: row["status"] for row in response.data["results"]}
        self.assertEqual(statuses[str(late.id)], BillStatus.OVERDUE)
        self.assertEqual(statuses[str(current.id)], BillStatus.PENDING)

    def test_customer_sees_only_own_bills(self):
        self.bill()
        other = Customer.objects.create(name="Other", email="other@example.com")
        Bill.objects.create(
            customer=other,
            cycle_start=self.today,
            cycle_end=self.today,
            total_used=Decimal("10.00"),
            amount_due=Decimal("10.00"),
            due_date=self.today,
            generated_by=self.admin,
        )
        self.auth_as("shopper", "shop123")
        self.assertEqual(self.client.get("/api/v1/bills/").data["count"], 1)

    def test_command_marks_overdue_as_of_date(self):
        bill = self.bill(due_in_days=3)
        out = StringIO()
        call_command("mark_overdue_bills", date=(self.today + datetime.timedelta(days=4)).isoformat(), stdout=out)
        self.assertIn("Overdue bills: 1", out.getvalue())
        bill.refresh_from_db()
        self.assertEqual(bill.status, BillStatus.OVERDUE)
        self.assertTrue(AuditLog.objects.filter(action="billing.bill.overdue", entity_id=str(bill.id)).exists())

    def test_paid_bills_never_go_overdue(self):
        bill = self.bill(due_in_days=-3)
        Bill.objects.filter(pk=bill.pk).update(status=BillStatus.PAID, amount_due=0, paid_amount=Decimal("1000.00"))
        self.assertEqual(services.mark_overdue(), 0)


class PaymentRequestTests(BillingFixtureMixin, APITestCase):
    def request_payment(self, bill, amount, recipient=None, recipient_type=RecipientType.DELIVERY, **extra):
        self.auth_as("shopper", "shop123")
        payload = {
            "bill": str(bill.id),
            "amount": amount,
            "method": "cash",
            "recipient": (recipient or self.driver).id,
            "recipient_type": recipient_type,
        }
        payload.update(extra)
        return self.client.post("/api/v1/payment-requests/", payload, format="json")

    def test_accept_applies_payment_and_records_collection(self):
        self.order("10")
        self.assertEqual(self.balance(), Decimal("4000.00"))
        bill = services.generate_bill(
            customer=self.customer, cycle_start=self.today, cycle_end=self.today, actor=self.admin
        )

        created = self.request_payment(bill, "300.00")
        self.assertEqual(created.status_code, 201)
        bill.refresh_from_db()
        self.assertEqual(bill.status, BillStatus.PENDING_PAYMENT)

        self.auth_as("driver", "drive123")
        accepted = self.client.post(f"/api/v1/payment-requests/{created.data['id']}/accept/")
        self.assertEqual(accepted.status_code, 200)
        self.assertEqual(accepted.data["status"], PaymentRequestStatus.ACCEPTED)

        bill.refresh_from_db()
        self.assertEqual(bill.status, BillStatus.PARTIAL)
        self.assertEqual(bill.paid_amount, Decimal("300.00"))
        self.assertEqual(bill.amount_due, Decimal("700.00"))
        self.assertEqual(self.balance(), Decimal("4300.00"))

        bill_transaction = BillTransaction.objects.get(pk=accepted.data["bill_transaction"])
        self.assertEqual(bill_transaction.recipient, self.driver)
        self.assertEqual(bill_transaction.amount, Decimal("300.00"))
        self.assertEqual(bill_transaction.status, TransactionStatus.RECEIVED)
        self.assertEqual(bill_transaction.bill_id, bill.id)

    def test_second_acceptance_is_capped_at_amount_due(self):
        bill = self.bill("1000.00")
        first = self.request_payment(bill, "600.00").data["id"]
        second = self.request_payment(bill, "600.00").data["id"]

        self.auth_as("driver", "drive123")
        self.client.post(f"/api/v1/payment-requests/{first}/accept/")
        capped = self.client.post(f"/api/v1/payment-requests/{second}/accept/")
        self.assertEqual(capped.data["amount"], "400.00")

        bill.refresh_from_db()
        self.assertEqual(bill.status, BillStatus.PAID)
        self.assertEqual(bill.amount_due, Decimal("0.00"))
        self.assertEqual(bill.paid_amount, Decimal("1000.00"))

        closed = self.request_payment(bill, "10.00")
        self.assertEqual(closed.status_code, 400)
        self.assertEqual(closed.data["code"], "invalid_transition")

    def test_bill_waits_while_another_request_is_pending(self):
        bill = self.bill("1000.00")
        first = self.request_payment(bill, "300.00").data["id"]
        second = self.request_payment(bill, "200.00").data["id"]

        self.auth_as("driver", "drive123")
        self.client.post(f"/api/v1/payment-requests/{first}/accept/")
        bill.refresh_from_db()
        self.assertEqual(bill.status, BillStatus.PENDING_PAYMENT)
        self.assertEqual(bill.paid_amount, Decimal("300.00"))
        self.assertEqual(bill.amount_due, Decimal("700.00"))

        self.client.post(f"/api/v1/payment-requests/{second}/reject/", {"reason": "Wrong amount"}, format="json")
        bill.refresh_from_db()
        self.assertEqual(bill.status, BillStatus.PARTIAL)

    def test_amount_cannot_exceed_due(self):
        bill = self.bill("500.00")
        response = self.request_payment(bill, "500.01")
        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.data["fields"])

    def test_recipient_must_match_type(self):
        bill = self.bill()
        response = self.request_payment(bill, "100.00", recipient=self.seller, recipient_type=RecipientType.DELIVERY)
        self.assertEqual(response.status_code, 400)
        self.assertIn("recipient", response.data["fields"])

        sales = self.request_payment(bill, "100.00", recipient=self.seller, recipient_type=RecipientType.SALES)
        self.assertEqual(sales.status_code, 201)

    def test_cheque_request_needs_details(self):
        bill = self.bill()
        response = self.request_payment(bill, "100.00", method="cheque", cheque_number="000777")
        self.assertEqual(response.status_code, 400)
        self.assertIn("cheque", response.data["fields"])

    def test_reject_restores_bill_status(self):
        bill = self.bill()
        request_id = self.request_payment(bill, "100.00").data["id"]

        self.auth_as("driver", "drive123")
        response = self.client.post(f"/api/v1/payment-requests/{request_id}/reject/", {"reason": "Shop closed"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], PaymentRequestStatus.REJECTED)
        bill.refresh_from_db()
        self.assertEqual(bill.status, BillStatus.PENDING)
        self.assertFalse(BillTransaction.objects.exists())

    def test_only_recipient_decides(self):
        bill = self.bill()
        request_id = self.request_payment(bill, "100.00").data["id"]
        other_driver = User.objects.create_user(username="driver2", password="drive123", role="DELIVERY")
        self.auth_as(other_driver.username, "drive123")
        response = self.client.post(f"/api/v1/payment-requests/{request_id}/accept/")
        self.assertEqual(response.status_code, 404)

    def test_customer_cannot_pay_someone_elses_bill(self):
        other = Customer.objects.create(name="Other", email="other@example.com")
        foreign = Bill.objects.create(
            customer=other,
            cycle_start=self.today,
            cycle_end=self.today,
            total_used=Decimal("10.00"),
            amount_due=Decimal("10.00"),
            due_date=self.today,
            generated_by=self.admin,
        )
        response = self.request_payment(foreign, "5.00")
        self.assertEqual(response.status_code, 403)
