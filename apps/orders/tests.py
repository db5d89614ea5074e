import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.billing import services as billing_services
from apps.billing.models import Bill
from apps.catalog.models import Product, Unit
from apps.common.exceptions import QuantityExceeded, ValidationError
from apps.customers.models import BillingType, Customer
from apps.inventory.models import InventoryMovement, MovementType
from apps.orders import services
from apps.orders.models import AssignmentStatus, Order, OrderRequest, OrderStatus, RequestStatus
from apps.wallet.models import BillTransaction, TransactionStatus

User = get_user_model()


class OrderFixtureMixin:
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="admin123", role="ADMIN")
        self.seller = User.objects.create_user(username="seller", password="sell123", role="SALESMAN")
        self.driver = User.objects.create_user(username="driver", password="drive123", role="DELIVERY")
        self.other_driver = User.objects.create_user(username="driver2", password="drive123", role="DELIVERY")
        self.shopper = User.objects.create_user(username="shopper", password="shop123", role="CUSTOMER")
        self.customer = Customer.objects.create(
            user=self.shopper,
            name="Sharma Stores",
            email="sharma@example.com",
            credit_limit=Decimal("5000.00"),
            balance_credit_limit=Decimal("5000.00"),
        )
        self.rice = Product.objects.create(name="Basmati Rice", price=Decimal("100.00"), unit=Unit.KG)
        self.soap = Product.objects.create(name="Soap Bar", price=Decimal("20.00"), unit=Unit.PIECE)
        self.stock(self.rice, "50.00")
        self.stock(self.soap, "3.00")

    def stock(self, product, quantity):
        InventoryMovement.objects.create(
            product=product,
            movement_type=MovementType.INBOUND,
            quantity_delta=Decimal(quantity),
            reference_type="receipt",
            reference_id=f"seed-{product.id}",
            created_by=self.admin,
        )

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def accepted_order(self, quantity="10", payment="credit"):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity=quantity, payment=payment
        )
        services.assign(order=order, actor=self.admin, delivery_actor=self.driver)
        return services.accept(order=order, actor=self.driver)

    def balance(self):
        return Customer.objects.get(pk=self.customer.pk).balance_credit_limit


class OrderLifecycleTests(OrderFixtureMixin, APITestCase):
    def test_partial_then_full_delivery(self):
        self.auth_as("seller", "sell123")
        created = self.client.post(
            "/api/v1/orders/",
            {"customer": str(self.customer.id), "product": str(self.rice.id), "quantity": "10", "payment": "credit"},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        order_id = created.data["id"]
        self.assertEqual(created.data["assignment_status"], AssignmentStatus.PENDING_ASSIGNMENT)
        self.assertEqual(created.data["total_amount"], "1000.00")
        self.assertEqual(self.balance(), Decimal("4000.00"))
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("40.00"))

        self.auth_as("admin", "admin123")
        assigned = self.client.post(
            f"/api/v1/orders/{order_id}/assign/", {"assigned_to": self.driver.id}, format="json"
        )
        self.assertEqual(assigned.status_code, 200)
        self.assertEqual(assigned.data["assignment_status"], AssignmentStatus.ASSIGNED)

        self.auth_as("driver", "drive123")
        accepted = self.client.post(f"/api/v1/orders/{order_id}/accept/")
        self.assertEqual(accepted.data["assignment_status"], AssignmentStatus.ACCEPTED)

        first = self.client.post(
            f"/api/v1/orders/{order_id}/deliver/", {"quantity": "4", "payment_method": "credit"}, format="json"
        )
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.data["delivered_quantity"], "4.00")
        self.assertEqual(first.data["status"], OrderStatus.PENDING)
        self.assertEqual(first.data["delivery_state"], "partially_delivered")
        self.assertEqual(first.data["assignment_status"], AssignmentStatus.ACCEPTED)
        self.assertIsNone(first.data["bill_transaction"])

        second = self.client.post(
            f"/api/v1/orders/{order_id}/deliver/", {"quantity": "6", "payment_method": "credit"}, format="json"
        )
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.data["delivered_quantity"], "10.00")
        self.assertEqual(second.data["status"], OrderStatus.DELIVERED)
        self.assertEqual(second.data["delivery_state"], "fully_delivered")

        zero = self.client.post(
            f"/api/v1/orders/{order_id}/deliver/", {"quantity": "0", "payment_method": "credit"}, format="json"
        )
        self.assertEqual(zero.status_code, 400)
        self.assertEqual(zero.data["code"], "invalid")

        extra = self.client.post(
            f"/api/v1/orders/{order_id}/deliver/", {"quantity": "1", "payment_method": "credit"}, format="json"
        )
        self.assertEqual(extra.status_code, 400)
        self.assertEqual(extra.data["code"], "quantity_exceeded")
        self.assertEqual(Order.objects.get(pk=order_id).delivered_quantity, Decimal("10.00"))

    def test_over_quantity_delivery_leaves_order_unchanged(self):
        order = self.accepted_order()
        services.deliver(order=order, actor=self.driver, quantity="6", payment_method="credit")

        self.auth_as("driver", "drive123")
        response = self.client.post(
            f"/api/v1/orders/{order.id}/deliver/", {"quantity": "6", "payment_method": "credit"}, format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "quantity_exceeded")
        order.refresh_from_db()
        self.assertEqual(order.delivered_quantity, Decimal("6.00"))
        self.assertEqual(order.deliveries.count(), 1)

    def test_stale_order_instance_cannot_over_deliver(self):
        order = self.accepted_order()
        self.assertEqual(order.delivered_quantity, Decimal("0"))
        services.deliver(order=order, actor=self.driver, quantity="6", payment_method="credit")

        with self.assertRaises(QuantityExceeded):
            services.deliver(order=order, actor=self.driver, quantity="6", payment_method="credit")
        self.assertEqual(Order.objects.get(pk=order.pk).delivered_quantity, Decimal("6.00"))
        self.assertEqual(order.deliveries.count(), 1)

    def test_credit_order_is_not_collected_on_delivery(self):
        order = self.accepted_order()
        self.assertEqual(self.balance(), Decimal("4000.00"))

        self.auth_as("driver", "drive123")
        cash = self.client.post(
            f"/api/v1/orders/{order.id}/deliver/", {"quantity": "10", "payment_method": "cash"}, format="json"
        )
        self.assertEqual(cash.status_code, 400)
        self.assertIn("payment_method", cash.data["fields"])
        self.assertFalse(BillTransaction.objects.exists())
        self.assertEqual(Order.objects.get(pk=order.pk).delivered_quantity, Decimal("0.00"))

        services.deliver(order=order, actor=self.driver, quantity="10", payment_method="credit")
        today = timezone.localdate()
        bill = billing_services.generate_bill(
            customer=self.customer, cycle_start=today, cycle_end=today, actor=self.admin
        )
        self.assertEqual(bill.total_used, Decimal("1000.00"))
        self.assertEqual(self.balance(), Decimal("4000.00"))

    def test_cash_order_cannot_be_delivered_on_credit(self):
        order = self.accepted_order(payment="cash")
        with self.assertRaises(ValidationError):
            services.deliver(order=order, actor=self.driver, quantity="2", payment_method="credit")
        self.assertEqual(Order.objects.get(pk=order.pk).delivered_quantity, Decimal("0.00"))

    def test_deliver_requires_accepted_assignment(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="cash"
        )
        services.assign(order=order, actor=self.admin, delivery_actor=self.driver)

        self.auth_as("driver", "drive123")
        response = self.client.post(
            f"/api/v1/orders/{order.id}/deliver/", {"quantity": "1", "payment_method": "cash"}, format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_transition")

    def test_only_assigned_driver_can_accept(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="cash"
        )
        services.assign(order=order, actor=self.admin, delivery_actor=self.driver)

        self.auth_as("driver2", "drive123")
        response = self.client.post(f"/api/v1/orders/{order.id}/accept/")
        self.assertEqual(response.status_code, 404)

        self.auth_as("admin", "admin123")
        response = self.client.post(f"/api/v1/orders/{order.id}/accept/")
        self.assertEqual(response.status_code, 403)

    def test_assign_only_from_pending_assignment_and_to_delivery_users(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="cash"
        )
        self.auth_as("admin", "admin123")
        wrong_role = self.client.post(f"/api/v1/orders/{order.id}/assign/", {"assigned_to": self.seller.id}, format="json")
        self.assertEqual(wrong_role.status_code, 400)
        self.assertIn("assigned_to", wrong_role.data["fields"])

        self.client.post(f"/api/v1/orders/{order.id}/assign/", {"assigned_to": self.driver.id}, format="json")
        again = self.client.post(f"/api/v1/orders/{order.id}/assign/", {"assigned_to": self.other_driver.id}, format="json")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["code"], "invalid_transition")

    def test_salesman_cannot_assign(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="cash"
        )
        self.auth_as("seller", "sell123")
        response = self.client.post(f"/api/v1/orders/{order.id}/assign/", {"assigned_to": self.driver.id}, format="json")
        self.assertEqual(response.status_code, 403)

    def test_reject_records_reason(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="cash"
        )
        services.assign(order=order, actor=self.admin, delivery_actor=self.driver)

        self.auth_as("driver", "drive123")
        response = self.client.post(f"/api/v1/orders/{order.id}/reject/", {"reason": "Vehicle breakdown"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["assignment_status"], AssignmentStatus.REJECTED)
        self.assertEqual(response.data["rejection_reason"], "Vehicle breakdown")

    def test_cash_delivery_records_wallet_collection(self):
        order = self.accepted_order(payment="cash")
        self.auth_as("driver", "drive123")
        response = self.client.post(
            f"/api/v1/orders/{order.id}/deliver/", {"quantity": "4", "payment_method": "cash"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        bill_transaction = BillTransaction.objects.get(pk=response.data["bill_transaction"])
        self.assertEqual(bill_transaction.amount, Decimal("400.00"))
        self.assertEqual(bill_transaction.status, TransactionStatus.RECEIVED)
        self.assertEqual(bill_transaction.recipient, self.driver)
        self.assertEqual(bill_transaction.order_id, order.id)

    def test_cheque_delivery_without_bank_rolls_back(self):
        order = self.accepted_order(payment="cash")
        self.auth_as("driver", "drive123")
        response = self.client.post(
            f"/api/v1/orders/{order.id}/deliver/",
            {"quantity": "4", "payment_method": "cheque", "cheque": {"number": "000123", "date": "2026-10-01"}},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("cheque", response.data["fields"])
        order.refresh_from_db()
        self.assertEqual(order.delivered_quantity, Decimal("0.00"))
        self.assertFalse(BillTransaction.objects.exists())

    def test_whole_units_reject_fractions(self):
        self.auth_as("seller", "sell123")
        response = self.client.post(
            "/api/v1/orders/",
            {"customer": str(self.customer.id), "product": str(self.soap.id), "quantity": "1.5", "payment": "cash"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("quantity", response.data["fields"])

        below_one = self.client.post(
            "/api/v1/orders/",
            {"customer": str(self.customer.id), "product": str(self.rice.id), "quantity": "0.5", "payment": "cash"},
            format="json",
        )
        self.assertEqual(below_one.status_code, 400)

        fractional = self.client.post(
            "/api/v1/orders/",
            {"customer": str(self.customer.id), "product": str(self.rice.id), "quantity": "2.5", "payment": "cash"},
            format="json",
        )
        self.assertEqual(fractional.status_code, 201)

    def test_insufficient_credit_creates_nothing(self):
        Customer.objects.filter(pk=self.customer.pk).update(balance_credit_limit=Decimal("500.00"))
        self.auth_as("seller", "sell123")
        response = self.client.post(
            "/api/v1/orders/",
            {"customer": str(self.customer.id), "product": str(self.rice.id), "quantity": "10", "payment": "credit"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "insufficient_credit")
        self.assertFalse(Order.objects.exists())
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("50.00"))
        self.assertEqual(self.balance(), Decimal("500.00"))

    def test_insufficient_stock(self):
        self.auth_as("seller", "sell123")
        response = self.client.post(
            "/api/v1/orders/",
            {"customer": str(self.customer.id), "product": str(self.soap.id), "quantity": "4", "payment": "credit"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(self.balance(), Decimal("5000.00"))

    def test_customer_orders_for_own_profile_only(self):
        other = Customer.objects.create(name="Other", email="other@example.com")
        self.auth_as("shopper", "shop123")
        own = self.client.post(
            "/api/v1/orders/", {"product": str(self.rice.id), "quantity": "1", "payment": "cash"}, format="json"
        )
        self.assertEqual(own.status_code, 201)
        self.assertEqual(str(own.data["customer"]), str(self.customer.id))

        foreign = self.client.post(
            "/api/v1/orders/",
            {"customer": str(other.id), "product": str(self.rice.id), "quantity": "1", "payment": "cash"},
            format="json",
        )
        self.assertEqual(foreign.status_code, 403)

    def test_order_visibility_by_role(self):
        other = Customer.objects.create(name="Other", email="other@example.com")
        services.create_order(actor=self.admin, customer=other, product=self.rice, quantity="1", payment="cash")
        mine = self.accepted_order(quantity="2", payment="cash")

        self.auth_as("shopper", "shop123")
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["id"], str(mine.id))

        self.auth_as("driver2", "drive123")
        self.assertEqual(self.client.get("/api/v1/orders/").data["count"], 0)

        self.auth_as("admin", "admin123")
        self.assertEqual(self.client.get("/api/v1/orders/").data["count"], 2)
        filtered = self.client.get("/api/v1/orders/?assignment_status=accepted")
        self.assertEqual(filtered.data["count"], 1)


class OrderUpdateTests(OrderFixtureMixin, APITestCase):
    def pending_order(self, quantity="10", payment="credit"):
        return services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity=quantity, payment=payment
        )

    def test_quantity_change_moves_stock_and_credit(self):
        order = self.pending_order()
        self.assertEqual(self.balance(), Decimal("4000.00"))

        self.auth_as("seller", "sell123")
        response = self.client.patch(f"/api/v1/orders/{order.id}/", {"quantity": "15"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["quantity"], "15.00")
        self.assertEqual(response.data["total_amount"], "1500.00")
        self.assertEqual(self.balance(), Decimal("3500.00"))
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("35.00"))
        self.assertTrue(AuditLog.objects.filter(action="orders.order.update", entity_id=str(order.id)).exists())

        smaller = self.client.patch(f"/api/v1/orders/{order.id}/", {"quantity": "4"}, format="json")
        self.assertEqual(smaller.status_code, 200)
        self.assertEqual(self.balance(), Decimal("4600.00"))
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("46.00"))

    def test_switching_to_cash_hands_back_credit(self):
        order = self.pending_order()
        self.auth_as("seller", "sell123")
        response = self.client.patch(f"/api/v1/orders/{order.id}/", {"payment": "cash"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["payment"], "cash")
        self.assertEqual(self.balance(), Decimal("5000.00"))
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("40.00"))

        back = self.client.patch(f"/api/v1/orders/{order.id}/", {"payment": "credit"}, format="json")
        self.assertEqual(back.status_code, 200)
        self.assertEqual(self.balance(), Decimal("4000.00"))

    def test_failed_update_leaves_order_untouched(self):
        order = self.pending_order()
        self.auth_as("seller", "sell123")
        response = self.client.patch(f"/api/v1/orders/{order.id}/", {"quantity": "60"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "insufficient_stock")

        order.refresh_from_db()
        self.assertEqual(order.quantity, Decimal("10.00"))
        self.assertEqual(order.total_amount, Decimal("1000.00"))
        self.assertEqual(self.balance(), Decimal("4000.00"))
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("40.00"))

    def test_update_refused_once_assigned(self):
        order = self.pending_order()
        services.assign(order=order, actor=self.admin, delivery_actor=self.driver)

        self.auth_as("seller", "sell123")
        response = self.client.patch(f"/api/v1/orders/{order.id}/", {"quantity": "5"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_transition")
        self.assertEqual(Order.objects.get(pk=order.pk).quantity, Decimal("10.00"))

    def test_delivery_user_cannot_update(self):
        order = self.pending_order()
        self.auth_as("driver", "drive123")
        response = self.client.patch(f"/api/v1/orders/{order.id}/", {"quantity": "5"}, format="json")
        self.assertEqual(response.status_code, 403)


class ImmediateBillingTests(OrderFixtureMixin, APITestCase):
    def bill_immediately(self):
        Customer.objects.filter(pk=self.customer.pk).update(billing_type=BillingType.IMMEDIATE)
        self.customer.refresh_from_db()

    def test_full_delivery_bills_the_order(self):
        self.bill_immediately()
        order = self.accepted_order()
        services.deliver(order=order, actor=self.driver, quantity="4", payment_method="credit")
        self.assertFalse(Bill.objects.exists())

        self.auth_as("driver", "drive123")
        response = self.client.post(
            f"/api/v1/orders/{order.id}/deliver/", {"quantity": "6", "payment_method": "credit"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        bill = Bill.objects.get()
        self.assertEqual(str(response.data["bill"]), str(bill.id))
        self.assertEqual(bill.total_used, Decimal("1000.00"))
        self.assertEqual(bill.amount_due, Decimal("1000.00"))
        self.assertEqual(bill.due_date, timezone.localdate() + datetime.timedelta(days=1))
        self.assertTrue(AuditLog.objects.filter(action="billing.bill.invoice", entity_id=str(bill.id)).exists())

        order.refresh_from_db()
        self.assertEqual(billing_services.generate_invoice_bill(order=order, actor=self.driver), bill)
        self.assertEqual(Bill.objects.count(), 1)

        today = timezone.localdate()
        with self.assertRaises(ValidationError):
            billing_services.generate_bill(customer=self.customer, cycle_start=today, cycle_end=today, actor=self.admin)

    def test_cash_orders_are_not_billed(self):
        self.bill_immediately()
        order = self.accepted_order(payment="cash")
        services.deliver(order=order, actor=self.driver, quantity="10", payment_method="cash")
        self.assertFalse(Bill.objects.exists())

    def test_credit_cycle_customers_wait_for_the_cycle(self):
        order = self.accepted_order()
        services.deliver(order=order, actor=self.driver, quantity="10", payment_method="credit")
        self.assertFalse(Bill.objects.exists())
        self.assertIsNone(Order.objects.get(pk=order.pk).bill_id)


class OrderCancelTests(OrderFixtureMixin, APITestCase):
    def test_cancel_accepted_undelivered_restores_stock_and_credit(self):
        order = self.accepted_order()
        self.assertEqual(self.balance(), Decimal("4000.00"))

        self.auth_as("driver", "drive123")
        response = self.client.post(f"/api/v1/orders/{order.id}/cancel/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], OrderStatus.CANCELLED)
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("50.00"))
        self.assertEqual(self.balance(), Decimal("5000.00"))

        again = self.client.post(f"/api/v1/orders/{order.id}/cancel/")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["code"], "invalid_transition")

    def test_cancel_refused_before_acceptance(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="credit"
        )
        services.assign(order=order, actor=self.admin, delivery_actor=self.driver)

        self.auth_as("admin", "admin123")
        response = self.client.post(f"/api/v1/orders/{order.id}/cancel/")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_transition")

    def test_cancel_refused_after_partial_delivery(self):
        order = self.accepted_order()
        services.deliver(order=order, actor=self.driver, quantity="1", payment_method="credit")

        self.auth_as("driver", "drive123")
        response = self.client.post(f"/api/v1/orders/{order.id}/cancel/")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_transition")
        self.assertEqual(Order.objects.get(pk=order.pk).status, OrderStatus.PENDING)

    def test_admin_delete_restores_reservation(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="credit"
        )
        self.auth_as("admin", "admin123")
        response = self.client.delete(f"/api/v1/orders/{order.id}/")
        self.assertEqual(response.status_code, 204)
        self.assertFalse(Order.objects.filter(pk=order.pk).exists())
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("50.00"))
        self.assertEqual(self.balance(), Decimal("5000.00"))
        self.assertTrue(AuditLog.objects.filter(action="orders.order.delete", entity_id=str(order.id)).exists())

    def test_delete_refused_once_delivered(self):
        order = self.accepted_order()
        services.deliver(order=order, actor=self.driver, quantity="2", payment_method="credit")
        self.auth_as("admin", "admin123")
        response = self.client.delete(f"/api/v1/orders/{order.id}/")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_transition")


class OrderInvoiceTests(OrderFixtureMixin, APITestCase):
    def test_delivered_and_pending_invoices(self):
        order = self.accepted_order()
        services.deliver(order=order, actor=self.driver, quantity="4", payment_method="credit")

        self.auth_as("admin", "admin123")
        delivered = self.client.get(f"/api/v1/orders/{order.id}/invoice/?kind=delivered")
        self.assertEqual(delivered.status_code, 200)
        self.assertEqual(delivered.data["quantity"], "4.00")
        self.assertEqual(delivered.data["amount"], "400.00")
        self.assertEqual(len(delivered.data["deliveries"]), 1)

        pending = self.client.get(f"/api/v1/orders/{order.id}/invoice/?kind=pending")
        self.assertEqual(pending.data["quantity"], "6.00")
        self.assertEqual(pending.data["customer"]["name"], "Sharma Stores")

    def test_empty_invoice_is_rejected(self):
        order = services.create_order(
            actor=self.seller, customer=self.customer, product=self.rice, quantity="5", payment="cash"
        )
        self.auth_as("admin", "admin123")
        response = self.client.get(f"/api/v1/orders/{order.id}/invoice/?kind=delivered")
        self.assertEqual(response.status_code, 400)
        self.assertIn("kind", response.data["fields"])

    def test_history_lists_audited_transitions(self):
        order = self.accepted_order()
        self.auth_as("admin", "admin123")
        response = self.client.get(f"/api/v1/orders/{order.id}/history/")
        self.assertEqual(
            [entry["action"] for entry in response.data],
            ["orders.order.create", "orders.order.assign", "orders.order.accept"],
        )
        self.assertEqual(response.data[2]["actor_role"], "DELIVERY")


class OrderRequestTests(OrderFixtureMixin, APITestCase):
    def submit(self, lines, payment="credit"):
        self.auth_as("shopper", "shop123")
        return self.client.post(
            "/api/v1/order-requests/",
            {"payment": payment, "remarks": "Weekly restock", "lines": lines},
            format="json",
        )

    def test_submit_computes_grand_total(self):
        response = self.submit(
            [
                {"product": str(self.rice.id), "quantity": "2.5"},
                {"product": str(self.soap.id), "quantity": "2"},
            ]
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], RequestStatus.PENDING)
        self.assertEqual(response.data["grand_total"], "290.00")
        self.assertEqual(len(response.data["lines"]), 2)
        self.assertFalse(Order.objects.exists())

    def test_submit_requires_lines(self):
        response = self.submit([])
        self.assertEqual(response.status_code, 400)
        self.assertIn("lines", response.data["fields"])

    def test_approve_creates_one_order_per_line(self):
        request_id = self.submit(
            [
                {"product": str(self.rice.id), "quantity": "5"},
                {"product": str(self.soap.id), "quantity": "2"},
            ]
        ).data["id"]

        self.auth_as("admin", "admin123")
        response = self.client.post(f"/api/v1/order-requests/{request_id}/approve/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], RequestStatus.APPROVED)
        self.assertEqual(len(response.data["order_ids"]), 2)
        self.assertEqual(Order.objects.filter(request_id=request_id).count(), 2)
        self.assertEqual(self.balance(), Decimal("4460.00"))

        again = self.client.post(f"/api/v1/order-requests/{request_id}/approve/")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["code"], "invalid_transition")

    def test_approve_with_insufficient_stock_commits_nothing(self):
        request_id = self.submit(
            [
                {"product": str(self.rice.id), "quantity": "5"},
                {"product": str(self.soap.id), "quantity": "10"},
            ]
        ).data["id"]

        self.auth_as("admin", "admin123")
        response = self.client.post(f"/api/v1/order-requests/{request_id}/approve/")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(OrderRequest.objects.get(pk=request_id).status, RequestStatus.PENDING)
        self.assertFalse(Order.objects.exists())
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("50.00"))
        self.assertEqual(self.balance(), Decimal("5000.00"))

    def test_reject_stores_default_reason(self):
        request_id = self.submit([{"product": str(self.rice.id), "quantity": "5"}]).data["id"]

        self.auth_as("admin", "admin123")
        response = self.client.post(f"/api/v1/order-requests/{request_id}/reject/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], RequestStatus.REJECTED)
        self.assertEqual(response.data["rejection_reason"], "No reason provided")
        self.assertEqual(InventoryMovement.current_stock(self.rice.id), Decimal("50.00"))

        approve = self.client.post(f"/api/v1/order-requests/{request_id}/approve/")
        self.assertEqual(approve.data["code"], "invalid_transition")

    def test_customer_cannot_approve(self):
        request_id = self.submit([{"product": str(self.rice.id), "quantity": "5"}]).data["id"]
        response = self.client.post(f"/api/v1/order-requests/{request_id}/approve/")
        self.assertEqual(response.status_code, 403)
