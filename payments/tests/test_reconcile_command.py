from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from orders.models import Order
from payments.models import Payment

from .helpers import PESAPAL_SETTINGS, REQUEST, FakePesapal, status_response


@override_settings(**PESAPAL_SETTINGS)
class ReconcileCommandTests(TestCase):
    def _payment(self, reference, order=None, **kwargs):
        return Payment.objects.create(
            reference=reference, order=order, email="a@example.com", phone="0700000000",
            first_name="A", last_name="B", amount=Decimal("10.00"), description="x", **kwargs,
        )

    def _age(self, payment, minutes=30):
        Payment.objects.filter(pk=payment.pk).update(updated_at=timezone.now() - timedelta(minutes=minutes))

    def _run(self, gateway):
        out = StringIO()
        with patch(REQUEST, side_effect=gateway):
            call_command("reconcile_pesapal_payments", sleep=0, stdout=out)
        return out.getvalue()

    def test_stale_payment_is_reconciled(self):
        order = Order.objects.create(total=Decimal("10.00"))
        payment = self._payment(str(order.pk), order=order, tracking_id="T1")
        self._age(payment)

        out = self._run(FakePesapal(status=status_response("COMPLETED", reference=payment.reference)))

        self.assertIn("Checked 1, updated 1 payments.", out)
        payment.refresh_from_db()
        self.assertEqual(payment.payment_status, Payment.PaymentStatus.SUCCESS)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAID_PENDING_FULFILLMENT)

    def test_completed_payment_settles_unpaid_order_without_gateway(self):
        order = Order.objects.create(total=Decimal("10.00"))
        self._payment(
            "R-SETTLE", order=order, tracking_id="T9",
            status=Payment.Status.COMPLETED, payment_status=Payment.PaymentStatus.SUCCESS,
        )
        gateway = FakePesapal()

        out = self._run(gateway)

        self.assertIn(f"Settled order {order.pk}", out)
        self.assertEqual(gateway.calls, [])
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAID_PENDING_FULFILLMENT)

    def test_recent_and_closed_payments_are_skipped(self):
        self._payment("R-RECENT", tracking_id="T2")
        failed = self._payment("R-FAILED", status=Payment.Status.FAILED, payment_status=Payment.PaymentStatus.FAILED)
        self._age(failed)
        gateway = FakePesapal()

        out = self._run(gateway)

        self.assertIn("No open payments to reconcile.", out)
        self.assertEqual(gateway.calls, [])

    def test_orphan_completion_is_reported(self):
        payment = self._payment("DB-1718000000000", tracking_id="T3")
        self._age(payment)

        out = self._run(FakePesapal(status=status_response("COMPLETED", reference=payment.reference)))

        self.assertIn("completed but has no order", out)
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.COMPLETED)

    def test_orphan_completed_by_callback_is_reported(self):
        payment = self._payment("DB-1718000000001", tracking_id="T4")
        with patch(REQUEST, side_effect=FakePesapal(status=status_response("COMPLETED", reference=payment.reference))):
            resp = self.client.get(reverse("payments:callback"), {
                "OrderTrackingId": "T4", "OrderMerchantReference": payment.reference,
            })
        self.assertEqual(resp.status_code, 404)
        self._age(payment, minutes=60)
        gateway = FakePesapal()

        out = self._run(gateway)

        self.assertIn("DB-1718000000001: payment completed (tracking T4) but has no order to settle", out)
        self.assertEqual(gateway.calls, [])
