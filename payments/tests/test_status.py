from decimal import Decimal
from unittest.mock import patch

import requests
from django.test import TestCase, override_settings
from django.urls import reverse

from payments.models import Payment

from .helpers import PESAPAL_SETTINGS, REQUEST, FakePesapal, FakeResponse, status_response


@override_settings(**PESAPAL_SETTINGS)
class StatusPollTests(TestCase):
    def setUp(self):
        self.payment = Payment.objects.create(
            reference="DB-1718000000000", tracking_id="T1", email="a@example.com", phone="0700000000",
            first_name="A", last_name="B", amount=Decimal("10.00"), description="x",
        )

    def _poll(self, **params):
        params.setdefault("trackingId", "T1")
        params.setdefault("reference", self.payment.reference)
        return self.client.get(reverse("payments:status"), params)

    def test_returns_live_status_without_writing(self):
        with patch(REQUEST, side_effect=FakePesapal(status=status_response("COMPLETED"))):
            resp = self._poll()

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "COMPLETED", "payment_status": "success", "reference": self.payment.reference})
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.INITIATED)
        self.assertEqual(self.payment.payment_status, Payment.PaymentStatus.PENDING)
        self.assertIsNone(self.payment.status_details)

    def test_unpaid_order_reports_pending(self):
        with patch(REQUEST, side_effect=FakePesapal(status=status_response("INVALID"))):
            resp = self._poll()
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "INVALID")
        self.assertEqual(resp.json()["payment_status"], "pending")

    def test_timeout_is_reported_as_504(self):
        with patch(REQUEST, side_effect=FakePesapal(status=requests.Timeout("read timed out"))):
            resp = self._poll()
        self.assertEqual(resp.status_code, 504)
        self.assertEqual(resp.json()["status"], "TIMEOUT")

    def test_unreachable_gateway_is_reported_as_502(self):
        with patch(REQUEST, side_effect=FakePesapal(status=requests.ConnectionError("no route to host"))):
            resp = self._poll()
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["status"], "UNAVAILABLE")

    def test_repeated_unauthorised_is_reported_as_502(self):
        gateway = FakePesapal(status=FakeResponse(401, {"error": {"code": "unauthorized", "message": "Token expired"}}))
        with patch(REQUEST, side_effect=gateway):
            resp = self._poll()
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(gateway.count("GetTransactionStatus"), 2)
        self.assertEqual(gateway.count("RequestToken"), 2)

    def test_tracking_id_required(self):
        gateway = FakePesapal()
        with patch(REQUEST, side_effect=gateway):
            resp = self.client.get(reverse("payments:status"))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(gateway.calls, [])

    def test_reference_is_optional(self):
        with patch(REQUEST, side_effect=FakePesapal()):
            resp = self.client.get(reverse("payments:status"), {"trackingId": "T1"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["reference"], "")
