from decimal import Decimal

from django.test import TestCase

from .models import Order


class OrderTransitionTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(total=Decimal("2500.00"), products=[{"sku": "SERUM-01", "qty": 2}])

    def test_mark_paid_only_once(self):
        self.assertTrue(self.order.mark_paid())
        self.assertEqual(self.order.status, Order.Status.PAID_PENDING_FULFILLMENT)
        self.assertTrue(self.order.is_paid)

        self.assertFalse(self.order.mark_paid())
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PAID_PENDING_FULFILLMENT)

    def test_stale_instance_cannot_double_advance(self):
        other = Order.objects.get(pk=self.order.pk)
        self.assertTrue(self.order.mark_paid())
        self.assertFalse(other.mark_paid())
        self.assertEqual(other.status, Order.Status.PAID_PENDING_FULFILLMENT)

    def test_fulfilled_order_is_unchanged(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.FULFILLED)
        self.assertFalse(self.order.mark_paid())
        self.assertEqual(self.order.status, Order.Status.FULFILLED)
