import uuid

from django.db import models
from django.utils import timezone


class Order(models.Model):
    """Storefront order. The payment core only ever moves it from awaiting payment to paid."""

    class Status(models.IntegerChoices):
        AWAITING_PAYMENT = 1, "Awaiting payment"
        PAID_PENDING_FULFILLMENT = 2, "Paid, pending fulfillment"
        FULFILLED = 3, "Fulfilled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=128, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    products = models.JSONField(default=list, blank=True)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.PositiveSmallIntegerField(choices=Status.choices, default=Status.AWAITING_PAYMENT, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"Order {self.id} ({self.get_status_display()})"

    @property
    def is_paid(self) -> bool:
        return self.status >= self.Status.PAID_PENDING_FULFILLMENT

    def mark_paid(self) -> bool:
        """Advance AWAITING_PAYMENT -> PAID_PENDING_FULFILLMENT.

        Runs as a single conditional UPDATE, so a repeated call (duplicate
        webhook) or a call on an already fulfilled order changes nothing.
        Returns True only for the call that performed the transition.
        """
        updated = Order.objects.filter(pk=self.pk, status=self.Status.AWAITING_PAYMENT).update(
            status=self.Status.PAID_PENDING_FULFILLMENT, updated_at=timezone.now()
        )
        self.refresh_from_db(fields=["status", "updated_at"])
        return bool(updated)
