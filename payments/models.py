from django.db import models
from django.db.models import DEFERRED


class Payment(models.Model):
    class Status(models.TextChoices):
        INITIATED = "initiated", "Initiated"
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"

    reference = models.CharField(max_length=50, unique=True)  # Pesapal merchant reference, <=50 chars
    order = models.ForeignKey(
        "orders.Order", on_delete=models.PROTECT, null=True, blank=True, related_name="payments"
    )
    payment_provider = models.CharField(max_length=32, default="pesapal")

    tracking_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    payment_reference = models.CharField(max_length=64, blank=True, default="")
    redirect_url = models.URLField(max_length=500, blank=True, default="")
    ipn_id = models.CharField(max_length=64, blank=True, default="")

    email = models.EmailField()
    phone = models.CharField(max_length=20)
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="KES")
    description = models.CharField(max_length=100)

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.INITIATED, db_index=True)
    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    status_details = models.JSONField(blank=True, null=True)

    error_response = models.JSONField(blank=True, null=True)
    error_status = models.IntegerField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        loaded = dict(zip(field_names, values)).get("tracking_id", DEFERRED)
        # None means not loaded yet (deferred by .only()/.defer())
        instance._loaded_tracking_id = None if loaded is DEFERRED else (loaded or "")
        return instance

    def save(self, *args, **kwargs):
        # the gateway tracking id is written once and never replaced
        loaded = getattr(self, "_loaded_tracking_id", "")
        if loaded is None and "tracking_id" not in self.get_deferred_fields():
            loaded = Payment.objects.filter(pk=self.pk).values_list("tracking_id", flat=True).first() or ""
        if loaded and self.tracking_id != loaded:
            raise ValueError(f"tracking_id of payment {self.reference} is already set")
        super().save(*args, **kwargs)
        self._remember_tracking_id()

    def refresh_from_db(self, *args, **kwargs):
        super().refresh_from_db(*args, **kwargs)
        self._remember_tracking_id()

    def _remember_tracking_id(self):
        if "tracking_id" in self.get_deferred_fields():
            self._loaded_tracking_id = None
        else:
            self._loaded_tracking_id = self.tracking_id

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PaymentStatus.SUCCESS

    def __str__(self):
        return f"{self.reference} ({self.status})"
