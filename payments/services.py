import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from orders.models import Order
from .forms import PaymentRequestForm
from .integrations.pesapal import GatewayTimeout, PesapalClient, PesapalError
from .models import Payment
from .utils import generate_reference

logger = logging.getLogger(__name__)

# Pesapal payment_status_description -> (Payment.status, Payment.payment_status).
# INVALID is what Pesapal reports for an order nobody has paid yet.
GATEWAY_STATUS_MAP = {
    "COMPLETED": (Payment.Status.COMPLETED, Payment.PaymentStatus.SUCCESS),
    "FAILED": (Payment.Status.FAILED, Payment.PaymentStatus.FAILED),
    "REVERSED": (Payment.Status.CANCELLED, Payment.PaymentStatus.CANCELLED),
    "INVALID": (Payment.Status.PENDING, Payment.PaymentStatus.PENDING),
}
UNKNOWN_STATUS = (Payment.Status.PENDING, Payment.PaymentStatus.PENDING)

POLL_TIMEOUT = "TIMEOUT"
POLL_UNAVAILABLE = "UNAVAILABLE"


class PaymentError(Exception): pass


class PaymentValidationError(PaymentError):
    def __init__(self, errors):
        super().__init__("Invalid payment request")
        self.errors = errors


class ReferenceInUse(PaymentError): pass


class PaymentInitiationFailed(PaymentError):
    def __init__(self, payment):
        super().__init__(f"Payment {payment.reference} was rejected by the gateway")
        self.payment = payment


class PaymentNotFound(PaymentError): pass


class OrderNotFound(PaymentError):
    def __init__(self, payment):
        super().__init__(f"No order linked to payment {payment.reference}")
        self.payment = payment


class GatewayFailure(PaymentError):
    def __init__(self, message, transient=False):
        super().__init__(message)
        self.transient = transient


def normalize_status(description) -> tuple:
    """Map Pesapal's free-text status to (status, payment_status); unknown text maps to pending."""
    return GATEWAY_STATUS_MAP.get(str(description or "").strip().upper(), UNKNOWN_STATUS)


@dataclass
class ReconcileResult:
    payment: Payment
    gateway_status: str
    order: Optional[Order] = None
    order_advanced: bool = False

    @property
    def completed(self) -> bool:
        return self.payment.status == Payment.Status.COMPLETED


# ---------- Initiation ----------

def _resolve_order(order_id, reference: str) -> Optional[Order]:
    if order_id:
        order = Order.objects.filter(pk=order_id).first()
        if order is None:
            raise PaymentValidationError({"order_id": ["Order does not exist"]})
        return order
    # the storefront passes the order id as the merchant reference
    try:
        return Order.objects.filter(pk=uuid.UUID(reference)).first()
    except ValueError:
        return None


def _order_payload(reference: str, data: dict, ipn_id: str, currency: str) -> dict:
    return {
        "id": reference,
        "currency": currency,
        "amount": float(data["amount"]),
        "description": data["description"],
        "notification_id": ipn_id,
        "billing_address": {
            "email_address": data["email"],
            "phone_number": data["phone"],
            "first_name": data["first_name"],
            "last_name": data["last_name"],
        },
    }


def _save_attempt(reference: str, existing: Optional[Payment], fields: dict) -> Payment:
    if existing is not None:
        for k, v in fields.items():
            setattr(existing, k, v)
        existing.save()
        return existing
    try:
        return Payment.objects.create(reference=reference, **fields)
    except IntegrityError:
        logger.error("Concurrent checkout for reference=%s; keeping the first record", reference)
        raise ReferenceInUse(f"Reference {reference} is already in use")


def initiate_payment(data: dict, client: Optional[PesapalClient] = None) -> Payment:
    """Submit a checkout to Pesapal and record the attempt.

    Returns the saved ``Payment``; its ``redirect_url`` is the hosted checkout
    page. Every attempt that reaches the gateway leaves exactly one row for its
    reference, marked ``failed`` with the gateway error when it is rejected.
    """
    form = PaymentRequestForm(data)
    if not form.is_valid():
        raise PaymentValidationError(form.errors.get_json_data())
    cleaned = form.cleaned_data
    reference = cleaned["reference"] or generate_reference()
    order = _resolve_order(cleaned.get("order_id"), reference)
    if order is not None and order.is_paid:
        raise ReferenceInUse(f"Order {order.pk} is already paid")

    existing = Payment.objects.filter(reference=reference).first()
    if existing is not None:
        if existing.tracking_id and existing.redirect_url and existing.status in (Payment.Status.INITIATED, Payment.Status.PENDING):
            logger.info("Reusing open checkout for reference=%s", reference)
            return existing
        if existing.tracking_id or existing.status != Payment.Status.FAILED:
            raise ReferenceInUse(f"Reference {reference} was already used; start a new checkout")

    currency = getattr(settings, "PESAPAL_CURRENCY", "KES")
    fields = {
        "order": order,
        "email": cleaned["email"],
        "phone": cleaned["phone"],
        "first_name": cleaned["first_name"],
        "last_name": cleaned["last_name"],
        "amount": cleaned["amount"],
        "currency": currency,
        "description": cleaned["description"],
    }

    client = client or PesapalClient()
    try:
        ipn_id = client.register_ipn()
        response = client.submit_order(_order_payload(reference, cleaned, ipn_id, currency))
    except PesapalError as e:
        logger.error(
            "Pesapal checkout failed for reference=%s: %s status=%s body=%s",
            reference, e, e.status_code, e.body,
        )
        payment = _save_attempt(reference, existing, {
            **fields,
            "status": Payment.Status.FAILED,
            "payment_status": Payment.PaymentStatus.FAILED,
            "error_response": e.body if e.body is not None else {"message": str(e)},
            "error_status": e.status_code,
        })
        raise PaymentInitiationFailed(payment) from e

    payment = _save_attempt(reference, existing, {
        **fields,
        "ipn_id": ipn_id,
        "tracking_id": response["order_tracking_id"],
        "redirect_url": response["redirect_url"],
        "status": Payment.Status.INITIATED,
        "payment_status": Payment.PaymentStatus.PENDING,
        "error_response": None,
        "error_status": None,
    })
    logger.info("Payment initiated reference=%s tracking_id=%s", reference, payment.tracking_id)
    return payment


# ---------- Reconciliation (IPN callback and audit) ----------

def reconcile_payment(tracking_id: str, merchant_reference: str,
                      client: Optional[PesapalClient] = None) -> ReconcileResult:
    """Bring the payment for ``merchant_reference`` in line with Pesapal.

    Status always comes from a fresh GetTransactionStatus call, never from
    the notification itself, so this is safe to run any number of times.
    """
    payment = Payment.objects.select_related("order").filter(reference=merchant_reference).first()
    if payment is None:
        logger.warning("Callback for unknown reference=%s tracking_id=%s", merchant_reference, tracking_id)
        raise PaymentNotFound(f"No payment with reference {merchant_reference}")
    if not payment.tracking_id:
        # submission never accepted, so Pesapal has no checkout to report on
        logger.warning("Callback for reference=%s which has no checkout, tracking_id=%s", merchant_reference, tracking_id)
        raise PaymentNotFound(f"Payment {merchant_reference} was never submitted to the gateway")
    if payment.tracking_id != tracking_id:
        logger.warning(
            "Callback tracking_id=%s does not match %s recorded for reference=%s",
            tracking_id, payment.tracking_id, merchant_reference,
        )
        raise PaymentNotFound(f"No payment with reference {merchant_reference} and tracking id {tracking_id}")

    client = client or PesapalClient()
    try:
        status_info = client.get_transaction_status(tracking_id)
    except PesapalError as e:
        logger.error("Status lookup failed for tracking_id=%s: %s", tracking_id, e)
        raise GatewayFailure(str(e), transient=isinstance(e, GatewayTimeout)) from e

    gateway_ref = status_info.get("merchant_reference")
    if gateway_ref and gateway_ref != merchant_reference:
        logger.warning(
            "Pesapal says tracking_id=%s belongs to %s, not %s", tracking_id, gateway_ref, merchant_reference
        )
        raise PaymentNotFound(f"Tracking id {tracking_id} does not belong to {merchant_reference}")

    gateway_status = str(status_info.get("payment_status_description") or "").upper()
    status, payment_status = normalize_status(gateway_status)

    Payment.objects.filter(pk=payment.pk).update(
        status=status,
        payment_status=payment_status,
        payment_reference=tracking_id,
        status_details=status_info,
        updated_at=timezone.now(),
    )
    payment.refresh_from_db()
    logger.info("Payment updated: %s -> %s", merchant_reference, gateway_status or "UNKNOWN")

    result = ReconcileResult(payment=payment, gateway_status=gateway_status)
    if status != Payment.Status.COMPLETED:
        return result

    order = payment.order
    if order is None:
        logger.error("Payment %s completed but has no order to settle", merchant_reference)
        raise OrderNotFound(payment)
    result.order = order
    result.order_advanced = order.mark_paid()
    if result.order_advanced:
        logger.info("Order %s -> %s", order.pk, order.get_status_display())
    return result


def poll_status(tracking_id: str, reference: str = "", client: Optional[PesapalClient] = None) -> dict:
    """Live status straight from Pesapal for the polling client. Writes nothing."""
    client = client or PesapalClient()
    try:
        status_info = client.get_transaction_status(tracking_id)
    except GatewayTimeout:
        logger.warning("Status poll timed out for tracking_id=%s", tracking_id)
        return {"status": POLL_TIMEOUT, "payment_status": str(Payment.PaymentStatus.PENDING), "reference": reference}
    except PesapalError as e:
        logger.error("Status poll failed for tracking_id=%s: %s", tracking_id, e)
        return {"status": POLL_UNAVAILABLE, "payment_status": str(Payment.PaymentStatus.PENDING), "reference": reference}

    description = status_info.get("payment_status_description") or ""
    _, payment_status = normalize_status(description)
    return {"status": description, "payment_status": str(payment_status), "reference": reference}


def stale_open_payments(older_than_minutes: int = 10):
    cutoff = timezone.now() - timedelta(minutes=older_than_minutes)
    return (
        Payment.objects.filter(status__in=[Payment.Status.INITIATED, Payment.Status.PENDING], updated_at__lt=cutoff)
        .exclude(tracking_id="")
        .order_by("updated_at")
    )


def settle_completed_orders() -> list:
    """Advance orders whose payment completed but which were never marked paid."""
    settled = []
    qs = Payment.objects.select_related("order").filter(
        status=Payment.Status.COMPLETED, order__status=Order.Status.AWAITING_PAYMENT
    )
    for payment in qs:
        if payment.order.mark_paid():
            logger.warning("Settled order %s left unpaid after payment %s completed", payment.order.pk, payment.reference)
            settled.append(payment)
    return settled


def orphan_completed_payments():
    """Completed payments that have no order to settle; each one needs a human."""
    return Payment.objects.filter(status=Payment.Status.COMPLETED, order__isnull=True).order_by("updated_at")
