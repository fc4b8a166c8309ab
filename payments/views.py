import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .services import (
    POLL_TIMEOUT,
    POLL_UNAVAILABLE,
    GatewayFailure,
    OrderNotFound,
    PaymentInitiationFailed,
    PaymentNotFound,
    PaymentValidationError,
    ReferenceInUse,
    initiate_payment,
    poll_status,
    reconcile_payment,
)

logger = logging.getLogger(__name__)


def _json_body(request):
    try:
        return json.loads(request.body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None


@csrf_exempt
@require_POST
def payment_view(request):
    """Start a Pesapal checkout; responds with the hosted checkout URL."""
    body = _json_body(request) if request.content_type == "application/json" else request.POST.dict()
    if not isinstance(body, dict):
        return JsonResponse({"error": "Invalid JSON body"}, status=400)

    try:
        payment = initiate_payment(body)
    except PaymentValidationError as e:
        logger.info("Rejected payment request: %s", e.errors)
        return JsonResponse({"error": "Invalid payment request", "fields": e.errors}, status=400)
    except ReferenceInUse as e:
        return JsonResponse({"error": str(e)}, status=409)
    except PaymentInitiationFailed as e:
        return JsonResponse({
            "error": "Could not initiate payment, please try again or contact support",
            "details": "Payment gateway error occurred",
            "reference": e.payment.reference,
        }, status=500)

    return JsonResponse(payment.redirect_url, safe=False)


@require_GET
def callback_view(request):
    """Pesapal IPN. Pesapal calls this with GET once the payment changes state."""
    tracking_id = (request.GET.get("OrderTrackingId") or "").strip()
    reference = (request.GET.get("OrderMerchantReference") or "").strip()
    if not tracking_id or not reference:
        return JsonResponse({"error": "OrderTrackingId and OrderMerchantReference are required"}, status=400)

    try:
        result = reconcile_payment(tracking_id, reference)
    except PaymentNotFound:
        return JsonResponse({"error": "Payment record not found", "reference": reference}, status=404)
    except OrderNotFound as e:
        return JsonResponse({
            "error": "Order not found for this payment",
            "reference": reference,
            "payment_id": e.payment.pk,
        }, status=404)
    except GatewayFailure:
        return JsonResponse({"error": "Failed to update payment status", "reference": reference}, status=500)

    if not result.completed:
        return JsonResponse({
            "message": "Payment not completed yet",
            "status": result.gateway_status,
            "payment_status": result.payment.payment_status,
            "reference": reference,
        })

    return JsonResponse({
        "message": "Callback processed successfully",
        "status": result.gateway_status,
        "reference": reference,
        "order_id": str(result.order.pk),
        "payment_id": result.payment.pk,
    })


@require_GET
def status_view(request):
    tracking_id = (request.GET.get("trackingId") or "").strip()
    reference = (request.GET.get("reference") or "").strip()
    if not tracking_id:
        return JsonResponse({"error": "trackingId is required"}, status=400)

    data = poll_status(tracking_id, reference)
    if data["status"] == POLL_TIMEOUT:
        return JsonResponse(data, status=504)
    if data["status"] == POLL_UNAVAILABLE:
        return JsonResponse(data, status=502)
    return JsonResponse(data)
