import json
from datetime import timedelta

from django.utils import timezone

REQUEST = "payments.integrations.pesapal.requests.request"

PESAPAL_SETTINGS = {
    "PESAPAL_BASE_URL": "https://pesapal.test/v3",
    "PESAPAL_CONSUMER_KEY": "key",
    "PESAPAL_CONSUMER_SECRET": "secret",
    "PESAPAL_IPN_URL": "https://shop.test/api/callback",
    "PESAPAL_CALLBACK_URL": "https://shop.test/myorders",
    "PESAPAL_CURRENCY": "KES",
    "PESAPAL_TOKEN_CACHE": False,
    "PESAPAL_TOKEN_TTL": 240,
}

NO_ERROR = {"error_type": None, "code": None, "message": None, "call_back_url": None}


class FakeResponse:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data
        self.text = json.dumps(data) if data is not None else ""

    def json(self):
        if self._data is None:
            raise ValueError("No JSON object could be decoded")
        return self._data


def token_response(token="tok"):
    expiry = (timezone.now() + timedelta(minutes=5)).isoformat()
    return FakeResponse(200, {"token": token, "expiryDate": expiry, "error": None, "status": "200", "message": "Request processed successfully"})


def ipn_response(ipn_id="ipn-1"):
    return FakeResponse(200, {"url": "https://shop.test/api/callback", "ipn_id": ipn_id, "notification_type": 1, "ipn_status": 1, "error": None, "status": "200"})


def submit_response(tracking_id="T1", redirect_url="https://pay/x", reference=""):
    return FakeResponse(200, {"order_tracking_id": tracking_id, "merchant_reference": reference, "redirect_url": redirect_url, "error": None, "status": "200"})


def status_response(description="COMPLETED", reference=""):
    """Pesapal GetTransactionStatus body; ``reference=None`` leaves ``merchant_reference`` out."""
    codes = {"INVALID": 0, "COMPLETED": 1, "FAILED": 2, "REVERSED": 3}
    body = {
        "payment_method": "MpesaKE",
        "amount": 1000.0,
        "created_date": "2024-06-01T10:00:00.000",
        "confirmation_code": "QF12ABC34D",
        "payment_status_description": description,
        "description": "",
        "message": "Request processed successfully",
        "payment_account": "2547xxxx678",
        "status_code": codes.get(description.upper()),
        "merchant_reference": reference,
        "currency": "KES",
        "error": NO_ERROR,
        "status": "200",
    }
    if reference is None:
        del body["merchant_reference"]
    return FakeResponse(200, body)


class FakePesapal:
    """Stands in for ``requests.request``; answers by endpoint name and records every call.

    A response may be an exception instance (raised) or a list (served in order).
    """

    def __init__(self, token=None, ipn=None, submit=None, status=None):
        self.responses = {
            "RequestToken": token if token is not None else token_response(),
            "RegisterIPN": ipn if ipn is not None else ipn_response(),
            "SubmitOrderRequest": submit if submit is not None else submit_response(),
            "GetTransactionStatus": status if status is not None else status_response(),
        }
        self.calls = []

    def __call__(self, method, url, **kwargs):
        endpoint = url.rsplit("/", 1)[-1]
        self.calls.append((method, endpoint, kwargs))
        resp = self.responses[endpoint]
        if isinstance(resp, list):
            resp = resp.pop(0) if len(resp) > 1 else resp[0]
        if isinstance(resp, Exception):
            raise resp
        return resp

    def count(self, endpoint):
        return sum(1 for c in self.calls if c[1] == endpoint)

    def last(self, endpoint):
        return [c for c in self.calls if c[1] == endpoint][-1]
