import logging
from datetime import datetime, timezone as dt_timezone

import jwt
import requests
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from requests import RequestException, Timeout

logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}
TOKEN_CACHE_KEY = "payments:pesapal:token"
# Refresh this many seconds before the gateway says the token expires
TOKEN_EXPIRY_MARGIN = 30


class PesapalError(Exception):
    """Anything that went wrong talking to Pesapal."""

    status_code = None
    body = None


class GatewayUnreachable(PesapalError): pass


class GatewayTimeout(PesapalError): pass


class InvalidCredentials(PesapalError): pass


class GatewayMisconfigured(PesapalError): pass


class GatewayRejected(PesapalError):
    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _base_url() -> str:
    return str(getattr(settings, "PESAPAL_BASE_URL", "https://pay.pesapal.com/v3")).rstrip("/")


def _request(method: str, path: str, *, token: str = "", **kwargs) -> tuple[int, dict]:
    url = f"{_base_url()}{path}"
    headers = dict(COMMON_HEADERS)
    if token:
        headers["Authorization"] = f"Bearer {token}"
    try:
        resp = requests.request(method, url, headers=headers, timeout=getattr(settings, "PESAPAL_TIMEOUT", 30), **kwargs)
    except Timeout as e:
        raise GatewayTimeout(f"Pesapal timed out on {method} {path}") from e
    except RequestException as e:
        raise GatewayUnreachable(f"Gateway request failed: {e}") from e
    try:
        data = resp.json()
    except ValueError:
        data = {"raw": resp.text}
    if not isinstance(data, dict):
        data = {"raw": data}
    return resp.status_code, data


def _body_error(data: dict):
    # Pesapal always sends an "error" object; on success every field in it is null
    err = data.get("error")
    if isinstance(err, dict) and any(err.get(k) for k in ("code", "message", "error_type")):
        return err
    return None


def _check(status_code: int, data: dict, what: str) -> dict:
    err = _body_error(data)
    if 200 <= status_code < 300 and not err:
        return data
    if 200 <= status_code < 300:
        # error reported inside a 2xx; the body carries its own status
        try:
            status_code = int(data.get("status") or 400)
        except (TypeError, ValueError):
            status_code = 400
    message = (err or {}).get("message") or (err or {}).get("code") or f"HTTP {status_code}"
    raise GatewayRejected(f"{what} failed: {message}", status_code=status_code, body=data)


def token_ttl(data: dict, now=None) -> int:
    """Seconds a token response may be cached for.

    Uses ``expiryDate`` from the response, then the JWT ``exp`` claim, then
    ``PESAPAL_TOKEN_TTL``.
    """
    now = now or timezone.now()
    expires_at = None
    raw = data.get("expiryDate")
    if raw:
        try:
            expires_at = parse_datetime(str(raw))
        except ValueError:
            expires_at = None
        if expires_at and timezone.is_naive(expires_at):
            expires_at = expires_at.replace(tzinfo=dt_timezone.utc)
    if expires_at is None:
        try:
            claims = jwt.decode(data.get("token") or "", options={"verify_signature": False})
            if claims.get("exp"):
                expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=dt_timezone.utc)
        except (jwt.PyJWTError, TypeError, ValueError):
            expires_at = None
    if expires_at is None:
        return int(getattr(settings, "PESAPAL_TOKEN_TTL", 240))
    return max(int((expires_at - now).total_seconds()) - TOKEN_EXPIRY_MARGIN, 0)


class PesapalTokenProvider:
    """Exchanges the consumer key/secret for a bearer token on every call."""

    def fetch(self) -> dict:
        key = getattr(settings, "PESAPAL_CONSUMER_KEY", "")
        secret = getattr(settings, "PESAPAL_CONSUMER_SECRET", "")
        if not key or not secret:
            raise InvalidCredentials("Missing PESAPAL_CONSUMER_KEY / PESAPAL_CONSUMER_SECRET")

        status_code, data = _request(
            "POST", "/api/Auth/RequestToken", json={"consumer_key": key, "consumer_secret": secret}
        )
        if status_code >= 500:
            raise GatewayUnreachable(f"Token request failed: HTTP {status_code}")
        if status_code >= 400 or not data.get("token"):
            err = _body_error(data) or {}
            raise InvalidCredentials(f"Token request rejected: {err.get('code') or 'HTTP %s' % status_code}")
        return data

    def get_token(self) -> str:
        return self.fetch()["token"]

    def invalidate(self) -> None:
        pass


class CachedTokenProvider:
    """Keeps one token in the Django cache until shortly before it expires.

    With a shared cache backend the token is shared by every worker process.
    """

    def __init__(self, provider=None, cache_key: str = TOKEN_CACHE_KEY):
        self.provider = provider or PesapalTokenProvider()
        self.cache_key = cache_key

    def get_token(self) -> str:
        token = cache.get(self.cache_key)
        if token:
            return token
        data = self.provider.fetch()
        token = data["token"]
        ttl = token_ttl(data)
        if ttl > 0:
            cache.set(self.cache_key, token, ttl)
        logger.debug("Fetched new Pesapal token, cached for %ss", ttl)
        return token

    def invalidate(self) -> None:
        cache.delete(self.cache_key)


def get_token_provider():
    if getattr(settings, "PESAPAL_TOKEN_CACHE", True):
        return CachedTokenProvider()
    return PesapalTokenProvider()


class PesapalClient:
    """Thin wrapper over the Pesapal v3 API calls this project makes."""

    def __init__(self, token_provider=None):
        self.token_provider = token_provider or get_token_provider()
        self._token = ""

    def get_token(self) -> str:
        # one token per client; a client lives for one request or command run
        if not self._token:
            self._token = self.token_provider.get_token()
        return self._token

    def _authorized(self, method: str, path: str, **kwargs) -> tuple[int, dict]:
        status_code, data = _request(method, path, token=self.get_token(), **kwargs)
        if status_code == 401:
            # token revoked or expired early; one retry with a fresh one
            self.token_provider.invalidate()
            self._token = ""
            status_code, data = _request(method, path, token=self.get_token(), **kwargs)
        return status_code, data

    def register_ipn(self, url: str = "") -> str:
        url = url or getattr(settings, "PESAPAL_IPN_URL", "")
        if not url:
            raise GatewayMisconfigured("Missing PESAPAL_IPN_URL")
        status_code, data = self._authorized(
            "POST", "/api/URLSetup/RegisterIPN", json={"url": url, "ipn_notification_type": "GET"}
        )
        data = _check(status_code, data, "IPN registration")
        if not data.get("ipn_id"):
            raise GatewayRejected("IPN registration returned no ipn_id", status_code=status_code, body=data)
        return data["ipn_id"]

    def submit_order(self, payload: dict) -> dict:
        payload = dict(payload)
        payload.setdefault("callback_url", getattr(settings, "PESAPAL_CALLBACK_URL", ""))
        if not payload["callback_url"]:
            raise GatewayMisconfigured("Missing PESAPAL_CALLBACK_URL")
        status_code, data = self._authorized("POST", "/api/Transactions/SubmitOrderRequest", json=payload)
        data = _check(status_code, data, "Order submission")
        if not data.get("order_tracking_id") or not data.get("redirect_url"):
            raise GatewayRejected("Order submission returned no tracking id", status_code=status_code, body=data)
        return data

    def get_transaction_status(self, tracking_id: str) -> dict:
        status_code, data = self._authorized(
            "GET", "/api/Transactions/GetTransactionStatus", params={"orderTrackingId": tracking_id}
        )
        if 200 <= status_code < 300 and "payment_status_description" in data:
            # an unpaid order is reported as INVALID with an error object attached
            return data
        return _check(status_code, data, "Transaction status")
