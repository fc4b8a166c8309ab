import string
import time

from django.conf import settings
from django.utils.crypto import get_random_string

from .models import Payment

ALNUM = string.ascii_uppercase + string.digits


def generate_reference(prefix=None):
    """Merchant reference for a checkout that did not bring its own, e.g. ``DB-1718000000000``."""
    if prefix is None:
        prefix = getattr(settings, "PESAPAL_REFERENCE_PREFIX", "DB-")
    base = f"{prefix}{int(time.time() * 1000)}"
    ref = base
    # two checkouts in the same millisecond: add a short suffix
    while Payment.objects.filter(reference=ref).exists():
        ref = f"{base}-{get_random_string(4, allowed_chars=ALNUM)}"
    return ref[:50]
