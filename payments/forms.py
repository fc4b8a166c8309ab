import re
from decimal import Decimal

from django import forms

# characters Pesapal accepts in a merchant reference
REFERENCE_RE = re.compile(r"^[A-Za-z0-9\-_.:]+$")


class PaymentRequestForm(forms.Form):
    """Payer details and amount for one checkout attempt."""

    email = forms.EmailField()
    reference = forms.CharField(max_length=50, required=False)
    phone = forms.CharField(max_length=20)
    first_name = forms.CharField(max_length=150)
    last_name = forms.CharField(max_length=150)
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    description = forms.CharField(max_length=100)
    order_id = forms.UUIDField(required=False)

    def clean_reference(self):
        ref = (self.cleaned_data.get("reference") or "").strip()
        if ref and not REFERENCE_RE.match(ref):
            raise forms.ValidationError("Reference may only contain letters, digits and - _ . :")
        return ref
