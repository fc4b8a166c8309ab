from django.urls import path
from . import views
app_name = "payments"
urlpatterns = [
    path("payment", views.payment_view, name="payment"),
    path("payment/", views.payment_view),
    # IPN target registered with Pesapal, e.g. https://<domain>/api/callback
    path("callback", views.callback_view, name="callback"),
    path("callback/", views.callback_view),
    path("status", views.status_view, name="status"),
    path("status/", views.status_view),
]
