from django.contrib import admin
from .models import Payment

@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("reference", "status", "payment_status", "amount", "currency", "tracking_id", "created_at", "updated_at")
    search_fields = ("reference", "tracking_id", "payment_reference", "email", "phone")
    list_filter = ("status", "payment_status", "currency", "created_at")
    readonly_fields = ("tracking_id", "created_at", "updated_at", "status_details", "error_response", "error_status")
