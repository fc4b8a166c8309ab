from django.contrib import admin

from .models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "total", "status", "created_at", "updated_at")
    search_fields = ("id", "name", "email")
    list_filter = ("status", "created_at")
    readonly_fields = ("created_at", "updated_at")
