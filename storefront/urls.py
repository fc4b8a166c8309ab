from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("payments.urls")),
]

handler404 = "storefront.views.error_404_view"
handler500 = "storefront.views.error_500_view"
