from django.http import JsonResponse


def error_404_view(request, exception):
    # API clients and the gateway only ever see JSON, never the HTML debug page
    return JsonResponse({"error": "Not found", "path": request.path}, status=404)


def error_500_view(request):
    return JsonResponse({"error": "Internal server error"}, status=500)
