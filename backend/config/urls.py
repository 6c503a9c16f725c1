from django.contrib import admin
from django.http import HttpResponse
from django.urls import path, include


def index(request):
    return HttpResponse(
        "Academic workflow backend is running. Call the API under /api/.",
        content_type="text/plain",
    )


urlpatterns = [
    path("", index),
    path("admin/", admin.site.urls),

    # API
    path("api/", include("academics.urls")),
]
