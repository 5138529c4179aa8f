"""
URL configuration for devtinder project.

The JSON API lives under ``api/``; ``docs/`` serves the generated Swagger UI.
Websocket routes are declared in ``message.urls`` and mounted from ``asgi.py``.
"""
from django.contrib import admin
from django.urls import path, include

from rest_framework.authentication import SessionAuthentication

from drf_yasg import openapi
from drf_yasg.views import get_schema_view as get_swagger_schema_view

schema_view = get_swagger_schema_view(
    openapi.Info(
        title="DevTinder API",
        default_version="1.0.0",
        description="Connections and chat API for DevTinder"
    ),
    public=True,
    authentication_classes=[
        SessionAuthentication
    ]
)


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("connection.urls")),
    path("api/", include("message.urls")),
    path("docs/", schema_view.with_ui("swagger", cache_timeout=10), name="docs"),
]
