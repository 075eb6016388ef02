from django.contrib import admin
from django.urls import include, path

from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)
from rest_framework.routers import DefaultRouter

from event_series.routes import routes as event_series_routes


router = DefaultRouter(use_regex_path=False)

routes = (*event_series_routes,)
for route in routes:
    router.register(route["regex"], route["viewset"], basename=route["basename"])


urlpatterns = [
    path("", include((router.urls, "api")), name="api"),
    path("super/", admin.site.urls, name="admin"),
    # drf-spectacular
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path(
        "api/schema/swagger-ui/",
        SpectacularSwaggerView.as_view(url_name="schema"),
        name="swagger-ui",
    ),
    path("api/schema/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
]
