"""URL routing for the waypost app."""

from django.urls import include, path, re_path
from django.urls.resolvers import URLPattern, URLResolver
from rest_framework.routers import DefaultRouter

from .views import CaptureView, LogEntryViewSet


class OptionalSlashRouter(DefaultRouter):
    """Router that accepts URLs both with and without trailing slashes."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.trailing_slash = "/?"


router = OptionalSlashRouter()
router.register(r'logs', LogEntryViewSet, basename='log')

urlpatterns: list[URLPattern | URLResolver] = [
    re_path(r'^capture/?$', CaptureView.as_view(), name='capture'),
    path('', include(router.urls)),
]
