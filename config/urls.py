"""URL configuration for the booking backend.

Routes the Django admin, the versioned REST API of each app and the
Prometheus metrics endpoint provided by django-prometheus.
"""
from django.contrib import admin  # type: ignore
from django.urls import path, include  # type: ignore

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/rooms/', include('apps.rooms.urls')),
    path('api/v1/bookings/', include('apps.bookings.urls')),
    path('', include('django_prometheus.urls')),
]
