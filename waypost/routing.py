"""
WebSocket URL routing for the waypost app.

Defines WebSocket URL patterns for real-time log updates.
"""
from django.urls import path

from . import consumers

websocket_urlpatterns = [
    path('ws/logs/', consumers.LogStreamConsumer.as_asgi()),
    path('ws/devices/', consumers.DeviceGroupConsumer.as_asgi()),
]
