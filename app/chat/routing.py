"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/ - One session per client; conversation rooms are joined with frames

Authentication:
    JWT token should be passed as query parameter: ?token=<jwt_access_token>
    JWTAuthMiddleware validates the token and attaches the user to the scope.
"""

from django.urls import path

from chat.consumers import ChatConsumer
from chat.fanout import ConnectionRegistry


def build_websocket_urlpatterns(registry: ConnectionRegistry):
    """URL patterns whose consumers share `registry`."""
    return [
        path("ws/chat/", ChatConsumer.as_asgi(registry=registry)),
    ]
