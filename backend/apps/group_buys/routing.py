"""
WebSocket URL routing for group buys.
"""
from django.urls import re_path

from . import consumers

websocket_urlpatterns = [
    re_path(r'^ws/group-buys/$', consumers.GroupBuyConsumer.as_asgi()),
]
