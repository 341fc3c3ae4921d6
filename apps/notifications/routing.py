"""
WebSocket URL routing for Django Channels.
"""
from django.urls import re_path
from apps.notifications import consumers

websocket_urlpatterns = [
    # Live item changes of one wishlist
    re_path(r'ws/wishlists/(?P<wishlist_id>[0-9a-fA-F-]{36})/$', consumers.WishlistItemsConsumer.as_asgi()),
]
