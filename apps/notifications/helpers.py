"""
Publishing item events from synchronous code (views, signals, tasks).

Usage:
    from apps.notifications.helpers import broadcast_item_event
    broadcast_item_event(ItemDeleted(wishlist_id=..., item_id=...))
"""
from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync
import logging

from .events import group_name, to_message

logger = logging.getLogger(__name__)


def broadcast_item_event(event) -> bool:
    """
    Send an item event to every live viewer of its list.
    Returns False when the layer is missing or the send failed; the write
    that triggered the event has already happened either way.
    """
    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return False
        async_to_sync(channel_layer.group_send)(
            group_name(event.wishlist_id),
            to_message(event),
        )
        return True
    except Exception as e:
        logger.warning(f"Failed to broadcast item event for wishlist {event.wishlist_id}: {e}")
        return False
