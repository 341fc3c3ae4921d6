"""
WebSocket consumer streaming item changes of one wishlist.

Authentication is handled by JWTAuthMiddleware (cookie only); anonymous
viewers may watch any list they have the id of, same as share links.
"""
import logging
import uuid

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from .events import ItemCreated, ItemUpdated, ItemDeleted
from .sync import ChannelLayerSource, LiveSync

logger = logging.getLogger(__name__)

_OUTGOING_TYPES = {
    ItemCreated: 'item_created',
    ItemUpdated: 'item_updated',
    ItemDeleted: 'item_deleted',
}


class WishlistItemsConsumer(AsyncJsonWebsocketConsumer):
    """
    Usage (frontend):
        const ws = new WebSocket(`ws://localhost:8000/ws/wishlists/${id}/`);
        ws.send(JSON.stringify({type: 'switch', wishlist_id: otherId}));

    Server messages: snapshot, item_created, item_updated, item_deleted,
    notice, sync_status, error.
    """
    source_class = ChannelLayerSource

    async def connect(self):
        self.user = self.scope.get('user') or AnonymousUser()
        viewer_id = self.user.id if self.user.is_authenticated else None
        self.sync = LiveSync(
            self.get_source(),
            viewer_id=viewer_id,
            on_event=self.send_item_event,
            on_notice=self.send_notice,
            on_status=self.send_status,
        )

        wishlist_id = self.scope['url_route']['kwargs']['wishlist_id']
        if not await self.wishlist_exists(wishlist_id):
            await self.close()
            return

        await self.accept()
        await self.watch(wishlist_id)

    async def disconnect(self, close_code):
        if hasattr(self, 'sync'):
            await self.sync.stop()

    async def receive_json(self, content, **kwargs):
        if content.get('type') != 'switch':
            await self.send_json({'type': 'error', 'error': 'Unknown message type.'})
            return

        wishlist_id = content.get('wishlist_id')
        if not await self.wishlist_exists(wishlist_id):
            await self.send_json({'type': 'error', 'error': 'Wishlist not found.'})
            return
        await self.watch(wishlist_id)

    def get_source(self):
        return self.source_class(self.channel_layer)

    async def watch(self, wishlist_id):
        """Move the subscription to this list, then send its snapshot."""
        async def send_snapshot(items):
            await self.send_json({
                'type': 'snapshot',
                'wishlist_id': str(wishlist_id),
                'items': items,
            })

        await self.sync.start(
            wishlist_id,
            load_items=lambda: self.load_items(wishlist_id),
            on_snapshot=send_snapshot,
        )

    async def send_item_event(self, event):
        message = {
            'type': _OUTGOING_TYPES[type(event)],
            'wishlist_id': event.wishlist_id,
        }
        if isinstance(event, ItemDeleted):
            message['item_id'] = event.item_id
        else:
            message['item'] = event.item
        await self.send_json(message)

    async def send_notice(self, text):
        await self.send_json({'type': 'notice', 'message': text})

    async def send_status(self, live):
        await self.send_json({
            'type': 'sync_status',
            'wishlist_id': self.sync.wishlist_id,
            'status': 'live' if live else 'degraded',
        })

    @database_sync_to_async
    def load_items(self, wishlist_id):
        """Serialized items of the list, newest first."""
        from apps.wishlist.models import Item
        from apps.wishlist.serializers import ItemSerializer

        items = Item.objects.filter(wishlist_id=uuid.UUID(str(wishlist_id)))
        return [dict(ItemSerializer(item).data) for item in items]

    @database_sync_to_async
    def wishlist_exists(self, wishlist_id):
        from apps.wishlist.models import Wishlist

        try:
            pk = uuid.UUID(str(wishlist_id))
        except ValueError:
            return False
        if Wishlist.objects.filter(pk=pk).exists():
            return True
        logger.info(f"WebSocket asked for missing wishlist {wishlist_id}")
        return False
