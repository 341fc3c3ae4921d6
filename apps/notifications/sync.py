"""
Keep a viewer's copy of one list's items in step with changes made elsewhere.

`LiveSync` owns at most one subscription at a time. A subscription comes from
a stream source: any callable taking a list id and returning an object with
`open()`, `close()` and async iteration over item events. The production
source reads from the Channels layer; tests inject their own.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from channels.layers import get_channel_layer

from apps.wishlist.exceptions import SubscriptionFailure
from .events import ITEM_EVENT_TYPE, ItemCreated, ItemDeleted, ItemUpdated, group_name, parse_event

logger = logging.getLogger(__name__)


class ChannelLayerStream:
    """Item events of one list, read from a private channel in the group."""

    def __init__(self, wishlist_id, channel_layer=None):
        self.wishlist_id = str(wishlist_id)
        self.channel_layer = channel_layer
        self.channel_name = None

    async def open(self):
        layer = self.channel_layer or get_channel_layer()
        if layer is None:
            raise SubscriptionFailure('No channel layer configured.')
        self.channel_layer = layer

        try:
            self.channel_name = await layer.new_channel()
            await layer.group_add(group_name(self.wishlist_id), self.channel_name)
        except Exception as e:
            self.channel_name = None
            raise SubscriptionFailure(f'Could not subscribe to wishlist {self.wishlist_id}: {e}') from e

    def __aiter__(self):
        return self._events()

    async def _events(self):
        while self.channel_name:
            try:
                message = await self.channel_layer.receive(self.channel_name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise SubscriptionFailure(f'Lost subscription to wishlist {self.wishlist_id}: {e}') from e

            if message.get('type') != ITEM_EVENT_TYPE:
                continue
            try:
                event = parse_event(message)
            except ValueError as e:
                logger.warning(f"Skipping item event: {e}")
                continue
            yield event

    async def close(self):
        channel_name, self.channel_name = self.channel_name, None
        if not channel_name:
            return
        try:
            await self.channel_layer.group_discard(group_name(self.wishlist_id), channel_name)
        except Exception as e:
            logger.warning(f"Could not leave group of wishlist {self.wishlist_id}: {e}")


class ChannelLayerSource:
    """Stream source backed by the Channels layer."""

    def __init__(self, channel_layer=None):
        self.channel_layer = channel_layer

    def __call__(self, wishlist_id) -> ChannelLayerStream:
        return ChannelLayerStream(wishlist_id, self.channel_layer)


class LiveSync:
    """
    Local item collection of the watched list plus its single subscription.

    Callbacks are coroutines:
        on_event(event)   after an event changed the collection
        on_notice(text)   someone else added an item
        on_status(live)   subscription came up (True) or failed (False)
    """

    def __init__(
        self,
        source: Callable,
        viewer_id=None,
        on_event: Optional[Callable[..., Awaitable]] = None,
        on_notice: Optional[Callable[..., Awaitable]] = None,
        on_status: Optional[Callable[..., Awaitable]] = None,
    ):
        self.source = source
        self.viewer_id = str(viewer_id) if viewer_id is not None else None
        self.on_event = on_event
        self.on_notice = on_notice
        self.on_status = on_status

        self.wishlist_id = None
        self.items = []
        self.live = False
        self._stream = None
        self._task = None

    async def start(self, wishlist_id, items=(), load_items=None, on_snapshot=None) -> bool:
        """
        Watch `wishlist_id`, replacing any previous subscription.

        With `load_items` the collection is read only once the subscription is
        open, so a change made meanwhile is either in the snapshot or queued on
        the stream. `on_snapshot(items)` gets the collection before any event.
        """
        await self.stop()
        self.wishlist_id = str(wishlist_id)
        self.items = [dict(item) for item in items]

        stream = self.source(self.wishlist_id)
        try:
            await stream.open()
        except SubscriptionFailure as e:
            logger.warning(f"Live updates unavailable for wishlist {self.wishlist_id}: {e}")
            stream = None

        try:
            if load_items is not None:
                self.items = [dict(item) for item in (await load_items() or ())]
            if on_snapshot is not None:
                await on_snapshot(list(self.items))
        except Exception:
            if stream is not None:
                await stream.close()
            raise

        if stream is None:
            await self._set_live(False)
            return False

        self._stream = stream
        self._task = asyncio.create_task(self._consume(stream))
        await self._set_live(True)
        return True

    async def stop(self):
        """Cancel the subscription; no event is applied after this returns."""
        task, stream = self._task, self._stream
        self._task = self._stream = None
        self.live = False

        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if stream is not None:
            await stream.close()

    def apply(self, event) -> bool:
        """Fold one event into `items`. Returns whether anything changed."""
        if str(event.wishlist_id) != self.wishlist_id:
            return False

        if isinstance(event, ItemCreated):
            index = self._index_of(event.item_id)
            if index is None:
                self.items.insert(0, dict(event.item))
            else:
                self.items[index] = dict(event.item)
            return True

        if isinstance(event, ItemUpdated):
            index = self._index_of(event.item_id)
            if index is None:
                return False
            self.items[index] = dict(event.item)
            return True

        if isinstance(event, ItemDeleted):
            index = self._index_of(event.item_id)
            if index is None:
                return False
            del self.items[index]
            return True

        raise TypeError(f"Unhandled item event: {event!r}")

    def notice_for(self, event) -> Optional[str]:
        if not isinstance(event, ItemCreated):
            return None
        created_by = event.item.get('created_by')
        if created_by is not None and str(created_by) == self.viewer_id:
            return None
        return f"{event.item.get('name', 'An item')} was added to the list"

    async def handle(self, event) -> bool:
        if not self.apply(event):
            return False
        if self.on_event:
            await self.on_event(event)
        notice = self.notice_for(event)
        if notice and self.on_notice:
            await self.on_notice(notice)
        return True

    async def _consume(self, stream):
        try:
            async for event in stream:
                try:
                    await self.handle(event)
                except Exception as e:
                    # The event is already applied; only its delivery failed
                    logger.error(f"Item event delivery failed for wishlist {self.wishlist_id}: {e}", exc_info=True)
        except SubscriptionFailure as e:
            logger.warning(f"Live updates stopped for wishlist {self.wishlist_id}: {e}")
            await self._set_live(False)

    async def _set_live(self, live: bool):
        self.live = live
        if self.on_status:
            await self.on_status(live)

    def _index_of(self, item_id):
        item_id = str(item_id)
        for index, item in enumerate(self.items):
            if str(item.get('id')) == item_id:
                return index
        return None
