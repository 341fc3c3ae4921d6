import asyncio
from types import SimpleNamespace
import pytest
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.urls import re_path
from rest_framework_simplejwt.tokens import AccessToken

from apps.notifications.consumers import WishlistItemsConsumer
from apps.notifications.events import (
    ItemCreated, ItemUpdated, ItemDeleted, group_name, parse_event, to_message,
)
from apps.notifications.middleware import JWTAuthMiddleware
from apps.notifications.sync import LiveSync
from apps.wishlist.exceptions import SubscriptionFailure
from apps.wishlist.models import Item

LIST_A = 'aaaaaaaa-0000-0000-0000-000000000001'
LIST_B = 'bbbbbbbb-0000-0000-0000-000000000002'


class FakeStream:
    """Stream whose events are pushed by the test; exceptions are raised."""

    def __init__(self, wishlist_id, fail_open=False):
        self.wishlist_id = wishlist_id
        self.fail_open = fail_open
        self.queue = asyncio.Queue()
        self.opened = False
        self.closed = False

    async def open(self):
        if self.fail_open:
            raise SubscriptionFailure('layer unreachable')
        self.opened = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        event = await self.queue.get()
        if isinstance(event, Exception):
            raise event
        return event

    async def close(self):
        self.closed = True

    def push(self, event):
        self.queue.put_nowait(event)


class FakeSource:

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.streams = []

    def __call__(self, wishlist_id):
        stream = FakeStream(wishlist_id, fail_open=wishlist_id in self.failing)
        self.streams.append(stream)
        return stream

    @property
    def active(self):
        return [stream for stream in self.streams if stream.opened and not stream.closed]


def make_item(item_id, **fields):
    return {'id': item_id, 'name': f'Item {item_id}', 'purchased': False, 'created_by': None, **fields}


async def settle():
    """Let the consuming task run."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.unit
class TestItemEvents:
    """Channel layer message shape"""

    def test_deleted_message(self):
        message = to_message(ItemDeleted(wishlist_id=LIST_A, item_id='x'))

        assert message == {'type': 'item.event', 'event': 'deleted', 'wishlist_id': LIST_A, 'item_id': 'x'}
        assert parse_event(message) == ItemDeleted(wishlist_id=LIST_A, item_id='x')

    def test_parse_rejects_malformed(self):
        with pytest.raises(ValueError):
            parse_event({'type': 'item.event', 'event': 'created', 'wishlist_id': LIST_A})
        with pytest.raises(ValueError):
            parse_event({'type': 'item.event', 'event': 'renamed', 'wishlist_id': LIST_A})

    def test_group_name(self):
        assert group_name(LIST_A) == f'wishlist_items_{LIST_A}'


@pytest.mark.unit
class TestLiveSyncApply:
    """Folding events into the local item collection"""

    def make_sync(self, items):
        sync = LiveSync(FakeSource(), viewer_id='me')
        sync.wishlist_id = LIST_A
        sync.items = [dict(item) for item in items]
        return sync

    def test_created_is_prepended(self):
        sync = self.make_sync([make_item('x')])

        assert sync.apply(ItemCreated(wishlist_id=LIST_A, item=make_item('y')))
        assert [item['id'] for item in sync.items] == ['y', 'x']

    def test_updated_replaces_without_duplicate(self):
        sync = self.make_sync([make_item('x'), make_item('z')])

        assert sync.apply(ItemUpdated(wishlist_id=LIST_A, item=make_item('x', purchased=True)))
        assert [item['id'] for item in sync.items] == ['x', 'z']
        assert sync.items[0]['purchased'] is True

    def test_updated_for_unknown_item_is_not_inserted(self):
        sync = self.make_sync([make_item('x')])

        assert not sync.apply(ItemUpdated(wishlist_id=LIST_A, item=make_item('nope')))
        assert [item['id'] for item in sync.items] == ['x']

    def test_deleted_unknown_item_is_noop(self):
        sync = self.make_sync([make_item('x')])

        assert not sync.apply(ItemDeleted(wishlist_id=LIST_A, item_id='nope'))
        assert sync.items == [make_item('x')]

    def test_deleted_removes_item(self):
        sync = self.make_sync([make_item('x'), make_item('z')])

        assert sync.apply(ItemDeleted(wishlist_id=LIST_A, item_id='x'))
        assert [item['id'] for item in sync.items] == ['z']

    def test_events_of_other_lists_ignored(self):
        sync = self.make_sync([make_item('x')])

        assert not sync.apply(ItemDeleted(wishlist_id=LIST_B, item_id='x'))
        assert len(sync.items) == 1

    def test_notice_only_for_items_added_by_others(self):
        sync = self.make_sync([])

        mine = ItemCreated(wishlist_id=LIST_A, item=make_item('x', name='Scarf', created_by='me'))
        theirs = ItemCreated(wishlist_id=LIST_A, item=make_item('y', name='Scarf', created_by='them'))

        assert sync.notice_for(mine) is None
        assert sync.notice_for(theirs) == 'Scarf was added to the list'

    def test_unknown_event_type(self):
        sync = self.make_sync([])

        with pytest.raises(TypeError):
            sync.apply(SimpleNamespace(wishlist_id=LIST_A, item_id='x'))


@pytest.mark.unit
class TestLiveSyncSubscription:
    """Subscription lifecycle"""

    @pytest.mark.asyncio
    async def test_switch_keeps_exactly_one_subscription(self):
        source = FakeSource()
        events = []

        async def on_event(event):
            events.append(event)

        sync = LiveSync(source, viewer_id='me', on_event=on_event)
        await sync.start(LIST_A, [make_item('a1')])
        first = source.streams[0]

        await sync.start(LIST_B, [make_item('b1')])

        assert source.active == [source.streams[1]]
        assert first.closed

        first.push(ItemDeleted(wishlist_id=LIST_A, item_id='a1'))
        source.streams[1].push(ItemDeleted(wishlist_id=LIST_A, item_id='b1'))
        await settle()

        assert events == []
        assert sync.items == [make_item('b1')]
        await sync.stop()

    @pytest.mark.asyncio
    async def test_update_applied_from_stream(self):
        source = FakeSource()
        received = asyncio.Event()

        async def on_event(event):
            received.set()

        sync = LiveSync(source, viewer_id='me', on_event=on_event)
        await sync.start(LIST_A, [make_item('x'), make_item('y')])

        source.streams[0].push(ItemUpdated(wishlist_id=LIST_A, item=make_item('x', purchased=True)))
        await asyncio.wait_for(received.wait(), timeout=1)

        assert [item['id'] for item in sync.items] == ['x', 'y']
        assert sync.items[0]['purchased'] is True
        await sync.stop()

    @pytest.mark.asyncio
    async def test_notice_for_item_added_by_someone_else(self):
        source = FakeSource()
        notices = []

        async def on_notice(text):
            notices.append(text)

        sync = LiveSync(source, viewer_id='me', on_notice=on_notice)
        await sync.start(LIST_A)

        source.streams[0].push(ItemCreated(wishlist_id=LIST_A, item=make_item('n', name='Kite', created_by='them')))
        await settle()

        assert notices == ['Kite was added to the list']
        assert sync.items[0]['id'] == 'n'
        await sync.stop()

    @pytest.mark.asyncio
    async def test_failed_subscription_degrades(self):
        source = FakeSource(failing=[LIST_A])
        statuses = []

        async def on_status(live):
            statuses.append(live)

        sync = LiveSync(source, on_status=on_status)

        assert await sync.start(LIST_A, [make_item('x')]) is False
        assert sync.live is False
        assert statuses == [False]
        assert sync.items == [make_item('x')]

    @pytest.mark.asyncio
    async def test_dropped_subscription_keeps_last_state(self):
        source = FakeSource()
        statuses = []

        async def on_status(live):
            statuses.append(live)

        sync = LiveSync(source, on_status=on_status)
        await sync.start(LIST_A, [make_item('x')])

        source.streams[0].push(SubscriptionFailure('connection reset'))
        await settle()

        assert statuses == [True, False]
        assert sync.live is False
        assert sync.items == [make_item('x')]
        await sync.stop()

    @pytest.mark.asyncio
    async def test_failed_delivery_keeps_consuming(self):
        source = FakeSource()
        delivered = []

        async def on_event(event):
            if not delivered:
                delivered.append(None)
                raise ConnectionError('socket closing')
            delivered.append(event)

        sync = LiveSync(source, on_event=on_event)
        await sync.start(LIST_A, [make_item('x'), make_item('y')])

        source.streams[0].push(ItemUpdated(wishlist_id=LIST_A, item=make_item('x', purchased=True)))
        source.streams[0].push(ItemUpdated(wishlist_id=LIST_A, item=make_item('y', purchased=True)))
        await settle()

        assert [item['purchased'] for item in sync.items] == [True, True]
        assert len(delivered) == 2
        assert sync.live is True
        assert not sync._task.done()
        await sync.stop()

    @pytest.mark.asyncio
    async def test_snapshot_loaded_after_subscribing(self):
        source = FakeSource()
        snapshots = []

        async def load_items():
            # Written after the subscription opened but before the read
            assert source.streams[0].opened
            source.streams[0].push(ItemCreated(wishlist_id=LIST_A, item=make_item('late')))
            return [make_item('x')]

        async def on_snapshot(items):
            snapshots.append(items)

        sync = LiveSync(source)
        await sync.start(LIST_A, load_items=load_items, on_snapshot=on_snapshot)
        await settle()

        assert snapshots == [[make_item('x')]]
        assert [item['id'] for item in sync.items] == ['late', 'x']
        await sync.stop()

    @pytest.mark.asyncio
    async def test_snapshot_sent_when_subscription_fails(self):
        source = FakeSource(failing=[LIST_A])
        calls = []

        async def load_items():
            return [make_item('x')]

        async def on_snapshot(items):
            calls.append(('snapshot', items))

        async def on_status(live):
            calls.append(('status', live))

        sync = LiveSync(source, on_status=on_status)

        assert await sync.start(LIST_A, load_items=load_items, on_snapshot=on_snapshot) is False
        assert calls == [('snapshot', [make_item('x')]), ('status', False)]

    @pytest.mark.asyncio
    async def test_stop_closes_stream(self):
        source = FakeSource()
        sync = LiveSync(source)
        await sync.start(LIST_A)

        await sync.stop()

        assert source.active == []
        assert sync.live is False


def make_application():
    return URLRouter([
        re_path(r'ws/wishlists/(?P<wishlist_id>[0-9a-fA-F-]{36})/$', WishlistItemsConsumer.as_asgi()),
    ])


@pytest.mark.integration
@pytest.mark.django_db(transaction=True)
class TestWishlistItemsConsumer:
    """Live item changes over WebSocket"""

    async def connect(self, wishlist_id, user=None):
        communicator = WebsocketCommunicator(make_application(), f'/ws/wishlists/{wishlist_id}/')
        communicator.scope['user'] = user or AnonymousUser()
        connected, _ = await communicator.connect()
        return communicator, connected

    @pytest.mark.asyncio
    async def test_connect_sends_snapshot(self, wishlist, item):
        communicator, connected = await self.connect(wishlist.id)
        assert connected

        snapshot = await communicator.receive_json_from()
        assert snapshot['type'] == 'snapshot'
        assert [entry['id'] for entry in snapshot['items']] == [str(item.id)]

        sync_status = await communicator.receive_json_from()
        assert sync_status == {'type': 'sync_status', 'wishlist_id': str(wishlist.id), 'status': 'live'}

        await communicator.disconnect()

    @pytest.mark.asyncio
    async def test_missing_wishlist_rejected(self):
        communicator, connected = await self.connect('00000000-0000-0000-0000-000000000000')

        assert not connected

    @pytest.mark.asyncio
    async def test_receives_item_update(self, wishlist, item):
        communicator, _ = await self.connect(wishlist.id)
        await communicator.receive_json_from()
        await communicator.receive_json_from()

        payload = {'id': str(item.id), 'name': item.name, 'purchased': True, 'created_by': None}
        await get_channel_layer().group_send(
            group_name(wishlist.id),
            to_message(ItemUpdated(wishlist_id=str(wishlist.id), item=payload)),
        )

        message = await communicator.receive_json_from()
        assert message['type'] == 'item_updated'
        assert message['item']['purchased'] is True

        await communicator.disconnect()

    @pytest.mark.asyncio
    async def test_new_item_broadcast_on_save(self, wishlist, owner_user):
        communicator, _ = await self.connect(wishlist.id)
        await communicator.receive_json_from()
        await communicator.receive_json_from()

        await database_sync_to_async(Item.objects.create)(
            wishlist=wishlist, name='Umbrella', created_by=owner_user
        )

        created = await communicator.receive_json_from(timeout=2)
        assert created['type'] == 'item_created'
        assert created['item']['name'] == 'Umbrella'

        notice = await communicator.receive_json_from()
        assert notice == {'type': 'notice', 'message': 'Umbrella was added to the list'}

        await communicator.disconnect()

    @pytest.mark.asyncio
    async def test_switch_moves_subscription(self, wishlist, other_wishlist):
        communicator, _ = await self.connect(wishlist.id)
        await communicator.receive_json_from()
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'switch', 'wishlist_id': str(other_wishlist.id)})
        snapshot = await communicator.receive_json_from()
        assert snapshot['wishlist_id'] == str(other_wishlist.id)
        await communicator.receive_json_from()

        await get_channel_layer().group_send(
            group_name(wishlist.id),
            to_message(ItemDeleted(wishlist_id=str(wishlist.id), item_id='whatever')),
        )
        assert await communicator.receive_nothing()

        await communicator.disconnect()

    @pytest.mark.asyncio
    async def test_item_written_while_subscribing_is_delivered(self, wishlist):
        class SlowSnapshotConsumer(WishlistItemsConsumer):
            async def load_items(self, wishlist_id):
                items = await super().load_items(wishlist_id)
                await database_sync_to_async(Item.objects.create)(wishlist_id=wishlist_id, name='Late gift')
                return items

        application = URLRouter([
            re_path(r'ws/wishlists/(?P<wishlist_id>[0-9a-fA-F-]{36})/$', SlowSnapshotConsumer.as_asgi()),
        ])
        communicator = WebsocketCommunicator(application, f'/ws/wishlists/{wishlist.id}/')
        communicator.scope['user'] = AnonymousUser()
        connected, _ = await communicator.connect()
        assert connected

        messages = [await communicator.receive_json_from(timeout=2) for _ in range(4)]
        by_type = {message['type']: message for message in messages}

        assert messages[0]['type'] == 'snapshot'
        assert messages[0]['items'] == []
        assert by_type['item_created']['item']['name'] == 'Late gift'

        await communicator.disconnect()

    @pytest.mark.asyncio
    async def test_switch_to_missing_wishlist(self, wishlist):
        communicator, _ = await self.connect(wishlist.id)
        await communicator.receive_json_from()
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'switch', 'wishlist_id': 'not-a-uuid'})
        message = await communicator.receive_json_from()

        assert message == {'type': 'error', 'error': 'Wishlist not found.'}
        await communicator.disconnect()


@pytest.mark.integration
@pytest.mark.django_db(transaction=True)
class TestJWTAuthMiddleware:
    """WebSocket cookie authentication"""

    @pytest.mark.asyncio
    async def test_user_from_access_cookie(self, owner_user):
        token = AccessToken.for_user(owner_user)
        scope = {'headers': [(b'cookie', f'access_token={token}'.encode())]}

        user = await JWTAuthMiddleware(None).get_user_from_cookie(scope)

        assert user.id == owner_user.id

    @pytest.mark.asyncio
    async def test_invalid_cookie_is_anonymous(self):
        scope = {'headers': [(b'cookie', b'access_token=garbage')]}

        user = await JWTAuthMiddleware(None).get_user_from_cookie(scope)

        assert user.is_anonymous

    @pytest.mark.asyncio
    async def test_no_cookie_is_anonymous(self):
        user = await JWTAuthMiddleware(None).get_user_from_cookie({'headers': []})

        assert user.is_anonymous
