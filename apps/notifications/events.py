"""
Item change events pushed to live viewers of a wishlist.

On the channel layer an event travels as:

    {"type": "item.event", "event": "created" | "updated" | "deleted",
     "wishlist_id": "<uuid>", "item": {...}}     # created / updated
     ... "item_id": "<uuid>"}                     # deleted
"""
from dataclasses import dataclass
from typing import Union

ITEM_EVENT_TYPE = 'item.event'


def group_name(wishlist_id) -> str:
    """Channel layer group of everyone watching one list."""
    return f'wishlist_items_{wishlist_id}'


@dataclass(frozen=True)
class ItemCreated:
    wishlist_id: str
    item: dict

    @property
    def item_id(self) -> str:
        return str(self.item['id'])


@dataclass(frozen=True)
class ItemUpdated:
    wishlist_id: str
    item: dict

    @property
    def item_id(self) -> str:
        return str(self.item['id'])


@dataclass(frozen=True)
class ItemDeleted:
    wishlist_id: str
    item_id: str


ItemEvent = Union[ItemCreated, ItemUpdated, ItemDeleted]

_EVENT_NAMES = {
    ItemCreated: 'created',
    ItemUpdated: 'updated',
    ItemDeleted: 'deleted',
}


def to_message(event: ItemEvent) -> dict:
    try:
        name = _EVENT_NAMES[type(event)]
    except KeyError:
        raise TypeError(f"Not an item event: {event!r}")

    message = {
        'type': ITEM_EVENT_TYPE,
        'event': name,
        'wishlist_id': str(event.wishlist_id),
    }
    if isinstance(event, ItemDeleted):
        message['item_id'] = str(event.item_id)
    else:
        message['item'] = event.item
    return message


def parse_event(message: dict) -> ItemEvent:
    """Inverse of `to_message`; raises ValueError on anything malformed."""
    try:
        name = message['event']
        wishlist_id = str(message['wishlist_id'])
        if name == 'created':
            return ItemCreated(wishlist_id=wishlist_id, item=_item_payload(message))
        if name == 'updated':
            return ItemUpdated(wishlist_id=wishlist_id, item=_item_payload(message))
        if name == 'deleted':
            return ItemDeleted(wishlist_id=wishlist_id, item_id=str(message['item_id']))
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed item event: {message!r}") from e
    raise ValueError(f"Unknown item event: {name!r}")


def _item_payload(message: dict) -> dict:
    item = message['item']
    if not isinstance(item, dict) or 'id' not in item:
        raise TypeError('item payload needs an id')
    return dict(item)
