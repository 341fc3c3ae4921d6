"""
Push item changes to everyone watching the list.

Events go out only after the surrounding transaction commits, so a rolled
back write is never announced.
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from apps.notifications.events import ItemCreated, ItemUpdated, ItemDeleted
from apps.notifications.helpers import broadcast_item_event
from .models import Item
from .serializers import ItemSerializer


@receiver(post_save, sender=Item)
def announce_item_saved(sender, instance, created, **kwargs):
    payload = dict(ItemSerializer(instance).data)
    event_class = ItemCreated if created else ItemUpdated
    event = event_class(wishlist_id=str(instance.wishlist_id), item=payload)
    transaction.on_commit(lambda: broadcast_item_event(event))


@receiver(post_delete, sender=Item)
def announce_item_deleted(sender, instance, **kwargs):
    event = ItemDeleted(wishlist_id=str(instance.wishlist_id), item_id=str(instance.id))
    transaction.on_commit(lambda: broadcast_item_event(event))
