from celery import shared_task
import logging

from apps.previews.services import fetch_og_image, PreviewFetchError
from .models import Item

logger = logging.getLogger(__name__)


@shared_task
def fetch_item_preview(item_id):
    """
    Fill in the preview image of an item from its link.
    Best effort: a failed fetch leaves the item without preview.
    """
    item = Item.objects.filter(id=item_id).first()
    if item is None or not item.link or item.og_image:
        return None

    try:
        og_image = fetch_og_image(item.link)
    except PreviewFetchError as e:
        logger.warning(f"Preview fetch failed for item {item_id}: {e}")
        return None

    if not og_image:
        return None
    if len(og_image) > Item._meta.get_field('og_image').max_length:
        logger.warning(f"Preview URL too long for item {item_id}, not stored")
        return None

    item.og_image = og_image
    item.save(update_fields=['og_image', 'updated_at'])
    logger.info(f"Preview stored for item {item_id}")
    return og_image
