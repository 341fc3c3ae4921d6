from django.db import models
from django.conf import settings
import uuid


class Wishlist(models.Model):
    """A named wishlist owned by exactly one user."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='wishlists'
    )
    name = models.CharField(max_length=100)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'wishlists'
        verbose_name = 'Wishlist'
        verbose_name_plural = 'Wishlists'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.name} ({self.user_id})"

    def is_owned_by(self, viewer_id) -> bool:
        """Only the owner may add or delete items."""
        return viewer_id is not None and str(self.user_id) == str(viewer_id)


class Item(models.Model):
    """
    Something on a wishlist.

    Anyone who can see the list may flip `purchased`, owners included,
    which is why the flag is hidden from owners by default.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    wishlist = models.ForeignKey(Wishlist, on_delete=models.CASCADE, related_name='items')
    name = models.CharField(max_length=200)
    link = models.URLField(max_length=2048, blank=True)
    notes = models.TextField(blank=True)
    purchased = models.BooleanField(default=False)
    og_image = models.URLField(max_length=2048, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'items'
        verbose_name = 'Item'
        verbose_name_plural = 'Items'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.wishlist.name} - {self.name}"
