from django.apps import AppConfig


class WishlistConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.wishlist'
    label = 'wishlist'

    def ready(self):
        """Broadcast item changes to live viewers."""
        import apps.wishlist.signals  # noqa
