"""
Shared lists a viewer has opened before, remembered in a signed cookie.

The cookie holds a JSON array of `{id, name, owner}` objects. It only grows:
a list is added once (matched by id) and never expires here.
"""
import json
import logging

from django.conf import settings

from .resolver import WishlistRef

logger = logging.getLogger(__name__)

COOKIE_SALT = 'apps.wishlist.shared_lists'


class SharedListStore:

    def __init__(self, refs=None):
        self.refs = list(refs or [])
        self.changed = False

    @classmethod
    def from_request(cls, request) -> 'SharedListStore':
        raw = request.get_signed_cookie(
            settings.SHARED_WISHLISTS_COOKIE, default=None, salt=COOKIE_SALT
        )
        if not raw:
            return cls()

        try:
            entries = json.loads(raw)
            refs = [
                WishlistRef(id=str(entry['id']), name=str(entry['name']), owner=str(entry['owner']))
                for entry in entries
            ]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Ignoring unreadable shared wishlists cookie: {e}")
            return cls()
        return cls(refs)

    def __contains__(self, list_id) -> bool:
        return any(ref.id == str(list_id) for ref in self.refs)

    def remember(self, ref: WishlistRef) -> bool:
        """Append `ref` unless a list with the same id is already stored."""
        if ref.id in self:
            return False
        self.refs.append(ref)
        self.changed = True
        return True

    def save(self, response):
        if not self.changed:
            return response
        response.set_signed_cookie(
            settings.SHARED_WISHLISTS_COOKIE,
            json.dumps([ref.as_dict() for ref in self.refs]),
            salt=COOKIE_SALT,
            max_age=settings.SHARED_WISHLISTS_MAX_AGE,
            httponly=True,
            secure=not settings.DEBUG,
            samesite='Lax' if settings.DEBUG else 'None',
        )
        return response
