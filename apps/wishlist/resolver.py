"""
Decide which wishlist is "current" for a viewer.

Three sources feed the decision: the viewer's own lists, the shared lists the
viewer opened before (cookie), and an explicit list id from a share link.
Everything the resolver needs arrives through `ResolutionContext` and the
two fetch callables, so it can run without a request or a database.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence
from urllib.parse import quote

from django.conf import settings
from django.db import DatabaseError

from .exceptions import AuthenticationRequired, BackendUnavailable, ListNotFound
from .models import Wishlist

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WishlistRef:
    """The `{id, name, owner}` shape shared by owned and cached lists."""
    id: str
    name: str
    owner: str

    @classmethod
    def from_wishlist(cls, wishlist: Wishlist) -> 'WishlistRef':
        return cls(id=str(wishlist.id), name=wishlist.name, owner=str(wishlist.user_id))

    def is_owned_by(self, viewer_id) -> bool:
        return viewer_id is not None and self.owner == str(viewer_id)

    def as_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'owner': self.owner}


@dataclass(frozen=True)
class ResolutionContext:
    viewer_id: Optional[str]
    requested_list_id: Optional[str] = None
    # Path plus query string of the page being resolved
    request_path: str = '/'
    cached_shared_lists: Sequence[WishlistRef] = field(default_factory=tuple)


@dataclass(frozen=True)
class Resolution:
    current: WishlistRef
    wishlists: list
    # True when the current list came from a share link
    from_share_link: bool = False


def fetch_wishlist(list_id) -> Optional[WishlistRef]:
    """Load any list by id; ownership is not checked."""
    try:
        pk = uuid.UUID(str(list_id))
    except ValueError:
        return None

    try:
        wishlist = Wishlist.objects.filter(pk=pk).first()
    except DatabaseError as e:
        logger.error(f"Error fetching wishlist {list_id}: {e}")
        raise BackendUnavailable() from e
    return WishlistRef.from_wishlist(wishlist) if wishlist else None


def fetch_owned_wishlists(viewer_id) -> list:
    try:
        return [
            WishlistRef.from_wishlist(wishlist)
            for wishlist in Wishlist.objects.filter(user_id=viewer_id).order_by('created_at')
        ]
    except DatabaseError as e:
        logger.error(f"Error fetching wishlists for {viewer_id}: {e}")
        raise BackendUnavailable() from e


def build_auth_redirect(request_path: str, auth_url: Optional[str] = None) -> str:
    """Sign-in URL that brings the viewer back to `request_path` afterwards."""
    auth_url = auth_url or settings.WISHLIST_AUTH_URL
    return f"{auth_url}?redirect={quote(request_path, safe='')}"


class ListResolver:
    """
    Resolution order:

    1. a requested list id wins, for anonymous viewers too;
    2. otherwise anonymous viewers must sign in;
    3. otherwise owned lists followed by cached shared lists, first one wins;
    4. nothing at all means the viewer has to create a list.
    """

    def __init__(
        self,
        fetch_list: Optional[Callable] = None,
        fetch_owned_lists: Optional[Callable] = None,
        auth_url: Optional[str] = None,
        create_url: Optional[str] = None,
    ):
        self.fetch_list = fetch_list or fetch_wishlist
        self.fetch_owned_lists = fetch_owned_lists or fetch_owned_wishlists
        self.auth_url = auth_url or settings.WISHLIST_AUTH_URL
        self.create_url = create_url or settings.WISHLIST_CREATE_URL

    def selectable_lists(self, context: ResolutionContext) -> list:
        # Plain concatenation: a list both owned and cached shows up twice
        wishlists = []
        if context.viewer_id is not None:
            wishlists.extend(self.fetch_owned_lists(context.viewer_id))
        wishlists.extend(context.cached_shared_lists)
        return wishlists

    def resolve(self, context: ResolutionContext) -> Resolution:
        if context.requested_list_id:
            requested = self.fetch_list(context.requested_list_id)
            if requested is None:
                logger.info(f"Share link points to missing wishlist {context.requested_list_id}")
                raise ListNotFound()

            wishlists = self.selectable_lists(context)
            if all(ref.id != requested.id for ref in wishlists):
                wishlists.append(requested)
            return Resolution(current=requested, wishlists=wishlists, from_share_link=True)

        if context.viewer_id is None:
            raise AuthenticationRequired(
                redirect_to=build_auth_redirect(context.request_path, self.auth_url)
            )

        wishlists = self.selectable_lists(context)
        if not wishlists:
            raise ListNotFound(
                'You have no wishlists yet.',
                redirect_to=self.create_url,
            )
        return Resolution(current=wishlists[0], wishlists=wishlists)
