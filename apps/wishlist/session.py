"""
Per-session viewer state: the current wishlist and whether purchased items
are shown. Kept in the Django session so every request of a session sees
exactly one current list.
"""
from .exceptions import ConfirmationRequired


class ViewerSession:
    CURRENT_KEY = 'wishlist_current_id'
    SHOW_PURCHASED_KEY = 'wishlist_show_purchased'

    def __init__(self, session):
        self._session = session

    @property
    def current_wishlist_id(self):
        return self._session.get(self.CURRENT_KEY)

    @property
    def show_purchased(self) -> bool:
        return bool(self._session.get(self.SHOW_PURCHASED_KEY, False))

    def shows_purchased_for(self, wishlist_id) -> bool:
        """The toggle only applies to the list it was flipped on."""
        return self.show_purchased and self.current_wishlist_id == str(wishlist_id)

    def select(self, wishlist_id) -> bool:
        """Make `wishlist_id` current; switching lists hides purchased items again."""
        wishlist_id = str(wishlist_id)
        if self.current_wishlist_id == wishlist_id:
            return False
        self._session[self.CURRENT_KEY] = wishlist_id
        self._session[self.SHOW_PURCHASED_KEY] = False
        return True

    def set_show_purchased(self, show: bool, *, is_owner: bool, confirmed: bool = False) -> bool:
        # Owners could spoil their own surprise, so they must confirm
        if show and is_owner and not confirmed:
            raise ConfirmationRequired()
        self._session[self.SHOW_PURCHASED_KEY] = bool(show)
        return self.show_purchased
