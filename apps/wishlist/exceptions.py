"""
Failures of list resolution, list access and live updates.

Each error renders as the API's `{'error': ...}` body; the ones that send the
viewer somewhere else also carry `redirect`.
"""


class WishlistError(Exception):
    status_code = 400
    default_message = 'Wishlist request failed.'

    def __init__(self, message=None, redirect_to=None):
        self.message = message or self.default_message
        self.redirect_to = redirect_to
        super().__init__(self.message)

    def as_response_data(self) -> dict:
        data = {'error': self.message}
        if self.redirect_to:
            data['redirect'] = self.redirect_to
        return data


class AuthenticationRequired(WishlistError):
    """Anonymous viewer with no share link: send them to sign in."""
    status_code = 401
    default_message = 'Authentication required.'


class ListNotFound(WishlistError):
    """Requested list is missing, or the viewer has no list at all."""
    status_code = 404
    default_message = 'Wishlist not found.'


class PermissionDenied(WishlistError):
    status_code = 403
    default_message = 'Only the owner of this wishlist can do that.'


class ConfirmationRequired(WishlistError):
    """Owner asked to reveal purchased items without confirming."""
    status_code = 409
    default_message = 'Are you sure you want to show purchased items? This may spoil the surprise.'

    def as_response_data(self) -> dict:
        return {'confirmation_required': True, 'message': self.message}


class BackendUnavailable(WishlistError):
    """A query or mutation failed; nothing was changed."""
    status_code = 503
    default_message = 'Service temporarily unavailable, please try again.'


class SubscriptionFailure(WishlistError):
    """Live updates could not be set up or were dropped."""
    status_code = 503
    default_message = 'Live updates are unavailable.'
