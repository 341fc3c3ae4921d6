from rest_framework import permissions


def _owner_id(obj):
    # Items answer through their wishlist
    wishlist = getattr(obj, 'wishlist', obj)
    return wishlist.user_id


class IsWishlistOwner(permissions.BasePermission):
    """
    Object permission for wishlists and their items.
    Only the user who created the list may change it.
    """
    message = 'Only the owner of this wishlist can do that.'

    def has_object_permission(self, request, view, obj):
        user = request.user
        return bool(user and user.is_authenticated and _owner_id(obj) == user.id)
