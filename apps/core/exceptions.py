"""
Project-wide DRF exception handler.

Keeps every failure in the `{'error': ...}` shape the frontend shows as a
transient notice, including database failures that escape a view.
"""
import logging

from django.db import DatabaseError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.wishlist.exceptions import BackendUnavailable, WishlistError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    if isinstance(exc, DatabaseError):
        view = context.get('view')
        logger.error(
            f"Database error in {view.__class__.__name__ if view else 'unknown view'}: {exc}",
            exc_info=True
        )
        exc = BackendUnavailable()

    if isinstance(exc, WishlistError):
        return Response(exc.as_response_data(), status=exc.status_code)

    return exception_handler(exc, context)
