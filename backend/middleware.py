"""
Custom middleware for the Wishlist Share API.
"""
import logging

from django.conf import settings
from django.http import JsonResponse

logger = logging.getLogger(__name__)


class JWTCookieMiddleware:
    """
    Copy the JWT access token from its httpOnly cookie into the
    Authorization header so DRF's JWTAuthentication picks it up.

    Unsafe requests carrying the cookie must come from an allowed origin
    (CORS_ALLOWED_ORIGINS); requests without an Origin header pass.
    """

    JWT_ACCESS_COOKIE_NAME = 'access_token'
    UNSAFE_METHODS = {'POST', 'PUT', 'PATCH', 'DELETE'}

    def __init__(self, get_response):
        self.get_response = get_response
        self.allowed_origins = set(getattr(settings, 'CORS_ALLOWED_ORIGINS', []))

    def __call__(self, request):
        access_token = request.COOKIES.get(self.JWT_ACCESS_COOKIE_NAME)

        if (request.method in self.UNSAFE_METHODS and
                request.path.startswith('/api/') and
                access_token):
            origin = request.META.get('HTTP_ORIGIN')
            if origin and origin not in self.allowed_origins:
                logger.warning(
                    f"CSRF Protection: Blocked {request.method} {request.path} "
                    f"from origin {origin}"
                )
                return JsonResponse(
                    {'error': 'CSRF validation failed: Invalid origin'},
                    status=403
                )

        # An explicit Authorization header always wins
        if 'HTTP_AUTHORIZATION' not in request.META and access_token:
            request.META['HTTP_AUTHORIZATION'] = f'Bearer {access_token}'

        return self.get_response(request)
