"""
JWT authentication for Django Channels WebSockets.

The access token is read from the same httpOnly cookie the REST API uses.
Tokens in URL params are never accepted so they do not end up in logs.
Connections without a valid token continue as AnonymousUser.
"""
import logging
from typing import Dict, Union, TYPE_CHECKING

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth.models import AnonymousUser
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.http.cookie import parse_cookie
from rest_framework_simplejwt.tokens import AccessToken
from rest_framework_simplejwt.exceptions import TokenError, InvalidToken

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

User = get_user_model()
logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE_NAME = 'access_token'


class JWTAuthMiddleware(BaseMiddleware):
    """Put the cookie's user (or AnonymousUser) into `scope['user']`."""

    async def __call__(self, scope, receive, send):
        scope['user'] = await self.get_user_from_cookie(scope)
        return await super().__call__(scope, receive, send)

    @database_sync_to_async
    def get_user_from_cookie(self, scope) -> Union['AbstractBaseUser', AnonymousUser]:
        access_token_str = self._parse_cookies(scope).get(ACCESS_TOKEN_COOKIE_NAME)
        if not access_token_str:
            return AnonymousUser()

        try:
            access_token = AccessToken(access_token_str)
            user_id = access_token['user_id']
        except (TokenError, InvalidToken, KeyError):
            return AnonymousUser()

        try:
            return User.objects.get(id=user_id, is_active=True)
        except (User.DoesNotExist, ValidationError):
            logger.info(f"WebSocket token for unknown user {user_id}")
            return AnonymousUser()

    def _parse_cookies(self, scope) -> Dict[str, str]:
        """Cookies sent with the WebSocket handshake."""
        if 'cookies' in scope:
            return scope['cookies']
        for header_name, header_value in scope.get('headers', []):
            if header_name == b'cookie':
                return parse_cookie(header_value.decode('latin1'))
        return {}


def JWTAuthMiddlewareStack(inner):
    """Helper to wrap WebSocket routes."""
    return JWTAuthMiddleware(inner)
