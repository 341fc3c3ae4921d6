from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.throttling import AnonRateThrottle
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.tokens import RefreshToken
from django.conf import settings
import logging

from .models import User
from .serializers import UserSerializer, UserRegistrationSerializer, UserLoginSerializer

logger = logging.getLogger(__name__)


# Cookie settings for JWT tokens
JWT_COOKIE_SECURE = not settings.DEBUG  # HTTPS only in production
JWT_COOKIE_HTTPONLY = True
# Cross-site frontends need SameSite=None (with Secure); same-origin dev uses Lax
JWT_COOKIE_SAMESITE = 'None' if not settings.DEBUG else 'Lax'
JWT_ACCESS_COOKIE_NAME = 'access_token'
JWT_REFRESH_COOKIE_NAME = 'refresh_token'
JWT_ACCESS_MAX_AGE = 60 * 15  # 15 minutes
JWT_REFRESH_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


def set_jwt_cookies(response, access_token, refresh_token):
    """Set JWT tokens as httpOnly cookies."""
    response.set_cookie(
        JWT_ACCESS_COOKIE_NAME,
        access_token,
        max_age=JWT_ACCESS_MAX_AGE,
        httponly=JWT_COOKIE_HTTPONLY,
        secure=JWT_COOKIE_SECURE,
        samesite=JWT_COOKIE_SAMESITE,
        path='/',
    )
    response.set_cookie(
        JWT_REFRESH_COOKIE_NAME,
        refresh_token,
        max_age=JWT_REFRESH_MAX_AGE,
        httponly=JWT_COOKIE_HTTPONLY,
        secure=JWT_COOKIE_SECURE,
        samesite=JWT_COOKIE_SAMESITE,
        path='/',
    )
    return response


def clear_jwt_cookies(response):
    """Clear JWT cookies on logout."""
    response.delete_cookie(JWT_ACCESS_COOKIE_NAME, path='/')
    response.delete_cookie(JWT_REFRESH_COOKIE_NAME, path='/')
    return response


def _signed_in_response(user, message, status_code=status.HTTP_200_OK):
    refresh = RefreshToken.for_user(user)
    response = Response({
        'user': UserSerializer(user).data,
        'message': message,
    }, status=status_code)
    return set_jwt_cookies(response, str(refresh.access_token), str(refresh))


class LoginRateThrottle(AnonRateThrottle):
    """Throttle sign-in attempts to slow down brute force."""
    scope = 'login'


class RegistrationRateThrottle(AnonRateThrottle):
    """Throttle sign-ups to slow down spam accounts."""
    scope = 'registration'


class AuthViewSet(viewsets.ViewSet):
    """ViewSet for authentication endpoints."""
    permission_classes = [AllowAny]

    @action(detail=False, methods=['post'], throttle_classes=[RegistrationRateThrottle], authentication_classes=[])
    def register(self, request):
        """Create an account and sign it in."""
        serializer = UserRegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        logger.info(f"New account registered: {user.id}")
        return _signed_in_response(user, 'Signed up successfully', status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'], throttle_classes=[LoginRateThrottle], authentication_classes=[])
    def login(self, request):
        """Sign in and return tokens in httpOnly cookies."""
        serializer = UserLoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return _signed_in_response(serializer.validated_data['user'], 'Signed in successfully')

    @action(detail=False, methods=['post'], permission_classes=[IsAuthenticated])
    def logout(self, request):
        """Blacklist the refresh token and clear cookies."""
        refresh_token = request.COOKIES.get(JWT_REFRESH_COOKIE_NAME) or request.data.get('refresh')
        if refresh_token:
            try:
                RefreshToken(refresh_token).blacklist()
            except (TokenError, InvalidToken):
                logger.info("Logout with an invalid or already blacklisted refresh token")

        response = Response({'message': 'Successfully logged out.'})
        return clear_jwt_cookies(response)

    # An expired access cookie must not block the refresh itself
    @action(detail=False, methods=['post'], authentication_classes=[])
    def token_refresh(self, request):
        """Rotate tokens using the refresh token cookie (or body)."""
        refresh_token = request.COOKIES.get(JWT_REFRESH_COOKIE_NAME) or request.data.get('refresh')

        if not refresh_token:
            return Response(
                {'error': 'Refresh token is required.'},
                status=status.HTTP_400_BAD_REQUEST
            )

        serializer = TokenRefreshSerializer(data={'refresh': refresh_token})
        try:
            serializer.is_valid(raise_exception=True)
            tokens = serializer.validated_data
            # Without rotation the old refresh token stays valid
            new_refresh = tokens.get('refresh', refresh_token)
            response = Response({'message': 'Token refreshed successfully'})
            return set_jwt_cookies(response, tokens['access'], new_refresh)
        except (TokenError, InvalidToken):
            response = Response(
                {'error': 'Invalid or expired refresh token.'},
                status=status.HTTP_401_UNAUTHORIZED
            )
            return clear_jwt_cookies(response)


class UserViewSet(viewsets.GenericViewSet):
    """ViewSet for the signed-in viewer's own profile."""
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return User.objects.filter(id=self.request.user.id)

    @action(detail=False, methods=['get', 'patch'])
    def me(self, request):
        """Get or update the current viewer."""
        if request.method == 'GET':
            return Response(UserSerializer(request.user).data)

        serializer = UserSerializer(request.user, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)
