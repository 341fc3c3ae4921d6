import pytest
from unittest.mock import patch
from django.urls import reverse
from rest_framework import status
from rest_framework_simplejwt.tokens import AccessToken
from apps.users.models import User
from apps.users.views import LoginRateThrottle


@pytest.mark.unit
class TestUserRegistration:
    """Test sign up endpoint"""

    def test_register_success(self, api_client):
        """Test successful registration signs the user in"""
        url = reverse('auth-register')
        data = {
            'email': 'NewUser@Test.com',
            'password': 'SecurePass123!',
            'first_name': 'Nora',
        }
        response = api_client.post(url, data, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert User.objects.filter(email='newuser@test.com').exists()
        assert response.data['user']['email'] == 'newuser@test.com'
        assert 'access_token' in response.cookies
        assert 'refresh_token' in response.cookies

    def test_register_password_too_short(self, api_client):
        """Test registration fails with short password"""
        url = reverse('auth-register')
        response = api_client.post(url, {'email': 'a@test.com', 'password': 'short'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_register_duplicate_email(self, api_client, owner_user):
        """Test registration fails with an email already in use"""
        url = reverse('auth-register')
        data = {'email': owner_user.email.upper(), 'password': 'SecurePass123!'}
        response = api_client.post(url, data, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'email' in response.data


@pytest.mark.unit
class TestJWTAuthentication:
    """Test cookie based JWT sign in"""

    def test_login_success(self, api_client, owner_user):
        """Test login sets httpOnly cookies"""
        url = reverse('auth-login')
        response = api_client.post(url, {'email': 'owner@test.com', 'password': 'testpass123'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.cookies['access_token']['httponly']
        assert 'access' not in response.data

    def test_login_invalid_credentials(self, api_client, owner_user):
        """Test login with a wrong password"""
        url = reverse('auth-login')
        response = api_client.post(url, {'email': 'owner@test.com', 'password': 'wrong'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'access_token' not in response.cookies

    def test_login_rate_limited(self, api_client, owner_user):
        """Test repeated sign-in attempts are throttled"""
        url = reverse('auth-login')
        data = {'email': 'owner@test.com', 'password': 'wrong'}

        with patch.object(LoginRateThrottle, 'THROTTLE_RATES', {'login': '2/minute'}):
            codes = [api_client.post(url, data, format='json').status_code for _ in range(3)]

        assert codes[-1] == status.HTTP_429_TOO_MANY_REQUESTS

    def test_cookie_authenticates_requests(self, api_client, owner_user):
        """Test the access cookie is enough to reach protected endpoints"""
        api_client.post(reverse('auth-login'), {'email': 'owner@test.com', 'password': 'testpass123'}, format='json')

        response = api_client.get(reverse('users-me'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['id'] == str(owner_user.id)

    def test_refresh_rotates_tokens(self, api_client, owner_user):
        """Test refreshing with the refresh cookie"""
        api_client.post(reverse('auth-login'), {'email': 'owner@test.com', 'password': 'testpass123'}, format='json')

        response = api_client.post(reverse('auth-token-refresh'))

        assert response.status_code == status.HTTP_200_OK
        assert 'access_token' in response.cookies

    def test_refresh_without_token(self, api_client):
        response = api_client.post(reverse('auth-token-refresh'))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_logout_blacklists_token(self, api_client, owner_user):
        """Test a logged out refresh token cannot be reused"""
        login = api_client.post(reverse('auth-login'), {'email': 'owner@test.com', 'password': 'testpass123'}, format='json')
        refresh_token = login.cookies['refresh_token'].value

        response = api_client.post(reverse('auth-logout'))
        assert response.status_code == status.HTTP_200_OK

        response = api_client.post(reverse('auth-token-refresh'), {'refresh': refresh_token}, format='json')
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_foreign_origin_blocked(self, api_client, owner_user):
        """Test cookie authenticated writes from unknown origins are refused"""
        api_client.post(reverse('auth-login'), {'email': 'owner@test.com', 'password': 'testpass123'}, format='json')

        response = api_client.post(
            reverse('wishlists-list'), {'name': 'Sneaky'}, format='json',
            HTTP_ORIGIN='https://evil.example.com'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_protected_endpoint_without_token(self, api_client):
        response = api_client.get(reverse('users-me'))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.unit
class TestUserProfile:
    """Test the current viewer endpoint"""

    def test_update_own_profile(self, authenticated_client, owner_user):
        url = reverse('users-me')
        response = authenticated_client.patch(url, {'last_name': 'Stone'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        owner_user.refresh_from_db()
        assert owner_user.last_name == 'Stone'

    def test_cannot_change_email(self, authenticated_client, owner_user):
        url = reverse('users-me')
        authenticated_client.patch(url, {'email': 'other@test.com'}, format='json')

        owner_user.refresh_from_db()
        assert owner_user.email == 'owner@test.com'

    def test_password_is_hashed(self, owner_user):
        assert owner_user.password != 'testpass123'
        assert owner_user.check_password('testpass123')

    def test_token_contains_no_sensitive_data(self, owner_user):
        token = AccessToken.for_user(owner_user)

        assert 'password' not in token.payload
        assert 'email' not in token.payload
