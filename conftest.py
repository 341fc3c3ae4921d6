import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient
from apps.wishlist.models import Wishlist, Item

User = get_user_model()


@pytest.fixture(autouse=True)
def enable_db_access_for_all_tests(db):
    """
    Every test gets the database and an empty cache.
    Throttle counters live in the cache and would leak between tests.
    """
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    return APIClient()


@pytest.fixture
def owner_user(db):
    """Create the user who owns the test wishlist."""
    return User.objects.create_user(
        email='owner@test.com',
        password='testpass123',
        first_name='Olive',
    )


@pytest.fixture
def other_user(db):
    """Create a user who does not own the test wishlist."""
    return User.objects.create_user(
        email='friend@test.com',
        password='testpass123',
        first_name='Finn',
    )


@pytest.fixture
def wishlist(db, owner_user):
    """Create a wishlist."""
    return Wishlist.objects.create(user=owner_user, name='Birthday')


@pytest.fixture
def other_wishlist(db, other_user):
    """Create a wishlist owned by someone else."""
    return Wishlist.objects.create(user=other_user, name='Holidays')


@pytest.fixture
def item(db, wishlist, owner_user):
    """Create an item on the test wishlist."""
    return Item.objects.create(
        wishlist=wishlist,
        name='Headphones',
        link='https://shop.example.com/headphones',
        created_by=owner_user,
    )


@pytest.fixture
def authenticated_client(api_client, owner_user):
    """Return API client signed in as the wishlist owner."""
    api_client.force_authenticate(user=owner_user)
    return api_client


@pytest.fixture
def other_client(other_user):
    """Return API client signed in as another user."""
    client = APIClient()
    client.force_authenticate(user=other_user)
    return client
