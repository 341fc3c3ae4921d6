import pytest
import httpx
from unittest.mock import patch
from urllib.parse import quote
from django.db import DatabaseError
from django.urls import reverse
from rest_framework import status

from apps.wishlist.exceptions import AuthenticationRequired, ConfirmationRequired, ListNotFound
from apps.wishlist.models import Wishlist, Item
from apps.wishlist.resolver import ListResolver, ResolutionContext, WishlistRef, build_auth_redirect
from apps.wishlist.session import ViewerSession
from apps.wishlist.shared_lists import SharedListStore
from apps.wishlist.views import build_share_url

OWNER = 'owner-1'
MINE = WishlistRef(id='list-mine', name='Mine', owner=OWNER)
SHARED = WishlistRef(id='list-shared', name='Shared', owner='owner-2')


def make_resolver(lists=(), owned=None):
    """Resolver over in-memory lists; `owned` maps viewer id -> refs."""
    by_id = {ref.id: ref for ref in lists}
    owned = owned or {}
    return ListResolver(
        fetch_list=by_id.get,
        fetch_owned_lists=lambda viewer_id: list(owned.get(viewer_id, [])),
        auth_url='/auth',
        create_url='/create-wishlist',
    )


@pytest.mark.unit
class TestListResolver:
    """Resolution of the current wishlist"""

    def test_anonymous_with_existing_requested_list(self):
        resolver = make_resolver(lists=[SHARED])
        resolution = resolver.resolve(ResolutionContext(viewer_id=None, requested_list_id=SHARED.id))

        assert resolution.current == SHARED
        assert resolution.wishlists == [SHARED]
        assert resolution.from_share_link

    def test_anonymous_without_requested_list_redirects_to_auth(self):
        resolver = make_resolver()
        context = ResolutionContext(viewer_id=None, request_path='/lists?tab=mine&sort=new')

        with pytest.raises(AuthenticationRequired) as exc_info:
            resolver.resolve(context)

        assert exc_info.value.redirect_to == '/auth?redirect=%2Flists%3Ftab%3Dmine%26sort%3Dnew'

    def test_signed_in_without_lists_redirects_to_creation(self):
        resolver = make_resolver()

        with pytest.raises(ListNotFound) as exc_info:
            resolver.resolve(ResolutionContext(viewer_id=OWNER))

        assert exc_info.value.redirect_to == '/create-wishlist'

    def test_missing_requested_list_has_no_redirect(self):
        resolver = make_resolver(owned={OWNER: [MINE]})

        with pytest.raises(ListNotFound) as exc_info:
            resolver.resolve(ResolutionContext(viewer_id=OWNER, requested_list_id='gone'))

        assert exc_info.value.redirect_to is None

    def test_owned_lists_come_before_cached_lists(self):
        resolver = make_resolver(owned={OWNER: [MINE]})
        context = ResolutionContext(viewer_id=OWNER, cached_shared_lists=(SHARED,))

        resolution = resolver.resolve(context)

        assert resolution.current == MINE
        assert resolution.wishlists == [MINE, SHARED]
        assert not resolution.from_share_link

    def test_cached_list_alone_becomes_current(self):
        resolver = make_resolver()
        context = ResolutionContext(viewer_id=OWNER, cached_shared_lists=(SHARED,))

        assert resolver.resolve(context).current == SHARED

    def test_list_both_owned_and_cached_appears_twice(self):
        resolver = make_resolver(owned={OWNER: [MINE]})
        context = ResolutionContext(viewer_id=OWNER, cached_shared_lists=(MINE,))

        assert resolver.resolve(context).wishlists == [MINE, MINE]

    def test_requested_list_appended_only_when_absent(self):
        resolver = make_resolver(lists=[MINE, SHARED], owned={OWNER: [MINE]})

        appended = resolver.resolve(ResolutionContext(viewer_id=OWNER, requested_list_id=SHARED.id))
        present = resolver.resolve(ResolutionContext(viewer_id=OWNER, requested_list_id=MINE.id))

        assert appended.wishlists == [MINE, SHARED]
        assert present.current == MINE
        assert present.wishlists == [MINE]

    def test_build_auth_redirect_encodes_everything(self):
        assert build_auth_redirect('/?wishlist=a b', '/auth') == '/auth?redirect=%2F%3Fwishlist%3Da%20b'


@pytest.mark.unit
class TestViewerSession:
    """Current list and purchased visibility"""

    def test_owner_must_confirm_showing_purchased(self):
        session = ViewerSession({})
        session.select('list-1')

        with pytest.raises(ConfirmationRequired):
            session.set_show_purchased(True, is_owner=True)
        assert session.show_purchased is False

        assert session.set_show_purchased(True, is_owner=True, confirmed=True) is True

    def test_non_owner_shows_without_confirmation(self):
        session = ViewerSession({})
        session.select('list-1')

        assert session.set_show_purchased(True, is_owner=False) is True
        assert session.shows_purchased_for('list-1')
        assert not session.shows_purchased_for('list-2')

    def test_switching_lists_hides_purchased_again(self):
        session = ViewerSession({})
        session.select('list-1')
        session.set_show_purchased(True, is_owner=False)

        assert session.select('list-1') is False
        assert session.show_purchased is True

        assert session.select('list-2') is True
        assert session.show_purchased is False


@pytest.mark.unit
class TestSharedListStore:
    """Cached shared list references"""

    def test_remember_is_idempotent_by_id(self):
        store = SharedListStore()

        assert store.remember(SHARED) is True
        assert store.remember(WishlistRef(id=SHARED.id, name='Renamed', owner='x')) is False
        assert store.refs == [SHARED]
        assert SHARED.id in store

    def test_missing_cookie_gives_empty_store(self, rf):
        store = SharedListStore.from_request(rf.get('/'))

        assert store.refs == []
        assert store.changed is False

    def test_build_share_url_keeps_other_params(self):
        url = build_share_url('https://app.example.com/list?lang=en&wishlist=old', 'abc')
        assert url == 'https://app.example.com/list?lang=en&wishlist=abc'


@pytest.mark.integration
class TestWishlistAPI:
    """Wishlist endpoints"""

    def test_create_wishlist(self, authenticated_client, owner_user):
        url = reverse('wishlists-list')
        response = authenticated_client.post(url, {'name': 'Wedding'}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['owner'] == str(owner_user.id)
        assert Wishlist.objects.filter(user=owner_user, name='Wedding').exists()

    def test_create_wishlist_blank_name(self, authenticated_client):
        url = reverse('wishlists-list')
        response = authenticated_client.post(url, {'name': '   '}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_create_wishlist_anonymous(self, api_client):
        url = reverse('wishlists-list')
        response = api_client.post(url, {'name': 'Wedding'}, format='json')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_list_only_owned(self, authenticated_client, wishlist, other_wishlist):
        response = authenticated_client.get(reverse('wishlists-list'))

        assert response.status_code == status.HTTP_200_OK
        ids = [entry['id'] for entry in response.data]
        assert ids == [str(wishlist.id)]

    def test_retrieve_by_share_link(self, api_client, wishlist):
        response = api_client.get(reverse('wishlists-detail', args=[wishlist.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['name'] == 'Birthday'

    def test_share_url(self, api_client, wishlist):
        url = reverse('wishlists-share', args=[wishlist.id])
        response = api_client.get(url, {'url': 'https://app.example.com/'})

        assert response.status_code == status.HTTP_200_OK
        assert response.data['share_url'] == f'https://app.example.com/?wishlist={wishlist.id}'


@pytest.mark.integration
class TestCurrentWishlistAPI:
    """Resolution through the API"""

    def test_anonymous_redirected_to_auth(self, api_client):
        url = reverse('wishlists-current')
        response = api_client.get(url)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['redirect'] == '/auth?redirect=' + quote(url, safe='')

    def test_anonymous_share_link(self, api_client, wishlist):
        url = reverse('wishlists-current')
        response = api_client.get(url, {'wishlist': str(wishlist.id)})

        assert response.status_code == status.HTTP_200_OK
        assert response.data['current']['id'] == str(wishlist.id)
        assert response.data['is_owner'] is False
        assert response.data['show_purchased'] is False
        assert 'shared_wishlists' in response.cookies

    def test_viewer_cookies_sent_cross_site(self, api_client, wishlist):
        """Test state cookies reach the API from a frontend on another site"""
        response = api_client.get(reverse('wishlists-current'), {'wishlist': str(wishlist.id)})

        for name in ('shared_wishlists', 'sessionid'):
            assert response.cookies[name]['samesite'] == 'None'
            assert response.cookies[name]['secure']

    def test_missing_share_link(self, api_client, wishlist):
        url = reverse('wishlists-current')
        response = api_client.get(url, {'wishlist': '00000000-0000-0000-0000-000000000000'})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert 'redirect' not in response.data

    def test_signed_in_without_lists(self, other_client):
        response = other_client.get(reverse('wishlists-current'))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['redirect'] == '/create-wishlist'

    def test_owner_gets_first_owned_list(self, authenticated_client, wishlist):
        response = authenticated_client.get(reverse('wishlists-current'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['current']['id'] == str(wishlist.id)
        assert response.data['is_owner'] is True
        assert 'shared_wishlists' not in response.cookies

    def test_shared_list_remembered(self, other_client, wishlist):
        url = reverse('wishlists-current')
        other_client.get(url, {'wishlist': str(wishlist.id)})

        response = other_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data['current']['id'] == str(wishlist.id)
        assert [entry['id'] for entry in response.data['wishlists']] == [str(wishlist.id)]

    def test_select_another_list(self, other_client, other_wishlist, wishlist):
        url = reverse('wishlists-current')
        other_client.get(url, {'wishlist': str(wishlist.id)})

        response = other_client.post(url, {'wishlist_id': str(other_wishlist.id)}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['current']['id'] == str(other_wishlist.id)
        assert response.data['is_owner'] is True

    def test_select_list_by_upper_case_id(self, other_client, other_wishlist, wishlist):
        url = reverse('wishlists-current')
        other_client.get(url, {'wishlist': str(wishlist.id)})

        response = other_client.post(url, {'wishlist_id': str(wishlist.id).upper()}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['current']['id'] == str(wishlist.id)

    def test_select_malformed_id(self, other_client, other_wishlist):
        response = other_client.post(reverse('wishlists-current'), {'wishlist_id': 'nope'}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_select_unknown_list(self, other_client, other_wishlist, wishlist):
        url = reverse('wishlists-current')
        response = other_client.post(url, {'wishlist_id': str(wishlist.id)}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_backend_failure(self, authenticated_client, wishlist):
        with patch.object(Wishlist.objects, 'filter', side_effect=DatabaseError('connection lost')):
            response = authenticated_client.get(reverse('wishlists-current'))

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert 'error' in response.data


@pytest.mark.integration
class TestPurchasedVisibility:
    """Hiding purchased state from list owners"""

    def test_owner_needs_confirmation(self, authenticated_client, wishlist, item):
        item.purchased = True
        item.save()
        authenticated_client.get(reverse('wishlists-current'))
        toggle_url = reverse('wishlists-show-purchased')
        items_url = reverse('wishlists-items', args=[wishlist.id])

        declined = authenticated_client.post(toggle_url, {'show': True}, format='json')
        assert declined.status_code == status.HTTP_409_CONFLICT
        assert declined.data['confirmation_required'] is True
        assert authenticated_client.get(items_url).data[0]['purchased'] is None

        confirmed = authenticated_client.post(toggle_url, {'show': True, 'confirm': True}, format='json')
        assert confirmed.status_code == status.HTTP_200_OK
        assert confirmed.data['show_purchased'] is True
        assert authenticated_client.get(items_url).data[0]['purchased'] is True

    def test_non_owner_shows_directly(self, api_client, wishlist, item):
        api_client.get(reverse('wishlists-current'), {'wishlist': str(wishlist.id)})

        response = api_client.post(reverse('wishlists-show-purchased'), {'show': True}, format='json')

        assert response.status_code == status.HTTP_200_OK
        items = api_client.get(reverse('wishlists-items', args=[wishlist.id])).data
        assert items[0]['purchased'] is False

    def test_toggle_without_current_list(self, api_client):
        response = api_client.post(reverse('wishlists-show-purchased'), {'show': True}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.integration
class TestItemAPI:
    """Item endpoints"""

    def test_owner_adds_item(self, authenticated_client, wishlist, owner_user):
        url = reverse('wishlists-items', args=[wishlist.id])
        response = authenticated_client.post(url, {'name': 'Book', 'notes': 'Any edition'}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['created_by'] == str(owner_user.id)
        assert Item.objects.filter(wishlist=wishlist, name='Book').exists()

    def test_item_name_required(self, authenticated_client, wishlist):
        url = reverse('wishlists-items', args=[wishlist.id])
        response = authenticated_client.post(url, {'name': ''}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_non_owner_cannot_add(self, other_client, wishlist):
        url = reverse('wishlists-items', args=[wishlist.id])
        response = other_client.post(url, {'name': 'Book'}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert 'error' in response.data
        assert not Item.objects.filter(wishlist=wishlist).exists()

    def test_anonymous_cannot_add(self, api_client, wishlist):
        url = reverse('wishlists-items', args=[wishlist.id])
        response = api_client.post(url, {'name': 'Book'}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_items_newest_first(self, api_client, wishlist, item):
        newer = Item.objects.create(wishlist=wishlist, name='Scarf')
        response = api_client.get(reverse('wishlists-items', args=[wishlist.id]))

        assert [entry['id'] for entry in response.data] == [str(newer.id), str(item.id)]

    def test_anonymous_marks_purchased(self, api_client, item):
        url = reverse('items-purchased', args=[item.id])

        response = api_client.patch(url, {}, format='json')
        assert response.status_code == status.HTTP_200_OK
        assert response.data['purchased'] is True

        response = api_client.patch(url, {'purchased': True}, format='json')
        item.refresh_from_db()
        assert item.purchased is True

        api_client.patch(url, {}, format='json')
        item.refresh_from_db()
        assert item.purchased is False

    def test_owner_deletes_item(self, authenticated_client, item):
        response = authenticated_client.delete(reverse('items-detail', args=[item.id]))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not Item.objects.filter(id=item.id).exists()

    def test_non_owner_cannot_delete(self, other_client, item):
        response = other_client.delete(reverse('items-detail', args=[item.id]))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert Item.objects.filter(id=item.id).exists()

    def test_preview_fetched_after_create(self, authenticated_client, wishlist, django_capture_on_commit_callbacks):
        url = reverse('wishlists-items', args=[wishlist.id])

        with patch('apps.wishlist.tasks.fetch_og_image', return_value='https://cdn.example.com/p.jpg') as mock_fetch:
            with django_capture_on_commit_callbacks(execute=True):
                response = authenticated_client.post(
                    url, {'name': 'Lamp', 'link': 'https://shop.example.com/lamp'}, format='json'
                )

        assert response.status_code == status.HTTP_201_CREATED
        mock_fetch.assert_called_once_with('https://shop.example.com/lamp')
        item = Item.objects.get(id=response.data['id'])
        assert item.og_image == 'https://cdn.example.com/p.jpg'

    def test_failed_preview_keeps_item(self, authenticated_client, wishlist, django_capture_on_commit_callbacks):
        from apps.previews.services import PreviewFetchError
        url = reverse('wishlists-items', args=[wishlist.id])

        with patch('apps.wishlist.tasks.fetch_og_image', side_effect=PreviewFetchError('timeout')):
            with django_capture_on_commit_callbacks(execute=True):
                response = authenticated_client.post(
                    url, {'name': 'Lamp', 'link': 'https://shop.example.com/lamp'}, format='json'
                )

        assert response.status_code == status.HTTP_201_CREATED
        assert Item.objects.get(id=response.data['id']).og_image == ''

    def test_over_long_preview_not_stored(self, item):
        from apps.wishlist.tasks import fetch_item_preview
        long_url = 'https://cdn.example.com/' + 'a' * 2100 + '.jpg'

        with patch('apps.wishlist.tasks.fetch_og_image', return_value=long_url):
            assert fetch_item_preview(str(item.id)) is None

        item.refresh_from_db()
        assert item.og_image == ''

    def test_unreachable_link_keeps_item(self, item):
        from apps.wishlist.tasks import fetch_item_preview

        with patch.object(httpx.Client, 'get', side_effect=UnicodeError("encoding with 'idna' codec failed")):
            assert fetch_item_preview(str(item.id)) is None

        item.refresh_from_db()
        assert item.og_image == ''
