from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode
import logging
import uuid

from django.conf import settings
from django.db import transaction
from rest_framework import viewsets, mixins, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated

from apps.core.permissions import IsWishlistOwner
from .exceptions import ListNotFound, PermissionDenied
from .models import Wishlist, Item
from .resolver import ListResolver, ResolutionContext, fetch_wishlist
from .serializers import (
    WishlistSerializer, ItemSerializer, PurchasedSerializer,
    WishlistRefSerializer, SelectWishlistSerializer, ShowPurchasedSerializer,
)
from .session import ViewerSession
from .shared_lists import SharedListStore
from .tasks import fetch_item_preview

logger = logging.getLogger(__name__)


def viewer_id_for(request):
    """String id of the signed-in viewer, None for anonymous viewers."""
    user = request.user
    return str(user.id) if user and user.is_authenticated else None


def build_share_url(page_url, wishlist_id):
    """`page_url` with its `wishlist` query parameter set to `wishlist_id`."""
    parts = urlsplit(page_url)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != 'wishlist']
    query.append(('wishlist', str(wishlist_id)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def schedule_preview_fetch(item):
    """Queue the preview task once the item row is committed."""
    def enqueue():
        try:
            fetch_item_preview.delay(str(item.id))
        except Exception as e:
            # Broker down: the item simply has no preview
            logger.warning(f"Could not queue preview fetch for item {item.id}: {e}")

    transaction.on_commit(enqueue)


class WishlistViewSet(mixins.ListModelMixin,
                      mixins.CreateModelMixin,
                      mixins.RetrieveModelMixin,
                      viewsets.GenericViewSet):
    """
    ViewSet for wishlists.

    Listing and creating are for signed-in owners; everything reachable from a
    share link works for anonymous viewers too.
    """
    serializer_class = WishlistSerializer
    resolver_class = ListResolver

    def get_permissions(self):
        if self.action in ('list', 'create'):
            return [IsAuthenticated()]
        return [AllowAny()]

    def get_queryset(self):
        if self.action == 'list':
            return Wishlist.objects.filter(user=self.request.user)
        return Wishlist.objects.all()

    def get_resolver(self):
        return self.resolver_class()

    def _selection_response(self, request, current, wishlists, store=None):
        session = ViewerSession(request.session)
        viewer_id = viewer_id_for(request)
        response = Response({
            'current': current.as_dict(),
            'wishlists': WishlistRefSerializer(wishlists, many=True).data,
            'is_owner': current.is_owned_by(viewer_id),
            'show_purchased': session.shows_purchased_for(current.id),
        })
        if store is not None:
            store.save(response)
        return response

    @action(detail=False, methods=['get', 'post'])
    def current(self, request):
        """
        GET resolves the current wishlist for this viewer, honouring the
        `wishlist` query parameter of share links.
        POST `{wishlist_id}` switches to another selectable list.
        """
        viewer_id = viewer_id_for(request)
        store = SharedListStore.from_request(request)
        session = ViewerSession(request.session)
        resolver = self.get_resolver()

        if request.method == 'POST':
            serializer = SelectWishlistSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            try:
                wishlist_id = str(uuid.UUID(serializer.validated_data['wishlist_id']))
            except ValueError:
                raise ListNotFound()

            context = ResolutionContext(viewer_id=viewer_id, cached_shared_lists=tuple(store.refs))
            wishlists = resolver.selectable_lists(context)
            allowed = {ref.id for ref in wishlists}
            if session.current_wishlist_id:
                allowed.add(session.current_wishlist_id)

            current = resolver.fetch_list(wishlist_id) if wishlist_id in allowed else None
            if current is None:
                raise ListNotFound()
            if all(ref.id != current.id for ref in wishlists):
                wishlists.append(current)

            session.select(current.id)
            return self._selection_response(request, current, wishlists)

        context = ResolutionContext(
            viewer_id=viewer_id,
            requested_list_id=request.query_params.get('wishlist') or None,
            request_path=request.get_full_path(),
            cached_shared_lists=tuple(store.refs),
        )
        resolution = resolver.resolve(context)
        current = resolution.current

        session.select(current.id)
        if resolution.from_share_link and not current.is_owned_by(viewer_id):
            if store.remember(current):
                logger.info(f"Remembered shared wishlist {current.id}")

        return self._selection_response(request, current, resolution.wishlists, store)

    @action(detail=False, methods=['post'], url_path='current/show-purchased')
    def show_purchased(self, request):
        """Toggle purchased visibility for the current list."""
        serializer = ShowPurchasedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = ViewerSession(request.session)
        current = fetch_wishlist(session.current_wishlist_id) if session.current_wishlist_id else None
        if current is None:
            raise ListNotFound('No wishlist selected.')

        show = session.set_show_purchased(
            serializer.validated_data['show'],
            is_owner=current.is_owned_by(viewer_id_for(request)),
            confirmed=serializer.validated_data['confirm'],
        )
        return Response({'show_purchased': show})

    @action(detail=True, methods=['get'])
    def share(self, request, pk=None):
        """Build the share link for a list."""
        wishlist = self.get_object()
        page_url = request.query_params.get('url') or settings.FRONTEND_URL
        return Response({'share_url': build_share_url(page_url, wishlist.id)})

    @action(detail=True, methods=['get', 'post'])
    def items(self, request, pk=None):
        """List items (newest first) or add one (owner only)."""
        wishlist = self.get_object()

        if request.method == 'POST':
            if not wishlist.is_owned_by(viewer_id_for(request)):
                raise PermissionDenied()

            serializer = ItemSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            item = serializer.save(wishlist=wishlist, created_by=request.user)
            logger.info(f"Item {item.id} added to wishlist {wishlist.id}")

            if item.link and not item.og_image:
                schedule_preview_fetch(item)
            return Response(ItemSerializer(item).data, status=status.HTTP_201_CREATED)

        session = ViewerSession(request.session)
        serializer = ItemSerializer(
            wishlist.items.all(),
            many=True,
            context={'show_purchased': session.shows_purchased_for(wishlist.id)},
        )
        return Response(serializer.data)


class ItemViewSet(mixins.DestroyModelMixin, viewsets.GenericViewSet):
    """ViewSet for single items."""
    serializer_class = ItemSerializer
    queryset = Item.objects.select_related('wishlist')

    def get_permissions(self):
        if self.action == 'destroy':
            return [IsAuthenticated(), IsWishlistOwner()]
        return [AllowAny()]

    def perform_destroy(self, instance):
        logger.info(f"Item {instance.id} deleted from wishlist {instance.wishlist_id}")
        instance.delete()

    @action(detail=True, methods=['patch'])
    def purchased(self, request, pk=None):
        """Mark purchased; without a value the flag is flipped."""
        item = self.get_object()
        serializer = PurchasedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        item.purchased = serializer.validated_data.get('purchased', not item.purchased)
        item.save(update_fields=['purchased', 'updated_at'])
        return Response(ItemSerializer(item).data)
