from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import WishlistViewSet, ItemViewSet

router = DefaultRouter()
router.register(r'wishlists', WishlistViewSet, basename='wishlists')
router.register(r'items', ItemViewSet, basename='items')

urlpatterns = [
    path('', include(router.urls)),
]
