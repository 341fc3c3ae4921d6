from django.contrib import admin
from .models import Wishlist, Item


class ItemInline(admin.TabularInline):
    model = Item
    extra = 0
    fields = ('name', 'link', 'purchased', 'created_by', 'created_at')
    readonly_fields = ('created_by', 'created_at')


@admin.register(Wishlist)
class WishlistAdmin(admin.ModelAdmin):
    list_display = ('name', 'user', 'created_at')
    list_filter = ('created_at',)
    search_fields = ('user__email', 'name')
    inlines = [ItemInline]


@admin.register(Item)
class ItemAdmin(admin.ModelAdmin):
    list_display = ('name', 'wishlist', 'purchased', 'created_at')
    list_filter = ('purchased', 'created_at')
    search_fields = ('name', 'wishlist__name')
