from rest_framework import serializers
from .models import Wishlist, Item


class ItemSerializer(serializers.ModelSerializer):
    """
    Serializer for items.

    Pass `show_purchased=False` in the context to mask the purchased flag;
    without it the real value is rendered (live update payloads).
    """
    wishlist_id = serializers.UUIDField(read_only=True)
    created_by = serializers.UUIDField(source='created_by_id', read_only=True)

    class Meta:
        model = Item
        fields = [
            'id', 'wishlist_id', 'name', 'link', 'notes', 'purchased',
            'og_image', 'created_by', 'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'purchased', 'created_at', 'updated_at']

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Item name is required')
        return value

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if self.context.get('show_purchased') is False:
            data['purchased'] = None
        return data


class PurchasedSerializer(serializers.Serializer):
    # Omitted: flip the current value
    purchased = serializers.BooleanField(required=False)


class WishlistSerializer(serializers.ModelSerializer):
    """Serializer for wishlists."""
    owner = serializers.UUIDField(source='user_id', read_only=True)
    items_count = serializers.SerializerMethodField()

    class Meta:
        model = Wishlist
        fields = ['id', 'name', 'owner', 'items_count', 'created_at']
        read_only_fields = ['id', 'created_at']

    def get_items_count(self, obj):
        return obj.items.count()

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Wishlist name is required')
        return value

    def create(self, validated_data):
        validated_data['user'] = self.context['request'].user
        return super().create(validated_data)


class WishlistRefSerializer(serializers.Serializer):
    """`{id, name, owner}` entries of the selectable list set."""
    id = serializers.CharField()
    name = serializers.CharField()
    owner = serializers.CharField()


class SelectWishlistSerializer(serializers.Serializer):
    wishlist_id = serializers.CharField()


class ShowPurchasedSerializer(serializers.Serializer):
    show = serializers.BooleanField()
    confirm = serializers.BooleanField(default=False)
