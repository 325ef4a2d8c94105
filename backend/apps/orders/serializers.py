# apps/orders/serializers.py

from rest_framework import serializers
from .models import Order


class OrderSerializer(serializers.ModelSerializer):
    """Order as shown to its owner"""
    group_title = serializers.CharField(source='group.title', read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'reference_number', 'item_type', 'item_name', 'group',
            'group_title', 'quantity', 'cost', 'currency', 'contact_details',
            'status', 'notes', 'created_at'
        ]
        read_only_fields = fields
