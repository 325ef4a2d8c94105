# apps/group_buys/serializers.py

from rest_framework import serializers
from .models import GroupBuy


class GroupBuySerializer(serializers.Serializer):
    """Group view with live counts; built from CapacityTracker.snapshot()"""
    id = serializers.IntegerField(read_only=True)
    title = serializers.CharField(read_only=True)
    base_title = serializers.CharField(read_only=True)
    batch_number = serializers.IntegerField(read_only=True)
    description = serializers.CharField(read_only=True)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)
    features = serializers.ListField(read_only=True)
    image_url = serializers.CharField(read_only=True)
    target_count = serializers.IntegerField(read_only=True)
    current_count = serializers.IntegerField(read_only=True)
    available = serializers.IntegerField(read_only=True)
    status = serializers.CharField(read_only=True)
    status_forced = serializers.BooleanField(read_only=True)
    auto_renew = serializers.BooleanField(read_only=True)
    is_hot = serializers.BooleanField(read_only=True)
    parent_group_id = serializers.IntegerField(read_only=True, allow_null=True)
    participants_count = serializers.IntegerField(read_only=True)
    created_at = serializers.DateTimeField(read_only=True)


class GroupBuyWriteSerializer(serializers.ModelSerializer):
    """Admin create/update of template fields and flags"""

    class Meta:
        model = GroupBuy
        fields = [
            'title', 'description', 'price', 'features', 'image_url',
            'target_count', 'auto_renew', 'is_hot'
        ]

    def validate_title(self, value):
        if not value.strip():
            raise serializers.ValidationError("Title is required")
        return value.strip()

    def validate_features(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError("Features must be a list")
        return value


class JoinSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(default=1)
    contact = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate(self, attrs):
        request = self.context.get('request')
        anonymous = request is None or not request.user.is_authenticated
        if anonymous and not attrs.get('contact', '').strip():
            raise serializers.ValidationError(
                {'contact': "Contact details are required to join without an account"}
            )
        return attrs


class ModifySerializer(serializers.Serializer):
    """new_total omitted means only the contact details change"""
    new_total = serializers.IntegerField(required=False, allow_null=True)
    contact = serializers.CharField(
        max_length=255, required=False, allow_blank=True, allow_null=True
    )

    def validate(self, attrs):
        if attrs.get('new_total') is None and attrs.get('contact') is None:
            raise serializers.ValidationError("Provide new_total and/or contact")
        return attrs


class ForceStatusSerializer(serializers.Serializer):
    status = serializers.CharField()
    reason = serializers.CharField(required=False, allow_blank=True)


class MoveParticipantSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    target_group_id = serializers.IntegerField()


class ParticipantQuantitySerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    new_total = serializers.IntegerField(min_value=1)


class RemoveParticipantSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()


class ParticipantSerializer(serializers.Serializer):
    """One participant aggregated over their ledger rows"""
    key = serializers.CharField()
    user_id = serializers.IntegerField(allow_null=True)
    email = serializers.CharField()
    quantity = serializers.IntegerField()
    rows = serializers.IntegerField()
    joined_at = serializers.DateTimeField()
    contact = serializers.CharField()


class MyParticipationSerializer(serializers.Serializer):
    group = GroupBuySerializer()
    quantity = serializers.IntegerField()
    joined_at = serializers.DateTimeField()
