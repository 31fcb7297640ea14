from rest_framework import serializers
from .models import User


class UserSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            'id',
            'username',
            'role',
            'wallet_address',
        ]
        read_only_fields = fields
