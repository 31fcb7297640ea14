from rest_framework import serializers

from .constants import TX_FINAL_STATUSES
from .models import Transaction


class TransactionSerializer(serializers.ModelSerializer):
    is_final = serializers.BooleanField(read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "kind",
            "subject_id",
            "transaction_hash",
            "status",
            "is_final",
            "metadata",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ReconcileSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=list(TX_FINAL_STATUSES))
