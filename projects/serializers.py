from rest_framework import serializers

from users.serializers import UserSummarySerializer
from .models import Project


class ProjectSerializer(serializers.ModelSerializer):
    owner = UserSummarySerializer(read_only=True)
    submission_count = serializers.SerializerMethodField()

    class Meta:
        model = Project
        fields = [
            "id",
            "owner",
            "title",
            "description",
            "budget",
            "deadline",
            "requirements",
            "metadata",
            "status",
            "chain_status",
            "chain_ref",
            "submission_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_submission_count(self, obj):
        annotated = getattr(obj, "_submission_count", None)
        if annotated is not None:
            return annotated
        return obj.submissions.count()


class ProjectWriteSerializer(serializers.Serializer):
    """Input for create / PATCH. Only business fields are writable."""

    title = serializers.CharField(max_length=255)
    description = serializers.CharField()
    budget = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True, min_value=0)
    deadline = serializers.DateTimeField(required=False, allow_null=True)
    requirements = serializers.ListField(child=serializers.CharField(), required=False)
    metadata = serializers.DictField(required=False)
    status = serializers.ChoiceField(
        choices=[Project.STATUS_DRAFT, Project.STATUS_OPEN],
        required=False,
    )

    def validate_title(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("This field may not be blank.")
        return value

    def validate_description(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("This field may not be blank.")
        return value
