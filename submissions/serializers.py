from rest_framework import serializers

from users.serializers import UserSummarySerializer
from .models import Submission


class SubmissionSerializer(serializers.ModelSerializer):
    writer = UserSummarySerializer(read_only=True)
    project_id = serializers.CharField(read_only=True)
    project_title = serializers.CharField(source="project.title", read_only=True)

    class Meta:
        model = Submission
        fields = [
            "id",
            "project_id",
            "project_title",
            "writer",
            "title",
            "metadata",
            "content_ref",
            "content_hash",
            "content_size",
            "score",
            "status",
            "mint_status",
            "token_ref",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SubmissionCreateSerializer(serializers.Serializer):
    """
    JSON body carries `content` as text; multipart bodies carry it as a file
    under the same key, read by the view.
    """

    project_id = serializers.CharField(max_length=64)
    title = serializers.CharField(max_length=255)
    content = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    metadata = serializers.JSONField(required=False)

    def validate_title(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("This field may not be blank.")
        return value

    def validate_metadata(self, value):
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise serializers.ValidationError("Must be a JSON object.")
        return value
