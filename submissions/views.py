import logging

from django.conf import settings
from django.db.models import Q
from rest_framework import status
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from registry import orchestrator
from registry.throttles import RegistryRetryThrottle, SubmissionCreateThrottle
from .models import Submission
from .serializers import SubmissionCreateSerializer, SubmissionSerializer

logger = logging.getLogger("scribe.submissions")

CREATE_FIELDS = ("project_id", "title", "metadata")


def api_error(message: str, status_code=status.HTTP_400_BAD_REQUEST):
    return Response({"error": message}, status=status_code)


def visible_submissions(user):
    """Writers see their own; producers see submissions to their projects."""
    qs = Submission.objects.select_related("writer", "project")
    if user.is_platform_admin:
        return qs
    return qs.filter(Q(writer=user) | Q(project__owner=user))


class SubmissionListCreateView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [SubmissionCreateThrottle]
    parser_classes = [JSONParser, MultiPartParser, FormParser]

    def get(self, request):
        qs = visible_submissions(request.user)

        project_id = request.query_params.get("project_id") or request.query_params.get("project")
        if project_id:
            qs = qs.filter(project_id=project_id)

        mint_status = request.query_params.get("mint_status")
        if mint_status:
            qs = qs.filter(mint_status=mint_status)

        paginator = LimitOffsetPagination()
        page = paginator.paginate_queryset(qs.order_by("-created_at"), request, view=self)
        serializer = SubmissionSerializer(page, many=True, context={"request": request})
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        upload = request.FILES.get("content")

        data = {name: request.data.get(name) for name in CREATE_FIELDS if name in request.data}
        if upload is None and "content" in request.data:
            data["content"] = request.data.get("content")

        serializer = SubmissionCreateSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        validated = serializer.validated_data

        if upload is not None:
            if upload.size > settings.REGISTRY["MAX_CONTENT_BYTES"]:
                return api_error(
                    f"Content exceeds {settings.REGISTRY['MAX_CONTENT_BYTES']} bytes.",
                    status.HTTP_400_BAD_REQUEST,
                )
            content = upload.read()
            filename = upload.name or "content"
        else:
            content = (validated.get("content") or "").encode("utf-8")
            filename = "content.txt"

        result = orchestrator.create_submission(
            request.user,
            validated["project_id"],
            {"title": validated["title"], "metadata": validated.get("metadata") or {}},
            content,
            filename=filename,
        )

        submission = result.submission
        body = {
            "submission_id": submission.id,
            "content_ref": submission.content_ref,
            "mint": result.mint.as_response(),
        }
        if result.mint.token_id is not None:
            body["token_id"] = result.mint.token_id
        if result.mint.transaction_hash:
            body["transaction_hash"] = result.mint.transaction_hash

        return Response(body, status=status.HTTP_201_CREATED)


class SubmissionDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, submission_id):
        submission = visible_submissions(request.user).filter(pk=submission_id).first()
        if submission is None:
            return api_error("Submission not found", status.HTTP_404_NOT_FOUND)
        return Response(SubmissionSerializer(submission, context={"request": request}).data)


class SubmissionMintRetryView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [RegistryRetryThrottle]

    def post(self, request, submission_id):
        submission = Submission.objects.select_related("writer").filter(pk=submission_id).first()
        if submission is None or not (
            submission.writer_id == request.user.id or request.user.is_platform_admin
        ):
            return api_error("Submission not found", status.HTTP_404_NOT_FOUND)

        outcome = orchestrator.retry_submission_mint(submission, request.user)

        body = {
            "submission_id": submission.id,
            "mint": outcome.as_response(),
        }
        if outcome.token_id is not None:
            body["token_id"] = outcome.token_id
        if outcome.transaction_hash:
            body["transaction_hash"] = outcome.transaction_hash
        return Response(body, status=status.HTTP_200_OK)
