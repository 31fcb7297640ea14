import logging

from django.db.models import Count, Q
from rest_framework import status
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from registry import orchestrator
from registry.throttles import ProjectCreateThrottle, RegistryRetryThrottle
from .models import Project
from .serializers import ProjectSerializer, ProjectWriteSerializer

logger = logging.getLogger("scribe.projects")


def api_error(message: str, status_code=status.HTTP_400_BAD_REQUEST):
    """Plain {"error": message} response for view-level rejections."""
    return Response({"error": message}, status=status_code)


def user_can_manage_project(user, project) -> bool:
    return project.owner_id == user.id or user.is_platform_admin


class ProjectListCreateView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [ProjectCreateThrottle]

    def get(self, request):
        qs = Project.objects.select_related("owner").annotate(
            _submission_count=Count("submissions")
        )
        user = request.user

        # Drafts are only visible to their owner
        if not user.is_platform_admin:
            qs = qs.filter(~Q(status=Project.STATUS_DRAFT) | Q(owner=user))

        status_param = request.query_params.get("status")
        if status_param:
            qs = qs.filter(status=status_param)

        owner_param = request.query_params.get("owner")
        if owner_param:
            qs = qs.filter(owner_id=owner_param)

        mine_param = request.query_params.get("mine")
        if mine_param and mine_param.lower() in ("1", "true", "yes"):
            qs = qs.filter(owner=user)

        search = request.query_params.get("search")
        if search:
            qs = qs.filter(Q(title__icontains=search) | Q(description__icontains=search))

        paginator = LimitOffsetPagination()
        page = paginator.paginate_queryset(qs.order_by("-created_at"), request, view=self)
        serializer = ProjectSerializer(page, many=True, context={"request": request})
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        serializer = ProjectWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        project, outcome = orchestrator.create_project(request.user, serializer.validated_data)

        return Response(
            {
                "project": ProjectSerializer(project, context={"request": request}).data,
                "blockchain": outcome.as_response(),
            },
            status=status.HTTP_201_CREATED,
        )


class ProjectDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get_object(self, request, project_id):
        project = Project.objects.select_related("owner").filter(pk=project_id).first()
        if project is None:
            return None
        if project.status == Project.STATUS_DRAFT and not user_can_manage_project(request.user, project):
            return None
        return project

    def get(self, request, project_id):
        project = self.get_object(request, project_id)
        if project is None:
            return api_error("Project not found", status.HTTP_404_NOT_FOUND)
        return Response(ProjectSerializer(project, context={"request": request}).data)

    def patch(self, request, project_id):
        project = self.get_object(request, project_id)
        # Non-owners are not told the project exists
        if project is None or not user_can_manage_project(request.user, project):
            return api_error("Project not found", status.HTTP_404_NOT_FOUND)

        if project.status not in Project.EDITABLE_STATUSES:
            return api_error(f"Project cannot be edited while '{project.status}'")

        serializer = ProjectWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        changed = []
        for name, value in serializer.validated_data.items():
            setattr(project, name, value)
            changed.append(name)

        if changed:
            project.save(update_fields=changed + ["updated_at"])
            logger.info(f"Project {project.id} updated by {request.user.id}: {', '.join(changed)}")

        return Response(ProjectSerializer(project, context={"request": request}).data)


class ProjectAnchorRetryView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [RegistryRetryThrottle]

    def post(self, request, project_id):
        project = Project.objects.filter(pk=project_id).first()
        if project is None or not user_can_manage_project(request.user, project):
            return api_error("Project not found", status.HTTP_404_NOT_FOUND)

        outcome = orchestrator.retry_project_anchor(project, request.user)

        return Response(
            {
                "project": ProjectSerializer(project, context={"request": request}).data,
                "blockchain": outcome.as_response(),
            },
            status=status.HTTP_200_OK,
        )
