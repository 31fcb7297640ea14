from django.urls import path

from .views import ProjectListCreateView, ProjectDetailView, ProjectAnchorRetryView

urlpatterns = [
    path("", ProjectListCreateView.as_view(), name="project-list-create"),
    path("<str:project_id>/", ProjectDetailView.as_view(), name="project-detail"),
    path(
        "<str:project_id>/anchor/retry/",
        ProjectAnchorRetryView.as_view(),
        name="project-anchor-retry",
    ),
]
