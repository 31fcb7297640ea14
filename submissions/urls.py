from django.urls import path

from .views import SubmissionListCreateView, SubmissionDetailView, SubmissionMintRetryView

urlpatterns = [
    path("", SubmissionListCreateView.as_view(), name="submission-list-create"),
    path("<str:submission_id>/", SubmissionDetailView.as_view(), name="submission-detail"),
    path(
        "<str:submission_id>/mint/retry/",
        SubmissionMintRetryView.as_view(),
        name="submission-mint-retry",
    ),
]
