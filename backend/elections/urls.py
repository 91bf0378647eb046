from django.urls import path

from .views_management import (
    CandidateManageDetailAPIView,
    CandidateManageListCreateAPIView,
    ElectionManageDetailAPIView,
    ElectionManageListCreateAPIView,
    ElectionReconcileAPIView,
    ElectionResultsExportCsvAPIView,
    ElectionResultsExportXlsxAPIView,
)
from .views_public import (
    CheckVoteAPIView,
    ElectionDetailAPIView,
    ElectionListAPIView,
    ElectionResultsAPIView,
    SubmitVoteAPIView,
)

urlpatterns = [
    path("elections/", ElectionListAPIView.as_view(), name="elections-list"),
    path("elections/<int:election_id>/", ElectionDetailAPIView.as_view(), name="elections-detail"),
    path("elections/<int:election_id>/vote/", SubmitVoteAPIView.as_view(), name="elections-vote"),
    path("elections/<int:election_id>/check-vote/", CheckVoteAPIView.as_view(), name="elections-check-vote"),
    path("elections/<int:election_id>/results/", ElectionResultsAPIView.as_view(), name="elections-results"),
    path("elections/manage/elections/", ElectionManageListCreateAPIView.as_view(), name="elections-manage-list"),
    path(
        "elections/manage/elections/<int:election_id>/",
        ElectionManageDetailAPIView.as_view(),
        name="elections-manage-detail",
    ),
    path(
        "elections/manage/elections/<int:election_id>/candidates/",
        CandidateManageListCreateAPIView.as_view(),
        name="elections-manage-candidates",
    ),
    path(
        "elections/manage/candidates/<int:candidate_id>/",
        CandidateManageDetailAPIView.as_view(),
        name="elections-manage-candidate-detail",
    ),
    path(
        "elections/manage/elections/<int:election_id>/reconcile/",
        ElectionReconcileAPIView.as_view(),
        name="elections-manage-reconcile",
    ),
    path(
        "elections/manage/elections/<int:election_id>/results-export.csv",
        ElectionResultsExportCsvAPIView.as_view(),
        name="elections-manage-results-export-csv",
    ),
    path(
        "elections/manage/elections/<int:election_id>/results-export.xlsx",
        ElectionResultsExportXlsxAPIView.as_view(),
        name="elections-manage-results-export-xlsx",
    ),
]
