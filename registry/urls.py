from django.urls import path

from .views import TransactionListView, TransactionDetailView, TransactionReconcileView

urlpatterns = [
    path("transactions/", TransactionListView.as_view(), name="transaction-list"),
    path("transactions/<str:transaction_id>/", TransactionDetailView.as_view(), name="transaction-detail"),
    path(
        "transactions/<str:transaction_id>/reconcile/",
        TransactionReconcileView.as_view(),
        name="transaction-reconcile",
    ),
]
