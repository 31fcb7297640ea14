import logging

from rest_framework import status
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from . import ledger
from .models import Transaction
from .serializers import ReconcileSerializer, TransactionSerializer

logger = logging.getLogger("scribe.registry")


class TransactionListView(APIView):
    """Operator view of the attempt ledger, newest first."""
    permission_classes = [IsAdminUser]

    def get(self, request):
        subject_id = request.query_params.get("subject_id")
        if subject_id:
            qs = ledger.transactions_for_subject(subject_id)
        else:
            qs = Transaction.objects.order_by("-created_at")

        kind = request.query_params.get("kind")
        if kind:
            qs = qs.filter(kind=kind)

        status_param = request.query_params.get("status")
        if status_param:
            qs = qs.filter(status=status_param)

        paginator = LimitOffsetPagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        serializer = TransactionSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)


class TransactionDetailView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request, transaction_id):
        tx = Transaction.objects.filter(pk=transaction_id).first()
        if tx is None:
            return Response({"error": "Transaction not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response(TransactionSerializer(tx).data)


class TransactionReconcileView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, transaction_id):
        serializer = ReconcileSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        tx = ledger.reconcile(transaction_id, serializer.validated_data["status"])
        logger.info(f"Manual reconcile of {tx.id} by {request.user.id}: {tx.status}")

        return Response(TransactionSerializer(tx).data, status=status.HTTP_200_OK)
