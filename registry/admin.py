from django.contrib import admin
from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ('id', 'kind', 'subject_id', 'status', 'transaction_hash', 'created_at')
    list_filter = ('kind', 'status', 'created_at')
    search_fields = ('id', 'subject_id', 'transaction_hash')
    date_hierarchy = 'created_at'

    # Append-only: status changes go through reconcile
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
