from django.contrib import admin
from .models import Submission


@admin.register(Submission)
class SubmissionAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'project', 'writer', 'status', 'mint_status', 'created_at')
    list_filter = ('status', 'mint_status', 'created_at')
    search_fields = ('id', 'title', 'project__title', 'writer__username', 'content_ref')
    readonly_fields = (
        'id', 'content_ref', 'content_hash', 'content_size',
        'mint_status', 'token_ref', 'created_at', 'updated_at',
    )
