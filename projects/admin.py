from django.contrib import admin
from .models import Project


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'owner', 'status', 'chain_status', 'created_at')
    list_filter = ('status', 'chain_status', 'created_at')
    search_fields = ('id', 'title', 'description', 'owner__username')
    readonly_fields = ('id', 'chain_status', 'chain_ref', 'created_at', 'updated_at')
    date_hierarchy = 'created_at'
