from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import User

@admin.register(User)
class CustomUserAdmin(UserAdmin):
    list_display = ('username', 'email', 'role', 'wallet_address', 'is_staff')
    list_filter = ('role', 'is_staff', 'is_superuser', 'is_active')
    search_fields = ('username', 'email', 'wallet_address')
    fieldsets = UserAdmin.fieldsets + (
        ('Marketplace', {'fields': ('role', 'wallet_address')}),
    )
    add_fieldsets = UserAdmin.add_fieldsets + (
        ('Marketplace', {'fields': ('role', 'wallet_address')}),
    )
