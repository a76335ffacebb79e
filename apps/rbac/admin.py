"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import (
    User,
    Permission,
    PermissionDependency,
    Role,
    RolePermission,
    UserPermission,
    TemporaryPermission,
    PermissionChangeRequest,
    AuditLog,
)


@admin.register(User)
class CustomUserAdmin(BaseUserAdmin):
    """
    Custom admin for our User model.

    Adapted to work with email-based authentication (no username field).
    """
    list_display = ['email', 'first_name', 'last_name', 'role', 'is_active', 'is_super_admin', 'created_at']
    list_filter = ['is_active', 'is_super_admin', 'role', 'created_at']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['email']

    fieldsets = (
        (None, {
            'fields': ('email', 'password_hash')
        }),
        ('Personal Info', {
            'fields': ('first_name', 'last_name')
        }),
        ('Access', {
            'fields': ('role', 'role_name', 'is_active', 'is_super_admin')
        }),
        ('Activity', {
            'fields': ('last_login_at', 'created_at', 'updated_at', 'deleted_at')
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'password_hash', 'role', 'is_active'),
        }),
    )

    readonly_fields = ['role_name', 'created_at', 'updated_at', 'last_login_at']
    filter_horizontal = ()


class RolePermissionInline(admin.TabularInline):
    model = RolePermission
    extra = 0
    autocomplete_fields = ['permission']


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'priority', 'is_system', 'is_super_admin', 'parent_role']
    list_filter = ['is_system', 'is_super_admin']
    search_fields = ['name', 'slug']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [RolePermissionInline]

    def has_delete_permission(self, request, obj=None):
        # Role deletion is disabled everywhere
        return False


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ['name', 'module', 'action', 'risk_level', 'requires_approval']
    list_filter = ['module', 'risk_level', 'requires_approval']
    search_fields = ['name', 'description']


@admin.register(TemporaryPermission)
class TemporaryPermissionAdmin(admin.ModelAdmin):
    list_display = ['user', 'permission', 'granted_by', 'granted_at', 'expires_at', 'is_active']
    list_filter = ['is_active', 'expires_at']
    search_fields = ['user__email', 'permission__name']


@admin.register(PermissionChangeRequest)
class PermissionChangeRequestAdmin(admin.ModelAdmin):
    """Read-only: reviews go through the API so the four-eyes rule applies."""
    list_display = ['user', 'requested_by', 'status', 'reviewed_by', 'created_at', 'expires_at']
    list_filter = ['status']
    search_fields = ['user__email', 'requested_by__email']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Read-only view of the audit trail."""
    list_display = ['logged_at', 'user_name', 'action', 'module', 'severity']
    list_filter = ['severity', 'module', 'action']
    search_fields = ['action', 'description', 'user_name']
    ordering = ['-logged_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# Register other models with default admin
admin.site.register(PermissionDependency)
admin.site.register(UserPermission)
