"""
RBAC API URLs.

Provides endpoints for:
- Authentication (login)
- Role administration and role permission sync
- User role reassignment, overrides and temporary grants
- Permission change requests awaiting a second approver
- Reporting and audit log search
"""
from django.urls import path
from apps.rbac.views import (
    LoginView,
    AdminRoleListView,
    AdminRoleDetailView,
    RolePermissionsView,
    RolePermissionsResetView,
    AssignableUserListView,
    UserRoleView,
    UserPermissionsView,
    UserTemporaryPermissionsView,
    TemporaryPermissionDetailView,
    TemporaryPermissionCheckView,
    PermissionChangeRequestListView,
    PermissionChangeRequestDetailView,
    PermissionChangeApproveView,
    PermissionChangeRejectView,
    PermissionChangeCancelView,
    PermissionListView,
    PermissionMatrixView,
    RoleHierarchyView,
    RBACDashboardView,
    AuditLogListView,
    RBACExportView,
    MyPermissionsView,
)

app_name = 'rbac'

urlpatterns = [
    # Authentication
    path('auth/login', LoginView.as_view(), name='login'),

    # Role administration
    path('admin/roles', AdminRoleListView.as_view(), name='admin-role-list'),
    path('admin/roles/<uuid:pk>', AdminRoleDetailView.as_view(), name='admin-role-detail'),

    # User overrides and temporary grants
    path('admin/users/<uuid:pk>/permissions', UserPermissionsView.as_view(), name='user-permissions'),
    path('admin/users/<uuid:pk>/temporary-permissions', UserTemporaryPermissionsView.as_view(), name='user-temporary-permissions'),
    path('admin/users/<uuid:pk>/temporary-permissions/check', TemporaryPermissionCheckView.as_view(), name='temporary-permission-check'),
    path('admin/temporary-permissions/<uuid:pk>', TemporaryPermissionDetailView.as_view(), name='temporary-permission-detail'),

    # Permission change requests
    path('admin/permission-change-requests', PermissionChangeRequestListView.as_view(), name='change-request-list'),
    path('admin/permission-change-requests/<uuid:pk>', PermissionChangeRequestDetailView.as_view(), name='change-request-detail'),
    path('admin/permission-change-requests/<uuid:pk>/approve', PermissionChangeApproveView.as_view(), name='change-request-approve'),
    path('admin/permission-change-requests/<uuid:pk>/reject', PermissionChangeRejectView.as_view(), name='change-request-reject'),
    path('admin/permission-change-requests/<uuid:pk>/cancel', PermissionChangeCancelView.as_view(), name='change-request-cancel'),

    # Role permission sync and role reassignment
    path('rbac/roles/<uuid:pk>/permissions', RolePermissionsView.as_view(), name='role-permissions'),
    path('rbac/roles/<uuid:pk>/reset', RolePermissionsResetView.as_view(), name='role-permissions-reset'),
    path('rbac/users', AssignableUserListView.as_view(), name='assignable-users'),
    path('rbac/users/<uuid:pk>/role', UserRoleView.as_view(), name='user-role'),

    # Reporting
    path('rbac/permissions', PermissionListView.as_view(), name='permission-list'),
    path('rbac/permission-matrix', PermissionMatrixView.as_view(), name='permission-matrix'),
    path('rbac/hierarchy', RoleHierarchyView.as_view(), name='role-hierarchy'),
    path('rbac/dashboard', RBACDashboardView.as_view(), name='dashboard'),
    path('rbac/audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
    path('rbac/export', RBACExportView.as_view(), name='export'),
    path('rbac/me/permissions', MyPermissionsView.as_view(), name='my-permissions'),
]
