"""
DRF permission classes and decorators for RBAC permission enforcement.

This module provides:
- HasRBACPermission: DRF permission class that enforces permission names
- @requires_permissions: Decorator to declare required permissions on views
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


def _normalize(required):
    if not required:
        return set()
    if isinstance(required, str):
        return {required}
    return set(required)


class HasRBACPermission(BasePermission):
    """
    DRF permission class that enforces permission names on API endpoints.

    This permission class:
    1. Rejects unauthenticated requests
    2. Reads the view's required_permissions attribute
    3. Asks the PermissionResolver whether the user holds all of them
       (super-admins always pass)
    4. Logs denials through SecurityLogger

    Usage in views:
        class RoleListView(APIView):
            permission_classes = [HasRBACPermission]
            required_permissions = {'manage-roles'}
    """

    def has_permission(self, request, view):
        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return False

        required = _normalize(getattr(view, 'required_permissions', None))
        if not required:
            return True

        from apps.rbac.services import PermissionResolver

        if PermissionResolver().has_all_permissions(user, required):
            return True

        SecurityLogger.log_permission_denied(
            user,
            required,
            ip_address=request.META.get('REMOTE_ADDR'),
            path=request.path,
        )
        logger.warning(
            f"Permission denied: User {user.email} missing one of {sorted(required)}",
            extra={
                'user_id': str(user.id),
                'required_permissions': sorted(required),
                'view': view.__class__.__name__,
                'method': request.method,
                'path': request.path,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return False


def requires_permissions(*permissions):
    """
    Decorator to declare required permissions on view classes or methods.

    Usage:
        @requires_permissions('view-permission-matrix')
        class PermissionMatrixView(APIView):
            permission_classes = [HasRBACPermission]

    Or on individual methods:
        class RoleListView(APIView):
            permission_classes = [HasRBACPermission]

            @requires_permissions('manage-roles')
            def get(self, request):
                pass

    Method-level declarations are checked inside the handler, because DRF
    runs permission classes before dispatching to it.
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_permissions = set(permissions)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            self.required_permissions = set(permissions)
            for permission in self.get_permissions():
                if not permission.has_permission(request, self):
                    self.permission_denied(
                        request,
                        message=getattr(permission, 'message', None),
                        code=getattr(permission, 'code', None)
                    )
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_permissions = set(permissions)
        return wrapped

    return decorator
