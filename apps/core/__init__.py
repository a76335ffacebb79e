# Export RBAC permission classes and decorators for easy importing
from apps.core.permissions import HasRBACPermission, requires_permissions

__all__ = ['HasRBACPermission', 'requires_permissions']
