"""
Read-only projections over roles, permissions, users and the audit trail.

Nothing here writes; views render these structures inside the success
envelope.
"""
from django.db.models import Count, Prefetch, Q

from apps.rbac.models import AuditLog, Permission, Role, RolePermission, User
from apps.rbac.registry import (
    ASSIGNMENT_EXCLUDED_ROLE_NAMES, DEFAULT_ROLE_COLOR, PROTECTED_ROLE_NAMES, ROLE_COLORS,
)

ASSIGNABLE_USERS_LIMIT = 50


def role_color(name):
    return ROLE_COLORS.get(name, DEFAULT_ROLE_COLOR)


class RBACReportingService:
    """Dashboard, matrix, hierarchy, audit search and export."""

    @classmethod
    def dashboard_stats(cls):
        roles = Role.objects.annotate(
            user_count=Count('users', filter=Q(users__deleted_at__isnull=True))
        ).order_by('-priority', 'name')
        total_users = User.objects.count()

        distribution = [
            {
                'role_id': str(role.id),
                'role_name': role.name,
                'user_count': role.user_count,
                'percentage': round(role.user_count / total_users * 100, 1) if total_users else 0.0,
                'color': role_color(role.name),
            }
            for role in roles
        ]

        return {
            'total_roles': Role.objects.count(),
            'total_permissions': Permission.objects.count(),
            'active_users': User.objects.filter(role__isnull=False).count(),
            'total_users': total_users,
            'role_distribution': distribution,
        }

    @classmethod
    def role_hierarchy(cls):
        """Roles by seniority with their parent and direct subordinates."""
        roles = list(
            Role.objects.select_related('parent_role').annotate(
                user_count=Count('users', filter=Q(users__deleted_at__isnull=True))
            ).order_by('-priority', 'name')
        )
        children = {}
        for role in roles:
            if role.parent_role_id:
                children.setdefault(role.parent_role_id, []).append(role)

        def summary(role):
            return {'id': str(role.id), 'name': role.name, 'priority': role.priority}

        return [
            {
                **summary(role),
                'slug': role.slug,
                'is_system': role.is_system,
                'is_super_admin': role.is_super_admin,
                'user_count': role.user_count,
                'color': role_color(role.name),
                'parent': summary(role.parent_role) if role.parent_role_id else None,
                'subordinates': [summary(child) for child in children.get(role.id, [])],
            }
            for role in roles
        ]

    @classmethod
    def permission_matrix(cls):
        roles = list(Role.objects.order_by('-priority', 'name'))
        permissions = list(Permission.objects.order_by('module', 'name'))

        matrix = {str(role.id): [] for role in roles}
        for role_id, permission_id in RolePermission.objects.values_list('role_id', 'permission_id'):
            key = str(role_id)
            if key in matrix:
                matrix[key].append(str(permission_id))

        return {
            'roles': roles,
            'permissions': permissions,
            'matrix': matrix,
        }

    @classmethod
    def audit_logs(cls, severity=None, module=None, search=None):
        """
        Audit entries, newest first. Filters combine with AND; search is a
        case-insensitive substring match over action, description and actor
        name.
        """
        queryset = AuditLog.objects.all()
        if severity:
            queryset = queryset.filter(severity=severity)
        if module:
            queryset = queryset.filter(module=module)
        if search:
            queryset = queryset.filter(
                Q(action__icontains=search)
                | Q(description__icontains=search)
                | Q(user_name__icontains=search)
            )
        return queryset.order_by('-logged_at')

    @classmethod
    def assignable_users(cls, search=None):
        """
        Staff whose role can be changed from the role-assignment screen.
        """
        queryset = User.objects.select_related('role').filter(
            is_super_admin=False
        ).exclude(
            role__name__in=ASSIGNMENT_EXCLUDED_ROLE_NAMES
        ).exclude(
            role__name__in=PROTECTED_ROLE_NAMES
        ).exclude(
            role__is_super_admin=True
        ).exclude(
            role__isnull=True, role_name__in=ASSIGNMENT_EXCLUDED_ROLE_NAMES + PROTECTED_ROLE_NAMES
        )

        if search:
            queryset = queryset.filter(
                Q(first_name__icontains=search)
                | Q(last_name__icontains=search)
                | Q(email__icontains=search)
            )

        return list(queryset.order_by('first_name', 'last_name', 'email')[:ASSIGNABLE_USERS_LIMIT])

    @classmethod
    def export_configuration(cls):
        roles = Role.objects.order_by('-priority', 'name').prefetch_related(
            Prefetch(
                'role_permissions',
                queryset=RolePermission.objects.select_related('permission').order_by('permission__name'),
            )
        )

        return {
            'roles': [
                {
                    'id': str(role.id),
                    'name': role.name,
                    'slug': role.slug,
                    'description': role.description,
                    'priority': role.priority,
                    'is_system': role.is_system,
                    'is_super_admin': role.is_super_admin,
                    'parent_role_id': str(role.parent_role_id) if role.parent_role_id else None,
                    'permissions': [binding.permission.name for binding in role.role_permissions.all()],
                }
                for role in roles
            ],
            'permissions': [
                {
                    'id': str(perm.id),
                    'name': perm.name,
                    'description': perm.description,
                    'module': perm.module,
                    'risk_level': perm.risk_level,
                }
                for perm in Permission.objects.order_by('module', 'name')
            ],
            'users': [
                {
                    'id': str(user.id),
                    'name': user.get_full_name(),
                    'email': user.email,
                    'role_id': str(user.role_id) if user.role_id else None,
                }
                for user in User.objects.order_by('email')
            ],
        }
