"""
RBAC and Authentication services.

Implements:
- PermissionResolver: effective permission computation, caching, invalidation
- RoleService: role creation, role-permission sync, role reassignment
- UserPermissionService: per-user overrides and temporary grants
- PermissionChangeRequestService: two-person approval of override changes
- AuthService: JWT issuing and validation, login
"""
import logging
from datetime import timedelta
from typing import Dict, Any, Iterable, List, Optional

import jwt
from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from apps.core.cache import CacheKeys, CacheService, CacheTTL
from apps.core.exceptions import (
    OperationFailedError, PermissionDeniedError,
    ProtectedEntityError, RoleDeletionDisabledError, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.rbac.models import (
    User, Permission, PermissionChangeRequest, PermissionDependency, Role,
    RolePermission, UserPermission, TemporaryPermission, AuditLog,
)
from apps.rbac.registry import (
    ALL_PERMISSIONS, DEFAULT_ROLE_PRIORITY, DEFAULT_ROLES, PERMISSION_NAMES,
    PRIORITY_KEYWORDS, is_protected_role_name,
)

logger = logging.getLogger(__name__)


def _as_set(names) -> set:
    if isinstance(names, str):
        return {names}
    return set(names or ())


def _dedupe_ids(ids) -> List[str]:
    return list(dict.fromkeys(str(pid) for pid in (ids or ())))


class PermissionResolver:
    """
    Answers "may this user do X" questions.

    Every call receives the user explicitly. The effective permission set of
    a non-super-admin is

        role bindings | grants | active temporary grants - explicit revokes

    and is cached per user, stamped with the user's and role's
    permissions_version. Every write that changes a user's access bumps one
    of those counters in its own transaction, so a cached set is only served
    while its stamp still matches the database. Super admins (flag on the
    user or on the held role) short-circuit to True without touching the
    cache.

    The cache is injected; by default it is a CacheService over the
    configured RBAC cache alias. Pass NullCache() to always compute.
    """

    def __init__(self, cache=None, ttl: Optional[int] = None):
        self.cache = cache if cache is not None else CacheService()
        self.ttl = ttl or getattr(settings, 'RBAC_PERMISSION_CACHE_TTL', CacheTTL.RBAC_PERMISSIONS)

    @staticmethod
    def cache_key(user_id) -> str:
        return CacheKeys.format(CacheKeys.USER_EFFECTIVE_PERMISSIONS, user_id=user_id)

    @staticmethod
    def is_super_admin(user) -> bool:
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        return user.has_super_admin_role

    def effective_permissions(self, user) -> frozenset:
        """
        Return the names of every permission the user effectively holds.

        Super admins get the full catalogue.

        Raises:
            User.DoesNotExist: if the user has never been saved
        """
        if user is None or user.pk is None or user._state.adding:
            raise User.DoesNotExist("Cannot resolve permissions for an unsaved user")

        if self.is_super_admin(user):
            return frozenset(Permission.objects.values_list('name', flat=True))

        stamp = self.version_stamp(user.pk)
        if stamp is None:
            raise User.DoesNotExist(f"User {user.pk} no longer exists")

        key = self.cache_key(user.pk)
        cached = self.cache.get(key)
        if isinstance(cached, dict) and cached.get('version') == stamp:
            return frozenset(cached['permissions'])

        # The stamp was read before computing, so a result that raced with a
        # committed change is stored under the older stamp and never served.
        permissions, ttl = self._compute(user, role_id=stamp[1])
        self.cache.set(key, {'version': stamp, 'permissions': sorted(permissions)}, ttl)
        return permissions

    @staticmethod
    def version_stamp(user_id) -> Optional[list]:
        """
        [user version, role id, role version] as stored right now, or None
        when the user row is gone.
        """
        row = User.objects_with_deleted.filter(pk=user_id).values_list(
            'permissions_version', 'role_id', 'role__permissions_version'
        ).first()
        if row is None:
            return None
        user_version, role_id, role_version = row
        return [user_version, str(role_id) if role_id else None, role_version]

    def _compute(self, user, role_id=None):
        role_permissions = set()
        if role_id:
            role_permissions = set(
                Permission.objects.filter(
                    role_permissions__role_id=role_id
                ).values_list('name', flat=True)
            )

        grants, revokes = set(), set()
        overrides = UserPermission.objects.filter(
            user=user, granted__isnull=False
        ).values_list('permission__name', 'granted')
        for name, granted in overrides:
            (grants if granted else revokes).add(name)

        temporary = list(
            TemporaryPermission.objects.active_for_user(user).values_list('permission__name', 'expires_at')
        )
        temporary_names = {name for name, _ in temporary}

        effective = frozenset((role_permissions | grants | temporary_names) - revokes)

        ttl = self.ttl
        if temporary:
            earliest = min(expires_at for _, expires_at in temporary)
            remaining = int((earliest - timezone.now()).total_seconds())
            ttl = max(1, min(ttl, remaining))

        return effective, ttl

    def has_permission(self, user, name: str) -> bool:
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if self.is_super_admin(user):
            return True
        return name in self.effective_permissions(user)

    def has_all_permissions(self, user, names) -> bool:
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if self.is_super_admin(user):
            return True
        required = _as_set(names)
        if not required:
            return True
        return required.issubset(self.effective_permissions(user))

    def has_any_permission(self, user, names) -> bool:
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if self.is_super_admin(user):
            return True
        return bool(_as_set(names) & self.effective_permissions(user))

    def has_any_role(self, user, names) -> bool:
        """
        Compare the user's role name or slug (or the legacy role string when
        no role is linked) against names. Permissions play no part.
        """
        if user is None or not getattr(user, 'is_authenticated', False):
            return False

        if user.role_id:
            held = {user.role.name, user.role.slug}
        elif user.role_name:
            held = {user.role_name}
        else:
            return False

        wanted = _as_set(names)
        if not getattr(settings, 'RBAC_ROLE_MATCH_CASE_SENSITIVE', True):
            held = {value.lower() for value in held}
            wanted = {value.lower() for value in wanted}
        return bool(held & wanted)

    def can_manage_user(self, acting_user, target_user) -> bool:
        """Only super admins may manage other users' roles."""
        return self.is_super_admin(acting_user)

    def clear_permission_cache(self, role_id=None, user_id=None) -> int:
        """
        Drop cached effective permissions for one user, or for every user
        currently holding a role. Returns the number of keys deleted.
        """
        user_ids = set()
        if user_id is not None:
            user_ids.add(user_id)
        if role_id is not None:
            user_ids.update(
                User.objects_with_deleted.filter(role_id=role_id).values_list('id', flat=True)
            )

        keys = [self.cache_key(uid) for uid in user_ids]
        if not self.cache.delete_many(keys):
            # Entries left behind carry an outdated version stamp and are
            # recomputed on the next read.
            logger.warning(
                f"Permission cache delete failed for {len(keys)} users",
                extra={'role_id': str(role_id) if role_id else None,
                       'user_id': str(user_id) if user_id else None}
            )
            return 0
        logger.debug(
            f"Cleared permission cache for {len(keys)} users",
            extra={'role_id': str(role_id) if role_id else None}
        )
        return len(keys)

    @staticmethod
    def bump_versions(role_id=None, user_id=None):
        """
        Advance the stored permission versions inside the current
        transaction. Cached sets stamped with the old values stop matching
        as soon as the change commits.
        """
        if user_id is not None:
            User.objects_with_deleted.filter(pk=user_id).update(
                permissions_version=F('permissions_version') + 1
            )
        if role_id is not None:
            Role.objects_with_deleted.filter(pk=role_id).update(
                permissions_version=F('permissions_version') + 1
            )

    def schedule_cache_invalidation(self, role_id=None, user_id=None):
        """
        Bump the permission versions now, then clear the cache once the
        surrounding transaction commits (right away when none is open).
        """
        self.bump_versions(role_id=role_id, user_id=user_id)
        transaction.on_commit(
            lambda: self.clear_permission_cache(role_id=role_id, user_id=user_id)
        )


class RoleService:
    """
    Service for role administration: creation, permission sync, reassignment.
    """

    @classmethod
    def list_roles(cls):
        """Roles by priority (desc) then name, with live member counts."""
        return Role.objects.select_related('parent_role').annotate(
            users_count=Count('users', filter=Q(users__deleted_at__isnull=True))
        ).order_by('-priority', 'name')

    @staticmethod
    def make_slug(name: str) -> str:
        return name.lower().replace(' ', '-')

    @staticmethod
    def calculate_priority(name: str) -> int:
        """
        Default seniority from keywords in the role name.

        >>> RoleService.calculate_priority('Ward Manager')
        80
        """
        lowered = (name or '').lower()
        for keywords, priority in PRIORITY_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return priority
        return DEFAULT_ROLE_PRIORITY

    @classmethod
    def create_role(cls, name: str, description: str = '', is_super_admin_requested: bool = False,
                    acting_user: Optional[User] = None, parent_role: Optional[Role] = None,
                    request=None) -> Role:
        """
        Create a custom role.

        Raises:
            ProtectedEntityError: protected name, or super-admin flag
                requested by a non-super-admin
            ValidationError: blank or duplicate name/slug
            OperationFailedError: the insert failed unexpectedly
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError(errors={'name': ['The name field is required.']})

        if is_protected_role_name(name):
            SecurityLogger.log_protected_role_violation(acting_user, name, 'create_role')
            AuditLog.log_action(
                action='protected_role_violation',
                user=acting_user,
                description=f"Attempted to create protected role '{name}'",
                severity='critical',
                target_type='Role',
                metadata={'role_name': name},
                request=request,
            )
            raise ProtectedEntityError(f"The role name '{name}' is reserved and cannot be created.")

        if is_super_admin_requested and not PermissionResolver.is_super_admin(acting_user):
            SecurityLogger.log_privilege_escalation_attempt(
                acting_user, 'create_super_admin_role', role_name=name
            )
            AuditLog.log_action(
                action='privilege_escalation_attempt',
                user=acting_user,
                description=f"Attempted to create super admin role '{name}'",
                severity='critical',
                target_type='Role',
                metadata={'role_name': name},
                request=request,
            )
            raise ProtectedEntityError('Only super admins can create super admin roles.')

        slug = cls.make_slug(name)
        if Role.objects_with_deleted.filter(Q(name=name) | Q(slug=slug)).exists():
            raise ValidationError(errors={'name': ['A role with this name already exists.']})

        priority = cls.calculate_priority(name)

        try:
            with transaction.atomic():
                role = Role.objects.create(
                    name=name,
                    slug=slug,
                    description=description or '',
                    priority=priority,
                    is_system=False,
                    is_super_admin=bool(is_super_admin_requested),
                    parent_role=parent_role,
                )
        except IntegrityError:
            raise ValidationError(errors={'name': ['A role with this name already exists.']})
        except Exception as e:
            logger.error(f"Role creation failed: {name}", exc_info=True)
            raise OperationFailedError() from e

        AuditLog.log_action(
            action='role_created',
            user=acting_user,
            description=f"Created role '{role.name}'",
            severity='high' if role.is_super_admin else 'medium',
            target_type='Role',
            target_id=role.id,
            diff={'name': role.name, 'priority': role.priority, 'is_super_admin': role.is_super_admin},
            request=request,
        )
        logger.info(
            f"Role created: {role.name}",
            extra={'role_id': str(role.id), 'priority': role.priority}
        )
        return role

    @staticmethod
    def validate_dependencies(permissions: Iterable[Permission], also_held: Iterable[str] = ()) -> List[str]:
        """
        Return one message per unmet prerequisite among permissions.

        also_held names permissions that satisfy prerequisites without being
        part of the set being validated.
        """
        permissions = list(permissions)
        held = {perm.name for perm in permissions} | set(also_held)
        errors = []
        dependencies = PermissionDependency.objects.filter(
            permission__in=permissions
        ).select_related('permission', 'depends_on')
        for dependency in dependencies:
            if dependency.depends_on.name not in held:
                errors.append(
                    f"Permission '{dependency.permission.name}' requires '{dependency.depends_on.name}'"
                )
        return sorted(errors)

    @classmethod
    def update_role_permissions(cls, role: Role, permission_ids, acting_user: User, request=None):
        """
        Replace the role's permission set with exactly permission_ids.

        Runs in one transaction; members' cached permissions are dropped
        after commit.

        Raises:
            ProtectedEntityError: non-super-admin editing a super admin role
            ValidationError: unknown ids or unmet dependencies
            OperationFailedError: the write failed and was rolled back
        """
        if role.is_super_admin and not PermissionResolver.is_super_admin(acting_user):
            SecurityLogger.log_protected_role_violation(acting_user, role.name, 'update_role_permissions')
            raise ProtectedEntityError('Only super admins can change the permissions of a super admin role.')

        requested = _dedupe_ids(permission_ids)
        permissions = list(Permission.objects.filter(id__in=requested))
        found = {str(perm.id) for perm in permissions}
        missing = [pid for pid in requested if pid not in found]
        if missing:
            raise ValidationError(
                errors={'permission_ids': [f"Permission '{pid}' does not exist." for pid in missing]}
            )

        dependency_errors = cls.validate_dependencies(permissions)
        if dependency_errors:
            raise ValidationError(errors={'permission_ids': dependency_errors})

        before = sorted(role.get_permissions().values_list('name', flat=True))
        after = sorted(perm.name for perm in permissions)

        try:
            with transaction.atomic():
                RolePermission.objects.filter(role=role).delete()
                RolePermission.objects.bulk_create([
                    RolePermission(role=role, permission=perm) for perm in permissions
                ])
                PermissionResolver().schedule_cache_invalidation(role_id=role.id)
        except Exception as e:
            logger.error(
                f"Role permission update failed for {role.name}",
                extra={'role_id': str(role.id)},
                exc_info=True
            )
            raise OperationFailedError() from e

        AuditLog.log_action(
            action='role_permissions_updated',
            user=acting_user,
            description=f"Updated permissions for role '{role.name}'",
            severity='high',
            target_type='Role',
            target_id=role.id,
            diff={
                'added': sorted(set(after) - set(before)),
                'removed': sorted(set(before) - set(after)),
            },
            metadata={'permission_count': len(after)},
            request=request,
        )
        return permissions

    @classmethod
    def reset_role_permissions(cls, role: Role, acting_user: User, request=None):
        """
        Put the role's bindings back to its seeded defaults.

        Raises:
            ValidationError: the role has no seeded default set
            (plus everything update_role_permissions raises)
        """
        defaults = {spec['name']: spec['permissions'] for spec in DEFAULT_ROLES}
        if role.name not in defaults:
            raise ValidationError(errors={'role': [f"Role '{role.name}' has no default permission set."]})

        names = defaults[role.name]
        if names == ALL_PERMISSIONS:
            names = PERMISSION_NAMES
        permission_ids = Permission.objects.filter(name__in=names).values_list('id', flat=True)

        permissions = cls.update_role_permissions(role, permission_ids, acting_user, request=request)
        AuditLog.log_action(
            action='role_permissions_reset',
            user=acting_user,
            description=f"Reset permissions of role '{role.name}' to defaults",
            severity='high',
            target_type='Role',
            target_id=role.id,
            metadata={'permission_count': len(permissions)},
            request=request,
        )
        logger.info(f"Role permissions reset to defaults: {role.name}", extra={'role_id': str(role.id)})
        return permissions

    @classmethod
    def delete_role(cls, role: Role, acting_user: User, request=None):
        """
        Role deletion is disabled for every caller. The attempt is audited.
        """
        AuditLog.log_action(
            action='role_deletion_blocked',
            user=acting_user,
            description=f"Attempted to delete role '{role.name}'",
            severity='medium',
            target_type='Role',
            target_id=role.id,
            request=request,
        )
        raise RoleDeletionDisabledError()

    @classmethod
    def update_user_role(cls, target: User, new_role: Role, acting_user: User, request=None) -> User:
        """
        Move target to new_role.

        Raises:
            ProtectedEntityError: target currently holds, or would receive,
                a protected role
            PermissionDeniedError: acting_user may not manage target
        """
        current_role_name = target.role_display

        if is_protected_role_name(current_role_name) or new_role.is_protected:
            protected_name = current_role_name if is_protected_role_name(current_role_name) else new_role.name
            SecurityLogger.log_protected_role_violation(acting_user, protected_name, 'update_user_role')
            AuditLog.log_action(
                action='protected_role_violation',
                user=acting_user,
                description=f"Attempted to change role of {target.email} involving '{protected_name}'",
                severity='critical',
                target_type='User',
                target_id=target.id,
                metadata={'from': current_role_name, 'to': new_role.name},
                request=request,
            )
            raise ProtectedEntityError('Protected roles cannot be assigned or removed.')

        resolver = PermissionResolver()
        if not resolver.can_manage_user(acting_user, target):
            raise PermissionDeniedError()

        with transaction.atomic():
            target.role = new_role
            target.save(update_fields=['role', 'updated_at'])
            resolver.schedule_cache_invalidation(user_id=target.id)

        AuditLog.log_action(
            action='user_role_changed',
            user=acting_user,
            description=f"Changed role of {target.email} from '{current_role_name or 'none'}' to '{new_role.name}'",
            severity='high',
            target_type='User',
            target_id=target.id,
            diff={'role': {'from': current_role_name, 'to': new_role.name}},
            request=request,
        )
        return target


class UserPermissionService:
    """
    Service for per-user permission overrides and temporary grants.
    """

    @staticmethod
    def _check_can_edit(target: User, acting_user: User, action: str):
        if PermissionResolver.is_super_admin(acting_user):
            return
        if acting_user.pk == target.pk:
            SecurityLogger.log_privilege_escalation_attempt(acting_user, action, target_user_id=str(target.id))
            raise ProtectedEntityError('You cannot change your own permissions.')
        if PermissionResolver.is_super_admin(target):
            SecurityLogger.log_privilege_escalation_attempt(acting_user, action, target_user_id=str(target.id))
            raise ProtectedEntityError('Super admin permissions cannot be changed.')

    @staticmethod
    def _check_approval(permissions, acting_user, target: User, action: str):
        """
        Permissions flagged requires_approval reach a user only through an
        approved change request, unless a super admin grants them.
        """
        if PermissionResolver.is_super_admin(acting_user):
            return
        already_granted = set(
            UserPermission.objects.filter(user=target, granted=True).values_list('permission_id', flat=True)
        )
        gated = sorted(
            perm.name for perm in permissions
            if perm.requires_approval and perm.id not in already_granted
        )
        if gated:
            SecurityLogger.log_privilege_escalation_attempt(
                acting_user, action, target_user_id=str(target.id), permissions=gated
            )
            raise PermissionDeniedError(
                f"Granting {', '.join(gated)} requires an approved permission change request."
            )

    @classmethod
    def update_user_permissions(cls, target: User, permission_ids, acting_user: User,
                                revoked_permission_ids=(), request=None) -> List[UserPermission]:
        """
        Replace every override of target.

        Unknown ids are skipped. An id may not appear in both lists.
        Prerequisites of granted permissions may be met by other grants or by
        the target's role.
        """
        cls._check_can_edit(target, acting_user, 'update_user_permissions')

        grant_ids = _dedupe_ids(permission_ids)
        revoke_ids = _dedupe_ids(revoked_permission_ids)

        overlap = sorted(set(grant_ids) & set(revoke_ids))
        if overlap:
            raise ValidationError(errors={
                'revoked_permission_ids': [f"Permission '{pid}' cannot be both granted and revoked." for pid in overlap]
            })

        grants = list(Permission.objects.filter(id__in=grant_ids))
        revokes = list(Permission.objects.filter(id__in=revoke_ids))
        cls._check_approval(grants, acting_user, target, 'update_user_permissions')

        role_permission_names = []
        if target.role_id:
            role_permission_names = target.role.get_permissions().values_list('name', flat=True)
        dependency_errors = RoleService.validate_dependencies(grants, also_held=role_permission_names)
        if dependency_errors:
            raise ValidationError(errors={'permission_ids': dependency_errors})

        try:
            with transaction.atomic():
                UserPermission.objects.filter(user=target).delete()
                overrides = UserPermission.objects.bulk_create(
                    [
                        UserPermission(user=target, permission=perm, granted=True, granted_by=acting_user)
                        for perm in grants
                    ] + [
                        UserPermission(user=target, permission=perm, granted=False, granted_by=acting_user)
                        for perm in revokes
                    ]
                )
                PermissionResolver().schedule_cache_invalidation(user_id=target.id)
        except Exception as e:
            logger.error(
                f"User permission update failed for {target.email}",
                extra={'target_user_id': str(target.id)},
                exc_info=True
            )
            raise OperationFailedError() from e

        AuditLog.log_action(
            action='user_permissions_updated',
            user=acting_user,
            description=f"Updated permission overrides for {target.email}",
            severity='high',
            target_type='User',
            target_id=target.id,
            diff={
                'granted': sorted(perm.name for perm in grants),
                'revoked': sorted(perm.name for perm in revokes),
            },
            request=request,
        )
        return overrides

    @classmethod
    def grant_temporary_permission(cls, target: User, permission: Permission, expires_at,
                                   acting_user: User, reason: str = '', request=None) -> TemporaryPermission:
        """
        Grant permission to target until expires_at.

        Raises:
            ValidationError: expires_at is not in the future
        """
        cls._check_can_edit(target, acting_user, 'grant_temporary_permission')

        if expires_at <= timezone.now():
            raise ValidationError(errors={'expires_at': ['The expiry must be in the future.']})
        cls._check_approval([permission], acting_user, target, 'grant_temporary_permission')

        with transaction.atomic():
            temporary = TemporaryPermission.objects.create(
                user=target,
                permission=permission,
                granted_by=acting_user,
                expires_at=expires_at,
                reason=reason or '',
            )
            PermissionResolver().schedule_cache_invalidation(user_id=target.id)

        AuditLog.log_action(
            action='temporary_permission_granted',
            user=acting_user,
            description=f"Granted '{permission.name}' to {target.email} until {expires_at.isoformat()}",
            severity='high' if permission.risk_level in ('high', 'critical') else 'medium',
            target_type='User',
            target_id=target.id,
            metadata={'permission': permission.name, 'expires_at': expires_at.isoformat(), 'reason': reason},
            request=request,
        )
        return temporary

    @classmethod
    def revoke_temporary_permission(cls, temporary: TemporaryPermission, acting_user: User,
                                    request=None) -> TemporaryPermission:
        cls._check_can_edit(temporary.user, acting_user, 'revoke_temporary_permission')

        with transaction.atomic():
            temporary.is_active = False
            temporary.save(update_fields=['is_active', 'updated_at'])
            PermissionResolver().schedule_cache_invalidation(user_id=temporary.user_id)

        AuditLog.log_action(
            action='temporary_permission_revoked',
            user=acting_user,
            description=f"Revoked temporary '{temporary.permission.name}' from {temporary.user.email}",
            severity='medium',
            target_type='User',
            target_id=temporary.user_id,
            metadata={'permission': temporary.permission.name},
            request=request,
        )
        return temporary

    @staticmethod
    def check_temporary_permission(target: User, permission_name: str) -> Dict[str, Any]:
        """
        Whether target currently holds permission_name, and the active
        temporary grant behind it if there is one.
        """
        has_permission = PermissionResolver().has_permission(target, permission_name)
        temporary = None
        if has_permission:
            temporary = TemporaryPermission.objects.active_for_user(target).filter(
                permission__name=permission_name
            ).select_related('permission', 'user', 'granted_by').order_by('-expires_at').first()
        return {
            'has_permission': has_permission,
            'temporary_permission': temporary,
        }


class PermissionChangeRequestService:
    """
    Two-person workflow for changes to a user's overrides.

    One administrator files the request; a different, active administrator
    approves it, and only then are the overrides written. Permissions
    flagged requires_approval can only be given to a user this way unless a
    super admin grants them directly.
    """

    @classmethod
    def list_requests(cls, status: Optional[str] = None, user_id=None, requested_by_id=None):
        """Newest first, optionally filtered."""
        requests = PermissionChangeRequest.objects.select_related(
            'user', 'requested_by', 'reviewed_by'
        ).prefetch_related('permissions_to_add', 'permissions_to_remove')
        if status:
            requests = requests.filter(status=status)
        if user_id:
            requests = requests.filter(user_id=user_id)
        if requested_by_id:
            requests = requests.filter(requested_by_id=requested_by_id)
        return requests.order_by('-created_at')

    @staticmethod
    def validate_four_eyes(initiator_user_id, approver_user_id) -> bool:
        """
        The approver must be a different, existing, active user.

        Raises:
            ValueError: describing the first rule that fails
        """
        if initiator_user_id is None:
            raise ValueError("initiator_user_id is required")
        if approver_user_id is None:
            raise ValueError("approver_user_id is required")
        if str(initiator_user_id) == str(approver_user_id):
            raise ValueError("Four-eyes validation failed: initiator and approver must be different users")

        approver = User.objects.filter(pk=approver_user_id).values('is_active').first()
        if approver is None:
            raise ValueError("approver user does not exist")
        if not approver['is_active']:
            raise ValueError("approver user is inactive")
        return True

    @staticmethod
    def _held_for_dependencies(target: User, exclude_ids=()) -> List[str]:
        held = []
        if target.role_id:
            held.extend(target.role.get_permissions().values_list('name', flat=True))
        held.extend(
            UserPermission.objects.filter(user=target, granted=True)
            .exclude(permission_id__in=exclude_ids)
            .values_list('permission__name', flat=True)
        )
        return held

    @classmethod
    def create_request(cls, target: User, add_ids, remove_ids, acting_user: User,
                       reason: str = '', expires_at=None, request=None) -> PermissionChangeRequest:
        """
        File a pending change request for target.

        Raises:
            ProtectedEntityError: non-super-admin targeting themselves or a
                super admin
            ValidationError: nothing to change, unknown or overlapping ids,
                past expiry, unmet dependencies
        """
        UserPermissionService._check_can_edit(target, acting_user, 'create_permission_change_request')

        add_ids = _dedupe_ids(add_ids)
        remove_ids = _dedupe_ids(remove_ids)
        if not add_ids and not remove_ids:
            raise ValidationError(errors={
                'permissions_to_add': ['At least one permission must be added or removed.']
            })

        overlap = sorted(set(add_ids) & set(remove_ids))
        if overlap:
            raise ValidationError(errors={
                'permissions_to_remove': [f"Permission '{pid}' cannot be both added and removed." for pid in overlap]
            })

        adds = list(Permission.objects.filter(id__in=add_ids))
        removes = list(Permission.objects.filter(id__in=remove_ids))
        found = {str(perm.id) for perm in adds + removes}
        missing = [pid for pid in add_ids + remove_ids if pid not in found]
        if missing:
            raise ValidationError(errors={
                'permission_ids': [f"Permission '{pid}' does not exist." for pid in missing]
            })

        if expires_at is not None and expires_at <= timezone.now():
            raise ValidationError(errors={'expires_at': ['The expiry must be in the future.']})

        dependency_errors = RoleService.validate_dependencies(
            adds, also_held=cls._held_for_dependencies(target, exclude_ids=[perm.id for perm in removes])
        )
        if dependency_errors:
            raise ValidationError(errors={'permissions_to_add': dependency_errors})

        with transaction.atomic():
            change_request = PermissionChangeRequest.objects.create(
                user=target,
                requested_by=acting_user,
                reason=reason or '',
                expires_at=expires_at,
            )
            change_request.permissions_to_add.set(adds)
            change_request.permissions_to_remove.set(removes)

        AuditLog.log_action(
            action='permission_change_requested',
            user=acting_user,
            description=f"Requested permission changes for {target.email}",
            severity='high' if any(perm.requires_approval for perm in adds) else 'medium',
            target_type='User',
            target_id=target.id,
            diff={
                'add': sorted(perm.name for perm in adds),
                'remove': sorted(perm.name for perm in removes),
            },
            metadata={'change_request_id': str(change_request.id), 'reason': reason},
            request=request,
        )
        logger.info(
            f"Permission change request filed for {target.email}",
            extra={'change_request_id': str(change_request.id), 'requested_by': str(acting_user.id)}
        )
        return change_request

    @staticmethod
    def _ensure_actionable(change_request: PermissionChangeRequest):
        if change_request.status != PermissionChangeRequest.STATUS_PENDING:
            raise ValidationError(f"This request has already been {change_request.status}.")
        if not change_request.is_actionable:
            change_request.status = PermissionChangeRequest.STATUS_EXPIRED
            change_request.save(update_fields=['status', 'updated_at'])
            raise ValidationError('This request has expired.')

    @staticmethod
    def _close(change_request, status: str, acting_user: User, note: str) -> bool:
        """Move a still-pending request to status; False if someone got there first."""
        now = timezone.now()
        closed = PermissionChangeRequest.objects.filter(
            pk=change_request.pk, status=PermissionChangeRequest.STATUS_PENDING
        ).update(status=status, reviewed_by=acting_user, reviewed_at=now, review_note=note or '', updated_at=now)
        if closed:
            change_request.status = status
            change_request.reviewed_by = acting_user
            change_request.reviewed_at = now
            change_request.review_note = note or ''
        return bool(closed)

    @classmethod
    def approve(cls, change_request: PermissionChangeRequest, acting_user: User,
                note: str = '', request=None) -> PermissionChangeRequest:
        """
        Approve and apply the request in one transaction: additions become
        grants, removals become revokes.

        Raises:
            PermissionDeniedError: the approver filed the request, or is not
                an active user
            ProtectedEntityError: non-super-admin approving a change to
                their own or a super admin's permissions
            ValidationError: the request is no longer pending, has expired,
                or its additions no longer meet their dependencies
        """
        cls._ensure_actionable(change_request)

        try:
            cls.validate_four_eyes(change_request.requested_by_id, acting_user.pk)
        except ValueError as e:
            SecurityLogger.log_privilege_escalation_attempt(
                acting_user, 'approve_permission_change_request',
                change_request_id=str(change_request.id), reason=str(e)
            )
            raise PermissionDeniedError('A change request must be approved by a different active administrator.') from e

        target = change_request.user
        UserPermissionService._check_can_edit(target, acting_user, 'approve_permission_change_request')

        adds = list(change_request.permissions_to_add.all())
        removes = list(change_request.permissions_to_remove.all())
        dependency_errors = RoleService.validate_dependencies(
            adds, also_held=cls._held_for_dependencies(target, exclude_ids=[perm.id for perm in removes])
        )
        if dependency_errors:
            raise ValidationError(errors={'permissions_to_add': dependency_errors})

        with transaction.atomic():
            if not cls._close(change_request, PermissionChangeRequest.STATUS_APPROVED, acting_user, note):
                raise ValidationError('This request has already been reviewed.')
            for perm, granted in [(perm, True) for perm in adds] + [(perm, False) for perm in removes]:
                UserPermission.objects.update_or_create(
                    user=target,
                    permission=perm,
                    defaults={
                        'granted': granted,
                        'granted_by': acting_user,
                        'reason': change_request.reason,
                    },
                )
            PermissionResolver().schedule_cache_invalidation(user_id=target.id)

        AuditLog.log_action(
            action='permission_change_approved',
            user=acting_user,
            description=f"Approved permission changes for {target.email}",
            severity='high',
            target_type='User',
            target_id=target.id,
            diff={
                'granted': sorted(perm.name for perm in adds),
                'revoked': sorted(perm.name for perm in removes),
            },
            metadata={
                'change_request_id': str(change_request.id),
                'requested_by': str(change_request.requested_by_id),
            },
            request=request,
        )
        return change_request

    @classmethod
    def reject(cls, change_request: PermissionChangeRequest, acting_user: User,
               note: str = '', request=None) -> PermissionChangeRequest:
        cls._ensure_actionable(change_request)
        if not cls._close(change_request, PermissionChangeRequest.STATUS_REJECTED, acting_user, note):
            raise ValidationError('This request has already been reviewed.')

        AuditLog.log_action(
            action='permission_change_rejected',
            user=acting_user,
            description=f"Rejected permission changes for {change_request.user.email}",
            severity='medium',
            target_type='User',
            target_id=change_request.user_id,
            metadata={'change_request_id': str(change_request.id), 'note': note},
            request=request,
        )
        return change_request

    @classmethod
    def cancel(cls, change_request: PermissionChangeRequest, acting_user: User,
               request=None) -> PermissionChangeRequest:
        """
        Withdraw a pending request. Only its requester or a super admin may.
        """
        if change_request.requested_by_id != acting_user.pk and not PermissionResolver.is_super_admin(acting_user):
            raise PermissionDeniedError('Only the requester or a super admin can cancel this request.')
        if change_request.status != PermissionChangeRequest.STATUS_PENDING:
            raise ValidationError('Only pending requests can be cancelled.')
        if not cls._close(change_request, PermissionChangeRequest.STATUS_REJECTED, acting_user, 'Cancelled'):
            raise ValidationError('Only pending requests can be cancelled.')

        AuditLog.log_action(
            action='permission_change_cancelled',
            user=acting_user,
            description=f"Cancelled permission change request for {change_request.user.email}",
            severity='low',
            target_type='User',
            target_id=change_request.user_id,
            metadata={'change_request_id': str(change_request.id)},
            request=request,
        )
        return change_request


class AuthService:
    """
    Service for authentication operations: JWT issuing, validation and login.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        """
        Generate JWT token for a user.

        Args:
            user: User instance

        Returns:
            JWT token string
        """
        now = timezone.now()
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload, or None if invalid or expired.
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        """Extract and return the active user a token was issued to."""
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        user_id = payload.get('user_id')
        if not user_id:
            return None

        try:
            return User.objects.select_related('role').get(id=user_id, is_active=True)
        except (User.DoesNotExist, ValueError, DjangoValidationError):
            return None

    @classmethod
    def login(cls, email: str, password: str, request=None) -> Optional[Dict[str, Any]]:
        """
        Authenticate user and return JWT token.

        Returns:
            Dict with user and token, or None if authentication failed
        """
        email = User.objects.normalize_email(email)
        user = User.objects.filter(email__iexact=email, is_active=True).select_related('role').first()

        if user is None:
            # Hash anyway so unknown emails take as long as wrong passwords
            User().set_password(password)
            return None

        if not user.check_password(password):
            return None

        user.update_last_login()
        token = cls.generate_jwt(user)

        AuditLog.log_action(
            action='user_login',
            user=user,
            description=f"{user.email} logged in",
            module='auth',
            target_type='User',
            target_id=user.id,
            request=request,
        )

        return {
            'user': user,
            'token': token,
        }
