"""
RBAC signals for permission cache invalidation.

Changes that alter a user's effective permissions without going through
the RBAC services (Django admin edits, shell sessions, fixtures) still bump
the affected permission versions and drop the cache entries once the write
commits. Queryset update() and bulk_create() send no signals; callers using
them schedule the invalidation themselves.
"""
from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver


def _previous_values(sender, instance, fields):
    if instance._state.adding or instance.pk is None:
        return None
    return sender.objects_with_deleted.filter(pk=instance.pk).values(*fields).first()


def _schedule(role_id=None, user_id=None):
    from apps.rbac.services import PermissionResolver
    PermissionResolver().schedule_cache_invalidation(role_id=role_id, user_id=user_id)


@receiver(pre_save, sender='rbac.User')
def remember_user_access_fields(sender, instance, **kwargs):
    """Capture role and super-admin flag before the row changes."""
    instance._rbac_previous = _previous_values(sender, instance, ['role_id', 'is_super_admin'])


@receiver(post_save, sender='rbac.User')
def invalidate_user_permissions_on_change(sender, instance, created, **kwargs):
    """Drop the user's cached permissions when their role or flag changed."""
    if created:
        return

    previous = getattr(instance, '_rbac_previous', None)
    if previous is None:
        return

    if previous['role_id'] != instance.role_id or previous['is_super_admin'] != instance.is_super_admin:
        _schedule(user_id=instance.pk)


@receiver(pre_save, sender='rbac.Role')
def remember_role_flag(sender, instance, **kwargs):
    instance._rbac_previous = _previous_values(sender, instance, ['is_super_admin'])


@receiver(post_save, sender='rbac.Role')
def invalidate_role_members_on_flag_change(sender, instance, created, **kwargs):
    """Drop cached permissions of every member when the role's bypass flag flips."""
    previous = getattr(instance, '_rbac_previous', None)
    if created or previous is None:
        return

    if previous['is_super_admin'] != instance.is_super_admin:
        _schedule(role_id=instance.pk)


@receiver(post_save, sender='rbac.RolePermission')
@receiver(post_delete, sender='rbac.RolePermission')
def invalidate_role_members_on_binding_change(sender, instance, **kwargs):
    """A binding added or removed (e.g. through the role admin inline) reaches every member."""
    _schedule(role_id=instance.role_id)


@receiver(post_save, sender='rbac.TemporaryPermission')
@receiver(post_save, sender='rbac.UserPermission')
@receiver(post_delete, sender='rbac.TemporaryPermission')
@receiver(post_delete, sender='rbac.UserPermission')
def invalidate_user_permissions_on_override_change(sender, instance, **kwargs):
    """Overrides and temporary grants written outside the services must not linger in cache."""
    _schedule(user_id=instance.user_id)
