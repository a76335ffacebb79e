"""
Management command to seed the default hospital roles.

Creates the roles in apps.rbac.registry.DEFAULT_ROLES with their priority,
flags, reporting parent and permission bindings. This command is idempotent
and safe to re-run: existing roles are brought back in line with the
registry.
"""
from django.core.management import call_command
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.rbac.models import Permission, Role, RolePermission
from apps.rbac.registry import ALL_PERMISSIONS, DEFAULT_ROLES
from apps.rbac.services import PermissionResolver, RoleService

ROLE_FIELDS = ('description', 'priority', 'is_system', 'is_super_admin')


def _sync_role_permissions(role, permissions):
    """
    Ensure the role has exactly the given permissions.

    Returns the number of bindings added and removed.
    """
    current_ids = set(RolePermission.objects.filter(role=role).values_list('permission_id', flat=True))
    target_ids = {perm.id for perm in permissions}

    to_add = target_ids - current_ids
    RolePermission.objects.bulk_create([
        RolePermission(role=role, permission_id=perm_id) for perm_id in to_add
    ])

    to_remove = current_ids - target_ids
    if to_remove:
        RolePermission.objects.filter(role=role, permission_id__in=to_remove).delete()

    return len(to_add), len(to_remove)


class Command(BaseCommand):
    help = 'Seed default hospital roles and their permissions (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--with-permissions',
            action='store_true',
            help='Run seed_permissions first',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        if options.get('with_permissions'):
            call_command('seed_permissions', stdout=self.stdout)

        if not Permission.objects.exists():
            raise CommandError('No permissions found. Run seed_permissions first (or pass --with-permissions).')

        by_name = {perm.name: perm for perm in Permission.objects.all()}
        resolver = PermissionResolver()
        roles = {}

        for role_data in DEFAULT_ROLES:
            name = role_data['name']
            defaults = {field: role_data[field] for field in ROLE_FIELDS}
            role, created = Role.objects_with_deleted.get_or_create(
                name=name,
                defaults={**defaults, 'slug': RoleService.make_slug(name)}
            )

            changed = [field for field in ROLE_FIELDS if getattr(role, field) != role_data[field]]
            parent = roles.get(role_data['parent'])
            if role.parent_role_id != (parent.id if parent else None):
                role.parent_role = parent
                changed.append('parent_role')
            if role.deleted_at is not None:
                role.deleted_at = None
                changed.append('deleted_at')
            for field in ROLE_FIELDS:
                setattr(role, field, role_data[field])
            if changed:
                role.save(update_fields=changed + ['updated_at'])

            roles[name] = role

            if role_data['permissions'] == ALL_PERMISSIONS:
                permissions = list(by_name.values())
            else:
                missing = [perm for perm in role_data['permissions'] if perm not in by_name]
                if missing:
                    raise CommandError(f"Role '{name}' references unknown permissions: {', '.join(missing)}")
                permissions = [by_name[perm] for perm in role_data['permissions']]

            added, removed = _sync_role_permissions(role, permissions)
            if added or removed:
                resolver.schedule_cache_invalidation(role_id=role.id)

            if created:
                self.stdout.write(self.style.SUCCESS(f'Created: {name} ({len(permissions)} permissions)'))
            elif changed or added or removed:
                self.stdout.write(self.style.WARNING(f'Updated: {name} (+{added} / -{removed} permissions)'))
            else:
                self.stdout.write(self.style.HTTP_INFO(f'  Exists: {name}'))

        self.stdout.write(self.style.SUCCESS(f'\nSeeded {len(DEFAULT_ROLES)} roles'))
