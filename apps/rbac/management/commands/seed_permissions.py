"""
Management command to seed canonical permissions.

Creates every Permission defined in apps.rbac.registry along with the
dependency pairs between them. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.models import Permission, PermissionDependency
from apps.rbac.registry import CANONICAL_PERMISSIONS, PERMISSION_DEPENDENCIES

UPDATABLE_FIELDS = ('description', 'module', 'action', 'risk_level', 'requires_approval')


class Command(BaseCommand):
    help = 'Seed canonical permissions and their dependencies (idempotent)'

    @transaction.atomic
    def handle(self, *args, **options):
        """Create or update all canonical permissions."""

        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding canonical permissions...\n')

        for perm_data in CANONICAL_PERMISSIONS:
            defaults = {field: perm_data[field] for field in UPDATABLE_FIELDS}
            permission, created = Permission.objects.get_or_create(
                name=perm_data['name'],
                defaults=defaults
            )

            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'Created: {permission.name}'))
                continue

            changed = [field for field in UPDATABLE_FIELDS if getattr(permission, field) != perm_data[field]]
            if changed:
                for field in changed:
                    setattr(permission, field, perm_data[field])
                permission.save(update_fields=changed + ['updated_at'])
                updated_count += 1
                self.stdout.write(self.style.WARNING(f'Updated: {permission.name}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\nPermissions: {created_count} created, {updated_count} updated, '
                f'{len(CANONICAL_PERMISSIONS) - created_count - updated_count} unchanged'
            )
        )

        by_name = {perm.name: perm for perm in Permission.objects.all()}
        dependencies_created = 0
        for permission_name, depends_on_name in PERMISSION_DEPENDENCIES:
            _, created = PermissionDependency.objects.get_or_create(
                permission=by_name[permission_name],
                depends_on=by_name[depends_on_name],
            )
            if created:
                dependencies_created += 1

        self.stdout.write(
            self.style.SUCCESS(f'Dependencies: {dependencies_created} created, '
                               f'{len(PERMISSION_DEPENDENCIES) - dependencies_created} unchanged')
        )

        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Permissions Summary by Module:')
        self.stdout.write('=' * 70)

        modules = Permission.objects.values_list('module', flat=True).distinct().order_by('module')
        for module in modules:
            names = Permission.objects.filter(module=module).order_by('name').values_list('name', flat=True)
            self.stdout.write(f'\n{module.upper()} ({len(names)}):')
            for name in names:
                self.stdout.write(f'  - {name}')
