"""
Tests for the seed_permissions and seed_roles management commands.
"""
from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from apps.rbac.models import Permission, PermissionDependency, Role, RolePermission
from apps.rbac.registry import CANONICAL_PERMISSIONS, DEFAULT_ROLES, PERMISSION_DEPENDENCIES


def run(command, *args):
    out = StringIO()
    call_command(command, *args, stdout=out)
    return out.getvalue()


@pytest.mark.django_db
class TestSeedPermissions:

    def test_creates_catalogue_and_dependencies(self):
        output = run('seed_permissions')

        assert Permission.objects.count() == len(CANONICAL_PERMISSIONS)
        assert PermissionDependency.objects.count() == len(PERMISSION_DEPENDENCIES)
        assert f'Permissions: {len(CANONICAL_PERMISSIONS)} created' in output

    def test_rerun_is_idempotent(self):
        run('seed_permissions')
        output = run('seed_permissions')

        assert Permission.objects.count() == len(CANONICAL_PERMISSIONS)
        assert 'Permissions: 0 created, 0 updated' in output
        assert PermissionDependency.objects.count() == len(PERMISSION_DEPENDENCIES)

    def test_restores_drifted_fields(self):
        run('seed_permissions')
        Permission.objects.filter(name='view-patients').update(risk_level='critical', description='stale')

        output = run('seed_permissions')

        permission = Permission.objects.get(name='view-patients')
        assert permission.risk_level == 'low'
        assert permission.description == 'View patient records'
        assert 'Updated: view-patients' in output


@pytest.mark.django_db
class TestSeedRoles:

    def test_requires_permissions(self):
        with pytest.raises(CommandError):
            run('seed_roles')
        assert not Role.objects.exists()

    def test_with_permissions_flag(self):
        run('seed_roles', '--with-permissions')

        assert Role.objects.count() == len(DEFAULT_ROLES)
        super_admin = Role.objects.get(name='Super Admin')
        assert super_admin.is_super_admin
        assert RolePermission.objects.filter(role=super_admin).count() == len(CANONICAL_PERMISSIONS)

    def test_parents_and_slugs(self):
        run('seed_roles', '--with-permissions')

        pharmacy = Role.objects.get(name='Pharmacy Admin')
        assert pharmacy.slug == 'pharmacy-admin'
        assert pharmacy.parent_role.name == 'Hospital Admin'
        assert Role.objects.get(name='Patient').parent_role is None

    def test_rerun_is_idempotent(self):
        run('seed_roles', '--with-permissions')
        bindings = RolePermission.objects.count()

        output = run('seed_roles')

        assert Role.objects.count() == len(DEFAULT_ROLES)
        assert RolePermission.objects.count() == bindings
        assert 'Exists: Patient' in output

    def test_resyncs_bindings(self):
        run('seed_roles', '--with-permissions')
        patient = Role.objects.get(name='Patient')
        RolePermission.objects.create(role=patient, permission=Permission.objects.get(name='view-bills'))

        run('seed_roles')

        assert list(patient.get_permissions().values_list('name', flat=True)) == ['view-appointments']

    def test_restores_soft_deleted_role(self):
        run('seed_roles', '--with-permissions')
        Role.objects.get(name='Doctor').delete()
        assert not Role.objects.filter(name='Doctor').exists()

        run('seed_roles')

        assert Role.objects.filter(name='Doctor').exists()
        assert Role.objects_with_deleted.filter(name='Doctor').count() == 1
