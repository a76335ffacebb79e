"""
Tests for the permission registry and the rbac.E001 system check.
"""
from types import SimpleNamespace
from unittest.mock import patch

from django.urls import path
from rest_framework.views import APIView

from apps.core.permissions import HasRBACPermission, requires_permissions
from apps.rbac.checks import check_required_permissions
from apps.rbac.registry import (
    ALL_PERMISSIONS, CANONICAL_PERMISSIONS, DEFAULT_ROLES, PERMISSION_DEPENDENCIES,
    PERMISSION_NAMES, is_protected_role_name,
)


class MisspelledClassView(APIView):
    permission_classes = [HasRBACPermission]
    required_permissions = {'veiw-patients'}


class MisspelledMethodView(APIView):
    permission_classes = [HasRBACPermission]

    @requires_permissions('view-patients', 'edit-patient')
    def put(self, request):
        pass


def _resolver(*views):
    patterns = [path(f'v{index}', view.as_view()) for index, view in enumerate(views)]
    return SimpleNamespace(url_patterns=patterns)


class TestRequiredPermissionsCheck:

    def test_project_urls_are_clean(self):
        assert check_required_permissions(None) == []

    def test_unknown_class_permission(self):
        with patch('apps.rbac.checks.get_resolver', return_value=_resolver(MisspelledClassView)):
            errors = check_required_permissions(None)

        assert [error.id for error in errors] == ['rbac.E001']
        assert "'veiw-patients'" in errors[0].msg

    def test_unknown_method_permission(self):
        with patch('apps.rbac.checks.get_resolver', return_value=_resolver(MisspelledMethodView)):
            errors = check_required_permissions(None)

        assert len(errors) == 1
        assert "'edit-patient'" in errors[0].msg
        assert errors[0].obj is MisspelledMethodView


class TestRegistry:

    def test_names_are_unique(self):
        names = [perm['name'] for perm in CANONICAL_PERMISSIONS]
        assert len(names) == len(set(names))

    def test_dependencies_reference_known_permissions(self):
        for permission, depends_on in PERMISSION_DEPENDENCIES:
            assert permission in PERMISSION_NAMES
            assert depends_on in PERMISSION_NAMES

    def test_default_roles_reference_known_permissions(self):
        for role in DEFAULT_ROLES:
            if role['permissions'] == ALL_PERMISSIONS:
                continue
            assert set(role['permissions']) <= PERMISSION_NAMES, role['name']

    def test_parents_precede_children(self):
        seen = set()
        for role in DEFAULT_ROLES:
            assert role['parent'] is None or role['parent'] in seen
            seen.add(role['name'])

    def test_protected_names(self):
        assert is_protected_role_name(' super admin ')
        assert is_protected_role_name('SUB SUPER ADMIN')
        assert not is_protected_role_name('Super Administrator')
        assert not is_protected_role_name('')
