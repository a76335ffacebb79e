"""
Tests for the read-only RBAC projections.
"""
import pytest

from apps.rbac.models import AuditLog
from apps.rbac.reporting import ASSIGNABLE_USERS_LIMIT, RBACReportingService, role_color
from apps.rbac.registry import DEFAULT_ROLE_COLOR


@pytest.mark.django_db
class TestDashboardStats:

    def test_totals_and_distribution(self, seeded_roles, seeded_permissions, make_user):
        make_user(role=seeded_roles['Pharmacy Admin'])
        make_user(role=seeded_roles['Pharmacy Admin'])
        make_user(role=seeded_roles['Doctor'])
        make_user()

        stats = RBACReportingService.dashboard_stats()

        assert stats['total_roles'] == len(seeded_roles)
        assert stats['total_permissions'] == len(seeded_permissions)
        assert stats['total_users'] == 4
        assert stats['active_users'] == 3

        by_name = {row['role_name']: row for row in stats['role_distribution']}
        assert by_name['Pharmacy Admin']['user_count'] == 2
        assert by_name['Pharmacy Admin']['percentage'] == 50.0
        assert by_name['Pharmacy Admin']['color'] == '#8b5cf6'
        assert by_name['Patient']['user_count'] == 0

    def test_no_users(self, seeded_roles):
        stats = RBACReportingService.dashboard_stats()
        assert stats['total_users'] == 0
        assert all(row['percentage'] == 0.0 for row in stats['role_distribution'])

    def test_role_color_default(self):
        assert role_color('Ward Supervisor') == DEFAULT_ROLE_COLOR


@pytest.mark.django_db
class TestRoleHierarchy:

    def test_parents_and_subordinates(self, seeded_roles):
        hierarchy = {node['name']: node for node in RBACReportingService.role_hierarchy()}

        assert hierarchy['Super Admin']['parent'] is None
        assert hierarchy['Hospital Admin']['parent']['name'] == 'Sub Super Admin'
        subordinates = {child['name'] for child in hierarchy['Hospital Admin']['subordinates']}
        assert subordinates == {'Reception Admin', 'Pharmacy Admin', 'Laboratory Admin', 'Doctor'}

    def test_ordered_by_priority(self, seeded_roles):
        priorities = [node['priority'] for node in RBACReportingService.role_hierarchy()]
        assert priorities == sorted(priorities, reverse=True)


@pytest.mark.django_db
class TestPermissionMatrix:

    def test_matrix_lists_bound_permission_ids(self, seeded_roles, seeded_permissions):
        result = RBACReportingService.permission_matrix()

        patient_role = seeded_roles['Patient']
        assert result['matrix'][str(patient_role.id)] == [str(seeded_permissions['view-appointments'].id)]
        assert len(result['matrix'][str(seeded_roles['Super Admin'].id)]) == len(seeded_permissions)
        assert len(result['roles']) == len(seeded_roles)


@pytest.mark.django_db
class TestAuditLogSearch:

    @pytest.fixture
    def entries(self, make_user):
        actor = make_user(first_name='Grace', last_name='Hopper')
        AuditLog.log_action('role_created', user=actor, description='Created role Ward Supervisor', severity='medium')
        AuditLog.log_action('protected_role_violation', user=actor, severity='critical')
        AuditLog.log_action('user_login', user=actor, module='auth')

    def test_newest_first(self, entries):
        stamps = [log.logged_at for log in RBACReportingService.audit_logs()]
        assert len(stamps) == 3
        assert stamps == sorted(stamps, reverse=True)

    def test_filters_combine(self, entries):
        assert RBACReportingService.audit_logs(severity='critical').count() == 1
        assert RBACReportingService.audit_logs(module='auth').count() == 1
        assert RBACReportingService.audit_logs(module='auth', severity='critical').count() == 0

    def test_search_is_case_insensitive(self, entries):
        assert RBACReportingService.audit_logs(search='ward supervisor').count() == 1
        assert RBACReportingService.audit_logs(search='hopper').count() == 3


@pytest.mark.django_db
class TestAssignableUsers:

    def test_excludes_protected_patients_and_doctors(self, seeded_roles, make_user):
        keep = make_user(role=seeded_roles['Pharmacy Admin'])
        make_user(role=seeded_roles['Doctor'])
        make_user(role=seeded_roles['Patient'])
        make_user(role=seeded_roles['Sub Super Admin'])
        make_user(role=seeded_roles['Super Admin'])
        make_user(is_super_admin=True)
        make_user(role_name='Doctor')
        no_role = make_user()

        users = RBACReportingService.assignable_users()
        assert {user.pk for user in users} == {keep.pk, no_role.pk}

    def test_search(self, seeded_roles, make_user):
        make_user(first_name='Grace', last_name='Hopper', role=seeded_roles['Pharmacy Admin'])
        make_user(first_name='Alan', last_name='Turing', role=seeded_roles['Pharmacy Admin'])

        assert [user.first_name for user in RBACReportingService.assignable_users(search='hop')] == ['Grace']

    def test_limit(self, seeded_roles, make_user):
        for _ in range(ASSIGNABLE_USERS_LIMIT + 3):
            make_user(role=seeded_roles['Reception Admin'])
        assert len(RBACReportingService.assignable_users()) == ASSIGNABLE_USERS_LIMIT


@pytest.mark.django_db
class TestExportConfiguration:

    def test_contains_roles_permissions_and_users(self, seeded_roles, seeded_permissions, make_user):
        user = make_user(role=seeded_roles['Doctor'])

        export = RBACReportingService.export_configuration()

        roles = {role['name']: role for role in export['roles']}
        assert roles['Patient']['permissions'] == ['view-appointments']
        assert len(export['permissions']) == len(seeded_permissions)
        assert export['users'] == [{
            'id': str(user.id),
            'name': user.get_full_name(),
            'email': user.email,
            'role_id': str(seeded_roles['Doctor'].id),
        }]
