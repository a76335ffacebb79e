"""
Tests for effective permission resolution, caching and invalidation.
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.core.cache.backends.locmem import LocMemCache
from django.utils import timezone
from hypothesis import HealthCheck, given, settings as hypothesis_settings, strategies as st

from apps.core.cache import CacheService, NullCache
from apps.rbac.models import RolePermission, TemporaryPermission, User, UserPermission
from apps.rbac.services import PermissionResolver, RoleService

UNIVERSE = ['view-patients', 'edit-patients', 'view-bills', 'create-bills', 'view-reports', 'manage-roles']

fixture_safe = hypothesis_settings(
    max_examples=30,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


@pytest.fixture
def universe(make_permission):
    return {name: make_permission(name) for name in UNIVERSE}


@pytest.mark.django_db
class TestEffectivePermissions:

    def test_role_permissions(self, universe, make_role, make_user):
        role = make_role('Ward Nurse', [universe['view-patients'], universe['edit-patients']])
        user = make_user(role=role)

        assert PermissionResolver().effective_permissions(user) == {'view-patients', 'edit-patients'}

    def test_user_without_role_has_nothing(self, universe, make_user):
        assert PermissionResolver().effective_permissions(make_user()) == frozenset()

    def test_grant_adds_and_revoke_removes(self, universe, make_role, make_user):
        role = make_role('Ward Nurse', [universe['view-patients'], universe['edit-patients']])
        user = make_user(role=role)
        UserPermission.objects.create(user=user, permission=universe['view-bills'], granted=True)
        UserPermission.objects.create(user=user, permission=universe['edit-patients'], granted=False)

        assert PermissionResolver(cache=NullCache()).effective_permissions(user) == {'view-patients', 'view-bills'}

    def test_revoke_beats_grant_and_temporary(self, universe, make_user):
        user = make_user()
        UserPermission.objects.create(user=user, permission=universe['view-reports'], granted=False)
        TemporaryPermission.objects.create(
            user=user, permission=universe['view-reports'], expires_at=timezone.now() + timedelta(hours=1)
        )

        assert not PermissionResolver(cache=NullCache()).has_permission(user, 'view-reports')

    def test_silent_override_has_no_effect(self, universe, make_role, make_user):
        user = make_user(role=make_role('Ward Nurse', [universe['view-patients']]))
        UserPermission.objects.create(user=user, permission=universe['view-patients'], granted=None)

        assert PermissionResolver(cache=NullCache()).has_permission(user, 'view-patients')

    def test_expired_temporary_grant_is_ignored(self, universe, make_user):
        user = make_user()
        TemporaryPermission.objects.create(
            user=user, permission=universe['view-bills'], expires_at=timezone.now() - timedelta(seconds=1)
        )
        TemporaryPermission.objects.create(
            user=user, permission=universe['view-reports'], expires_at=timezone.now() + timedelta(hours=1)
        )

        assert PermissionResolver(cache=NullCache()).effective_permissions(user) == {'view-reports'}

    def test_parent_role_permissions_are_not_inherited(self, universe, make_role, make_user):
        parent = make_role('Hospital Admin', [universe['manage-roles']])
        child = make_role('Ward Manager', [universe['view-patients']], parent_role=parent)

        assert not PermissionResolver().has_permission(make_user(role=child), 'manage-roles')

    def test_unsaved_user_raises(self):
        with pytest.raises(User.DoesNotExist):
            PermissionResolver(cache=NullCache()).effective_permissions(User(email='ghost@hospital.test'))

    @fixture_safe
    @given(
        role_names=st.sets(st.sampled_from(UNIVERSE)),
        granted=st.sets(st.sampled_from(UNIVERSE)),
        revoked=st.sets(st.sampled_from(UNIVERSE)),
        temporary=st.sets(st.sampled_from(UNIVERSE)),
    )
    def test_set_algebra(self, universe, make_role, make_user, role_names, granted, revoked, temporary):
        revoked = revoked - granted
        role = make_role('Algebra Role', [universe[name] for name in role_names])
        user = make_user(role=role)
        try:
            UserPermission.objects.bulk_create(
                [UserPermission(user=user, permission=universe[n], granted=True) for n in granted]
                + [UserPermission(user=user, permission=universe[n], granted=False) for n in revoked]
            )
            TemporaryPermission.objects.bulk_create([
                TemporaryPermission(user=user, permission=universe[n], expires_at=timezone.now() + timedelta(hours=1))
                for n in temporary
            ])

            effective = PermissionResolver(cache=NullCache()).effective_permissions(user)
            assert effective == (role_names | granted | temporary) - revoked
        finally:
            user.hard_delete()
            role.hard_delete()


@pytest.mark.django_db
class TestSuperAdminBypass:

    @fixture_safe
    @given(required=st.lists(st.text(min_size=1, max_size=30), max_size=5))
    def test_super_admin_holds_every_name(self, make_user, required):
        user = User.objects.filter(email='bypass@hospital.test').first() or make_user(
            email='bypass@hospital.test', is_super_admin=True
        )
        resolver = PermissionResolver(cache=NullCache())

        assert resolver.has_all_permissions(user, required)
        assert all(resolver.has_permission(user, name) for name in required)

    def test_role_flag_bypasses(self, make_role, make_user):
        user = make_user(role=make_role('Chief Officer', is_super_admin=True))
        assert PermissionResolver().has_permission(user, 'export-rbac-configuration')

    def test_super_admin_does_not_touch_cache(self, universe, make_user):
        cache = MagicMock()
        user = make_user(is_super_admin=True)

        assert PermissionResolver(cache=cache).effective_permissions(user) == set(UNIVERSE)
        cache.get.assert_not_called()
        cache.set.assert_not_called()


@pytest.mark.django_db
class TestPermissionChecks:

    def test_has_all_and_any(self, universe, make_role, make_user):
        user = make_user(role=make_role('Ward Nurse', [universe['view-patients'], universe['edit-patients']]))
        resolver = PermissionResolver()

        assert resolver.has_all_permissions(user, ['view-patients', 'edit-patients'])
        assert not resolver.has_all_permissions(user, ['view-patients', 'manage-roles'])
        assert resolver.has_all_permissions(user, [])
        assert resolver.has_any_permission(user, ['manage-roles', 'edit-patients'])
        assert not resolver.has_any_permission(user, ['manage-roles'])
        assert not resolver.has_any_permission(user, [])

    def test_unknown_name_fails_closed(self, universe, make_role, make_user):
        user = make_user(role=make_role('Ward Nurse', [universe['view-patients']]))
        assert not PermissionResolver().has_permission(user, 'view-patient')

    def test_anonymous_and_none_are_denied(self):
        from django.contrib.auth.models import AnonymousUser
        resolver = PermissionResolver()
        assert not resolver.has_permission(None, 'view-patients')
        assert not resolver.has_all_permissions(AnonymousUser(), [])

    def test_has_any_role(self, make_role, make_user, settings):
        user = make_user(role=make_role('Pharmacy Admin'))
        resolver = PermissionResolver()

        assert resolver.has_any_role(user, ['Doctor', 'Pharmacy Admin'])
        assert resolver.has_any_role(user, 'pharmacy-admin')
        assert not resolver.has_any_role(user, ['pharmacy admin'])

        settings.RBAC_ROLE_MATCH_CASE_SENSITIVE = False
        assert resolver.has_any_role(user, ['pharmacy admin'])

    def test_has_any_role_uses_legacy_string(self, make_user):
        user = make_user(role_name='Doctor')
        assert PermissionResolver().has_any_role(user, ['Doctor'])
        assert not PermissionResolver().has_any_role(make_user(), ['Doctor'])

    def test_can_manage_user_is_super_admin_only(self, make_role, make_user):
        resolver = PermissionResolver()
        junior = make_user(role=make_role('Ward Staff'))
        senior = make_user(role=make_role('Hospital Admin'))

        assert not resolver.can_manage_user(senior, junior)
        assert resolver.can_manage_user(make_user(is_super_admin=True), junior)


@pytest.mark.django_db
class TestPermissionCache:

    def test_result_is_cached_under_user_key(self, universe, make_role, make_user):
        user = make_user(role=make_role('Ward Nurse', [universe['view-patients']]))
        resolver = PermissionResolver()
        resolver.effective_permissions(user)

        entry = CacheService().get(PermissionResolver.cache_key(user.pk))
        assert entry['permissions'] == ['view-patients']
        assert entry['version'] == PermissionResolver.version_stamp(user.pk)

    def test_stale_until_invalidated(self, universe, make_role, make_user):
        role = make_role('Ward Nurse', [universe['view-patients']])
        user = make_user(role=role)
        resolver = PermissionResolver()
        assert not resolver.has_permission(user, 'edit-patients')

        # bulk_create sends no signals, so nothing bumps the role version
        RolePermission.objects.bulk_create([RolePermission(role=role, permission=universe['edit-patients'])])
        assert not resolver.has_permission(user, 'edit-patients')

        assert resolver.clear_permission_cache(role_id=role.id) == 1
        assert resolver.has_permission(user, 'edit-patients')

    def test_version_bump_outdates_entry_without_delete(self, universe, make_role, make_user):
        role = make_role('Ward Nurse', [universe['view-patients']])
        user = make_user(role=role)
        resolver = PermissionResolver()
        assert not resolver.has_permission(user, 'edit-patients')

        RolePermission.objects.bulk_create([RolePermission(role=role, permission=universe['edit-patients'])])
        PermissionResolver.bump_versions(role_id=role.id)

        assert CacheService().get(PermissionResolver.cache_key(user.pk)) is not None
        assert resolver.has_permission(user, 'edit-patients')

    def test_entry_from_older_format_is_recomputed(self, universe, make_role, make_user):
        user = make_user(role=make_role('Ward Nurse', [universe['view-patients']]))
        CacheService().set(PermissionResolver.cache_key(user.pk), ['manage-roles'], 900)

        assert PermissionResolver().effective_permissions(user) == {'view-patients'}

    def test_loaded_instance_does_not_roll_version_back(self, universe, make_role, make_user):
        user = make_user(role=make_role('Ward Nurse'))
        loaded = User.objects.get(pk=user.pk)

        PermissionResolver.bump_versions(user_id=user.pk)
        loaded.first_name = 'Mary'
        loaded.save()

        assert PermissionResolver.version_stamp(user.pk)[0] == 1

    def test_clear_by_user(self, universe, make_user):
        user = make_user()
        resolver = PermissionResolver()
        resolver.effective_permissions(user)

        resolver.clear_permission_cache(user_id=user.pk)
        assert CacheService().get(PermissionResolver.cache_key(user.pk)) is None

    def test_ttl_capped_by_earliest_temporary_expiry(self, universe, make_user):
        user = make_user()
        TemporaryPermission.objects.create(
            user=user, permission=universe['view-reports'], expires_at=timezone.now() + timedelta(seconds=120)
        )
        cache = MagicMock()
        cache.get.return_value = None

        PermissionResolver(cache=cache, ttl=900).effective_permissions(user)

        key, value, ttl = cache.set.call_args[0]
        assert value['permissions'] == ['view-reports']
        assert 0 < ttl <= 120

    def test_scheduled_invalidation_runs_on_commit(self, universe, make_role, make_user,
                                                   django_capture_on_commit_callbacks):
        role = make_role('Ward Nurse', [universe['view-patients']])
        user = make_user(role=role)
        resolver = PermissionResolver()
        resolver.effective_permissions(user)

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            resolver.schedule_cache_invalidation(role_id=role.id)
            assert CacheService().get(PermissionResolver.cache_key(user.pk)) is not None

        assert len(callbacks) == 1
        assert CacheService().get(PermissionResolver.cache_key(user.pk)) is None

    def test_deleted_user_raises(self, make_user):
        user = make_user()
        User.objects_with_deleted.filter(pk=user.pk).hard_delete()

        with pytest.raises(User.DoesNotExist):
            PermissionResolver().effective_permissions(user)


@pytest.mark.django_db
class TestConcurrentChanges:
    """A committed change is never hidden by a result computed before it."""

    def test_refill_racing_a_role_update_is_not_served(self, seeded_roles, super_admin, make_user,
                                                       django_capture_on_commit_callbacks):
        role = seeded_roles['Sub Super Admin']
        user = make_user(role=role)
        original_compute = PermissionResolver._compute

        def compute_then_commit_update(resolver, *args, **kwargs):
            result = original_compute(resolver, *args, **kwargs)
            with django_capture_on_commit_callbacks(execute=True):
                RoleService.update_role_permissions(role, [], acting_user=super_admin)
            return result

        with patch.object(PermissionResolver, '_compute', compute_then_commit_update):
            assert PermissionResolver().has_permission(user, 'manage-roles')

        written_back = CacheService().get(PermissionResolver.cache_key(user.pk))
        assert 'manage-roles' in written_back['permissions']
        assert not PermissionResolver().has_permission(user, 'manage-roles')

    def test_failed_cache_delete_still_denies(self, seeded_roles, super_admin, make_user,
                                              django_capture_on_commit_callbacks):
        role = seeded_roles['Sub Super Admin']
        user = make_user(role=role)
        assert PermissionResolver().has_permission(user, 'manage-roles')

        with patch.object(LocMemCache, 'delete_many', side_effect=ConnectionError('cache down')):
            with django_capture_on_commit_callbacks(execute=True):
                RoleService.update_role_permissions(role, [], acting_user=super_admin)

        assert CacheService().get(PermissionResolver.cache_key(user.pk)) is not None
        assert not PermissionResolver().has_permission(user, 'manage-roles')
