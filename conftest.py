"""
Pytest configuration and fixtures.
"""
from io import StringIO

import pytest
from django.conf import settings
import django
from django.core.cache import cache
from django.core.management import call_command

TEST_JWT_SECRET = 'test-jwt-secret-7f3a9c1e5b2d8460-QWERTYuiopASDF'


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    settings.SECURE_SSL_REDIRECT = False
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def rbac_settings(settings):
    """JWT secret, plain HTTP and an empty cache (and ratelimit counters) per test."""
    settings.JWT_SECRET_KEY = TEST_JWT_SECRET
    settings.SECURE_SSL_REDIRECT = False
    settings.RATELIMIT_ENABLE = True
    cache.clear()
    yield settings
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def seeded_permissions(db):
    """Canonical permissions and dependencies, keyed by name."""
    from apps.rbac.models import Permission
    call_command('seed_permissions', stdout=StringIO())
    return {perm.name: perm for perm in Permission.objects.all()}


@pytest.fixture
def seeded_roles(seeded_permissions):
    """Default hospital roles, keyed by name."""
    from apps.rbac.models import Role
    call_command('seed_roles', stdout=StringIO())
    return {role.name: role for role in Role.objects.all()}


@pytest.fixture
def make_permission(db):
    """Factory for ad-hoc permissions."""
    from apps.rbac.models import Permission

    def _make(name, module='general', **kwargs):
        kwargs.setdefault('description', name)
        kwargs.setdefault('action', name.split('-', 1)[0])
        return Permission.objects.get_or_create(name=name, defaults={'module': module, **kwargs})[0]

    return _make


@pytest.fixture
def make_role(db):
    """Factory for roles bound to the given permissions."""
    from apps.rbac.models import Role, RolePermission
    from apps.rbac.services import RoleService

    def _make(name, permissions=(), **kwargs):
        kwargs.setdefault('slug', RoleService.make_slug(name))
        kwargs.setdefault('priority', RoleService.calculate_priority(name))
        role = Role.objects.create(name=name, **kwargs)
        RolePermission.objects.bulk_create([
            RolePermission(role=role, permission=perm) for perm in permissions
        ])
        return role

    return _make


@pytest.fixture
def make_user(db):
    """Factory for staff users."""
    from apps.rbac.models import User
    counter = {'n': 0}

    def _make(email=None, role=None, password='SecurePass123!', **kwargs):
        counter['n'] += 1
        email = email or f"staff{counter['n']}@hospital.test"
        kwargs.setdefault('first_name', 'Staff')
        kwargs.setdefault('last_name', str(counter['n']))
        return User.objects.create_user(email=email, password=password, role=role, **kwargs)

    return _make


@pytest.fixture
def super_admin(seeded_roles, make_user):
    """A user holding the seeded Super Admin role."""
    return make_user(
        email='root@hospital.test',
        role=seeded_roles['Super Admin'],
        is_super_admin=True,
        first_name='Ada',
        last_name='Root',
    )


@pytest.fixture
def authenticate(api_client):
    """Attach a real bearer token for the given user to api_client."""
    from apps.rbac.services import AuthService

    def _authenticate(user):
        token = AuthService.generate_jwt(user)
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
        return api_client

    return _authenticate
