"""
Tests for RBAC permission classes and decorators.
"""
from unittest.mock import patch

import pytest
from django.contrib.auth.models import AnonymousUser
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework.views import APIView

from apps.core.permissions import HasRBACPermission, requires_permissions


@pytest.fixture
def factory():
    return APIRequestFactory()


@requires_permissions('view-patients', 'edit-patients')
class PatientEditView(APIView):
    permission_classes = [HasRBACPermission]

    def get(self, request):
        return Response({'ok': True})


class MixedView(APIView):
    permission_classes = [HasRBACPermission]

    def get(self, request):
        return Response({'open': True})

    @requires_permissions('manage-roles')
    def post(self, request):
        return Response({'created': True}, status=201)


class OpenView(APIView):
    permission_classes = [HasRBACPermission]

    def get(self, request):
        return Response({'ok': True})


class TestRequiresPermissionsDecorator:

    def test_class_decorator_sets_attribute(self):
        assert PatientEditView.required_permissions == {'view-patients', 'edit-patients'}

    def test_method_decorator_records_permissions(self):
        assert MixedView.post.required_permissions == {'manage-roles'}
        assert not hasattr(MixedView, 'required_permissions')


@pytest.mark.django_db
class TestHasRBACPermission:

    def test_anonymous_is_rejected(self, factory):
        request = factory.get('/patients')
        request.user = AnonymousUser()
        assert HasRBACPermission().has_permission(request, PatientEditView()) is False

    def test_no_requirements_allows_authenticated(self, factory, make_user):
        request = factory.get('/open')
        force_authenticate(request, user=make_user())
        response = OpenView.as_view()(request)
        assert response.status_code == 200

    def test_user_with_all_permissions_passes(self, factory, make_permission, make_role, make_user):
        role = make_role('Ward Nurse', [make_permission('view-patients'), make_permission('edit-patients')])
        request = factory.get('/patients')
        force_authenticate(request, user=make_user(role=role))

        response = PatientEditView.as_view()(request)
        assert response.status_code == 200

    def test_missing_one_permission_is_forbidden(self, factory, make_permission, make_role, make_user):
        role = make_role('Ward Clerk', [make_permission('view-patients')])
        request = factory.get('/patients')
        force_authenticate(request, user=make_user(role=role))

        response = PatientEditView.as_view()(request)
        assert response.status_code == 403
        assert response.data['success'] is False

    def test_super_admin_bypasses(self, factory, make_user):
        request = factory.get('/patients')
        force_authenticate(request, user=make_user(is_super_admin=True))

        response = PatientEditView.as_view()(request)
        assert response.status_code == 200

    def test_denial_is_logged(self, factory, make_user):
        request = factory.get('/patients')
        force_authenticate(request, user=make_user())

        with patch('apps.core.permissions.SecurityLogger.log_permission_denied') as log_denied:
            PatientEditView.as_view()(request)

        log_denied.assert_called_once()
        assert log_denied.call_args[0][1] == {'view-patients', 'edit-patients'}

    def test_method_level_requirement(self, factory, make_permission, make_role, make_user):
        user = make_user(role=make_role('Ward Clerk', [make_permission('view-patients')]))

        get_request = factory.get('/mixed')
        force_authenticate(get_request, user=user)
        assert MixedView.as_view()(get_request).status_code == 200

        post_request = factory.post('/mixed', {}, format='json')
        force_authenticate(post_request, user=user)
        assert MixedView.as_view()(post_request).status_code == 403
