"""
RBAC REST API views.

Implements endpoints for:
- Authentication (login)
- Role administration (list, create, detail, deletion attempts)
- Role permission sync and user role reassignment
- Per-user overrides and temporary grants
- Permission change requests (file, review, cancel)
- Reporting (permission matrix, hierarchy, dashboard, audit logs, export)
"""
import json

from django.shortcuts import get_object_or_404
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from django_ratelimit.exceptions import Ratelimited
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from apps.core.exceptions import AuthenticationError
from apps.core.logging import SecurityLogger
from apps.core.permissions import HasRBACPermission, requires_permissions
from apps.core.responses import AuditLogPagination, ChangeRequestPagination, api_response
from apps.rbac.models import (
    Permission, PermissionChangeRequest, Role, TemporaryPermission, User, UserPermission,
)
from apps.rbac.reporting import RBACReportingService
from apps.rbac.serializers import (
    AuditLogFilterSerializer, AuditLogSerializer, LoginSerializer,
    PermissionChangeRequestCreateSerializer, PermissionChangeRequestFilterSerializer,
    PermissionChangeRequestSerializer, PermissionChangeReviewSerializer,
    PermissionSerializer, RoleCreateSerializer, RoleDetailSerializer,
    RolePermissionsUpdateSerializer, RoleSerializer,
    TemporaryPermissionCheckSerializer, TemporaryPermissionCreateSerializer,
    TemporaryPermissionSerializer,
    UserPermissionSerializer, UserPermissionsUpdateSerializer,
    UserRoleUpdateSerializer, UserSummarySerializer,
)
from apps.rbac.services import (
    AuthService, PermissionChangeRequestService, PermissionResolver,
    RoleService, UserPermissionService,
)


def login_email_key(group, request):
    """
    Rate limit key for login attempts per account.

    The login body is JSON, so request.POST is empty at dispatch time.
    """
    try:
        payload = json.loads(request.body or b'{}')
    except ValueError:
        return ''
    email = payload.get('email') if isinstance(payload, dict) else None
    return str(email or '').strip().lower()


ERROR_RESPONSES = {
    401: OpenApiTypes.OBJECT,
    403: OpenApiTypes.OBJECT,
}


# ===== AUTHENTICATION =====

@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password and receive a JWT.

**No authentication required.** Rate limited to 5 requests per minute per IP
and 10 per hour per email.
    ''',
    request=LoginSerializer,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Login Request',
            value={'email': 'pharmacy.admin@hospital.test', 'password': 'SecurePass123!'},
            request_only=True
        ),
        OpenApiExample(
            'Invalid Credentials',
            value={'success': False, 'message': 'Invalid email or password.'},
            response_only=True,
            status_codes=['401']
        ),
    ]
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
@method_decorator(ratelimit(key=login_email_key, rate='10/h', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """
    POST /v1/auth/login

    Authenticate user and return JWT token.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if getattr(request, 'limited', False):
            raise Ratelimited()

        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = AuthService.login(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
            request=request,
        )

        if not result:
            SecurityLogger.log_failed_login(
                email=serializer.validated_data['email'],
                ip_address=request.META.get('REMOTE_ADDR', 'unknown'),
                user_agent=request.META.get('HTTP_USER_AGENT', 'unknown'),
                reason='Invalid credentials'
            )
            raise AuthenticationError('Invalid email or password.')

        return api_response(
            {
                'user': UserSummarySerializer(result['user']).data,
                'token': result['token'],
            },
            message='Login successful',
        )


# ===== ROLE ADMINISTRATION =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
List every role ordered by priority (highest first) then name, with the
number of users holding each.

**Required permission:** `manage-roles`
        ''',
        responses={200: RoleSerializer(many=True), **ERROR_RESPONSES}
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='''
Create a custom role. Priority is derived from the name (admin 100,
manager 80, head/lead 60, staff 40, otherwise 50).

"Super Admin" and "Sub Super Admin" are reserved. Only super admins may set
`is_super_admin`.

**Required permission:** `manage-roles`
        ''',
        request=RoleCreateSerializer,
        responses={201: RoleSerializer, 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
        examples=[
            OpenApiExample(
                'Create Role',
                value={'name': 'Ward Supervisor', 'description': 'Supervises ward nurses'},
                request_only=True
            ),
        ]
    )
)
class AdminRoleListView(APIView):
    """
    GET/POST /v1/admin/roles
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-roles'}

    def get(self, request):
        roles = RoleService.list_roles()
        return api_response(RoleSerializer(roles, many=True).data)

    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RoleService.create_role(
            name=serializer.validated_data['name'],
            description=serializer.validated_data.get('description', ''),
            is_super_admin_requested=serializer.validated_data.get('is_super_admin', False),
            acting_user=request.user,
            parent_role=serializer.context.get('parent_role'),
            request=request,
        )
        return api_response(
            RoleSerializer(role).data,
            message='Role created successfully.',
            status=status.HTTP_201_CREATED,
        )


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role details',
        description='Role with its bound permissions. **Required permission:** `manage-roles`',
        responses={200: RoleDetailSerializer, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role (disabled)',
        description='''
Role deletion is disabled. Every request is rejected with 403 and recorded
in the audit trail.
        ''',
        responses={403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
class AdminRoleDetailView(APIView):
    """
    GET/DELETE /v1/admin/roles/{id}
    """
    permission_classes = [HasRBACPermission]

    @requires_permissions('manage-roles')
    def get(self, request, pk):
        role = get_object_or_404(Role.objects.select_related('parent_role'), pk=pk)
        return api_response(RoleDetailSerializer(role).data)

    def delete(self, request, pk):
        role = get_object_or_404(Role, pk=pk)
        RoleService.delete_role(role, acting_user=request.user, request=request)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role permissions',
        description='**Required permission:** `manage-role-permissions`',
        responses={200: PermissionSerializer(many=True), **ERROR_RESPONSES}
    ),
    put=extend_schema(
        tags=['RBAC - Roles'],
        summary='Replace role permissions',
        description='''
Replace the role's permissions with exactly `permission_ids`. Unknown ids
and unmet permission dependencies are rejected with 422. Cached permissions
of every member are dropped after the change commits.

**Required permission:** `manage-role-permissions`
        ''',
        request=RolePermissionsUpdateSerializer,
        responses={200: RoleDetailSerializer, 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Replace role permissions',
        description='Same as PUT.',
        request=RolePermissionsUpdateSerializer,
        responses={200: RoleDetailSerializer, 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    ),
)
class RolePermissionsView(APIView):
    """
    GET/PUT/POST /v1/rbac/roles/{id}/permissions
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-role-permissions'}

    def get(self, request, pk):
        role = get_object_or_404(Role, pk=pk)
        permissions = role.get_permissions().order_by('module', 'name')
        return api_response(PermissionSerializer(permissions, many=True).data)

    def put(self, request, pk):
        role = get_object_or_404(Role, pk=pk)
        serializer = RolePermissionsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        RoleService.update_role_permissions(
            role,
            serializer.validated_data['permission_ids'],
            acting_user=request.user,
            request=request,
        )
        return api_response(
            RoleDetailSerializer(role).data,
            message='Role permissions updated successfully.',
        )

    def post(self, request, pk):
        return self.put(request, pk)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Reset role permissions to defaults',
        description='''
Replace the role's permissions with its seeded default set. Roles without a
seeded default are rejected with 422.

**Required permission:** `manage-role-permissions`
        ''',
        request=None,
        responses={200: RoleDetailSerializer, 404: OpenApiTypes.OBJECT, 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class RolePermissionsResetView(APIView):
    """
    POST /v1/rbac/roles/{id}/reset
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-role-permissions'}

    def post(self, request, pk):
        role = get_object_or_404(Role, pk=pk)
        RoleService.reset_role_permissions(role, acting_user=request.user, request=request)
        return api_response(
            RoleDetailSerializer(role).data,
            message='Role permissions reset to defaults.',
        )


# ===== USER ADMINISTRATION =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='List assignable users',
        description='''
Users whose role can be changed: excludes patients, doctors, super admins
and holders of protected roles. At most 50 results, ordered by name.

**Required permission:** `manage-user-roles`
        ''',
        parameters=[
            OpenApiParameter('search', OpenApiTypes.STR, description='Match name or email'),
        ],
        responses={200: UserSummarySerializer(many=True), **ERROR_RESPONSES}
    )
)
class AssignableUserListView(APIView):
    """
    GET /v1/rbac/users
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-user-roles'}

    def get(self, request):
        users = RBACReportingService.assignable_users(search=request.query_params.get('search'))
        return api_response(UserSummarySerializer(users, many=True).data)


@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Users'],
        summary='Change user role',
        description='''
Reassign a user's role. Users holding a protected role cannot be moved, and
protected roles cannot be assigned. Only super admins can manage users.

**Required permission:** `manage-user-roles`
        ''',
        request=UserRoleUpdateSerializer,
        responses={200: UserSummarySerializer, 404: OpenApiTypes.OBJECT, 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class UserRoleView(APIView):
    """
    PUT /v1/rbac/users/{id}/role
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-user-roles'}

    def put(self, request, pk):
        target = get_object_or_404(User.objects.select_related('role'), pk=pk)
        serializer = UserRoleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_role = get_object_or_404(Role, pk=serializer.validated_data['role_id'])

        RoleService.update_user_role(
            target,
            new_role,
            acting_user=request.user,
            request=request,
        )
        return api_response(
            UserSummarySerializer(target).data,
            message='User role updated successfully.',
        )


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='List user permission overrides',
        description='**Required permission:** `manage-users`',
        responses={200: UserPermissionSerializer(many=True), **ERROR_RESPONSES}
    ),
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Replace user permission overrides',
        description='''
Replace every override of the user. Ids in `permission_ids` are granted,
ids in `revoked_permission_ids` are revoked even when the role grants them.
Unknown ids are skipped.

Non-super-admins cannot change their own overrides or a super admin's.

**Required permission:** `manage-users`
        ''',
        request=UserPermissionsUpdateSerializer,
        responses={200: UserPermissionSerializer(many=True), 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class UserPermissionsView(APIView):
    """
    GET/POST /v1/admin/users/{id}/permissions
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-users'}

    def get(self, request, pk):
        target = get_object_or_404(User, pk=pk)
        overrides = UserPermission.objects.for_user(target).select_related('permission', 'granted_by')
        return api_response(UserPermissionSerializer(overrides, many=True).data)

    def post(self, request, pk):
        target = get_object_or_404(User.objects.select_related('role'), pk=pk)
        serializer = UserPermissionsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        UserPermissionService.update_user_permissions(
            target,
            serializer.validated_data['permission_ids'],
            acting_user=request.user,
            revoked_permission_ids=serializer.validated_data.get('revoked_permission_ids', []),
            request=request,
        )
        overrides = UserPermission.objects.for_user(target).select_related('permission', 'granted_by')
        return api_response(
            UserPermissionSerializer(overrides, many=True).data,
            message='User permissions updated successfully.',
        )


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='List temporary permissions',
        description='Active and past temporary grants of the user. **Required permission:** `manage-users`',
        responses={200: TemporaryPermissionSerializer(many=True), **ERROR_RESPONSES}
    ),
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Grant temporary permission',
        description='''
Grant a permission until `expires_at`. The grant counts toward the user's
effective permissions until it expires or is revoked.

**Required permission:** `manage-users`
        ''',
        request=TemporaryPermissionCreateSerializer,
        responses={201: TemporaryPermissionSerializer, 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class UserTemporaryPermissionsView(APIView):
    """
    GET/POST /v1/admin/users/{id}/temporary-permissions
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-users'}

    def get(self, request, pk):
        target = get_object_or_404(User, pk=pk)
        grants = TemporaryPermission.objects.filter(user=target).select_related('permission', 'user')
        return api_response(TemporaryPermissionSerializer(grants, many=True).data)

    def post(self, request, pk):
        target = get_object_or_404(User.objects.select_related('role'), pk=pk)
        serializer = TemporaryPermissionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        temporary = UserPermissionService.grant_temporary_permission(
            target,
            serializer.context['permission'],
            serializer.validated_data['expires_at'],
            acting_user=request.user,
            reason=serializer.validated_data.get('reason', ''),
            request=request,
        )
        return api_response(
            TemporaryPermissionSerializer(temporary).data,
            message='Temporary permission granted.',
            status=status.HTTP_201_CREATED,
        )


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Users'],
        summary='Revoke temporary permission',
        description='**Required permission:** `manage-users`',
        responses={200: TemporaryPermissionSerializer, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class TemporaryPermissionDetailView(APIView):
    """
    DELETE /v1/admin/temporary-permissions/{id}
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-users'}

    def delete(self, request, pk):
        temporary = get_object_or_404(
            TemporaryPermission.objects.select_related('permission', 'user'), pk=pk
        )
        UserPermissionService.revoke_temporary_permission(temporary, acting_user=request.user, request=request)
        return api_response(
            TemporaryPermissionSerializer(temporary).data,
            message='Temporary permission revoked.',
        )


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='Check temporary permission',
        description='''
Whether the user currently holds `permission`, and the active temporary
grant behind it when there is one.

**Required permission:** `manage-users`
        ''',
        parameters=[
            OpenApiParameter('permission', OpenApiTypes.STR, required=True, description='Permission name'),
        ],
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class TemporaryPermissionCheckView(APIView):
    """
    GET /v1/admin/users/{id}/temporary-permissions/check
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-users'}

    def get(self, request, pk):
        target = get_object_or_404(User.objects.select_related('role'), pk=pk)
        params = TemporaryPermissionCheckSerializer(data=request.query_params)
        params.is_valid(raise_exception=True)

        result = UserPermissionService.check_temporary_permission(target, params.validated_data['permission'])
        temporary = result['temporary_permission']
        return api_response({
            'has_permission': result['has_permission'],
            'temporary_permission': TemporaryPermissionSerializer(temporary).data if temporary else None,
        })


# ===== PERMISSION CHANGE REQUESTS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='List permission change requests',
        description='Newest first, 20 per page. **Required permission:** `manage-users`',
        parameters=[
            OpenApiParameter('status', OpenApiTypes.STR, enum=['pending', 'approved', 'rejected', 'expired']),
            OpenApiParameter('user_id', OpenApiTypes.UUID, description='Target user'),
            OpenApiParameter('requested_by', OpenApiTypes.UUID, description='Requesting administrator'),
        ],
        responses={200: PermissionChangeRequestSerializer(many=True), **ERROR_RESPONSES}
    ),
    post=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='File a permission change request',
        description='''
Propose overrides for a user. Nothing changes until another administrator
approves the request. At least one permission must be added or removed.

**Required permission:** `manage-users`
        ''',
        request=PermissionChangeRequestCreateSerializer,
        responses={201: PermissionChangeRequestSerializer, 404: OpenApiTypes.OBJECT,
                   422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    ),
)
class PermissionChangeRequestListView(APIView):
    """
    GET/POST /v1/admin/permission-change-requests
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-users'}
    pagination_class = ChangeRequestPagination

    def get(self, request):
        filters = PermissionChangeRequestFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)

        change_requests = PermissionChangeRequestService.list_requests(
            status=filters.validated_data.get('status'),
            user_id=filters.validated_data.get('user_id'),
            requested_by_id=filters.validated_data.get('requested_by'),
        )

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(change_requests, request, view=self)
        return paginator.get_paginated_response(PermissionChangeRequestSerializer(page, many=True).data)

    def post(self, request):
        serializer = PermissionChangeRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        target = get_object_or_404(User.objects.select_related('role'), pk=data['user_id'])

        change_request = PermissionChangeRequestService.create_request(
            target,
            data['permissions_to_add'],
            data['permissions_to_remove'],
            acting_user=request.user,
            reason=data['reason'],
            expires_at=data['expires_at'],
            request=request,
        )
        return api_response(
            PermissionChangeRequestSerializer(change_request).data,
            message='Permission change request created.',
            status=status.HTTP_201_CREATED,
        )


def _get_change_request(pk):
    return get_object_or_404(
        PermissionChangeRequest.objects.select_related('user__role', 'requested_by', 'reviewed_by'), pk=pk
    )


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='Show permission change request',
        description='**Required permission:** `manage-users`',
        responses={200: PermissionChangeRequestSerializer, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class PermissionChangeRequestDetailView(APIView):
    """
    GET /v1/admin/permission-change-requests/{id}
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-users'}

    def get(self, request, pk):
        return api_response(PermissionChangeRequestSerializer(_get_change_request(pk)).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='Approve permission change request',
        description='''
Apply a pending request: additions become grants, removals become revokes.
The approver must not be the requester.

**Required permission:** `approve-permission-changes`
        ''',
        request=PermissionChangeReviewSerializer,
        responses={200: PermissionChangeRequestSerializer, 404: OpenApiTypes.OBJECT,
                   422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class PermissionChangeApproveView(APIView):
    """
    POST /v1/admin/permission-change-requests/{id}/approve
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'approve-permission-changes'}

    def post(self, request, pk):
        change_request = _get_change_request(pk)
        serializer = PermissionChangeReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        PermissionChangeRequestService.approve(
            change_request, acting_user=request.user, note=serializer.validated_data['note'], request=request
        )
        return api_response(
            PermissionChangeRequestSerializer(change_request).data,
            message='Permission change request approved.',
        )


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='Reject permission change request',
        description='**Required permission:** `approve-permission-changes`',
        request=PermissionChangeReviewSerializer,
        responses={200: PermissionChangeRequestSerializer, 404: OpenApiTypes.OBJECT,
                   422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class PermissionChangeRejectView(APIView):
    """
    POST /v1/admin/permission-change-requests/{id}/reject
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'approve-permission-changes'}

    def post(self, request, pk):
        change_request = _get_change_request(pk)
        serializer = PermissionChangeReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        PermissionChangeRequestService.reject(
            change_request, acting_user=request.user, note=serializer.validated_data['note'], request=request
        )
        return api_response(
            PermissionChangeRequestSerializer(change_request).data,
            message='Permission change request rejected.',
        )


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='Cancel permission change request',
        description='''
Withdraw a pending request. Only its requester or a super admin may.

**Required permission:** `manage-users`
        ''',
        request=None,
        responses={200: PermissionChangeRequestSerializer, 404: OpenApiTypes.OBJECT,
                   422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class PermissionChangeCancelView(APIView):
    """
    POST /v1/admin/permission-change-requests/{id}/cancel
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'manage-users'}

    def post(self, request, pk):
        change_request = _get_change_request(pk)
        PermissionChangeRequestService.cancel(change_request, acting_user=request.user, request=request)
        return api_response(
            PermissionChangeRequestSerializer(change_request).data,
            message='Permission change request cancelled.',
        )


# ===== REPORTING =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permissions',
        description='The permission catalogue. **Required permission:** `view-roles`',
        parameters=[
            OpenApiParameter('module', OpenApiTypes.STR, description='Filter by module'),
        ],
        responses={200: PermissionSerializer(many=True), **ERROR_RESPONSES}
    )
)
class PermissionListView(APIView):
    """
    GET /v1/rbac/permissions
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'view-roles'}

    def get(self, request):
        permissions = Permission.objects.all()
        module = request.query_params.get('module')
        if module:
            permissions = permissions.filter(module=module)
        return api_response(PermissionSerializer(permissions, many=True).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Reports'],
        summary='Permission matrix',
        description='''
Roles, permissions and a map of role id to bound permission ids.

**Required permission:** `view-permission-matrix`
        ''',
        responses={200: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class PermissionMatrixView(APIView):
    """
    GET /v1/rbac/permission-matrix
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'view-permission-matrix'}

    def get(self, request):
        matrix = RBACReportingService.permission_matrix()
        return api_response({
            'roles': RoleSerializer(matrix['roles'], many=True).data,
            'permissions': PermissionSerializer(matrix['permissions'], many=True).data,
            'matrix': matrix['matrix'],
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Reports'],
        summary='Role hierarchy',
        description='Roles by priority with parent and subordinates. **Required permission:** `view-role-hierarchy`',
        responses={200: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class RoleHierarchyView(APIView):
    """
    GET /v1/rbac/hierarchy
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'view-role-hierarchy'}

    def get(self, request):
        return api_response(RBACReportingService.role_hierarchy())


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Reports'],
        summary='RBAC dashboard',
        description='Totals and role distribution. **Required permission:** `view-rbac-dashboard`',
        responses={200: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class RBACDashboardView(APIView):
    """
    GET /v1/rbac/dashboard
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'view-rbac-dashboard'}

    def get(self, request):
        return api_response(RBACReportingService.dashboard_stats())


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='Search audit logs',
        description='''
Audit entries, newest first, 25 per page. Filters combine with AND.

**Required permission:** `view-activity-logs`
        ''',
        parameters=[
            OpenApiParameter('severity', OpenApiTypes.STR, description='low, medium, high or critical'),
            OpenApiParameter('module', OpenApiTypes.STR, description='Module name'),
            OpenApiParameter('search', OpenApiTypes.STR, description='Match action, description or user name'),
            OpenApiParameter('page', OpenApiTypes.INT, description='Page number'),
        ],
        responses={200: AuditLogSerializer(many=True), 422: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class AuditLogListView(APIView):
    """
    GET /v1/rbac/audit-logs
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'view-activity-logs'}
    pagination_class = AuditLogPagination

    def get(self, request):
        filters = AuditLogFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)

        logs = RBACReportingService.audit_logs(
            severity=filters.validated_data.get('severity'),
            module=filters.validated_data.get('module'),
            search=filters.validated_data.get('search'),
        )

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request, view=self)
        return paginator.get_paginated_response(AuditLogSerializer(page, many=True).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Reports'],
        summary='Export RBAC configuration',
        description='Roles with permission names, permissions and users. **Required permission:** `export-rbac-configuration`',
        responses={200: OpenApiTypes.OBJECT, **ERROR_RESPONSES}
    )
)
class RBACExportView(APIView):
    """
    GET /v1/rbac/export
    """
    permission_classes = [HasRBACPermission]
    required_permissions = {'export-rbac-configuration'}

    def get(self, request):
        return api_response(RBACReportingService.export_configuration())


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='My effective permissions',
        description='''
The authenticated user's effective permission names, for gating UI
elements. Super admins receive the full catalogue.
        ''',
        responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT}
    )
)
class MyPermissionsView(APIView):
    """
    GET /v1/rbac/me/permissions
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        resolver = PermissionResolver()
        user = request.user
        return api_response({
            'user': UserSummarySerializer(user).data,
            'is_super_admin': resolver.is_super_admin(user),
            'permissions': sorted(resolver.effective_permissions(user)),
        })
