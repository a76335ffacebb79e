"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login)
- Users and their permission overrides
- Roles, role permissions and role assignment
- Permissions and temporary grants
- Audit logs
- Permission change requests
"""
from rest_framework import serializers
from apps.rbac.models import (
    User, Permission, PermissionChangeRequest, Role, UserPermission,
    TemporaryPermission, AuditLog,
)


# ===== AUTHENTICATION SERIALIZERS =====

class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.lower()


# ===== USER SERIALIZERS =====

class UserSummarySerializer(serializers.ModelSerializer):
    """Compact user representation used in lists and login responses."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)
    role_id = serializers.UUIDField(read_only=True, allow_null=True)
    role_name = serializers.CharField(source='role_display', read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'full_name',
            'role_id', 'role_name', 'is_super_admin', 'is_active',
            'last_login_at',
        ]
        read_only_fields = fields


# ===== PERMISSION SERIALIZERS =====

class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    class Meta:
        model = Permission
        fields = [
            'id', 'name', 'description', 'module', 'action',
            'risk_level', 'requires_approval',
        ]
        read_only_fields = fields


class UserPermissionSerializer(serializers.ModelSerializer):
    """Serializer for a single per-user override."""

    permission_id = serializers.UUIDField(read_only=True)
    permission_name = serializers.CharField(source='permission.name', read_only=True)
    granted_by_email = serializers.EmailField(source='granted_by.email', read_only=True, allow_null=True)

    class Meta:
        model = UserPermission
        fields = [
            'id', 'permission_id', 'permission_name', 'granted',
            'reason', 'granted_by_email', 'created_at',
        ]
        read_only_fields = fields


class UserPermissionsUpdateSerializer(serializers.Serializer):
    """
    Replace-all payload for a user's overrides.

    Unknown ids are skipped by the service rather than rejected here.
    """

    permission_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=True,
        help_text="Permissions to grant"
    )
    revoked_permission_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=True,
        required=False,
        default=list,
        help_text="Permissions to revoke even if the role grants them"
    )


class TemporaryPermissionSerializer(serializers.ModelSerializer):
    """Serializer for TemporaryPermission model."""

    permission_id = serializers.UUIDField(read_only=True)
    permission_name = serializers.CharField(source='permission.name', read_only=True)
    user_email = serializers.EmailField(source='user.email', read_only=True)

    class Meta:
        model = TemporaryPermission
        fields = [
            'id', 'user_email', 'permission_id', 'permission_name',
            'granted_at', 'expires_at', 'reason', 'is_active',
        ]
        read_only_fields = fields


class TemporaryPermissionCreateSerializer(serializers.Serializer):
    """Serializer for issuing a temporary grant."""

    permission_id = serializers.UUIDField(required=True)
    expires_at = serializers.DateTimeField(required=True)
    reason = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_permission_id(self, value):
        permission = Permission.objects.filter(id=value).first()
        if permission is None:
            raise serializers.ValidationError("Permission does not exist.")
        self.context['permission'] = permission
        return value


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    parent_role_id = serializers.UUIDField(read_only=True, allow_null=True)
    parent_role_name = serializers.CharField(source='parent_role.name', read_only=True, allow_null=True)
    users_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'slug', 'description', 'priority',
            'is_system', 'is_super_admin', 'parent_role_id', 'parent_role_name',
            'users_count', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_users_count(self, obj):
        """Use the annotated count when the queryset provides one."""
        if hasattr(obj, 'users_count'):
            return obj.users_count
        return obj.users.count()


class RoleDetailSerializer(RoleSerializer):
    """Role with its bound permissions."""

    permissions = serializers.SerializerMethodField()

    class Meta(RoleSerializer.Meta):
        fields = RoleSerializer.Meta.fields + ['permissions']
        read_only_fields = fields

    def get_permissions(self, obj):
        return PermissionSerializer(obj.get_permissions().order_by('module', 'name'), many=True).data


class RoleCreateSerializer(serializers.Serializer):
    """
    Serializer for creating a role.

    Name uniqueness and protected names are enforced by RoleService, so that
    a protected name is always reported as forbidden rather than duplicate.
    """

    name = serializers.CharField(required=True, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    is_super_admin = serializers.BooleanField(required=False, default=False)
    parent_role_id = serializers.UUIDField(required=False, allow_null=True, default=None)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Role name cannot be empty.")
        return value.strip()

    def validate_parent_role_id(self, value):
        if value is None:
            return value
        parent = Role.objects.filter(id=value).first()
        if parent is None:
            raise serializers.ValidationError("Parent role does not exist.")
        self.context['parent_role'] = parent
        return value


class RolePermissionsUpdateSerializer(serializers.Serializer):
    """Replace-all payload for a role's permissions."""

    permission_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=True,
        help_text="Exact set of permissions the role should grant"
    )


class UserRoleUpdateSerializer(serializers.Serializer):
    """Serializer for reassigning a user's role."""

    role_id = serializers.UUIDField(required=True)


# ===== AUDIT LOG SERIALIZERS =====

class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    user_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'user_id', 'user_name', 'user_role', 'action', 'description',
            'module', 'severity', 'target_type', 'target_id', 'diff', 'metadata',
            'ip_address', 'request_method', 'request_url', 'request_id', 'logged_at',
        ]
        read_only_fields = fields


class AuditLogFilterSerializer(serializers.Serializer):
    """Query parameters accepted by the audit log search."""

    severity = serializers.ChoiceField(choices=AuditLog.SEVERITY_CHOICES, required=False)
    module = serializers.CharField(required=False, max_length=50)
    search = serializers.CharField(required=False, allow_blank=True, max_length=255)


# ===== CHANGE REQUEST SERIALIZERS =====

class PermissionChangeRequestSerializer(serializers.ModelSerializer):
    """Serializer for PermissionChangeRequest model."""

    user = UserSummarySerializer(read_only=True)
    requested_by_email = serializers.EmailField(source='requested_by.email', read_only=True, allow_null=True)
    reviewed_by_email = serializers.EmailField(source='reviewed_by.email', read_only=True, allow_null=True)
    permissions_to_add = PermissionSerializer(many=True, read_only=True)
    permissions_to_remove = PermissionSerializer(many=True, read_only=True)
    is_actionable = serializers.BooleanField(read_only=True)

    class Meta:
        model = PermissionChangeRequest
        fields = [
            'id', 'user', 'requested_by_email', 'permissions_to_add',
            'permissions_to_remove', 'reason', 'status', 'is_actionable',
            'reviewed_by_email', 'reviewed_at', 'review_note', 'expires_at',
            'created_at',
        ]
        read_only_fields = fields


class PermissionChangeRequestCreateSerializer(serializers.Serializer):
    """
    Payload for filing a change request.

    Unknown permission ids are rejected by the service.
    """

    user_id = serializers.UUIDField(required=True)
    permissions_to_add = serializers.ListField(
        child=serializers.UUIDField(), required=False, default=list,
        help_text="Permissions to grant on approval"
    )
    permissions_to_remove = serializers.ListField(
        child=serializers.UUIDField(), required=False, default=list,
        help_text="Permissions to revoke on approval"
    )
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)


class PermissionChangeReviewSerializer(serializers.Serializer):
    """Optional note recorded with an approval or rejection."""

    note = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)


class PermissionChangeRequestFilterSerializer(serializers.Serializer):
    """Query parameters accepted by the change request list."""

    status = serializers.ChoiceField(choices=PermissionChangeRequest.STATUS_CHOICES, required=False)
    user_id = serializers.UUIDField(required=False)
    requested_by = serializers.UUIDField(required=False)


class TemporaryPermissionCheckSerializer(serializers.Serializer):
    """Query parameters for the temporary permission check."""

    permission = serializers.CharField(required=True, max_length=100)
