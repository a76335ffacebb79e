"""
RBAC models for hospital staff access control.

Implements:
- User (AUTH_USER_MODEL) holding at most one Role
- Permission (global canonical permissions, seeded from the registry)
- PermissionDependency (permission A is only valid alongside permission B)
- Role (named bundle of permissions with a cosmetic parent hierarchy)
- RolePermission (maps permissions to roles)
- UserPermission (per-user overrides with grant/revoke)
- TemporaryPermission (time-boxed grants)
- PermissionChangeRequest (override changes awaiting a second approver)
- AuditLog (append-only audit trail)
"""
import logging
from django.db import models, transaction
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from apps.core.models import BaseModel, SoftDeleteManager, SoftDeleteModel

logger = logging.getLogger(__name__)


def _keep_permissions_version(instance, kwargs):
    """
    Leave permissions_version out of full saves of already stored rows.

    The counter only moves through queryset updates, so an instance loaded
    before a bump would otherwise write its older value back.
    """
    if instance._state.adding or kwargs.get('force_insert') or kwargs.get('update_fields') is not None:
        return
    deferred = instance.get_deferred_fields()
    kwargs['update_fields'] = [
        field.name for field in instance._meta.concrete_fields
        if not field.primary_key
        and field.name != 'permissions_version'
        and field.attname not in deferred
    ]


class UserManager(SoftDeleteManager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=email).first()

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.

        This method is compatible with Django's authentication system.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_super_admin', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a super admin.

        This method is required for Django's createsuperuser command.
        """
        extra_fields.setdefault('is_super_admin', True)

        if extra_fields.get('is_super_admin') is not True:
            raise ValueError('Superuser must have is_super_admin=True')

        return self.create_user(email, password, **extra_fields)

    def normalize_email(self, email):
        """
        Normalize the email address by lowercasing the domain part.
        """
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(SoftDeleteModel):
    """
    Hospital staff or patient account.

    Each user holds at most one role. The legacy role_name column mirrors
    role.name on every save so older reports that read the string keep
    working.

    This is the AUTH_USER_MODEL for the entire application, including Django admin.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (login identifier)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    first_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User last name"
    )

    role = models.ForeignKey(
        'rbac.Role',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='users',
        help_text="Role held by this user"
    )
    role_name = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="Legacy role string, kept in sync with role"
    )

    is_super_admin = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Bypasses every permission check"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )
    permissions_version = models.PositiveIntegerField(
        default=0,
        editable=False,
        help_text="Bumped whenever this user's overrides or grants change"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['first_name', 'last_name', 'email']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
            models.Index(fields=['role', 'is_active']),
        ]

    def __str__(self):
        return self.email

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_role_id = instance.__dict__.get('role_id')
        return instance

    def save(self, *args, **kwargs):
        """
        Keep the legacy role_name string aligned with the role FK.

        Clearing a role clears the string too. Users that never had a role
        linked keep whatever legacy string they were created with.
        """
        if self.role_id:
            self.role_name = self.role.name
        elif getattr(self, '_loaded_role_id', None):
            self.role_name = ''
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'role' in update_fields and 'role_name' not in update_fields:
            kwargs['update_fields'] = list(update_fields) + ['role_name']
        _keep_permissions_version(self, kwargs)
        super().save(*args, **kwargs)
        self._loaded_role_id = self.role_id

    @property
    def password(self):
        """
        Alias for password_hash to maintain Django admin compatibility.
        """
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_short_name(self):
        return self.first_name or self.email

    @property
    def role_display(self):
        """Role name from the FK, falling back to the legacy string."""
        if self.role_id:
            return self.role.name
        return self.role_name or ''

    @property
    def has_super_admin_role(self):
        """True when either the user flag or the held role grants the bypass."""
        if self.is_super_admin:
            return True
        return bool(self.role_id and self.role.is_super_admin)

    def update_last_login(self):
        """Update last_login_at to current time."""
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at'])

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        """
        Return True for super admins.
        This is required for Django admin access.
        """
        return self.has_super_admin_role

    @property
    def is_superuser(self):
        return self.has_super_admin_role

    def has_perm(self, perm, obj=None):
        """
        Django admin permission hook. Super admins have all permissions.
        Application permissions go through PermissionResolver instead.
        """
        return self.has_super_admin_role

    def has_perms(self, perm_list, obj=None):
        return self.has_super_admin_role

    def has_module_perms(self, app_label):
        return self.has_super_admin_role

    def natural_key(self):
        return (self.email,)


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_name(self, name):
        """Find permission by name."""
        return self.filter(name=name).first()

    def by_module(self, module):
        """Get all permissions in a module."""
        return self.filter(module=module)


class Permission(BaseModel):
    """
    Global permission definitions.

    Canonical permissions are seeded from apps.rbac.registry during
    deployment and are never edited at runtime.
    """

    RISK_LEVEL_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('critical', 'Critical'),
    ]

    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique permission name (e.g., 'edit-lab-materials')"
    )
    description = models.TextField(
        blank=True,
        help_text="What this permission grants"
    )
    module = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Owning module (e.g., 'laboratory', 'roles')"
    )
    action = models.CharField(
        max_length=30,
        blank=True,
        help_text="Verb the permission controls (view, create, edit, ...)"
    )
    risk_level = models.CharField(
        max_length=10,
        choices=RISK_LEVEL_CHOICES,
        default='low',
        help_text="How damaging misuse of this permission would be"
    )
    requires_approval = models.BooleanField(
        default=False,
        help_text="Whether granting this permission needs a second approver"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['module', 'name']
        indexes = [
            models.Index(fields=['module', 'name']),
        ]

    def __str__(self):
        return self.name


class PermissionDependency(BaseModel):
    """
    Holding `permission` is only valid when `depends_on` is held too.
    """

    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='dependencies',
        help_text="Permission that has a prerequisite"
    )
    depends_on = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='dependents',
        help_text="Prerequisite permission"
    )

    class Meta:
        db_table = 'permission_dependencies'
        unique_together = [('permission', 'depends_on')]
        ordering = ['permission__name']

    def __str__(self):
        return f"{self.permission.name} requires {self.depends_on.name}"


class RoleManager(SoftDeleteManager):
    """Manager for Role queries."""

    def by_name(self, name):
        """Find role by exact name."""
        return self.filter(name=name).first()

    def system_roles(self):
        return self.filter(is_system=True)

    def custom_roles(self):
        return self.filter(is_system=False)


class Role(SoftDeleteModel):
    """
    Named bundle of permissions.

    parent_role only feeds the hierarchy display; permissions are never
    inherited from it.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Role name (e.g., 'Pharmacy Admin')"
    )
    slug = models.SlugField(
        max_length=120,
        unique=True,
        help_text="Lowercase, hyphenated form of the name"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    priority = models.IntegerField(
        default=50,
        db_index=True,
        help_text="Seniority; higher is more senior"
    )
    is_system = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a seeded role"
    )
    is_super_admin = models.BooleanField(
        default=False,
        help_text="Holders bypass every permission check"
    )
    parent_role = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='child_roles',
        help_text="Reporting parent, used only for display"
    )
    permissions_version = models.PositiveIntegerField(
        default=0,
        editable=False,
        help_text="Bumped whenever this role's bindings or bypass flag change"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['-priority', 'name']
        indexes = [
            models.Index(fields=['priority', 'name']),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        _keep_permissions_version(self, kwargs)
        super().save(*args, **kwargs)

    @property
    def is_protected(self):
        from apps.rbac.registry import is_protected_role_name
        return is_protected_role_name(self.name)

    def get_permissions(self):
        """Get all permissions granted by this role."""
        return Permission.objects.filter(
            role_permissions__role=self
        ).distinct()

    def has_permission(self, permission_name):
        """Check if role has a specific permission."""
        return self.role_permissions.filter(
            permission__name=permission_name
        ).exists()


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)

    def for_permission(self, permission):
        return self.filter(permission=permission)


class RolePermission(BaseModel):
    """
    Maps permissions to roles.

    Rows are only ever replaced wholesale by RoleService.update_role_permissions.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Permission being granted"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"


class UserPermissionManager(models.Manager):
    """Manager for UserPermission queries."""

    def for_user(self, user):
        return self.filter(user=user)

    def grants(self, user):
        """Get granted permissions for a user."""
        return self.filter(user=user, granted=True)

    def revokes(self, user):
        """Get explicitly revoked permissions for a user."""
        return self.filter(user=user, granted=False)


class UserPermission(BaseModel):
    """
    Per-user permission overrides.

    granted is tri-state: True grants, False revokes (revoke wins over the
    role, grants and temporary grants), None is recorded but has no effect.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_overrides',
        help_text="User this override applies to"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='user_permissions',
        help_text="Permission being granted or revoked"
    )
    granted = models.BooleanField(
        null=True,
        help_text="True = grant, False = revoke, null = no effect"
    )
    reason = models.TextField(
        blank=True,
        help_text="Reason for this override"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_overrides_made',
        help_text="User who created this override"
    )

    objects = UserPermissionManager()

    class Meta:
        db_table = 'user_permissions'
        unique_together = [('user', 'permission')]
        ordering = ['user', 'permission']
        indexes = [
            models.Index(fields=['user', 'granted']),
        ]

    def __str__(self):
        if self.granted is None:
            action = "UNSET"
        else:
            action = "GRANT" if self.granted else "REVOKE"
        return f"{action} {self.permission.name} to {self.user.email}"


class TemporaryPermissionManager(models.Manager):
    """Manager for TemporaryPermission queries."""

    def active(self):
        """Active grants that have not yet expired."""
        return self.filter(is_active=True, expires_at__gt=timezone.now())

    def active_for_user(self, user):
        return self.active().filter(user=user)


class TemporaryPermission(BaseModel):
    """
    Time-boxed permission grant, e.g. cover for an absent colleague.

    Counts toward the holder's effective permissions until expires_at
    passes or it is revoked.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='temporary_permissions',
        help_text="User receiving the grant"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='temporary_grants',
        help_text="Permission granted"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='temporary_grants_made',
        help_text="User who issued the grant"
    )
    granted_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the grant started"
    )
    expires_at = models.DateTimeField(
        db_index=True,
        help_text="When the grant stops counting"
    )
    reason = models.TextField(
        blank=True,
        help_text="Why the grant was issued"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="False once revoked"
    )

    objects = TemporaryPermissionManager()

    class Meta:
        db_table = 'temporary_permissions'
        ordering = ['-granted_at']
        indexes = [
            models.Index(fields=['user', 'is_active', 'expires_at']),
        ]

    def __str__(self):
        return f"{self.permission.name} to {self.user.email} until {self.expires_at:%Y-%m-%d %H:%M}"

    @property
    def is_expired(self):
        return self.expires_at <= timezone.now()


class PermissionChangeRequestManager(models.Manager):
    """Manager for PermissionChangeRequest queries."""

    def pending(self):
        return self.filter(status=PermissionChangeRequest.STATUS_PENDING)

    def for_user(self, user):
        return self.filter(user=user)


class PermissionChangeRequest(BaseModel):
    """
    A proposed change to one user's overrides, applied only once a second
    administrator approves it.

    Permissions flagged requires_approval can only reach a user through one
    of these unless a super admin grants them directly.
    """

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_change_requests',
        help_text="User whose overrides would change"
    )
    requested_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name='permission_change_requests_made',
        help_text="Administrator who filed the request"
    )
    permissions_to_add = models.ManyToManyField(
        Permission,
        blank=True,
        related_name='change_requests_adding',
        help_text="Permissions to grant on approval"
    )
    permissions_to_remove = models.ManyToManyField(
        Permission,
        blank=True,
        related_name='change_requests_removing',
        help_text="Permissions to revoke on approval"
    )
    reason = models.TextField(
        blank=True,
        help_text="Why the change is needed"
    )
    status = models.CharField(
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
    )
    reviewed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_change_requests_reviewed',
        help_text="Administrator who approved, rejected or cancelled the request"
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_note = models.TextField(blank=True)
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Pending requests can no longer be acted on after this"
    )

    objects = PermissionChangeRequestManager()

    class Meta:
        db_table = 'permission_change_requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at']),
            models.Index(fields=['user', 'status']),
        ]

    def __str__(self):
        return f"Change request for {self.user.email} ({self.status})"

    @property
    def is_actionable(self):
        """Pending and not past its expiry."""
        if self.status != self.STATUS_PENDING:
            return False
        return self.expires_at is None or self.expires_at > timezone.now()


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_user(self, user):
        return self.filter(user=user)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs

    def recent(self, days=30):
        from datetime import timedelta
        cutoff = timezone.now() - timedelta(days=days)
        return self.filter(logged_at__gte=cutoff)


class AuditLog(BaseModel):
    """
    Append-only audit trail for RBAC changes and sensitive actions.
    """

    SEVERITY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('critical', 'Critical'),
    ]

    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    user_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Actor name at the time of the action"
    )
    user_role = models.CharField(
        max_length=100,
        blank=True,
        help_text="Actor role at the time of the action"
    )

    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'role_created', 'user_role_changed')"
    )
    description = models.TextField(
        blank=True,
        help_text="Human-readable summary"
    )
    module = models.CharField(
        max_length=50,
        db_index=True,
        default='rbac',
        help_text="Module the action belongs to"
    )
    severity = models.CharField(
        max_length=10,
        choices=SEVERITY_CHOICES,
        default='low',
        db_index=True,
        help_text="Severity of the action"
    )
    target_type = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
        help_text="Type of target entity (e.g., 'Role', 'User')"
    )
    target_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of target entity"
    )

    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes in JSON format"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context metadata"
    )

    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address of the request"
    )
    user_agent = models.TextField(blank=True)
    request_method = models.CharField(max_length=10, blank=True)
    request_url = models.TextField(blank=True)
    request_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Request ID for tracing"
    )
    error_details = models.TextField(blank=True)

    logged_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the action happened"
    )

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-logged_at']
        indexes = [
            models.Index(fields=['user', 'logged_at']),
            models.Index(fields=['action', 'logged_at']),
            models.Index(fields=['severity', 'logged_at']),
            models.Index(fields=['module', 'logged_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        return f"{self.user_name or 'System'} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, description='', module='rbac',
                   severity='low', target_type='', target_id=None, diff=None,
                   metadata=None, request=None, error_details=''):
        """
        Convenience method to create audit log entry.

        Args:
            action: Action being performed
            user: User performing the action
            description: Human-readable summary
            module: Owning module
            severity: low / medium / high / critical
            target_type: Type of target entity
            target_id: ID of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP, user agent, request ID)
            error_details: Failure detail for rejected or failed actions

        Returns:
            AuditLog instance, or None if writing the entry failed
        """
        if user is not None and not user.is_authenticated:
            user = None

        log_data = {
            'action': action,
            'user': user,
            'user_name': user.get_full_name() if user else 'System',
            'user_role': user.role_display if user else '',
            'description': description,
            'module': module,
            'severity': severity,
            'target_type': target_type,
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
            'error_details': error_details,
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_method'] = request.method or ''
            log_data['request_url'] = request.build_absolute_uri()
            log_data['request_id'] = getattr(request, 'request_id', None) or ''

        try:
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except Exception as e:
            # Audit logging must not break the main operation
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'user_id': str(user.id) if user else None},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        """Extract client IP from request."""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            ip = x_forwarded_for.split(',')[0].strip()
        else:
            ip = request.META.get('REMOTE_ADDR')
        return ip
