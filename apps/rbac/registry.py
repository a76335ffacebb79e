"""
Closed catalogue of permission names and default hospital roles.

Permission names are matched by exact string equality at runtime, so every
name a view or seeder refers to must come from CANONICAL_PERMISSIONS. The
`rbac.E001` system check (apps.rbac.checks) enforces this for views at
startup.
"""

PROTECTED_ROLE_NAMES = ('Super Admin', 'Sub Super Admin')

# Roles that are never offered in the staff role-assignment screen
ASSIGNMENT_EXCLUDED_ROLE_NAMES = ('Patient', 'Doctor')

# Keyword -> default priority. Checked in order, first match wins.
PRIORITY_KEYWORDS = (
    (('admin',), 100),
    (('manager',), 80),
    (('head', 'lead'), 60),
    (('staff',), 40),
)
DEFAULT_ROLE_PRIORITY = 50

ROLE_COLORS = {
    'Super Admin': '#ef4444',
    'Sub Super Admin': '#f97316',
    'Hospital Admin': '#3b82f6',
    'Reception Admin': '#10b981',
    'Pharmacy Admin': '#8b5cf6',
    'Laboratory Admin': '#ec4899',
}
DEFAULT_ROLE_COLOR = '#6b7280'


def is_protected_role_name(name):
    """Case-insensitive membership test against PROTECTED_ROLE_NAMES."""
    if not name:
        return False
    normalized = name.strip().lower()
    return any(normalized == protected.lower() for protected in PROTECTED_ROLE_NAMES)


def _crud(module, resource, label, risk=None):
    """Build the view/create/edit/delete family for one resource."""
    risk = risk or {}
    return [
        {
            'name': f'{action}-{resource}',
            'description': f'{action.capitalize()} {label}',
            'module': module,
            'action': action,
            'risk_level': risk.get(action, 'low' if action == 'view' else 'medium'),
            'requires_approval': action == 'delete',
        }
        for action in ('view', 'create', 'edit', 'delete')
    ]


CANONICAL_PERMISSIONS = [
    *_crud('users', 'users', 'staff user accounts', {'create': 'high', 'delete': 'critical'}),
    {
        'name': 'manage-users',
        'description': 'Replace per-user permission overrides and temporary grants',
        'module': 'users',
        'action': 'manage',
        'risk_level': 'high',
        'requires_approval': False,
    },
    {
        'name': 'approve-permission-changes',
        'description': 'Approve or reject permission change requests filed by other administrators',
        'module': 'users',
        'action': 'approve',
        'risk_level': 'critical',
        'requires_approval': True,
    },

    # Role administration
    {
        'name': 'view-roles',
        'description': 'View roles and the permission catalogue',
        'module': 'roles',
        'action': 'view',
        'risk_level': 'low',
        'requires_approval': False,
    },
    {
        'name': 'manage-roles',
        'description': 'List and create roles',
        'module': 'roles',
        'action': 'manage',
        'risk_level': 'high',
        'requires_approval': False,
    },
    {
        'name': 'manage-role-permissions',
        'description': 'Replace the permission set bound to a role',
        'module': 'roles',
        'action': 'manage',
        'risk_level': 'critical',
        'requires_approval': True,
    },
    {
        'name': 'manage-user-roles',
        'description': 'Reassign the role held by a staff user',
        'module': 'roles',
        'action': 'manage',
        'risk_level': 'high',
        'requires_approval': False,
    },
    {
        'name': 'view-role-hierarchy',
        'description': 'View the role reporting hierarchy',
        'module': 'roles',
        'action': 'view',
        'risk_level': 'low',
        'requires_approval': False,
    },
    {
        'name': 'view-permission-matrix',
        'description': 'View the role by permission matrix',
        'module': 'roles',
        'action': 'view',
        'risk_level': 'medium',
        'requires_approval': False,
    },
    {
        'name': 'view-rbac-dashboard',
        'description': 'View access-control statistics and role distribution',
        'module': 'roles',
        'action': 'view',
        'risk_level': 'low',
        'requires_approval': False,
    },
    {
        'name': 'export-rbac-configuration',
        'description': 'Export roles, permissions and assignments',
        'module': 'roles',
        'action': 'export',
        'risk_level': 'high',
        'requires_approval': False,
    },
    {
        'name': 'view-activity-logs',
        'description': 'Search and read the audit trail',
        'module': 'audit',
        'action': 'view',
        'risk_level': 'medium',
        'requires_approval': False,
    },

    {
        'name': 'view-dashboard',
        'description': 'View the hospital dashboard',
        'module': 'dashboard',
        'action': 'view',
        'risk_level': 'low',
        'requires_approval': False,
    },

    *_crud('patients', 'patients', 'patient records', {'delete': 'high'}),
    *_crud('doctors', 'doctors', 'doctor profiles'),
    *_crud('appointments', 'appointments', 'appointments'),
    *_crud('billing', 'bills', 'bills', {'delete': 'high'}),
    {
        'name': 'process-payments',
        'description': 'Record payments against bills',
        'module': 'billing',
        'action': 'process',
        'risk_level': 'high',
        'requires_approval': False,
    },
    {
        'name': 'view-medical-records',
        'description': 'Read clinical notes and medical history',
        'module': 'medical_records',
        'action': 'view',
        'risk_level': 'medium',
        'requires_approval': False,
    },
    {
        'name': 'edit-medical-records',
        'description': 'Write clinical notes and assessments',
        'module': 'medical_records',
        'action': 'edit',
        'risk_level': 'high',
        'requires_approval': False,
    },

    # Pharmacy
    {
        'name': 'view-pharmacy',
        'description': 'View the pharmacy section',
        'module': 'pharmacy',
        'action': 'view',
        'risk_level': 'low',
        'requires_approval': False,
    },
    {
        'name': 'manage-medicines',
        'description': 'Manage medicine inventory and stock',
        'module': 'pharmacy',
        'action': 'manage',
        'risk_level': 'medium',
        'requires_approval': False,
    },
    {
        'name': 'process-prescriptions',
        'description': 'Dispense prescriptions',
        'module': 'pharmacy',
        'action': 'process',
        'risk_level': 'medium',
        'requires_approval': False,
    },

    # Laboratory
    {
        'name': 'view-laboratory',
        'description': 'View the laboratory section',
        'module': 'laboratory',
        'action': 'view',
        'risk_level': 'low',
        'requires_approval': False,
    },
    {
        'name': 'manage-lab-tests',
        'description': 'Manage the lab test catalogue and requests',
        'module': 'laboratory',
        'action': 'manage',
        'risk_level': 'medium',
        'requires_approval': False,
    },
    {
        'name': 'enter-lab-results',
        'description': 'Record lab test results',
        'module': 'laboratory',
        'action': 'create',
        'risk_level': 'medium',
        'requires_approval': False,
    },
    {
        'name': 'view-lab-materials',
        'description': 'View lab consumables',
        'module': 'laboratory',
        'action': 'view',
        'risk_level': 'low',
        'requires_approval': False,
    },
    {
        'name': 'edit-lab-materials',
        'description': 'Adjust lab consumable stock',
        'module': 'laboratory',
        'action': 'edit',
        'risk_level': 'medium',
        'requires_approval': False,
    },

    # Reports
    {
        'name': 'view-reports',
        'description': 'View operational and financial reports',
        'module': 'reports',
        'action': 'view',
        'risk_level': 'medium',
        'requires_approval': False,
    },
    {
        'name': 'export-reports',
        'description': 'Export reports to file',
        'module': 'reports',
        'action': 'export',
        'risk_level': 'high',
        'requires_approval': False,
    },
]

PERMISSION_NAMES = frozenset(perm['name'] for perm in CANONICAL_PERMISSIONS)


def _crud_dependencies(resource):
    return [(f'{action}-{resource}', f'view-{resource}') for action in ('create', 'edit', 'delete')]


# (permission, depends_on): holding the first without the second is invalid
PERMISSION_DEPENDENCIES = [
    *_crud_dependencies('users'),
    *_crud_dependencies('patients'),
    *_crud_dependencies('doctors'),
    *_crud_dependencies('appointments'),
    *_crud_dependencies('bills'),
    ('manage-users', 'view-users'),
    ('approve-permission-changes', 'view-users'),
    ('manage-roles', 'view-roles'),
    ('manage-role-permissions', 'view-roles'),
    ('manage-user-roles', 'view-users'),
    ('process-payments', 'view-bills'),
    ('edit-medical-records', 'view-medical-records'),
    ('manage-medicines', 'view-pharmacy'),
    ('process-prescriptions', 'view-pharmacy'),
    ('manage-lab-tests', 'view-laboratory'),
    ('enter-lab-results', 'view-laboratory'),
    ('edit-lab-materials', 'view-lab-materials'),
    ('export-reports', 'view-reports'),
]

ALL_PERMISSIONS = 'ALL'

# Seeded hospital roles, ordered so every parent precedes its children
DEFAULT_ROLES = [
    {
        'name': 'Super Admin',
        'description': 'Ultimate system authority with unrestricted access',
        'priority': 100,
        'is_system': True,
        'is_super_admin': True,
        'parent': None,
        'permissions': ALL_PERMISSIONS,
    },
    {
        'name': 'Sub Super Admin',
        'description': 'Senior administrative role with broad system access',
        'priority': 90,
        'is_system': True,
        'is_super_admin': False,
        'parent': 'Super Admin',
        'permissions': [
            name for name in sorted(PERMISSION_NAMES)
            if name not in ('export-rbac-configuration', 'manage-role-permissions')
        ],
    },
    {
        'name': 'Hospital Admin',
        'description': 'Runs day-to-day hospital administration',
        'priority': 80,
        'is_system': False,
        'is_super_admin': False,
        'parent': 'Sub Super Admin',
        'permissions': [
            'view-dashboard', 'view-users', 'create-users', 'edit-users',
            'view-roles', 'view-role-hierarchy', 'view-rbac-dashboard',
            'view-patients', 'create-patients', 'edit-patients',
            'view-doctors', 'create-doctors', 'edit-doctors',
            'view-appointments', 'create-appointments', 'edit-appointments',
            'view-bills', 'view-reports', 'view-activity-logs',
        ],
    },
    {
        'name': 'Reception Admin',
        'description': 'Front-desk registration and scheduling',
        'priority': 60,
        'is_system': False,
        'is_super_admin': False,
        'parent': 'Hospital Admin',
        'permissions': [
            'view-dashboard', 'view-patients', 'create-patients', 'edit-patients',
            'view-doctors', 'view-appointments', 'create-appointments',
            'edit-appointments', 'view-bills', 'create-bills',
        ],
    },
    {
        'name': 'Pharmacy Admin',
        'description': 'Pharmaceutical inventory and dispensing',
        'priority': 60,
        'is_system': False,
        'is_super_admin': False,
        'parent': 'Hospital Admin',
        'permissions': [
            'view-dashboard', 'view-pharmacy', 'manage-medicines',
            'process-prescriptions', 'view-patients',
        ],
    },
    {
        'name': 'Laboratory Admin',
        'description': 'Laboratory tests, results and materials',
        'priority': 60,
        'is_system': False,
        'is_super_admin': False,
        'parent': 'Hospital Admin',
        'permissions': [
            'view-dashboard', 'view-laboratory', 'manage-lab-tests',
            'enter-lab-results', 'view-lab-materials', 'edit-lab-materials',
            'view-patients',
        ],
    },
    {
        'name': 'Doctor',
        'description': 'Clinical staff',
        'priority': 50,
        'is_system': False,
        'is_super_admin': False,
        'parent': 'Hospital Admin',
        'permissions': [
            'view-dashboard', 'view-patients', 'edit-patients',
            'view-appointments', 'edit-appointments',
            'view-medical-records', 'edit-medical-records', 'view-laboratory',
        ],
    },
    {
        'name': 'Patient',
        'description': 'Patient portal access',
        'priority': 10,
        'is_system': False,
        'is_super_admin': False,
        'parent': None,
        'permissions': ['view-appointments'],
    },
]
