"""
RBAC (Role-Based Access Control) application for hospital staff.

Provides:
- One role per user with a cosmetic reporting hierarchy
- Per-user grants and revokes (revoke wins)
- Temporary permission grants
- Cached, request-scoped permission resolution
- Append-only audit logging
"""
