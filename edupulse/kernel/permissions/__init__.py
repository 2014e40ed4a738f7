"""
Permission Core - role and ownership checks over an already-resolved identity.
"""

from edupulse.kernel.permissions.guards import ensure_owner, ensure_role

__all__ = [
    "ensure_owner",
    "ensure_role",
]
