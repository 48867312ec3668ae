from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_DIRECTORY_READ = "directory.read"
PERM_DIRECTORY_WRITE = "directory.write"
PERM_ASSIGNMENT_READ = "assignment.read"
PERM_ASSIGNMENT_WRITE = "assignment.write"
PERM_APPROVAL_READ = "approval.read"
PERM_APPROVAL_WRITE = "approval.write"
PERM_APPROVAL_OVERRIDE = "approval.override"
PERM_INSPECTION_READ = "inspection.read"
PERM_INSPECTION_SUBMIT = "inspection.submit"
PERM_REVIEW_TIER1 = "inspection.review.tier1"
PERM_REVIEW_TIER2 = "inspection.review.tier2"
PERM_INSPECTION_ADMIN = "inspection.admin"
PERM_EVIDENCE_WRITE = "evidence.write"

DEFAULT_PERMISSION_NAMES = [
    PERM_WILDCARD,
    PERM_DIRECTORY_READ,
    PERM_DIRECTORY_WRITE,
    PERM_ASSIGNMENT_READ,
    PERM_ASSIGNMENT_WRITE,
    PERM_APPROVAL_READ,
    PERM_APPROVAL_WRITE,
    PERM_APPROVAL_OVERRIDE,
    PERM_INSPECTION_READ,
    PERM_INSPECTION_SUBMIT,
    PERM_REVIEW_TIER1,
    PERM_REVIEW_TIER2,
    PERM_INSPECTION_ADMIN,
    PERM_EVIDENCE_WRITE,
]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
