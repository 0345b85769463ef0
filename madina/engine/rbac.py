"""
madina.engine.rbac — Role Hierarchy & Permission Checks
========================================================

Pure functions, no DB I/O.  Roles are ordered by level; a role passes
:func:`has_permission` for every role at or below its own level.  The
``can_*`` helpers name the capability sets used by the routes.

    user (1) < employee (2) = journalist (2) < finance (3) < admin (4)
"""

from __future__ import annotations

from madina.database.models import Role

ROLE_LEVELS: dict[str, int] = {
    Role.USER: 1,
    Role.EMPLOYEE: 2,
    Role.JOURNALIST: 2,
    Role.FINANCE: 3,
    Role.ADMIN: 4,
}

# Roles that operate on money or content on behalf of the platform and so
# must hold a wallet before they are granted.
WALLET_REQUIRED_ROLES = frozenset({
    Role.ADMIN, Role.JOURNALIST, Role.FINANCE, Role.EMPLOYEE,
})


def role_level(role: str | None) -> int:
    """Level of *role*; unknown or missing roles are level 0."""
    if role is None:
        return 0
    return ROLE_LEVELS.get(role, 0)


def is_valid_role(role: str | None) -> bool:
    return role in ROLE_LEVELS


def has_permission(role: str | None, required: str) -> bool:
    """``True`` when *role* is at or above *required* in the hierarchy."""
    level = role_level(role)
    return level > 0 and level >= role_level(required)


def is_admin(role: str | None) -> bool:
    return role == Role.ADMIN


def can_moderate(role: str | None) -> bool:
    """Event approval and content moderation."""
    return role == Role.ADMIN


def can_publish_news(role: str | None) -> bool:
    return role in (Role.JOURNALIST, Role.ADMIN)


def can_create_posts(role: str | None) -> bool:
    return role in (Role.JOURNALIST, Role.EMPLOYEE, Role.ADMIN)


def can_review_kyc(role: str | None) -> bool:
    return role in (Role.ADMIN, Role.EMPLOYEE)


def can_handle_finance(role: str | None) -> bool:
    """Cash payouts at the finance desk."""
    return role in (Role.ADMIN, Role.FINANCE)
