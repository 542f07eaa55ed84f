"""
auth/roles.py -- Centralized role authorization gate.

Every role-gated operation declares an explicit set of allowed roles and this
module's authorize() is the only place that decision is made. Membership is
the only test: there is no role hierarchy, so an operation that should admit
admins as well as premium users lists both roles.

authorize() is framework-free. auth/dependencies.py wraps it in a FastAPI
dependency that turns the decision into HTTP 401 / 403.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from auth.models import Role, User


class AccessDecision(str, Enum):
    ALLOW = "allow"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


def authorize(user: User | None, required_roles: Iterable[Role] | None) -> AccessDecision:
    """Decide whether user may invoke an operation that declares required_roles.

    - No declared roles (None or empty): ALLOW. Whether the caller must be
      authenticated at all is the route's concern, not the gate's.
    - Declared roles, no user: UNAUTHENTICATED.
    - Declared roles, user's role not a member: FORBIDDEN.
    - Otherwise: ALLOW.
    """
    allowed = frozenset(required_roles or ())
    if not allowed:
        return AccessDecision.ALLOW
    if user is None:
        return AccessDecision.UNAUTHENTICATED
    if user.role not in allowed:
        return AccessDecision.FORBIDDEN
    return AccessDecision.ALLOW
