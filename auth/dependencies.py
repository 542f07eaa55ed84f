"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

Identity travels as "Authorization: Bearer <access token>" on every request
that needs one. There is no cookie or API-key path.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_roles(*roles) builds a dependency that runs the central gate in
auth/roles.py and raises 401 / 403 from its decision.

Layer rule: auth/dependencies.py may import from fastapi (for
Depends/HTTPException/Request) because this module is part of the FastAPI
dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Role, User
from auth.roles import AccessDecision, authorize
from auth.tokens import decode_access_token

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}
_FORBIDDEN = {"code": "forbidden", "message": "You do not have access to this resource."}


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Resolve the bearer access token to a User. Never raises.

    Returns None when the header is missing, the token does not verify, or
    the subject no longer exists.
    """
    token = _bearer_token(request)
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    return request.app.state.user_store.get_by_id(payload["sub"])


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=401, detail=_UNAUTHORIZED, headers={"WWW-Authenticate": "Bearer"})


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise _unauthorized()
    return user


class RoleRequirement:
    """Callable dependency carrying an operation's declared role set.

    required_roles is the operation metadata; the decision itself is always
    delegated to auth.roles.authorize().
    """

    def __init__(self, roles: tuple[Role, ...]) -> None:
        self.required_roles: frozenset[Role] = frozenset(roles)

    def __call__(self, request: Request) -> User | None:
        user = try_get_current_user(request)
        decision = authorize(user, self.required_roles)
        if decision is AccessDecision.UNAUTHENTICATED:
            raise _unauthorized()
        if decision is AccessDecision.FORBIDDEN:
            raise HTTPException(status_code=403, detail=_FORBIDDEN)
        return user

    def __repr__(self) -> str:
        names = ", ".join(sorted(r.value for r in self.required_roles))
        return f"RoleRequirement({names})"


def require_roles(*roles: Role) -> RoleRequirement:
    """Build a dependency that admits only callers whose role is in roles.

    Use as a route or router dependency:
        @router.get("/premium", dependencies=[Depends(require_roles(Role.PREMIUM, Role.ADMIN))])
    """
    return RoleRequirement(roles)
