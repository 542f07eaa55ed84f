"""
api/routes/v1/users.py -- Admin user management endpoints.

Routes:
  GET   /users                  -- list all users
  GET   /users/{user_id}        -- one user, including ban state
  PATCH /users/{user_id}/role   -- assign a role
  PATCH /users/{user_id}        -- ban / unban
  POST  /users/tokens/cleanup   -- purge stored refresh tokens that no longer verify

Every route declares {ADMIN} through a router-level require_roles()
dependency; handlers that need the caller re-declare it to receive the user.

Security:
  [M4] PATCH /users/{id} blocks self-ban (an admin locking themselves out).
  Ban clears the stored refresh token, so a banned user's next refresh fails
  even before the ban check runs.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import CleanupResponse, RoleAssignmentResponse, RoleAssignmentUser, RoleUpdate, UserDetail, UserPatch, UserSummary
from auth.dependencies import require_roles
from auth.models import Role, User
from auth.sessions import assign_role, purge_expired_refresh_tokens
from auth.store import UserStore

# Auth policy:
# - every /users route: requires ADMIN (router-level require_roles)
admin_only = require_roles(Role.ADMIN)
router = APIRouter(dependencies=[Depends(admin_only)])


def _not_found(user_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": f"User with ID {user_id} not found."},
    )


@router.get("/users", response_model=list[UserSummary])
def list_users(request: Request) -> list[UserSummary]:
    user_store: UserStore = request.app.state.user_store
    return [UserSummary.from_domain(u) for u in user_store.list_users()]


# Literal path registered before /users/{user_id} routes.
@router.post("/users/tokens/cleanup", response_model=CleanupResponse)
def cleanup_tokens(request: Request) -> CleanupResponse:
    """Run refresh-token housekeeping now instead of waiting for the background task."""
    user_store: UserStore = request.app.state.user_store
    removed, total = purge_expired_refresh_tokens(user_store)
    return CleanupResponse(removed=removed, total=total)


@router.get("/users/{user_id}", response_model=UserDetail)
def get_user(request: Request, user_id: str) -> UserDetail:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise _not_found(user_id)
    return UserDetail.from_domain(user)


@router.patch("/users/{user_id}/role", response_model=RoleAssignmentResponse)
def update_role(request: Request, user_id: str, body: RoleUpdate) -> RoleAssignmentResponse:
    """Assign a role. This is the only path that changes a user's role."""
    user_store: UserStore = request.app.state.user_store
    user = assign_role(user_store, user_id, body.role)
    if user is None:
        raise _not_found(user_id)
    return RoleAssignmentResponse(
        message="User role updated successfully",
        user=RoleAssignmentUser(id=user.id, email=user.email, role=user.role),
    )


@router.patch("/users/{user_id}", response_model=UserDetail)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    current_user: User = Depends(admin_only),
) -> UserDetail:
    """Ban or unban a user [M4]."""
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise _not_found(user_id)

    if body.is_banned and target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_ban", "message": "You cannot ban your own account."},
        )

    user_store.set_banned(user_id, body.is_banned)
    updated = user_store.get_by_id(user_id)
    if updated is None:
        raise _not_found(user_id)
    return UserDetail.from_domain(updated)
