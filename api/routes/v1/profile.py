"""
api/routes/v1/profile.py -- Self-service profile endpoints.

Routes:
  GET /profile  -- full profile of the caller
  PUT /profile  -- partial update of display name, avatar URL, status message

Field-length and URL checks live on the ProfileUpdate request model, so bad
input is rejected with 422 before any store call.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ProfileResponse, ProfileUpdate
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore

# Auth policy:
# - GET /profile: requires auth
# - PUT /profile: requires auth; a user can only edit their own record
router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


@router.get("/profile", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)) -> ProfileResponse:
    return ProfileResponse.from_domain(current_user)


@router.put("/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    """Update only the fields present in the body. "" clears avatarUrl / statusMessage."""
    user_store: UserStore = request.app.state.user_store

    updates: dict = {}
    fields = body.model_dump(exclude_unset=True)
    if "display_name" in fields and fields["display_name"] is not None:
        updates["display_name"] = fields["display_name"]
    if "avatar_url" in fields:
        updates["avatar_url"] = fields["avatar_url"] or None
    if "status_message" in fields:
        updates["status_message"] = fields["status_message"] or None

    if not user_store.update_profile(current_user.id, **updates):
        raise _not_found()

    updated = user_store.get_by_id(current_user.id)
    if updated is None:
        raise _not_found()
    return ProfileResponse.from_domain(updated)
