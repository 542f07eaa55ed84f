"""
api/routes/v1/content.py -- Tiered content endpoints.

Each route declares its allowed roles explicitly. There is no hierarchy:
/content/premium lists ADMIN alongside PREMIUM so admins can see it, and
/content/admin admits ADMIN only.
"""

from fastapi import APIRouter, Depends

from api.models import ContentResponse
from auth.dependencies import get_current_user, require_roles
from auth.models import Role, User

# Auth policy:
# - GET /content/free:    any authenticated user
# - GET /content/premium: {PREMIUM, ADMIN}
# - GET /content/admin:   {ADMIN}
router = APIRouter()


@router.get("/content/free", response_model=ContentResponse)
def free_content(user: User = Depends(get_current_user)) -> ContentResponse:
    return ContentResponse(
        message="This is accessible to all authenticated users",
        user_role=user.role,
        content="Free tier content",
    )


@router.get("/content/premium", response_model=ContentResponse)
def premium_content(user: User = Depends(require_roles(Role.PREMIUM, Role.ADMIN))) -> ContentResponse:
    return ContentResponse(
        message="This is premium content",
        user_role=user.role,
        content="Premium features: advanced chat, file sharing, custom themes",
    )


@router.get("/content/admin", response_model=ContentResponse)
def admin_content(user: User = Depends(require_roles(Role.ADMIN))) -> ContentResponse:
    return ContentResponse(
        message="This is admin-only content",
        user_role=user.role,
        content="Admin panel: user management, system settings, analytics",
    )
