"""
API request and response models for TierGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (refreshToken, displayName, ...). populate_by_name
lets clients send snake_case as well.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from auth.models import PublicUser, Role, SubscriptionStatus, User

_HTTP_URL = TypeAdapter(HttpUrl)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RefreshRequest(CamelModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=4096)


class ProfileUpdate(CamelModel):
    """Request body for PUT /profile. Omitted fields are left unchanged.

    An empty string for avatarUrl or statusMessage clears the field.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    display_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)
    status_message: Optional[str] = Field(default=None, max_length=200)

    @field_validator("avatar_url")
    @classmethod
    def validate_avatar_url(cls, v: Optional[str]) -> Optional[str]:
        """Accept only absolute http(s) URLs (or "" to clear). The string is stored as sent."""
        if v is None or v == "":
            return v
        try:
            _HTTP_URL.validate_python(v)
        except ValidationError:
            raise ValueError("Avatar URL must be a valid http(s) URL") from None
        return v


class RoleUpdate(CamelModel):
    """Request body for PATCH /users/{id}/role. Values outside the enum are rejected with 422."""

    role: Role


class UserPatch(CamelModel):
    """Request body for PATCH /users/{id}."""

    is_banned: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(CamelModel):
    """Public-safe user projection returned at login and by GET /auth/profile."""

    id: str
    email: str
    display_name: str
    avatar_url: Optional[str] = None
    role: Role

    @classmethod
    def from_domain(cls, user: PublicUser | User) -> "UserPublic":
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            role=user.role,
        )


class TokenPairResponse(CamelModel):
    access_token: str
    refresh_token: str


class ProfileResponse(CamelModel):
    id: str
    email: str
    display_name: str
    avatar_url: Optional[str] = None
    status_message: Optional[str] = None
    role: Role
    subscription_status: SubscriptionStatus
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, user: User) -> "ProfileResponse":
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            status_message=user.status_message,
            role=user.role,
            subscription_status=user.subscription_status,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class UserSummary(CamelModel):
    """One row in GET /users."""

    id: str
    email: str
    display_name: str
    avatar_url: Optional[str] = None
    role: Role
    subscription_status: SubscriptionStatus
    created_at: str

    @classmethod
    def from_domain(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            role=user.role,
            subscription_status=user.subscription_status,
            created_at=user.created_at or "",
        )


class UserDetail(UserSummary):
    """GET /users/{id}. Adds moderation state; never the refresh token."""

    is_banned: bool
    updated_at: str

    @classmethod
    def from_domain(cls, user: User) -> "UserDetail":
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            role=user.role,
            subscription_status=user.subscription_status,
            created_at=user.created_at or "",
            is_banned=user.is_banned,
            updated_at=user.updated_at or "",
        )


class RoleAssignmentUser(CamelModel):
    id: str
    email: str
    role: Role


class RoleAssignmentResponse(CamelModel):
    message: str
    user: RoleAssignmentUser


class ContentResponse(CamelModel):
    message: str
    user_role: Role
    content: str


class CleanupResponse(CamelModel):
    removed: int
    total: int


class MessageResponse(CamelModel):
    message: str


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope: {"error": {"code", "message", "detail"}}."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
