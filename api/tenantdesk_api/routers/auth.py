"""Authentication endpoints: three signup variants, login, logout, and ``me``.

Signup and login are public and bypass the auth middleware.  Logout and
``me`` require a valid Bearer session token.

Session tokens are returned in the JSON response body; the client sends them
back as ``Authorization: Bearer <token>``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, status
from pydantic import BaseModel, EmailStr, Field

from tenantdesk_api.dependencies import (
    ContextDep,
    IdentityStoreDep,
    SessionDep,
    SettingsDep,
    identity_retry_config,
)
from tenantdesk_api.schemas import AccountResponse, ProfileResponse
from tenantdesk_api.services.auth_service import MIN_PASSWORD_LENGTH, AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class _SignupBase(BaseModel):
    email: EmailStr = Field(..., description="Email address.")
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, description="Password (min 8 characters).")
    display_name: str = Field(..., min_length=1, max_length=256, description="Display name.")
    phone: str | None = Field(default=None, max_length=64)


class CompanySignupRequest(_SignupBase):
    """Register a founder together with a new company."""

    company_name: str = Field(..., min_length=1, max_length=256)


class MemberSignupRequest(_SignupBase):
    """Register directly into an existing company as a member."""

    tenant_id: str = Field(..., min_length=1, description="Company chosen from the joinable list.")


class IndependentSignupRequest(_SignupBase):
    """Register without a company."""


class LoginRequest(BaseModel):
    """Request body for email/password login."""

    email: EmailStr = Field(..., description="Email address.")
    password: str = Field(..., description="Password.")


class TokenResponse(BaseModel):
    """A freshly issued session token and the signed-in profile."""

    access_token: str
    token_type: str = "bearer"
    expires_at: str
    profile: ProfileResponse


def _service(session: SessionDep, store: IdentityStoreDep, settings: SettingsDep) -> AuthService:
    return AuthService(
        session,
        store,
        retry=identity_retry_config(settings),
        default_max_users=settings.default_max_users,
        timeout=settings.identity_call_timeout,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/signup/company", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def signup_company(
    body: CompanySignupRequest,
    session: SessionDep,
    store: IdentityStoreDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """Create an account and a company; the founder becomes its admin."""
    return await _service(session, store, settings).signup_company(
        email=body.email,
        password=body.password,
        display_name=body.display_name,
        company_name=body.company_name,
        phone=body.phone,
    )


@router.post("/signup/member", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def signup_member(
    body: MemberSignupRequest,
    session: SessionDep,
    store: IdentityStoreDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """Create an account inside an existing company."""
    return await _service(session, store, settings).signup_member(
        email=body.email,
        password=body.password,
        display_name=body.display_name,
        tenant_id=body.tenant_id,
        phone=body.phone,
    )


@router.post("/signup/independent", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def signup_independent(
    body: IndependentSignupRequest,
    session: SessionDep,
    store: IdentityStoreDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """Create an account with no company."""
    return await _service(session, store, settings).signup_independent(
        email=body.email,
        password=body.password,
        display_name=body.display_name,
        phone=body.phone,
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    session: SessionDep,
    store: IdentityStoreDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """Authenticate with email and password and receive a session token."""
    return await _service(session, store, settings).login(body.email, body.password)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    context: ContextDep,
    session: SessionDep,
    store: IdentityStoreDep,
    settings: SettingsDep,
) -> None:
    """Revoke the current session token."""
    await _service(session, store, settings).logout(context)
    logger.info("Profile %s signed out", context.profile_id)


@router.get("/me", response_model=AccountResponse)
async def me(
    context: ContextDep,
    session: SessionDep,
    store: IdentityStoreDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """Return the caller's profile and company."""
    return await _service(session, store, settings).me(context)
