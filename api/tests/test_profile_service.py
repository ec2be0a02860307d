"""Tests for profile bootstrap, self-service updates and session resolution."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from helpers import make_company, make_profile
from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import AuthenticationError, AuthorizationError, DependencyError, ValidationError
from tenantdesk_core.models import Role
from tenantdesk_core.retry import RetryConfig
from tenantdesk_core.state.repository import ProfileRepository, TenantRepository

from tenantdesk_api.identity import Identity, IdentitySession
from tenantdesk_api.services.profile_service import ProfileService, resolve_session

_FAST_RETRY = RetryConfig(max_retries=2, base_delay=0.001, max_delay=0.002, jitter=False)


def _issued(identity_id: str = "id-1", email: str = "new@example.com", **metadata: Any) -> IdentitySession:
    return IdentitySession(
        session_id="sess-1",
        identity=Identity(id=identity_id, email=email, metadata=metadata),
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        token="header.payload.signature",
    )


def _store(validate: Any) -> MagicMock:
    store = MagicMock()
    store.validate = validate
    store.invalidate_session = AsyncMock()
    return store


class TestResolve:
    @pytest.mark.asyncio
    async def test_bootstraps_default_profile(self, session: AsyncSession) -> None:
        identity = Identity(id="id-1", email="New@Example.com", metadata={"display_name": "Newcomer"})
        profile = await ProfileService(session).resolve(identity)

        assert profile.id == "id-1"
        assert profile.email == "new@example.com"
        assert profile.display_name == "Newcomer"
        assert profile.role == Role.COMPANY_MEMBER.value
        assert profile.tenant_id is None
        assert profile.subscription_tier == "standard"

    @pytest.mark.asyncio
    async def test_returns_existing_profile(self, session: AsyncSession) -> None:
        await make_profile(session, "indie", role=Role.INDEPENDENT_USER)
        profile = await ProfileService(session).resolve(Identity(id="indie", email="indie@example.com"))
        assert profile.role == Role.INDEPENDENT_USER.value

    @pytest.mark.asyncio
    async def test_display_name_falls_back(self, session: AsyncSession) -> None:
        profile = await ProfileService(session).resolve(Identity(id="id-2", email="x@example.com"))
        assert profile.display_name == "User"

    @pytest.mark.asyncio
    async def test_rebuilds_independent_signup(self, session: AsyncSession) -> None:
        identity = Identity(id="id-3", email="carol@x.test", metadata={"user_type": "independent"})
        profile = await ProfileService(session).resolve(identity)
        assert profile.role == Role.INDEPENDENT_USER.value
        assert profile.tenant_id is None

    @pytest.mark.asyncio
    async def test_rebuilds_company_signup(self, session: AsyncSession) -> None:
        identity = Identity(
            id="id-4",
            email="alice@acme.test",
            metadata={"display_name": "Alice", "user_type": "company", "company_name": " Acme "},
        )
        profile = await ProfileService(session).resolve(identity, max_users=3)

        assert profile.role == Role.COMPANY_ADMIN.value
        assert profile.tenant_id is not None
        tenant = await TenantRepository(session).get(profile.tenant_id)
        assert tenant is not None
        assert tenant.company_name == "Acme"
        assert tenant.created_by == "id-4"
        assert tenant.max_users == 3

    @pytest.mark.asyncio
    async def test_rebuilds_member_signup(self, session: AsyncSession) -> None:
        _, tenant_id = await make_company(session)
        identity = Identity(id="id-5", email="bob@acme.test", metadata={"user_type": "company", "tenant_id": tenant_id})
        profile = await ProfileService(session).resolve(identity)
        assert profile.role == Role.COMPANY_MEMBER.value
        assert profile.tenant_id == tenant_id

    @pytest.mark.asyncio
    async def test_member_signup_for_deleted_tenant_is_tenantless(self, session: AsyncSession) -> None:
        identity = Identity(id="id-6", email="bob@gone.test", metadata={"user_type": "company", "tenant_id": "gone"})
        profile = await ProfileService(session).resolve(identity)
        assert profile.role == Role.COMPANY_MEMBER.value
        assert profile.tenant_id is None


class TestResolveSession:
    @pytest.mark.asyncio
    async def test_returns_context(self, session: AsyncSession) -> None:
        store = _store(AsyncMock(return_value=_issued()))
        ctx = await resolve_session(session, store, "token", timeout=1.0)
        assert ctx.profile_id == "id-1"
        assert ctx.session_id == "sess-1"
        assert ctx.role is Role.COMPANY_MEMBER
        store.invalidate_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_authentication_failure_propagates_without_revocation(self, session: AsyncSession) -> None:
        store = _store(AsyncMock(side_effect=AuthenticationError("Session is no longer valid")))
        with pytest.raises(AuthenticationError):
            await resolve_session(session, store, "token", timeout=1.0, session_id="sess-1")
        store.invalidate_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dependency_failure_is_retried(self, session: AsyncSession) -> None:
        validate = AsyncMock(side_effect=[DependencyError("down"), _issued()])
        ctx = await resolve_session(session, _store(validate), "token", timeout=1.0, retry=_FAST_RETRY)
        assert ctx.profile_id == "id-1"
        assert validate.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_closed(self, session: AsyncSession) -> None:
        store = _store(AsyncMock(side_effect=DependencyError("down")))
        with pytest.raises(DependencyError):
            await resolve_session(session, store, "token", timeout=1.0, retry=_FAST_RETRY, session_id="sess-9")
        store.invalidate_session.assert_awaited_once_with("sess-9", reason="bootstrap_failed")

    @pytest.mark.asyncio
    async def test_timeout_fails_closed(self, session: AsyncSession) -> None:
        async def _hang(token: str) -> IdentitySession:
            await asyncio.sleep(5)
            return _issued()

        store = _store(_hang)
        with pytest.raises(DependencyError) as exc_info:
            await resolve_session(session, store, "token", timeout=0.05, session_id="sess-7")

        assert exc_info.value.context == {"timeout_seconds": 0.05}
        store.invalidate_session.assert_awaited_once_with("sess-7", reason="bootstrap_timeout")

    @pytest.mark.asyncio
    async def test_deactivated_profile_is_rejected(self, session: AsyncSession) -> None:
        await make_profile(session, "id-1")
        await ProfileRepository(session).update_fields("id-1", is_active=False)
        store = _store(AsyncMock(return_value=_issued()))
        with pytest.raises(AuthenticationError):
            await resolve_session(session, store, "token", timeout=1.0)

    @pytest.mark.asyncio
    async def test_revocation_failure_does_not_mask_error(self, session: AsyncSession) -> None:
        store = _store(AsyncMock(side_effect=DependencyError("down")))
        store.invalidate_session = AsyncMock(side_effect=DependencyError("still down"))
        with pytest.raises(DependencyError, match="^down$"):
            await resolve_session(session, store, "token", timeout=1.0, session_id="sess-1")


class TestSelfService:
    @pytest.mark.asyncio
    async def test_update_me(self, session: AsyncSession) -> None:
        ctx = await make_profile(session, "alice")
        updated = await ProfileService(session).update_me(ctx, display_name=" Alice A. ", phone="+1 555")
        assert updated["display_name"] == "Alice A."
        assert updated["phone"] == "+1 555"

        cleared = await ProfileService(session).update_me(ctx, phone="  ")
        assert cleared["phone"] is None
        assert cleared["display_name"] == "Alice A."

    @pytest.mark.asyncio
    async def test_blank_display_name(self, session: AsyncSession) -> None:
        ctx = await make_profile(session, "alice")
        with pytest.raises(ValidationError):
            await ProfileService(session).update_me(ctx, display_name="  ")

    @pytest.mark.asyncio
    async def test_list_tenant_members(self, session: AsyncSession) -> None:
        admin, tenant_id = await make_company(session)
        member = await make_profile(session, "m1", tenant_id=tenant_id)
        await make_profile(session, "indie", role=Role.INDEPENDENT_USER)

        for ctx in (admin, member):
            members = await ProfileService(session).list_tenant_members(ctx)
            assert {m["id"] for m in members} == {"founder", "m1"}

    @pytest.mark.asyncio
    async def test_list_independent_users_admin_only(self, session: AsyncSession) -> None:
        admin, tenant_id = await make_company(session)
        member = await make_profile(session, "m1", tenant_id=tenant_id)
        await make_profile(session, "indie", role=Role.INDEPENDENT_USER)

        listed = await ProfileService(session).list_independent_users(admin)
        assert [p["id"] for p in listed] == ["indie"]
        with pytest.raises(AuthorizationError):
            await ProfileService(session).list_independent_users(member)
