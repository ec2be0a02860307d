"""Tests for the invitation lifecycle."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from helpers import make_company, make_profile
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenantdesk_core.errors import (
    AlreadyMemberError,
    AlreadyResolvedError,
    AuthorizationError,
    DuplicateInvitationError,
    InvalidTokenError,
    InvitationExpiredError,
    ValidationError,
)
from tenantdesk_core.models import Role
from tenantdesk_core.state.repository import ProfileRepository
from tenantdesk_core.state.tables import InvitationTable

from tenantdesk_api.services.invitation_service import InvitationService
from tenantdesk_api.services.profile_service import context_from_profile


async def _expire(session: AsyncSession, invitation_id: str) -> None:
    stmt = (
        update(InvitationTable)
        .where(InvitationTable.id == invitation_id)
        .values(expires_at=datetime.now(UTC) - timedelta(minutes=1))
    )
    await session.execute(stmt)
    await session.flush()


class TestInvite:
    @pytest.mark.asyncio
    async def test_admin_invites_email(self, session: AsyncSession) -> None:
        admin, tenant_id = await make_company(session)
        inv = await InvitationService(session, admin).invite(email="New@Example.com", message=" welcome ")
        assert inv["tenant_id"] == tenant_id
        assert inv["invited_email"] == "new@example.com"
        assert inv["role"] == "company_member"
        assert inv["status"] == "pending"
        assert inv["message"] == "welcome"
        assert inv["token"]

    @pytest.mark.asyncio
    async def test_links_existing_profile(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        await make_profile(session, "indie", role=Role.INDEPENDENT_USER)
        inv = await InvitationService(session, admin).invite(email="indie@example.com")
        assert inv["invited_user_id"] == "indie"

    @pytest.mark.asyncio
    async def test_member_cannot_invite(self, session: AsyncSession) -> None:
        _, tenant_id = await make_company(session)
        member = await make_profile(session, "m1", tenant_id=tenant_id)
        with pytest.raises(AuthorizationError):
            await InvitationService(session, member).invite(email="x@example.com")

    @pytest.mark.asyncio
    async def test_independent_user_cannot_invite(self, session: AsyncSession) -> None:
        indie = await make_profile(session, "indie", role=Role.INDEPENDENT_USER)
        with pytest.raises(AuthorizationError):
            await InvitationService(session, indie).invite(email="x@example.com")

    @pytest.mark.parametrize("role", ["independent_user", "owner"])
    @pytest.mark.asyncio
    async def test_rejects_ungrantable_roles(self, session: AsyncSession, role: str) -> None:
        admin, _ = await make_company(session)
        with pytest.raises(ValidationError):
            await InvitationService(session, admin).invite(email="x@example.com", role=role)

    @pytest.mark.asyncio
    async def test_can_invite_admins(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        inv = await InvitationService(session, admin).invite(email="x@example.com", role="company_admin")
        assert inv["role"] == "company_admin"

    @pytest.mark.asyncio
    async def test_existing_member_is_refused(self, session: AsyncSession) -> None:
        admin, tenant_id = await make_company(session)
        await make_profile(session, "m1", tenant_id=tenant_id)
        with pytest.raises(AlreadyMemberError):
            await InvitationService(session, admin).invite(email="m1@example.com")

    @pytest.mark.asyncio
    async def test_duplicate_pending_invitation(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        service = InvitationService(session, admin)
        await service.invite(email="x@example.com")
        with pytest.raises(DuplicateInvitationError):
            await service.invite(email="X@example.com")

    @pytest.mark.asyncio
    async def test_reinvite_after_decline(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        first = await InvitationService(session, admin).invite(email="x@example.com")
        await InvitationService(session, invitee).decline(first["token"])
        second = await InvitationService(session, admin).invite(email="x@example.com")
        assert second["id"] != first["id"]

    @pytest.mark.asyncio
    async def test_reinvite_after_expiry(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        first = await InvitationService(session, admin).invite(email="x@example.com")
        await _expire(session, first["id"])
        second = await InvitationService(session, admin).invite(email="x@example.com")
        assert second["status"] == "pending"


class TestRespond:
    @pytest.mark.asyncio
    async def test_accept_joins_tenant_with_invited_role(self, session: AsyncSession) -> None:
        admin, tenant_id = await make_company(session)
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        inv = await InvitationService(session, admin).invite(email="x@example.com", role="company_admin")

        tenant = await InvitationService(session, invitee).accept(inv["token"])

        assert tenant["id"] == tenant_id
        profile = await ProfileRepository(session).get_by_id("x")
        assert profile is not None
        assert profile.tenant_id == tenant_id
        assert profile.role == "company_admin"
        listed = await InvitationService(session, admin).list_for_tenant()
        assert listed[0]["status"] == "accepted"
        assert listed[0]["responded_at"] is not None

    @pytest.mark.asyncio
    async def test_decline_leaves_profile_untouched(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        inv = await InvitationService(session, admin).invite(email="x@example.com")
        await InvitationService(session, invitee).decline(inv["token"])
        profile = await ProfileRepository(session).get_by_id("x")
        assert profile is not None and profile.tenant_id is None
        assert profile.role == "independent_user"

    @pytest.mark.asyncio
    async def test_expired_invitation_reads_expired_and_cannot_be_accepted(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        inv = await InvitationService(session, admin).invite(email="x@example.com")
        await _expire(session, inv["id"])

        listed = await InvitationService(session, admin).list_for_tenant()
        assert listed[0]["status"] == "expired"
        assert await InvitationService(session, invitee).list_mine() == []
        with pytest.raises(InvitationExpiredError):
            await InvitationService(session, invitee).accept(inv["token"])
        with pytest.raises(InvitationExpiredError):
            await InvitationService(session, invitee).decline(inv["token"])

    @pytest.mark.asyncio
    async def test_second_response_is_already_resolved(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        inv = await InvitationService(session, admin).invite(email="x@example.com")
        await InvitationService(session, invitee).decline(inv["token"])
        with pytest.raises(AlreadyResolvedError):
            await InvitationService(session, invitee).decline(inv["token"])
        with pytest.raises(AlreadyResolvedError):
            await InvitationService(session, invitee).accept(inv["token"])

    @pytest.mark.asyncio
    async def test_unknown_token(self, session: AsyncSession) -> None:
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        with pytest.raises(InvalidTokenError):
            await InvitationService(session, invitee).accept("no-such-token")

    @pytest.mark.asyncio
    async def test_other_email_cannot_respond(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        stranger = await make_profile(session, "y", role=Role.INDEPENDENT_USER)
        inv = await InvitationService(session, admin).invite(email="x@example.com")
        with pytest.raises(AuthorizationError):
            await InvitationService(session, stranger).accept(inv["token"])

    @pytest.mark.asyncio
    async def test_member_of_another_tenant_cannot_accept(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session)
        _, other_tenant = await make_company(session, "other-founder", company_name="Globex")
        member = await make_profile(session, "x", tenant_id=other_tenant)
        inv = await InvitationService(session, admin).invite(email="x@example.com")
        with pytest.raises(AlreadyMemberError):
            await InvitationService(session, member).accept(inv["token"])

    @pytest.mark.asyncio
    async def test_stale_context_cannot_join_a_second_company(self, session: AsyncSession) -> None:
        first_admin, first_tenant = await make_company(session)
        second_admin, _ = await make_company(session, "other-founder", company_name="Globex")
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        first = await InvitationService(session, first_admin).invite(email="x@example.com")
        second = await InvitationService(session, second_admin).invite(email="x@example.com")

        await InvitationService(session, invitee).accept(first["token"])
        with pytest.raises(AlreadyMemberError):
            await InvitationService(session, invitee).accept(second["token"])

        session.expire_all()
        profile = await ProfileRepository(session).get_by_id("x")
        assert profile is not None and profile.tenant_id == first_tenant
        listed = await InvitationService(session, second_admin).list_for_tenant()
        assert listed[0]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_concurrent_accepts_of_two_companies_join_one(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as session:
            first_admin, first_tenant = await make_company(session)
            second_admin, second_tenant = await make_company(session, "other-founder", company_name="Globex")
            invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
            tokens = [
                (await InvitationService(session, admin).invite(email="x@example.com"))["token"]
                for admin in (first_admin, second_admin)
            ]
            await session.commit()

        async def attempt(token: str) -> str:
            async with session_factory() as session:
                try:
                    tenant = await InvitationService(session, invitee).accept(token)
                except AlreadyMemberError:
                    await session.rollback()
                    return "already_member"
                await session.commit()
                return tenant["id"]

        results = await asyncio.gather(*(attempt(token) for token in tokens))
        joined = [r for r in results if r != "already_member"]
        assert len(joined) == 1
        assert joined[0] in {first_tenant, second_tenant}

        async with session_factory() as session:
            profile = await ProfileRepository(session).get_by_id("x")
            assert profile is not None and profile.tenant_id == joined[0]
            accepted = [
                inv
                for admin in (first_admin, second_admin)
                for inv in await InvitationService(session, admin).list_for_tenant()
                if inv["status"] == "accepted"
            ]
            assert len(accepted) == 1

    @pytest.mark.asyncio
    async def test_list_mine_includes_company_name(self, session: AsyncSession) -> None:
        admin, _ = await make_company(session, company_name="Acme Inc")
        invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
        await InvitationService(session, admin).invite(email="x@example.com")
        mine = await InvitationService(session, invitee).list_mine()
        assert len(mine) == 1
        assert mine[0]["company_name"] == "Acme Inc"

    @pytest.mark.asyncio
    async def test_concurrent_accept_has_one_winner(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as session:
            admin, tenant_id = await make_company(session)
            invitee = await make_profile(session, "x", role=Role.INDEPENDENT_USER)
            token = (await InvitationService(session, admin).invite(email="x@example.com"))["token"]
            await session.commit()

        async def attempt() -> str:
            async with session_factory() as session:
                try:
                    await InvitationService(session, invitee).accept(token)
                except AlreadyResolvedError:
                    await session.rollback()
                    return "already_resolved"
                await session.commit()
                return "accepted"

        results = await asyncio.gather(attempt(), attempt())
        assert sorted(results) == ["accepted", "already_resolved"]

        async with session_factory() as session:
            profile = await ProfileRepository(session).get_by_id("x")
            assert profile is not None and profile.tenant_id == tenant_id


class TestAcmeScenario:
    @pytest.mark.asyncio
    async def test_founder_invites_independent_user_who_accepts(self, session: AsyncSession) -> None:
        admin, tenant_id = await make_company(session, "alice", company_name="Acme")
        assert admin.role is Role.COMPANY_ADMIN
        bob = await make_profile(session, "bob", role=Role.INDEPENDENT_USER)

        inv = await InvitationService(session, admin).invite(email="bob@example.com")
        await InvitationService(session, bob).accept(inv["token"])

        bob_profile = await ProfileRepository(session).get_by_id("bob")
        assert bob_profile is not None
        bob_ctx = context_from_profile(bob_profile)
        assert bob_ctx.tenant_id == tenant_id
        assert bob_ctx.role is Role.COMPANY_MEMBER
        members = await ProfileRepository(session).list_by_tenant(tenant_id)
        assert {p.id for p in members} == {"alice", "bob"}
