"""Repository classes providing CRUD access to the TenantDesk state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()``.

Writes that must never breach an invariant under concurrency (note quota,
single pending invitation, invitation resolution) are expressed as single
conditional statements whose affected row count tells the caller whether the
write happened.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, exists, func, insert, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from tenantdesk_core.models.invitation import INVITATION_TTL
from tenantdesk_core.state.database import acquire_advisory_lock
from tenantdesk_core.state.tables import (
    ActivityLogTable,
    IdentitySessionTable,
    IdentityTable,
    InvitationTable,
    NoteTable,
    ProfileTable,
    SubscriptionChangeTable,
    TenantTable,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _typed(table: Any, column: str, value: Any) -> Any:
    """Bind *value* as a literal carrying *column*'s type for INSERT ... SELECT."""
    return literal(value, type_=table.__table__.c[column].type)


# ---------------------------------------------------------------------------
# TenantRepository
# ---------------------------------------------------------------------------


class TenantRepository:
    """CRUD operations for the ``tenants`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        company_name: str,
        company_email: str,
        created_by: str,
        company_phone: str | None = None,
        subscription_plan: str = "standard",
        max_users: int = 10,
    ) -> TenantTable:
        """Insert a new tenant row."""
        row = TenantTable(
            id=_new_id(),
            company_name=company_name.strip(),
            company_email=company_email.lower().strip(),
            company_phone=company_phone,
            created_by=created_by,
            subscription_plan=subscription_plan,
            max_users=max_users,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, tenant_id: str) -> TenantTable | None:
        """Fetch a tenant by primary key."""
        stmt = select(TenantTable).where(TenantTable.id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_name(self) -> list[TenantTable]:
        """Return every tenant ordered by company name."""
        stmt = select(TenantTable).order_by(TenantTable.company_name, TenantTable.created_at)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_unlinked_founders(self) -> list[tuple[TenantTable, ProfileTable]]:
        """Return (tenant, founder) pairs whose founder profile has no tenant.

        Such pairs are left behind when a tenant was created but the
        founder's profile link was never written.
        """
        stmt = (
            select(TenantTable, ProfileTable)
            .join(ProfileTable, ProfileTable.id == TenantTable.created_by)
            .where(ProfileTable.tenant_id.is_(None))
            .order_by(TenantTable.created_at)
        )
        result = await self._session.execute(stmt)
        return [(tenant, profile) for tenant, profile in result.all()]


# ---------------------------------------------------------------------------
# ProfileRepository
# ---------------------------------------------------------------------------


class ProfileRepository:
    """CRUD operations for the ``profiles`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        profile_id: str,
        email: str,
        display_name: str,
        role: str,
        tenant_id: str | None = None,
        subscription_tier: str = "standard",
        phone: str | None = None,
    ) -> ProfileTable:
        """Insert a profile keyed by the identity reference."""
        row = ProfileTable(
            id=profile_id,
            email=email.lower().strip(),
            display_name=display_name.strip() or "User",
            phone=phone,
            role=role,
            tenant_id=tenant_id,
            subscription_tier=subscription_tier,
            is_active=True,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_id(self, profile_id: str, *, for_update: bool = False) -> ProfileTable | None:
        """Fetch a profile by identity reference.

        With ``for_update=True`` the row is locked until the transaction ends
        (PostgreSQL only; SQLite already serialises writers).
        """
        stmt = select(ProfileTable).where(ProfileTable.id == profile_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> ProfileTable | None:
        """Fetch a profile by email address (case-insensitive)."""
        stmt = select(ProfileTable).where(ProfileTable.email == email.lower().strip())
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def link_tenant(self, profile_id: str, tenant_id: str, role: str) -> int:
        """Attach the tenantless profile *profile_id* to *tenant_id* with *role*.

        Returns the number of rows updated: 0 when the profile is missing or
        already belongs to a tenant.
        """
        stmt = (
            update(ProfileTable)
            .where(ProfileTable.id == profile_id, ProfileTable.tenant_id.is_(None))
            .values(tenant_id=tenant_id, role=role)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def update_fields(self, profile_id: str, **values: Any) -> ProfileTable | None:
        """Apply *values* to a profile and return the refreshed row."""
        if values:
            stmt = update(ProfileTable).where(ProfileTable.id == profile_id).values(**values)
            await self._session.execute(stmt)
            await self._session.flush()
        row = await self.get_by_id(profile_id)
        if row is not None:
            await self._session.refresh(row)
        return row

    async def update_last_login(self, profile_id: str) -> None:
        """Record the current time as the profile's last login."""
        stmt = update(ProfileTable).where(ProfileTable.id == profile_id).values(last_login_at=datetime.now(UTC))
        await self._session.execute(stmt)
        await self._session.flush()

    async def list_by_tenant(self, tenant_id: str) -> list[ProfileTable]:
        """Return all profiles in *tenant_id* ordered by display name."""
        stmt = (
            select(ProfileTable)
            .where(ProfileTable.tenant_id == tenant_id)
            .order_by(ProfileTable.display_name, ProfileTable.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_independent(self) -> list[ProfileTable]:
        """Return independent users without a tenant, newest first."""
        stmt = (
            select(ProfileTable)
            .where(
                ProfileTable.role == "independent_user",
                ProfileTable.tenant_id.is_(None),
            )
            .order_by(ProfileTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_tenant(self, tenant_id: str) -> int:
        """Return the number of profiles in *tenant_id*."""
        stmt = select(func.count()).select_from(ProfileTable).where(ProfileTable.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def set_tier(self, profile_id: str, tier: str, *, max_active_notes: int | None = None) -> int:
        """Change a profile's subscription tier.

        When *max_active_notes* is given the update only applies if the
        profile owns at most that many non-deleted notes, so a downgrade can
        never leave the profile above its new ceiling.  Returns the number of
        rows updated.
        """
        stmt = update(ProfileTable).where(ProfileTable.id == profile_id)
        if max_active_notes is not None:
            active = (
                select(func.count())
                .select_from(NoteTable)
                .where(NoteTable.owner_id == profile_id, NoteTable.deleted_at.is_(None))
                .scalar_subquery()
            )
            stmt = stmt.where(active <= max_active_notes)
        result = await self._session.execute(stmt.values(subscription_tier=tier))
        await self._session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# InvitationRepository
# ---------------------------------------------------------------------------


class InvitationRepository:
    """Invitation ledger operations.

    Creation and resolution are conditional statements so that concurrent
    callers cannot create two live invitations for the same address or
    resolve one token twice.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def generate_token() -> str:
        """Return a fresh opaque, URL-safe single-use token."""
        return secrets.token_urlsafe(32)

    def _live_clause(self, tenant_id: str, email: str, now: datetime, table: Any = InvitationTable) -> Any:
        return and_(
            table.tenant_id == tenant_id,
            table.invited_email == email,
            table.status == "pending",
            table.expires_at >= now,
        )

    async def create_if_no_live(
        self,
        *,
        tenant_id: str,
        invited_by: str,
        invited_email: str,
        role: str,
        invited_user_id: str | None = None,
        message: str | None = None,
        now: datetime | None = None,
    ) -> InvitationTable | None:
        """Insert an invitation unless a pending, unexpired one already exists.

        Returns the new row, or ``None`` when a live invitation for
        ``(tenant_id, invited_email)`` blocked the insert.
        """
        now = now or datetime.now(UTC)
        email = invited_email.lower().strip()
        await acquire_advisory_lock(self._session, f"invite_{tenant_id}_{email}")

        invitation_id = _new_id()
        values = {
            "id": invitation_id,
            "tenant_id": tenant_id,
            "invited_by": invited_by,
            "invited_email": email,
            "invited_user_id": invited_user_id,
            "role": role,
            "token": self.generate_token(),
            "status": "pending",
            "message": message,
            "created_at": now,
            "expires_at": now + INVITATION_TTL,
            "responded_at": None,
        }
        existing = aliased(InvitationTable)
        blocker = exists().where(self._live_clause(tenant_id, email, now, existing)).correlate(None)
        source = select(*[_typed(InvitationTable, col, val) for col, val in values.items()]).where(~blocker)
        stmt = insert(InvitationTable.__table__).from_select(list(values), source)
        result = await self._session.execute(stmt)
        await self._session.flush()
        if not (result.rowcount or 0):  # type: ignore[attr-defined]
            return None
        return await self.get_by_id(invitation_id)

    async def get_by_id(self, invitation_id: str) -> InvitationTable | None:
        stmt = select(InvitationTable).where(InvitationTable.id == invitation_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_token(self, token: str) -> InvitationTable | None:
        """Fetch an invitation by its opaque token."""
        stmt = select(InvitationTable).where(InvitationTable.token == token)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def resolve(self, token: str, new_status: str, *, now: datetime | None = None) -> bool:
        """Compare-and-swap ``pending`` to *new_status* for an unexpired token.

        Returns ``True`` for exactly one caller per token; every later or
        concurrent caller observes ``False``.  Loaded rows are not
        synchronised; callers refresh the invitation they hold.
        """
        now = now or datetime.now(UTC)
        stmt = (
            update(InvitationTable)
            .where(
                InvitationTable.token == token,
                InvitationTable.status == "pending",
                InvitationTable.expires_at >= now,
            )
            .values(status=new_status, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def list_for_tenant(self, tenant_id: str) -> list[InvitationTable]:
        """Return every invitation of *tenant_id*, newest first."""
        stmt = (
            select(InvitationTable)
            .where(InvitationTable.tenant_id == tenant_id)
            .order_by(InvitationTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_live_for_email(
        self,
        email: str,
        *,
        now: datetime | None = None,
    ) -> list[tuple[InvitationTable, TenantTable]]:
        """Return pending, unexpired invitations addressed to *email* with their tenant."""
        now = now or datetime.now(UTC)
        stmt = (
            select(InvitationTable, TenantTable)
            .join(TenantTable, TenantTable.id == InvitationTable.tenant_id)
            .where(
                InvitationTable.invited_email == email.lower().strip(),
                InvitationTable.status == "pending",
                InvitationTable.expires_at >= now,
            )
            .order_by(InvitationTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return [(inv, tenant) for inv, tenant in result.all()]

    async def count_live_for_tenant(self, tenant_id: str, *, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        stmt = (
            select(func.count())
            .select_from(InvitationTable)
            .where(
                InvitationTable.tenant_id == tenant_id,
                InvitationTable.status == "pending",
                InvitationTable.expires_at >= now,
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()


# ---------------------------------------------------------------------------
# NoteRepository
# ---------------------------------------------------------------------------


class NoteRepository:
    """CRUD operations for the ``notes`` table scoped to one owner."""

    def __init__(self, session: AsyncSession, *, owner_id: str) -> None:
        self._session = session
        self._owner_id = owner_id

    def _active(self) -> Any:
        return and_(NoteTable.owner_id == self._owner_id, NoteTable.deleted_at.is_(None))

    async def insert_within_limit(
        self,
        *,
        title: str,
        content: str,
        tags: list[str],
        is_favorite: bool,
        limit: int | None,
    ) -> NoteTable | None:
        """Insert a note only while the owner holds fewer than *limit* active notes.

        The count and the insert are one ``INSERT ... SELECT ... WHERE``
        statement, so concurrent creators cannot both pass the check.
        ``limit=None`` inserts unconditionally.  Returns the new row, or
        ``None`` when the ceiling blocked the insert.
        """
        now = datetime.now(UTC)
        note_id = _new_id()
        values = {
            "id": note_id,
            "owner_id": self._owner_id,
            "title": title,
            "content": content,
            "tags": tags,
            "is_favorite": is_favorite,
            "deleted_at": None,
            "created_at": now,
            "updated_at": now,
        }
        source = select(*[_typed(NoteTable, col, val) for col, val in values.items()])
        if limit is not None:
            counted = aliased(NoteTable)
            active = (
                select(func.count())
                .select_from(counted)
                .where(counted.owner_id == self._owner_id, counted.deleted_at.is_(None))
                .correlate(None)
                .scalar_subquery()
            )
            source = source.where(active < limit)
        stmt = insert(NoteTable.__table__).from_select(list(values), source)
        result = await self._session.execute(stmt)
        await self._session.flush()
        if not (result.rowcount or 0):  # type: ignore[attr-defined]
            return None
        return await self.get_by_id(note_id)

    async def get_by_id(self, note_id: str) -> NoteTable | None:
        """Fetch a note by id regardless of owner or soft-delete state."""
        stmt = select(NoteTable).where(NoteTable.id == note_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(self) -> list[NoteTable]:
        """Return the owner's non-deleted notes, most recently updated first."""
        stmt = select(NoteTable).where(self._active()).order_by(NoteTable.updated_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_active(self) -> int:
        stmt = select(func.count()).select_from(NoteTable).where(self._active())
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def count_favorites(self) -> int:
        stmt = select(func.count()).select_from(NoteTable).where(self._active(), NoteTable.is_favorite.is_(True))
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def update(self, note_id: str, **values: Any) -> NoteTable | None:
        """Update a live note owned by this owner.  Returns ``None`` if none matched."""
        stmt = (
            update(NoteTable)
            .where(NoteTable.id == note_id, self._active())
            .values(updated_at=datetime.now(UTC), **values)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        if not (result.rowcount or 0):  # type: ignore[attr-defined]
            return None
        row = await self.get_by_id(note_id)
        if row is not None:
            await self._session.refresh(row)
        return row

    async def soft_delete(self, note_id: str) -> bool:
        """Stamp ``deleted_at`` on a live note.  The row itself is kept."""
        now = datetime.now(UTC)
        stmt = update(NoteTable).where(NoteTable.id == note_id, self._active()).values(deleted_at=now, updated_at=now)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# ActivityRepository
# ---------------------------------------------------------------------------


class ActivityRepository:
    """Append-only access to the ``activity_log`` table.

    Deliberately exposes no update or delete operation.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        *,
        actor_id: str,
        action: str,
        tenant_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ActivityLogTable:
        """Write one activity entry and return it."""
        row = ActivityLogTable(
            id=_new_id(),
            actor_id=actor_id,
            tenant_id=tenant_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            description=description,
            metadata_json=metadata,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_tenant(
        self,
        tenant_id: str,
        *,
        limit: int = 50,
    ) -> list[tuple[ActivityLogTable, ProfileTable | None]]:
        """Return the newest entries for *tenant_id* joined with the actor profile."""
        stmt = (
            select(ActivityLogTable, ProfileTable)
            .outerjoin(ProfileTable, ProfileTable.id == ActivityLogTable.actor_id)
            .where(ActivityLogTable.tenant_id == tenant_id)
            .order_by(ActivityLogTable.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [(entry, actor) for entry, actor in result.all()]


# ---------------------------------------------------------------------------
# SubscriptionChangeRepository
# ---------------------------------------------------------------------------


class SubscriptionChangeRepository:
    """Append-only subscription history."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        *,
        profile_id: str,
        tenant_id: str | None,
        changed_by: str,
        previous_tier: str,
        new_tier: str,
    ) -> SubscriptionChangeTable:
        row = SubscriptionChangeTable(
            id=_new_id(),
            profile_id=profile_id,
            tenant_id=tenant_id,
            changed_by=changed_by,
            previous_tier=previous_tier,
            new_tier=new_tier,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_tenant(
        self,
        tenant_id: str,
        *,
        limit: int = 100,
    ) -> list[tuple[SubscriptionChangeTable, ProfileTable]]:
        """Return the tenant's tier changes, newest first, with the affected profile."""
        stmt = (
            select(SubscriptionChangeTable, ProfileTable)
            .join(ProfileTable, ProfileTable.id == SubscriptionChangeTable.profile_id)
            .where(SubscriptionChangeTable.tenant_id == tenant_id)
            .order_by(SubscriptionChangeTable.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [(change, profile) for change, profile in result.all()]


# ---------------------------------------------------------------------------
# Local identity store
# ---------------------------------------------------------------------------


class IdentityRepository:
    """Credential storage for the local identity store.

    Password hashing uses bcrypt.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _hash_password(plaintext: str) -> str:
        """Hash a plaintext password with bcrypt."""
        import bcrypt

        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def _verify_password(plaintext: str, hashed: str) -> bool:
        """Verify a plaintext password against a bcrypt hash."""
        import bcrypt

        return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))

    async def create(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> IdentityTable:
        row = IdentityTable(
            id=_new_id(),
            email=email.lower().strip(),
            password_hash=self._hash_password(password),
            metadata_json=metadata or {},
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_id(self, identity_id: str) -> IdentityTable | None:
        stmt = select(IdentityTable).where(IdentityTable.id == identity_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> IdentityTable | None:
        stmt = select(IdentityTable).where(IdentityTable.email == email.lower().strip())
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def verify_password(self, email: str, password: str) -> IdentityTable | None:
        """Validate credentials and return the identity if correct.

        Returns ``None`` if the email is not found or the password does not match.
        """
        identity = await self.get_by_email(email)
        if identity is None:
            # Keep timing comparable to the found-user path.
            self._hash_password("dummy-password-for-timing")
            return None
        if not self._verify_password(password, identity.password_hash):
            return None
        return identity


class IdentitySessionRepository:
    """Issued-session records for the local identity store."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, identity_id: str, expires_at: datetime) -> IdentitySessionTable:
        row = IdentitySessionTable(
            id=_new_id(),
            identity_id=identity_id,
            issued_at=datetime.now(UTC),
            expires_at=expires_at,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, session_id: str) -> IdentitySessionTable | None:
        stmt = select(IdentitySessionTable).where(IdentitySessionTable.id == session_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def revoke(self, session_id: str, *, reason: str = "signed_out") -> bool:
        """Mark a session revoked.  Returns ``False`` if it was already revoked or unknown."""
        stmt = (
            update(IdentitySessionTable)
            .where(IdentitySessionTable.id == session_id, IdentitySessionTable.revoked_at.is_(None))
            .values(revoked_at=datetime.now(UTC), revoked_reason=reason)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def is_active(self, session_id: str, *, now: datetime | None = None) -> bool:
        """Return ``True`` if the session exists, is unrevoked, and unexpired."""
        now = now or datetime.now(UTC)
        stmt = select(
            exists().where(
                IdentitySessionTable.id == session_id,
                IdentitySessionTable.revoked_at.is_(None),
                IdentitySessionTable.expires_at > now,
            )
        )
        result = await self._session.execute(stmt)
        return bool(result.scalar_one())
