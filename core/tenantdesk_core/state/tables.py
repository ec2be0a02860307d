"""SQLAlchemy 2.0 ORM table definitions for the TenantDesk state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for ``create_all`` in dev mode and for
the repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON (TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all TenantDesk tables."""


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TenantTable(Base):
    """Company records.  Shared by every profile that is a member."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_name: Mapped[str] = mapped_column(String(256), nullable=False)
    company_email: Mapped[str] = mapped_column(String(320), nullable=False)
    company_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    subscription_plan: Mapped[str] = mapped_column(String(32), nullable=False, default="standard")
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_tenants_company_name", "company_name"),
        Index("ix_tenants_created_by", "created_by"),
    )


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileTable(Base):
    """One profile per identity; the root of every authorization decision.

    ``id`` is the identity reference issued by the identity store.  A non-null
    ``tenant_id`` is only valid for the company roles.
    """

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="company_member")
    tenant_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True
    )
    subscription_tier: Mapped[str] = mapped_column(String(16), nullable=False, default="standard")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("email", name="uq_profiles_email"),
        CheckConstraint(
            "tenant_id IS NULL OR role IN ('company_admin', 'company_member')",
            name="ck_profiles_tenant_role",
        ),
        CheckConstraint("subscription_tier IN ('standard', 'premium')", name="ck_profiles_tier"),
        Index("ix_profiles_tenant", "tenant_id"),
        Index("ix_profiles_role", "role"),
    )


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


class InvitationTable(Base):
    """Time-bounded, single-use tokens granting tenant membership.

    ``status`` only ever moves from ``pending`` to ``accepted`` or
    ``declined``.  Expiry is derived from ``expires_at`` at read time.
    """

    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    invited_by: Mapped[str] = mapped_column(String(64), nullable=False)
    invited_email: Mapped[str] = mapped_column(String(320), nullable=False)
    invited_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="company_member")
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("token", name="uq_invitations_token"),
        CheckConstraint("status IN ('pending', 'accepted', 'declined')", name="ck_invitations_status"),
        Index("ix_invitations_tenant_email", "tenant_id", "invited_email"),
        Index("ix_invitations_email", "invited_email"),
    )


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class NoteTable(Base):
    """User-owned notes.  Soft-deleted rows keep their data for audit."""

    __tablename__ = "notes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[list[str] | None] = mapped_column(_JsonType, nullable=True)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("length(title) > 0", name="ck_notes_title_nonempty"),
        Index("ix_notes_owner_deleted", "owner_id", "deleted_at"),
    )


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


class ActivityLogTable(Base):
    """Append-only audit trail of privileged actions.

    There is no update or delete path in the repository layer.
    """

    __tablename__ = "activity_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_activity_tenant_created", "tenant_id", "created_at"),
        Index("ix_activity_actor", "actor_id"),
    )


# ---------------------------------------------------------------------------
# Subscription history
# ---------------------------------------------------------------------------


class SubscriptionChangeTable(Base):
    """Append-only record of per-profile tier changes."""

    __tablename__ = "subscription_changes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    profile_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_tier: Mapped[str] = mapped_column(String(16), nullable=False)
    new_tier: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_subscription_changes_tenant_created", "tenant_id", "created_at"),)


# ---------------------------------------------------------------------------
# Local identity store
# ---------------------------------------------------------------------------


class IdentityBase(DeclarativeBase):
    """Declarative base for the local identity store.

    Separate from :class:`Base` so the store can live in its own database.
    """


class IdentityTable(IdentityBase):
    """Credential records for the local identity store adapter.

    Passwords are stored as bcrypt hashes; the plaintext is never persisted.
    """

    __tablename__ = "identities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("email", name="uq_identities_email"),)


class IdentitySessionTable(IdentityBase):
    """Sessions issued by the local identity store, keyed by session id."""

    __tablename__ = "identity_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    identity_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("identities.id", ondelete="CASCADE"), nullable=False
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (Index("ix_identity_sessions_identity", "identity_id"),)
