"""Identity store interface and the bundled local adapter.

The authorization core only depends on :class:`IdentityStore`.  The
:class:`LocalIdentityStore` adapter keeps credentials (bcrypt hashes) and
issued sessions in its own database.  Session tokens are JWTs (HS256 by
default) carrying the identity as ``sub``, the session id as ``sid`` and
the expiry as ``exp``.

Signature and expiry are checked without touching storage; revocation is
checked against the ``identity_sessions`` table.  Storage failures surface as
:class:`~tenantdesk_core.errors.DependencyError` so callers can retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenantdesk_core.errors import AuthenticationError, ConflictError, DependencyError
from tenantdesk_core.state.repository import IdentityRepository, IdentitySessionRepository

from tenantdesk_api.services.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """An authenticated principal as known to the identity store."""

    id: str
    email: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        raw = self.metadata.get("display_name") or self.metadata.get("full_name") or ""
        return str(raw).strip() or "User"


@dataclass(frozen=True)
class IdentitySession:
    """A live session: who is signed in, until when, and the bearer token."""

    session_id: str
    identity: Identity
    expires_at: datetime
    token: str = ""


@dataclass(frozen=True)
class TokenClaims:
    """Fields carried inside a verified session token."""

    session_id: str
    identity_id: str
    expires_at: datetime


class IdentityStore(Protocol):
    """Operations the service consumes from an identity provider."""

    async def register(self, email: str, password: str, metadata: dict[str, Any]) -> Identity: ...

    async def authenticate(self, email: str, password: str) -> IdentitySession: ...

    async def validate(self, token: str) -> IdentitySession: ...

    async def invalidate_session(self, session_id: str, *, reason: str = "signed_out") -> None: ...


# ---------------------------------------------------------------------------
# Token signing
# ---------------------------------------------------------------------------


class SessionTokenSigner:
    """Issue and verify JWT session tokens."""

    def __init__(self, secret: str, *, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("Session signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm

    def issue(self, session_id: str, identity_id: str, expires_at: datetime) -> str:
        claims = {
            "sub": identity_id,
            "sid": session_id,
            "iat": datetime.now(UTC),
            "exp": expires_at,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Return the token's claims.

        Raises :class:`AuthenticationError` for malformed, forged or
        expired tokens.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require_exp": True, "require_sub": True},
            )
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Session expired") from exc
        except JWTError as exc:
            raise AuthenticationError("Invalid session token") from exc

        session_id = payload.get("sid")
        if not isinstance(session_id, str) or not session_id:
            raise AuthenticationError("Invalid session token")
        return TokenClaims(
            session_id=session_id,
            identity_id=str(payload["sub"]),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
        )


# ---------------------------------------------------------------------------
# Local adapter
# ---------------------------------------------------------------------------


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class LocalIdentityStore:
    """Identity store backed by its own SQLAlchemy engine.

    Each operation runs in a short transaction of its own, independent of
    the caller's request transaction.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        secret: str,
        algorithm: str = "HS256",
        session_ttl_seconds: int = 3600 * 8,
        event_bus: EventBus | None = None,
    ) -> None:
        self._engine = engine
        self._factory = async_sessionmaker(engine, expire_on_commit=False)
        self._signer = SessionTokenSigner(secret, algorithm=algorithm)
        self._ttl = timedelta(seconds=session_ttl_seconds)
        self._bus = event_bus

    @property
    def signer(self) -> SessionTokenSigner:
        return self._signer

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def _run(self, operation: str, fn: Any) -> Any:
        session: AsyncSession = self._factory()
        try:
            result = await fn(session)
            await session.commit()
            return result
        except SQLAlchemyError as exc:
            await session.rollback()
            if isinstance(exc, IntegrityError):
                raise
            logger.warning("Identity store %s failed: %s", operation, exc)
            raise DependencyError(f"Identity store unavailable during {operation}") from exc
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def register(self, email: str, password: str, metadata: dict[str, Any]) -> Identity:
        """Create a credential record.  Fails with ConflictError on a taken email."""

        async def _register(session: AsyncSession) -> Identity:
            repo = IdentityRepository(session)
            if await repo.get_by_email(email) is not None:
                raise ConflictError("An account with this email already exists", email=email.lower())
            row = await repo.create(email, password, metadata)
            return Identity(id=row.id, email=row.email, metadata=dict(row.metadata_json or {}))

        try:
            identity = await self._run("register", _register)
        except IntegrityError as exc:
            raise ConflictError("An account with this email already exists", email=email.lower()) from exc
        logger.info("Registered identity %s", identity.id)
        return identity

    async def authenticate(self, email: str, password: str) -> IdentitySession:
        """Verify credentials and issue a new session."""

        async def _authenticate(session: AsyncSession) -> IdentitySession:
            identity_row = await IdentityRepository(session).verify_password(email, password)
            if identity_row is None:
                raise AuthenticationError("Invalid email or password")
            expires_at = datetime.now(UTC) + self._ttl
            session_row = await IdentitySessionRepository(session).create(identity_row.id, expires_at)
            identity = Identity(
                id=identity_row.id,
                email=identity_row.email,
                metadata=dict(identity_row.metadata_json or {}),
            )
            return IdentitySession(
                session_id=session_row.id,
                identity=identity,
                expires_at=expires_at,
                token=self._signer.issue(session_row.id, identity_row.id, expires_at),
            )

        issued: IdentitySession = await self._run("authenticate", _authenticate)
        if self._bus is not None:
            await self._bus.emit(
                EventType.SIGNED_IN,
                data={"identity_id": issued.identity.id, "session_id": issued.session_id},
            )
        return issued

    async def validate(self, token: str) -> IdentitySession:
        """Resolve a bearer token into its live session."""
        claims = self._signer.verify(token)

        async def _validate(session: AsyncSession) -> IdentitySession:
            session_row = await IdentitySessionRepository(session).get(claims.session_id)
            if (
                session_row is None
                or session_row.identity_id != claims.identity_id
                or session_row.revoked_at is not None
                or _as_aware(session_row.expires_at) <= datetime.now(UTC)
            ):
                raise AuthenticationError("Session is no longer valid")
            identity_row = await IdentityRepository(session).get_by_id(claims.identity_id)
            if identity_row is None:
                raise AuthenticationError("Identity no longer exists")
            return IdentitySession(
                session_id=session_row.id,
                identity=Identity(
                    id=identity_row.id,
                    email=identity_row.email,
                    metadata=dict(identity_row.metadata_json or {}),
                ),
                expires_at=_as_aware(session_row.expires_at),
                token=token,
            )

        return await self._run("validate", _validate)

    async def invalidate_session(self, session_id: str, *, reason: str = "signed_out") -> None:
        """Revoke a session.  Revoking an unknown or revoked session is a no-op."""

        async def _revoke(session: AsyncSession) -> bool:
            return await IdentitySessionRepository(session).revoke(session_id, reason=reason)

        revoked = await self._run("invalidate_session", _revoke)
        if revoked and self._bus is not None:
            await self._bus.emit(EventType.SIGNED_OUT, data={"session_id": session_id, "reason": reason})
