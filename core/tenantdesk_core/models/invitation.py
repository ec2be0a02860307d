"""Invitation statuses and read-time expiry derivation.

Expiry is never written: a pending invitation whose ``expires_at`` has passed
is reported as ``expired`` by every read path, while its stored status may
still say ``pending``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum

# Fixed lifetime of an invitation from creation.
INVITATION_TTL = timedelta(days=7)


class InvitationStatus(str, Enum):
    """Lifecycle states of an invitation."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (InvitationStatus.ACCEPTED, InvitationStatus.DECLINED, InvitationStatus.EXPIRED)


def _as_aware(value: datetime) -> datetime:
    # SQLite returns naive datetimes; all stored timestamps are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_expired(expires_at: datetime, *, now: datetime | None = None) -> bool:
    """Return ``True`` once *now* is strictly past *expires_at*."""
    now = now or datetime.now(UTC)
    return _as_aware(now) > _as_aware(expires_at)


def effective_status(
    stored_status: str,
    expires_at: datetime,
    *,
    now: datetime | None = None,
) -> InvitationStatus:
    """Compute the status callers must observe.

    Accepted and declined are terminal and reported as stored.  Anything else
    past its expiry is ``expired``.
    """
    status = InvitationStatus(stored_status)
    if status in (InvitationStatus.ACCEPTED, InvitationStatus.DECLINED):
        return status
    if is_expired(expires_at, now=now):
        return InvitationStatus.EXPIRED
    return status
