"""Typed failure taxonomy shared by the service layer and the HTTP surface.

Every failure raised by a TenantDesk operation derives from
:class:`TenantDeskError` and carries a stable ``code`` plus the HTTP status
the API layer maps it to.  Callers branch on the class, never on message text.

Hierarchy::

    TenantDeskError
    ├── ValidationError            400  malformed, user-correctable input
    ├── AuthenticationError        401  missing / invalid / revoked session
    ├── AuthorizationError         403  actor lacks role or tenant membership
    ├── NotFoundError              404
    │   └── InvalidTokenError           no invitation matches the token
    ├── ConflictError              409
    │   ├── DuplicateInvitationError
    │   ├── AlreadyMemberError
    │   ├── AlreadyResolvedError
    │   ├── InvitationExpiredError 410
    │   └── QuotaExceededError
    ├── DependencyError            503  identity store / storage unavailable
    └── ConsistencyError           500  multi-step write left an indeterminate outcome
"""

from __future__ import annotations

from typing import Any


class TenantDeskError(Exception):
    """Base class for all typed service failures."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Render the error as the JSON body returned to API callers."""
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.context:
            body["context"] = self.context
        return body


class ValidationError(TenantDeskError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(TenantDeskError):
    """The request carries no usable session; re-authentication is required."""

    status_code = 401
    code = "authentication_required"


class AuthorizationError(TenantDeskError):
    status_code = 403
    code = "forbidden"


class NotFoundError(TenantDeskError):
    status_code = 404
    code = "not_found"


class InvalidTokenError(NotFoundError):
    code = "invalid_token"


class ConflictError(TenantDeskError):
    status_code = 409
    code = "conflict"


class DuplicateInvitationError(ConflictError):
    code = "duplicate_invitation"


class AlreadyMemberError(ConflictError):
    code = "already_member"


class AlreadyResolvedError(ConflictError):
    code = "already_resolved"


class InvitationExpiredError(ConflictError):
    status_code = 410
    code = "invitation_expired"


class QuotaExceededError(ConflictError):
    code = "quota_exceeded"


class DependencyError(TenantDeskError):
    """An upstream dependency failed; safe for the caller to retry."""

    status_code = 503
    code = "dependency_unavailable"
    retryable = True


class ConsistencyError(TenantDeskError):
    """A multi-step operation may have partially completed.

    The outcome is *indeterminate*: neither success nor failure may be
    assumed.  Raisers log these at ERROR with an ``operation`` key so a
    reconciliation pass can find them.
    """

    status_code = 500
    code = "indeterminate_outcome"

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["outcome"] = "indeterminate"
        return body
