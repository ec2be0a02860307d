"""Activity log vocabulary."""

from __future__ import annotations

from enum import Enum


class ActivityVerb(str, Enum):
    """Action verbs recorded in the activity log."""

    LOGIN = "login"
    LOGOUT = "logout"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VIEW = "view"
    EXPORT = "export"


class ResourceType(str, Enum):
    """Resource kinds referenced by activity entries."""

    TENANT = "tenant"
    PROFILE = "profile"
    INVITATION = "invitation"
    NOTE = "note"
    SUBSCRIPTION = "subscription"
    DASHBOARD = "dashboard"
