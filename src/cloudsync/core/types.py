"""Shared types for cloudsync.

This module defines enums used by the engine, its middlewares and the
record store client.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Orchestration phase of a sync engine.

    Only one LOADING phase runs at a time; that is enforced by the
    engine's task serializer, not by this value.
    """

    IDLE = "idle"
    LOADING = "loading"


class ApplicationState(str, Enum):
    """Foreground state of the host application."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class SavePolicy(str, Enum):
    """How the record store treats a save against a changed record."""

    IF_SERVER_RECORD_UNCHANGED = "if_server_record_unchanged"
    CHANGED_KEYS = "changed_keys"
    ALL_KEYS = "all_keys"


class AccountStatus(str, Enum):
    """Status of the remote account backing the container."""

    AVAILABLE = "available"
    NO_ACCOUNT = "no_account"
    RESTRICTED = "restricted"
    COULD_NOT_DETERMINE = "could_not_determine"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"

    @property
    def description(self) -> str:
        return _ACCOUNT_DESCRIPTIONS[self][0]

    @property
    def detailed_description(self) -> str:
        return _ACCOUNT_DESCRIPTIONS[self][1]


_ACCOUNT_DESCRIPTIONS: dict[AccountStatus, tuple[str, str]] = {
    AccountStatus.AVAILABLE: (
        "Available",
        "Account is available and ready to use",
    ),
    AccountStatus.NO_ACCOUNT: (
        "No Account",
        "No account found. Please sign in to use sync features",
    ),
    AccountStatus.RESTRICTED: (
        "Restricted",
        "Account access is restricted. Please check your settings",
    ),
    AccountStatus.COULD_NOT_DETERMINE: (
        "Could Not Determine",
        "Could not determine account status. Please try again",
    ),
    AccountStatus.TEMPORARILY_UNAVAILABLE: (
        "Temporarily Unavailable",
        "Account is temporarily unavailable. Please try again later",
    ),
}
