"""
Session persistence interface for destination authentication state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from app.domain.migration import SessionToken


class SessionStore(ABC):
    """
    Keyed persistence for destination session tokens.

    `load` returns None for a missing or unreadable record; callers treat
    that the same as never having logged in.
    """

    @abstractmethod
    def load(self, account_key: str) -> SessionToken | None:
        """
        Return the stored token for `account_key`, if a usable one exists.
        """

    @abstractmethod
    def save(self, account_key: str, token: SessionToken) -> None:
        """
        Replace the stored token for `account_key`.
        """

    @abstractmethod
    def invalidate(self, account_key: str) -> None:
        """
        Drop the stored token for `account_key`. Missing records are ignored.
        """
