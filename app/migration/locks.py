"""
Per-account mutual exclusion for session access and authentication.
"""

from __future__ import annotations

import asyncio


class AccountLocks:
    """
    Lazily created asyncio locks keyed by destination account.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_account(self, account_key: str) -> asyncio.Lock:
        lock = self._locks.get(account_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_key] = lock
        return lock
