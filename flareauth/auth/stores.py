"""
FlareAuth - In-Memory Store

Reference implementation of the ``AuthStore`` protocol for development and
testing. Records are copied on the way in and out so callers never share
mutable state with the store.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Optional

from .challenges import Challenge
from .core import DeviceContext, User


class MemoryAuthStore:
    """In-memory users, device contexts and challenges."""

    def __init__(self):
        self._users: dict[str, User] = {}
        self._by_email: dict[str, str] = {}
        self._by_phone: dict[str, str] = {}
        self._devices: dict[str, DeviceContext] = {}
        self._challenges: dict[str, Challenge] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return dataclasses.replace(user) if user else None

    async def get_user_by_email(self, email: str) -> User | None:
        user_id = self._by_email.get(email)
        return await self.get_user(user_id) if user_id else None

    async def get_user_by_phone(self, phone: str) -> User | None:
        user_id = self._by_phone.get(phone)
        return await self.get_user(user_id) if user_id else None

    async def create_user(self, user: User) -> User | None:
        async with self._lock:
            if user.id in self._users or user.email in self._by_email:
                return None
            if user.phone and user.phone in self._by_phone:
                return None

            self._users[user.id] = dataclasses.replace(user)
            self._by_email[user.email] = user.id
            if user.phone:
                self._by_phone[user.phone] = user.id
            return dataclasses.replace(user)

    async def update_user(self, user: User) -> User | None:
        async with self._lock:
            old = self._users.get(user.id)
            if old is None:
                return None

            # Re-index identifiers
            if old.email != user.email:
                self._by_email.pop(old.email, None)
                self._by_email[user.email] = user.id
            if old.phone != user.phone:
                if old.phone:
                    self._by_phone.pop(old.phone, None)
                if user.phone:
                    self._by_phone[user.phone] = user.id

            self._users[user.id] = dataclasses.replace(user)
            return dataclasses.replace(user)

    # ------------------------------------------------------------------
    # Device contexts
    # ------------------------------------------------------------------

    async def get_device_context(self, user_id: str) -> DeviceContext | None:
        return self._devices.get(user_id)

    async def upsert_device_context(self, context: DeviceContext) -> None:
        self._devices[context.user_id] = context

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    async def get_challenge(self, user_id: str) -> Challenge | None:
        challenge = self._challenges.get(user_id)
        return dataclasses.replace(challenge) if challenge else None

    async def upsert_challenge(
        self, challenge: Challenge, expected_version: Optional[int] = None
    ) -> bool:
        async with self._lock:
            if expected_version is not None:
                current = self._challenges.get(challenge.user_id)
                if (
                    current is None
                    or current.challenge_id != challenge.challenge_id
                    or current.version != expected_version
                ):
                    return False
            self._challenges[challenge.user_id] = dataclasses.replace(challenge, code=None)
            return True

    async def delete_challenge(self, user_id: str) -> bool:
        async with self._lock:
            return self._challenges.pop(user_id, None) is not None
