"""
Per-identity verification failure counts and lockout state.

Both live in the session store so that concurrent completions for the same
phone number on different workers see one counter. The counter expires
passively after the lockout TTL; a success resets it.
"""

import logging
from typing import Tuple

from voicegate.clients.base import SessionStore
from voicegate.utils.privacy import mask_phone

logger = logging.getLogger(__name__)


class AttemptLedger:
    """
    Tracks consecutive verification failures per phone number.

    Lockout triggers exactly when the failure count reaches the threshold.
    There is no operation to clear a lockout; it lapses with its TTL.
    """

    def __init__(self, store: SessionStore, threshold: int = 3, lockout_ttl_seconds: int = 3600):
        if threshold < 1:
            raise ValueError(f"Lockout threshold must be at least 1, got {threshold}")
        self.store = store
        self.threshold = threshold
        self.lockout_ttl_seconds = lockout_ttl_seconds

    @staticmethod
    def _attempts_key(phone_number: str) -> str:
        return f"attempts:{phone_number}"

    @staticmethod
    def _lockout_key(phone_number: str) -> str:
        return f"blocked:{phone_number}"

    async def record_failure(self, phone_number: str) -> Tuple[int, bool]:
        """
        Count one failed verification.

        Returns:
            Tuple of (new_failure_count, lockout_triggered)
        """
        count = await self.store.incr(self._attempts_key(phone_number), self.lockout_ttl_seconds)
        triggered = count == self.threshold
        logger.info(f"Recorded failure {count}/{self.threshold} for {mask_phone(phone_number)}")
        return count, triggered

    async def record_success(self, phone_number: str) -> None:
        await self.store.delete(self._attempts_key(phone_number))
        logger.debug(f"Reset failure count for {mask_phone(phone_number)}")

    async def failure_count(self, phone_number: str) -> int:
        value = await self.store.get(self._attempts_key(phone_number))
        return int(value) if value is not None else 0

    async def lock(self, phone_number: str) -> bool:
        """Set the lockout record. Returns False if one was already active."""
        created = await self.store.set_if_absent(
            self._lockout_key(phone_number), True, self.lockout_ttl_seconds
        )
        if created:
            logger.warning(f"Lockout set for {mask_phone(phone_number)} ({self.lockout_ttl_seconds}s)")
        return created

    async def is_locked(self, phone_number: str) -> bool:
        return bool(await self.store.get(self._lockout_key(phone_number)))
