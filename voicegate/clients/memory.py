"""
In-memory collaborators for local development and tests.

Selected with ``STORE_BACKEND=memory``. State lives only in the process and
is lost on restart. Expired keys are dropped when read and swept on every
write.
"""

import asyncio
import copy
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from voicegate.clients.base import AuditSink, ProfileRepository, SessionStore
from voicegate.models.internal_models import AuditEvent, IdentityProfile

logger = logging.getLogger(__name__)


class InMemorySessionStore(SessionStore):
    """
    Dict-backed session store with per-key expiry.

    All operations take a single ``asyncio.Lock`` so increments and
    compare-and-set are atomic with respect to each other.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return raw

    def _prune(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]

    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            self._prune()
            self._data[key] = (json.dumps(value), self._clock() + ttl_seconds)

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def pop(self, key: str) -> Optional[Any]:
        async with self._lock:
            raw = self._live(key)
            self._data.pop(key, None)
        return json.loads(raw) if raw is not None else None

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            self._prune()
            raw = self._live(key)
            value = (int(json.loads(raw)) if raw is not None else 0) + 1
            self._data[key] = (json.dumps(value), self._clock() + ttl_seconds)
        return value

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        async with self._lock:
            self._prune()
            if self._live(key) is not None:
                return False
            self._data[key] = (json.dumps(value), self._clock() + ttl_seconds)
        return True


class InMemoryProfileRepository(ProfileRepository):
    """Profiles keyed by phone number."""

    def __init__(self):
        self._profiles: Dict[str, IdentityProfile] = {}

    async def find_by_phone_number(self, phone_number: str) -> Optional[IdentityProfile]:
        profile = self._profiles.get(phone_number)
        return copy.deepcopy(profile) if profile else None

    async def save(self, profile: IdentityProfile) -> None:
        self._profiles[profile.phone_number] = copy.deepcopy(profile)
        logger.debug(f"Saved profile {profile.user_id} in memory")

    def __len__(self) -> int:
        return len(self._profiles)


class InMemoryAuditSink(AuditSink):
    """Keeps audit events in insertion order."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def append(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [event.action.value for event in self.events]
