"""
Collaborator contracts consumed by the verification orchestrator.

Implementations live beside this module (Redis, Supabase, Twilio, in-memory)
and in ``voicegate.services.biometric_matcher``. Every implementation must
translate its library's failures into ``ProviderUnavailable`` or
``StoreUnavailable`` so the orchestrator only ever handles these two.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from voicegate.models.internal_models import AuditEvent, IdentityProfile


class CollaboratorError(Exception):
    """Base exception for external collaborator failures."""
    pass


class ProviderUnavailable(CollaboratorError):
    """Raised when the call provider or notification channel cannot be reached."""
    pass


class StoreUnavailable(CollaboratorError):
    """Raised when the session store, profile store or audit sink fails."""
    pass


class BiometricError(CollaboratorError):
    """Raised when template generation or matching cannot produce a result."""
    pass


class SessionStore(ABC):
    """Short-lived key-value state with expiry. Values must be JSON-serialisable."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def pop(self, key: str) -> Optional[Any]:
        """Atomically read and delete a key."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment an integer counter and (re)arm its expiry."""
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Compare-and-set: store only if the key is absent. Returns True if stored."""
        ...

    async def health_check(self) -> bool:
        return True


class ProfileRepository(ABC):
    """Durable identity profile store."""

    @abstractmethod
    async def find_by_phone_number(self, phone_number: str) -> Optional[IdentityProfile]:
        ...

    @abstractmethod
    async def save(self, profile: IdentityProfile) -> None:
        """Upsert by unique phone number."""
        ...

    async def health_check(self) -> bool:
        return True


class TemplateGenerator(ABC):
    """Derives an opaque voice template from a recorded audio reference."""

    @abstractmethod
    async def generate(self, audio_reference: str) -> bytes:
        ...


class BiometricMatcher(ABC):
    """Scores a recording against a stored template; confidence in [0, 1]."""

    @abstractmethod
    async def match(self, audio_reference: str, stored_template: bytes) -> float:
        ...


class AuditSink(ABC):
    """Append-only record of workflow outcomes."""

    @abstractmethod
    async def append(self, event: AuditEvent) -> None:
        ...


class CallProvider(ABC):
    """Places outbound recorded calls driven by a remote voice script."""

    @abstractmethod
    async def place_call(
        self,
        destination: str,
        origin_number: str,
        script_url: str,
        record: bool = True,
        status_callback: Optional[str] = None
    ) -> str:
        """Place a call and return the provider's correlation id."""
        ...


class NotificationChannel(ABC):
    """Out-of-band text notifications."""

    @abstractmethod
    async def send(self, phone_number: str, message: str) -> None:
        ...
