"""Supabase client for identity profiles and the audit trail."""

import asyncio
import base64
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from supabase import create_client, Client
from postgrest.exceptions import APIError

from voicegate.clients.base import AuditSink, ProfileRepository, StoreUnavailable
from voicegate.config import settings
from voicegate.models.internal_models import AuditEvent, IdentityProfile, SecurityTier
from voicegate.utils.privacy import mask_phone

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


class SupabaseClient:
    """Client for Supabase database operations."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        """Initialize Supabase client with configuration."""
        self._client: Optional[Client] = None
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_anon_key

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            if not self._url or not self._key:
                raise StoreUnavailable("SUPABASE_URL and SUPABASE_ANON_KEY must be configured")
            self._client = create_client(self._url, self._key)
        return self._client

    async def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            query = self.client.table("voice_profiles").select("count", count="exact").limit(0)
            await asyncio.to_thread(query.execute)
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


class SupabaseProfileRepository(ProfileRepository):
    """Identity profiles in the ``voice_profiles`` table, unique on phone number."""

    table = "voice_profiles"

    def __init__(self, supabase_client: SupabaseClient):
        """Initialize repository with Supabase client."""
        self.client = supabase_client

    @staticmethod
    def to_row(profile: IdentityProfile) -> Dict[str, Any]:
        return {
            "user_id": profile.user_id,
            "phone_number": profile.phone_number,
            "voice_print": base64.b64encode(profile.voice_template).decode("ascii"),
            "enrollment_date": profile.enrolled_at.isoformat(),
            "last_verification": profile.last_verification.isoformat() if profile.last_verification else None,
            "verification_attempts": profile.failure_count,
            "security_level": profile.security_tier.value,
            "metadata": profile.metadata,
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> IdentityProfile:
        return IdentityProfile(
            user_id=row["user_id"],
            phone_number=row["phone_number"],
            voice_template=base64.b64decode(row["voice_print"]),
            enrolled_at=_parse_timestamp(row["enrollment_date"]),
            last_verification=_parse_timestamp(row.get("last_verification")),
            failure_count=row.get("verification_attempts") or 0,
            security_tier=SecurityTier(row.get("security_level") or SecurityTier.MEDIUM.value),
            metadata=row.get("metadata") or {},
        )

    async def find_by_phone_number(self, phone_number: str) -> Optional[IdentityProfile]:
        """Retrieve a profile by phone number."""
        try:
            query = self.client.client.table(self.table).select("*").eq("phone_number", phone_number)
            result = await asyncio.to_thread(query.execute)
        except APIError as e:
            logger.error(f"Database error retrieving profile for {mask_phone(phone_number)}: {e}")
            raise StoreUnavailable(f"Failed to retrieve profile: {e}")
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.error(f"Unexpected error retrieving profile for {mask_phone(phone_number)}: {e}")
            raise StoreUnavailable(f"Failed to retrieve profile: {e}")

        if not result.data:
            return None
        return self.from_row(result.data[0])

    async def save(self, profile: IdentityProfile) -> None:
        """Create or update a profile (upsert on phone number)."""
        try:
            query = self.client.client.table(self.table).upsert(
                self.to_row(profile),
                on_conflict="phone_number"
            )
            result = await asyncio.to_thread(query.execute)
        except APIError as e:
            logger.error(f"Database error saving profile {profile.user_id}: {e}")
            raise StoreUnavailable(f"Failed to save profile: {e}")
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.error(f"Unexpected error saving profile {profile.user_id}: {e}")
            raise StoreUnavailable(f"Failed to save profile: {e}")

        if not result.data:
            raise StoreUnavailable(f"Upsert of profile {profile.user_id} returned no rows")

        logger.info(f"Successfully upserted profile {profile.user_id}")

    async def health_check(self) -> bool:
        return await self.client.health_check()


class SupabaseAuditSink(AuditSink):
    """Append-only audit trail in the ``audit_logs`` table."""

    table = "audit_logs"

    def __init__(self, supabase_client: SupabaseClient, max_retries: int = 3, base_delay: float = 0.5):
        self.client = supabase_client
        self.max_retries = max_retries
        self.base_delay = base_delay

    @staticmethod
    def to_row(event: AuditEvent) -> Dict[str, Any]:
        return {
            "session_id": event.session_id,
            "phone_number": event.phone_number,
            "action": event.action.value,
            "result": event.result,
            "risk_score": event.risk_score,
            "ip_address": event.ip_address,
            "timestamp": event.timestamp.isoformat(),
        }

    async def append(self, event: AuditEvent) -> None:
        """Insert an audit event, retrying with exponential backoff before giving up."""
        last_exception = None

        for attempt in range(self.max_retries):
            try:
                return await self._insert(event)
            except StoreUnavailable as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(f"Audit write failed (attempt {attempt + 1}/{self.max_retries}), retrying in {delay}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Audit write failed after {self.max_retries} attempts: {e}")

        raise last_exception

    async def _insert(self, event: AuditEvent) -> None:
        try:
            query = self.client.client.table(self.table).insert(self.to_row(event))
            result = await asyncio.to_thread(query.execute)
        except APIError as e:
            logger.error(f"Database error writing audit event {event.action.value}: {e}")
            raise StoreUnavailable(f"Failed to write audit event: {e}")
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.error(f"Unexpected error writing audit event {event.action.value}: {e}")
            raise StoreUnavailable(f"Failed to write audit event: {e}")

        if not result.data:
            raise StoreUnavailable(f"Insert of audit event {event.action.value} returned no rows")

        logger.debug(f"Audit event {event.action.value} recorded for session {event.session_id}")


class DatabaseManager:
    """High-level database manager that coordinates repositories."""

    def __init__(self, supabase_client: Optional[SupabaseClient] = None):
        """Initialize database manager with client and repositories."""
        self.client = supabase_client or SupabaseClient()
        self.profiles = SupabaseProfileRepository(self.client)
        self.audit = SupabaseAuditSink(self.client)

