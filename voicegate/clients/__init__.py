"""Client modules for external service integrations."""

from voicegate.clients.base import (
    AuditSink,
    BiometricError,
    BiometricMatcher,
    CallProvider,
    CollaboratorError,
    NotificationChannel,
    ProfileRepository,
    ProviderUnavailable,
    SessionStore,
    StoreUnavailable,
    TemplateGenerator
)

from voicegate.clients.memory import (
    InMemoryAuditSink,
    InMemoryProfileRepository,
    InMemorySessionStore
)

from voicegate.clients.redis_store import RedisSessionStore

from voicegate.clients.supabase_client import (
    SupabaseClient,
    SupabaseProfileRepository,
    SupabaseAuditSink,
    DatabaseManager
)

from voicegate.clients.twilio_client import TwilioClient

__all__ = [
    "AuditSink",
    "BiometricError",
    "BiometricMatcher",
    "CallProvider",
    "CollaboratorError",
    "NotificationChannel",
    "ProfileRepository",
    "ProviderUnavailable",
    "SessionStore",
    "StoreUnavailable",
    "TemplateGenerator",
    "InMemoryAuditSink",
    "InMemoryProfileRepository",
    "InMemorySessionStore",
    "RedisSessionStore",
    "SupabaseClient",
    "SupabaseProfileRepository",
    "SupabaseAuditSink",
    "DatabaseManager",
    "TwilioClient"
]
