"""Wiring of collaborators into the orchestrator."""

import logging
from typing import Optional

from voicegate.clients.memory import InMemoryAuditSink, InMemoryProfileRepository, InMemorySessionStore
from voicegate.clients.redis_store import RedisSessionStore
from voicegate.clients.supabase_client import DatabaseManager, SupabaseClient
from voicegate.clients.twilio_client import TwilioClient
from voicegate.config import Settings, settings
from voicegate.services.attempt_ledger import AttemptLedger
from voicegate.services.orchestrator import VerificationOrchestrator
from voicegate.services.risk_scorer import RiskScorer
from voicegate.voice_script import VoiceScript

logger = logging.getLogger(__name__)


def build_orchestrator(config: Settings = settings) -> VerificationOrchestrator:
    """
    Build an orchestrator for the configured backend.

    ``memory`` keeps sessions, profiles and audit events in process;
    ``redis`` uses Redis for short-lived state and Supabase for profiles and
    the audit trail. Calls, texts and matching always go through Twilio and
    the speaker-embedding matcher.
    """
    # Imported here so torch and speechbrain load only when a real orchestrator is built.
    from voicegate.services.biometric_matcher import SpeakerEmbeddingMatcher

    if config.store_backend == "memory":
        sessions = InMemorySessionStore()
        profiles = InMemoryProfileRepository()
        audit = InMemoryAuditSink()
    else:
        sessions = RedisSessionStore(url=config.redis_url, key_prefix=config.redis_key_prefix)
        db = DatabaseManager(SupabaseClient(url=config.supabase_url, key=config.supabase_anon_key))
        profiles = db.profiles
        audit = db.audit

    twilio = TwilioClient(
        account_sid=config.twilio_account_sid,
        auth_token=config.twilio_auth_token,
        from_number=config.twilio_phone_number,
        api_base=config.twilio_api_base
    )
    matcher = SpeakerEmbeddingMatcher(recording_auth=twilio.auth, min_duration=config.min_audio_duration)

    logger.info(f"Building orchestrator with {config.store_backend} backend")

    return VerificationOrchestrator(
        sessions=sessions,
        profiles=profiles,
        matcher=matcher,
        template_generator=matcher,
        audit=audit,
        call_provider=twilio,
        notifier=twilio,
        risk_scorer=RiskScorer(config.risk_timezone),
        ledger=AttemptLedger(
            sessions,
            threshold=config.lockout_threshold,
            lockout_ttl_seconds=config.lockout_ttl_seconds
        ),
        match_threshold=config.match_threshold,
        session_ttl_seconds=config.session_ttl_seconds,
        challenge_ttl_seconds=config.challenge_ttl_seconds,
        confirmation_ttl_seconds=config.confirmation_ttl_seconds,
        public_base_url=config.public_base_url,
        origin_number=config.twilio_phone_number,
        company_name=config.company_name
    )


# Global orchestrator instance
_orchestrator: Optional[VerificationOrchestrator] = None


def get_orchestrator() -> VerificationOrchestrator:
    """
    Get the global orchestrator instance.

    Returns:
        VerificationOrchestrator: The global orchestrator instance
    """
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def get_voice_script() -> VoiceScript:
    """A fresh script builder per request."""
    return VoiceScript()


async def close_orchestrator() -> None:
    """Release store connections held by the global orchestrator, if one was built."""
    global _orchestrator
    if _orchestrator is None:
        return
    close = getattr(_orchestrator.sessions, "close", None)
    if close is not None:
        await close()
    _orchestrator = None
