"""
Verification orchestrator: the call-based enrollment/verification state machine.

A workflow starts with ``initiate`` (phone number + transaction context),
which decides between enrollment and verification and places a recorded
call. The provider later calls back with the recording, re-entering through
``complete_enrollment`` or ``complete_verification``. ``issue_challenge``
binds a one-time spoken code to a verification session before recording.

Every public operation returns a tagged result. Collaborator faults are
caught here, audited as SYSTEM_ERROR and returned as ERROR results so the
telephony layer can always end the call gracefully.
"""

import logging
import re
import secrets
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

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
    TemplateGenerator
)
from voicegate.config import settings
from voicegate.models.internal_models import (
    AuditAction,
    AuditEvent,
    ChallengeResult,
    EnrollmentResult,
    ErrorKind,
    IdentityProfile,
    InitiateResult,
    Session,
    VerificationOutcome,
    VerificationResult,
    WorkflowKind,
    WorkflowState,
    utcnow
)
from voicegate.services.attempt_ledger import AttemptLedger
from voicegate.services.risk_scorer import RiskScorer, risk_band
from voicegate.utils.privacy import mask_phone

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    WorkflowState.RECEIVED: {
        WorkflowState.ENROLLING,
        WorkflowState.RISK_SCORED,
        WorkflowState.LOCKED_OUT,
        WorkflowState.ERROR,
    },
    WorkflowState.ENROLLING: {WorkflowState.AWAITING_RECORDING, WorkflowState.ERROR},
    WorkflowState.RISK_SCORED: {WorkflowState.AWAITING_RECORDING, WorkflowState.ERROR},
    WorkflowState.AWAITING_RECORDING: {
        WorkflowState.COMPLETED_SUCCESS,
        WorkflowState.COMPLETED_FAILURE,
        WorkflowState.LOCKED_OUT,
        WorkflowState.ERROR,
    },
}


class OrchestrationError(Exception):
    """Base exception for expected workflow faults inside the orchestrator."""

    kind: ErrorKind = ErrorKind.INVALID_SESSION


class SessionExpired(OrchestrationError):
    """Session id is unknown, consumed, or past its TTL."""
    kind = ErrorKind.SESSION_EXPIRED


class ProfileNotFound(OrchestrationError):
    """Session references a phone number with no enrolled profile."""
    kind = ErrorKind.PROFILE_NOT_FOUND


class LockedOut(OrchestrationError):
    """Verification attempted while a lockout is active."""
    kind = ErrorKind.LOCKED_OUT


class InvalidSession(OrchestrationError):
    """Session exists but is of the wrong kind or in the wrong state."""
    kind = ErrorKind.INVALID_SESSION


class InvalidTransition(Exception):
    """Raised for a state change the workflow does not allow."""
    pass


def transition(current: WorkflowState, target: WorkflowState) -> WorkflowState:
    """Validate and perform a state transition."""
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move from {current.value} to {target.value}")
    return target


def generate_session_id() -> str:
    return secrets.token_urlsafe(24)


def generate_confirmation_code() -> str:
    """Six-digit confirmation code, 100000-999999."""
    return str(100000 + secrets.randbelow(900000))


def generate_challenge_code() -> str:
    """Four-digit challenge code, 1000-9999."""
    return str(1000 + secrets.randbelow(9000))


def _error_kind(error: Exception) -> ErrorKind:
    if isinstance(error, OrchestrationError):
        return error.kind
    if isinstance(error, ProviderUnavailable):
        return ErrorKind.PROVIDER_UNAVAILABLE
    if isinstance(error, BiometricError):
        return ErrorKind.MATCHER_FAILURE
    if isinstance(error, ValueError):
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.STORE_UNAVAILABLE


class VerificationOrchestrator:
    """
    Drives enrollment and verification workflows over external collaborators.

    The orchestrator itself holds no mutable shared state; sessions,
    challenges, confirmation codes, failure counters and lockouts all live in
    the session store.
    """

    def __init__(
        self,
        sessions: SessionStore,
        profiles: ProfileRepository,
        matcher: BiometricMatcher,
        template_generator: TemplateGenerator,
        audit: AuditSink,
        call_provider: CallProvider,
        notifier: NotificationChannel,
        risk_scorer: Optional[RiskScorer] = None,
        ledger: Optional[AttemptLedger] = None,
        match_threshold: Optional[float] = None,
        session_ttl_seconds: Optional[int] = None,
        challenge_ttl_seconds: Optional[int] = None,
        confirmation_ttl_seconds: Optional[int] = None,
        public_base_url: Optional[str] = None,
        origin_number: Optional[str] = None,
        company_name: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.sessions = sessions
        self.profiles = profiles
        self.matcher = matcher
        self.template_generator = template_generator
        self.audit = audit
        self.call_provider = call_provider
        self.notifier = notifier
        self.risk_scorer = risk_scorer or RiskScorer(settings.risk_timezone)
        self.ledger = ledger or AttemptLedger(
            sessions,
            threshold=settings.lockout_threshold,
            lockout_ttl_seconds=settings.lockout_ttl_seconds
        )
        self.match_threshold = match_threshold if match_threshold is not None else settings.match_threshold
        self.session_ttl = session_ttl_seconds or settings.session_ttl_seconds
        self.challenge_ttl = challenge_ttl_seconds or settings.challenge_ttl_seconds
        self.confirmation_ttl = confirmation_ttl_seconds or settings.confirmation_ttl_seconds
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip('/')
        self.origin_number = origin_number if origin_number is not None else settings.twilio_phone_number
        self.company_name = company_name or settings.company_name
        self._clock = clock

        logger.info(f"Verification orchestrator initialized with match threshold: {self.match_threshold}")

    # Keys

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"session:{session_id}"

    @staticmethod
    def _challenge_key(session_id: str) -> str:
        return f"challenge:{session_id}"

    @staticmethod
    def _confirmation_key(phone_number: str) -> str:
        return f"confirm:{phone_number}"

    def script_url(self, kind: WorkflowKind, session_id: str) -> str:
        path = "enrollment" if kind == WorkflowKind.ENROLLMENT else "verify"
        return f"{self.public_base_url}/biometric/{path}/{session_id}"

    # Public operations

    async def initiate(
        self,
        phone_number: str,
        transaction_type: Optional[str] = None,
        amount: float = 0.0,
        origin: Optional[str] = None
    ) -> InitiateResult:
        """
        Start an enrollment or verification call for a phone number.

        Unknown numbers are enrolled; the attempt ledger is not consulted for
        them. Known numbers are checked for lockout before any call is
        placed, then risk-scored. The session is written only after the call
        has been placed, so a failed placement leaves nothing live.

        Args:
            phone_number: Destination number, validated by the caller
            transaction_type: Transaction type (e.g. TRANSFER, CRYPTO)
            amount: Transaction amount
            origin: Caller network origin, recorded in audit events

        Returns:
            InitiateResult tagged with the resulting state or error kind
        """
        state = WorkflowState.RECEIVED
        session_id = generate_session_id()
        kind = None
        risk_score = None

        try:
            profile = await self.profiles.find_by_phone_number(phone_number)

            if profile is None:
                kind = WorkflowKind.ENROLLMENT
                state = transition(state, WorkflowState.ENROLLING)
                session = Session(
                    session_id=session_id,
                    phone_number=phone_number,
                    kind=kind,
                    created_at=self._clock(),
                    ttl_seconds=self.session_ttl
                )
            else:
                kind = WorkflowKind.VERIFICATION
                if await self.ledger.is_locked(phone_number):
                    raise LockedOut(f"Verification locked for {mask_phone(phone_number)}")

                risk_score = self.risk_scorer.score_now(transaction_type, amount)
                state = transition(state, WorkflowState.RISK_SCORED)
                session = Session(
                    session_id=session_id,
                    phone_number=phone_number,
                    kind=kind,
                    risk_score=risk_score,
                    transaction_type=transaction_type,
                    amount=amount,
                    created_at=self._clock(),
                    ttl_seconds=self.session_ttl
                )

            session.call_sid = await self.call_provider.place_call(
                destination=phone_number,
                origin_number=self.origin_number,
                script_url=self.script_url(kind, session_id),
                record=True,
                status_callback=f"{self.public_base_url}/biometric/call-status"
            )

            state = transition(state, WorkflowState.AWAITING_RECORDING)
            session.state = state
            await self.sessions.put(self._session_key(session_id), session.to_payload(), self.session_ttl)

            logger.info(
                f"Started {kind.value} session {session_id[:8]} for {mask_phone(phone_number)}"
                f" (call {session.call_sid}, risk {risk_score})"
            )

            return InitiateResult(
                state=state,
                session_id=session_id,
                kind=kind,
                risk_score=risk_score,
                risk_band=risk_band(risk_score) if risk_score is not None else None
            )

        except LockedOut as e:
            logger.warning(f"Rejected initiate: {e}")
            await self._emit(AuditEvent(
                action=AuditAction.VERIFICATION_FAILURE,
                result=ErrorKind.LOCKED_OUT.value,
                phone_number=phone_number,
                ip_address=origin
            ))
            return InitiateResult(
                state=transition(state, WorkflowState.LOCKED_OUT),
                kind=kind,
                error=ErrorKind.LOCKED_OUT
            )
        except (CollaboratorError, ValueError) as e:
            error_kind = _error_kind(e)
            logger.error(f"Initiate failed for {mask_phone(phone_number)}: {error_kind.value}: {e}")
            await self._system_error(None, phone_number, error_kind, origin, risk_score)
            return InitiateResult(state=WorkflowState.ERROR, kind=kind, error=error_kind)

    async def issue_challenge(self, session_id: str, origin: Optional[str] = None) -> ChallengeResult:
        """Generate and store a 4-digit challenge for a verification session awaiting its recording."""
        phone_number = None
        try:
            session = await self._load_session(session_id, WorkflowKind.VERIFICATION)
            phone_number = session.phone_number
            if session.state != WorkflowState.AWAITING_RECORDING:
                raise InvalidSession(f"Session {session_id[:8]} is in state {session.state.value}")

            code = generate_challenge_code()
            await self.sessions.put(self._challenge_key(session_id), code, self.challenge_ttl)
            logger.info(f"Issued challenge for session {session_id[:8]} (ttl {self.challenge_ttl}s)")

            return ChallengeResult(
                state=WorkflowState.AWAITING_RECORDING,
                session_id=session_id,
                challenge_code=code
            )

        except (OrchestrationError, CollaboratorError, ValueError) as e:
            error_kind = _error_kind(e)
            logger.error(f"Challenge failed for session {session_id[:8]}: {error_kind.value}: {e}")
            await self._system_error(session_id, phone_number, error_kind, origin)
            return ChallengeResult(state=WorkflowState.ERROR, session_id=session_id, error=error_kind)

    async def complete_enrollment(
        self,
        session_id: str,
        audio_reference: str,
        caller_metadata: Optional[Dict[str, Any]] = None,
        origin: Optional[str] = None
    ) -> EnrollmentResult:
        """
        Finish an enrollment once the provider reports the recording.

        The session is consumed atomically before any profile work, so a
        replayed callback fails with SESSION_EXPIRED instead of creating a
        second profile.
        """
        phone_number = None
        try:
            await self._load_session(session_id, WorkflowKind.ENROLLMENT)
            session = await self._consume_session(session_id)
            phone_number = session.phone_number
            state = session.state

            template = await self.template_generator.generate(audio_reference)
            if not template:
                raise BiometricError("Template generator returned an empty template")

            profile = IdentityProfile(
                user_id=str(uuid.uuid4()),
                phone_number=phone_number,
                voice_template=template,
                enrolled_at=self._clock(),
                metadata=dict(caller_metadata or {})
            )
            await self.profiles.save(profile)

            code = generate_confirmation_code()
            await self.sessions.put(self._confirmation_key(phone_number), code, self.confirmation_ttl)

            state = transition(state, WorkflowState.COMPLETED_SUCCESS)
            await self._emit(AuditEvent(
                action=AuditAction.ENROLLMENT_SUCCESS,
                result="SUCCESS",
                session_id=session_id,
                phone_number=phone_number,
                ip_address=origin
            ))

            logger.info(f"Enrolled profile {profile.user_id} for {mask_phone(phone_number)}")
            return EnrollmentResult(
                state=state,
                session_id=session_id,
                confirmation_code=code,
                user_id=profile.user_id
            )

        except (OrchestrationError, CollaboratorError, ValueError) as e:
            error_kind = _error_kind(e)
            logger.error(f"Enrollment failed for session {session_id[:8]}: {error_kind.value}: {e}")
            await self._system_error(session_id, phone_number, error_kind, origin)
            return EnrollmentResult(state=WorkflowState.ERROR, session_id=session_id, error=error_kind)

    async def complete_verification(
        self,
        session_id: str,
        audio_reference: str,
        challenge_response: Optional[str] = None,
        origin: Optional[str] = None
    ) -> VerificationResult:
        """
        Decide a verification once the provider reports the recording.

        Confidence above the match threshold succeeds and resets the failure
        count. Anything else is a failed attempt; the attempt that brings the
        count to the lockout threshold also sets the lockout record and ends
        as LOCKED_OUT. When ``challenge_response`` is given (e.g. a speech
        transcript), it must contain the challenge issued for this session.
        """
        phone_number = None
        risk_score = None
        try:
            await self._load_session(session_id, WorkflowKind.VERIFICATION)
            session = await self._consume_session(session_id)
            phone_number = session.phone_number
            risk_score = session.risk_score
            state = session.state

            profile = await self.profiles.find_by_phone_number(phone_number)
            if profile is None:
                raise ProfileNotFound(f"No profile for {mask_phone(phone_number)}")

            challenge_ok = await self._check_challenge(session_id, challenge_response)

            confidence = await self.matcher.match(audio_reference, profile.voice_template)
            if confidence is None or not 0.0 <= confidence <= 1.0:
                raise BiometricError(f"Matcher returned confidence outside [0, 1]: {confidence}")

            logger.info(
                f"Voice comparison for {mask_phone(phone_number)}: confidence={confidence:.4f}, "
                f"threshold={self.match_threshold}, challenge_ok={challenge_ok}"
            )

            if challenge_ok and confidence > self.match_threshold:
                return await self._verification_succeeded(session, profile, state, confidence, origin)
            return await self._verification_failed(session, profile, state, confidence, origin)

        except (OrchestrationError, CollaboratorError, ValueError) as e:
            error_kind = _error_kind(e)
            logger.error(f"Verification failed for session {session_id[:8]}: {error_kind.value}: {e}")
            await self._system_error(session_id, phone_number, error_kind, origin, risk_score)
            return VerificationResult(
                outcome=VerificationOutcome.ERROR,
                state=WorkflowState.ERROR,
                session_id=session_id,
                error=error_kind
            )

    async def get_confirmation_code(self, phone_number: str) -> Optional[str]:
        return await self.sessions.get(self._confirmation_key(phone_number))

    async def get_challenge(self, session_id: str) -> Optional[str]:
        return await self.sessions.get(self._challenge_key(session_id))

    async def get_session(self, session_id: str) -> Optional[Session]:
        payload = await self.sessions.get(self._session_key(session_id))
        return Session.from_payload(payload) if payload else None

    # Verification branches

    async def _verification_succeeded(
        self,
        session: Session,
        profile: IdentityProfile,
        state: WorkflowState,
        confidence: float,
        origin: Optional[str]
    ) -> VerificationResult:
        await self.ledger.record_success(profile.phone_number)

        profile.last_verification = self._clock()
        profile.failure_count = 0
        await self.profiles.save(profile)

        state = transition(state, WorkflowState.COMPLETED_SUCCESS)
        await self._emit(AuditEvent(
            action=AuditAction.VERIFICATION_SUCCESS,
            result="SUCCESS",
            session_id=session.session_id,
            phone_number=profile.phone_number,
            risk_score=session.risk_score,
            ip_address=origin
        ))

        message = (
            f"{self.company_name}: Transacción autorizada exitosamente. "
            f"ID: {session.session_id[:8]}"
        )
        try:
            await self.notifier.send(profile.phone_number, message)
        except ProviderUnavailable as e:
            # The verification itself stands; only the confirmation text is lost.
            logger.error(f"Confirmation text failed for {mask_phone(profile.phone_number)}: {e}")
            await self._system_error(
                session.session_id, profile.phone_number, ErrorKind.PROVIDER_UNAVAILABLE,
                origin, session.risk_score
            )

        return VerificationResult(
            outcome=VerificationOutcome.SUCCESS,
            state=state,
            session_id=session.session_id,
            confidence=confidence,
            failure_count=0
        )

    async def _verification_failed(
        self,
        session: Session,
        profile: IdentityProfile,
        state: WorkflowState,
        confidence: float,
        origin: Optional[str]
    ) -> VerificationResult:
        count, lockout_triggered = await self.ledger.record_failure(profile.phone_number)

        profile.failure_count = count
        await self.profiles.save(profile)

        await self._emit(AuditEvent(
            action=AuditAction.VERIFICATION_FAILURE,
            result="FAILURE",
            session_id=session.session_id,
            phone_number=profile.phone_number,
            risk_score=session.risk_score,
            ip_address=origin
        ))

        if lockout_triggered:
            await self.ledger.lock(profile.phone_number)
            state = transition(state, WorkflowState.LOCKED_OUT)
            await self._emit(AuditEvent(
                action=AuditAction.LOCKOUT_TRIGGERED,
                result="LOCKED",
                session_id=session.session_id,
                phone_number=profile.phone_number,
                risk_score=session.risk_score,
                ip_address=origin
            ))
            return VerificationResult(
                outcome=VerificationOutcome.LOCKED_OUT,
                state=state,
                session_id=session.session_id,
                confidence=confidence,
                failure_count=count
            )

        state = transition(state, WorkflowState.COMPLETED_FAILURE)
        return VerificationResult(
            outcome=VerificationOutcome.FAILURE,
            state=state,
            session_id=session.session_id,
            confidence=confidence,
            failure_count=count
        )

    # Helpers

    async def _load_session(self, session_id: str, kind: WorkflowKind) -> Session:
        payload = await self.sessions.get(self._session_key(session_id))
        if payload is None:
            raise SessionExpired(f"Session {session_id[:8]} is unknown or expired")
        session = self._parse_session(session_id, payload)
        if session.kind != kind:
            raise InvalidSession(f"Session {session_id[:8]} is a {session.kind.value} session")
        return session

    async def _consume_session(self, session_id: str) -> Session:
        payload = await self.sessions.pop(self._session_key(session_id))
        if payload is None:
            raise SessionExpired(f"Session {session_id[:8]} was already consumed")
        return self._parse_session(session_id, payload)

    @staticmethod
    def _parse_session(session_id: str, payload: Any) -> Session:
        try:
            return Session.from_payload(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidSession(f"Session {session_id[:8]} has an unreadable payload: {e!r}") from e

    async def _check_challenge(self, session_id: str, challenge_response: Optional[str]) -> bool:
        if challenge_response is None:
            return True
        expected = await self.sessions.pop(self._challenge_key(session_id))
        if expected is None:
            logger.warning(f"Challenge for session {session_id[:8]} expired or was never issued")
            return False
        spoken_digits = re.sub(r'\D', '', challenge_response)
        return str(expected) in spoken_digits

    async def _emit(self, event: AuditEvent) -> None:
        try:
            await self.audit.append(event)
        except CollaboratorError as e:
            logger.error(
                f"Audit write failed: action={event.action.value} result={event.result} "
                f"session={event.session_id} phone={mask_phone(event.phone_number)}: {e}"
            )

    async def _system_error(
        self,
        session_id: Optional[str],
        phone_number: Optional[str],
        error_kind: ErrorKind,
        origin: Optional[str],
        risk_score: Optional[int] = None
    ) -> None:
        await self._emit(AuditEvent(
            action=AuditAction.SYSTEM_ERROR,
            result=error_kind.value,
            session_id=session_id,
            phone_number=phone_number,
            risk_score=risk_score,
            ip_address=origin
        ))
