"""Internal data models for the voice biometric gateway."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SecurityTier(str, Enum):
    """Ordered security tier of an identity profile."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(SecurityTier).index(self)

    def __lt__(self, other):
        if not isinstance(other, SecurityTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SecurityTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SecurityTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SecurityTier):
            return NotImplemented
        return self.rank >= other.rank


class WorkflowKind(str, Enum):
    ENROLLMENT = "ENROLLMENT"
    VERIFICATION = "VERIFICATION"


class WorkflowState(str, Enum):
    """States of a call-based workflow instance."""

    RECEIVED = "RECEIVED"
    ENROLLING = "ENROLLING"
    RISK_SCORED = "RISK_SCORED"
    AWAITING_RECORDING = "AWAITING_RECORDING"
    COMPLETED_SUCCESS = "COMPLETED_SUCCESS"
    COMPLETED_FAILURE = "COMPLETED_FAILURE"
    LOCKED_OUT = "LOCKED_OUT"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    WorkflowState.COMPLETED_SUCCESS,
    WorkflowState.COMPLETED_FAILURE,
    WorkflowState.LOCKED_OUT,
    WorkflowState.ERROR,
})


class AuditAction(str, Enum):
    ENROLLMENT_SUCCESS = "ENROLLMENT_SUCCESS"
    VERIFICATION_SUCCESS = "VERIFICATION_SUCCESS"
    VERIFICATION_FAILURE = "VERIFICATION_FAILURE"
    LOCKOUT_TRIGGERED = "LOCKOUT_TRIGGERED"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class ErrorKind(str, Enum):
    """Tagged error carried by orchestrator results."""

    SESSION_EXPIRED = "SESSION_EXPIRED"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    LOCKED_OUT = "LOCKED_OUT"
    INVALID_SESSION = "INVALID_SESSION"
    MATCHER_FAILURE = "MATCHER_FAILURE"
    INVALID_REQUEST = "INVALID_REQUEST"


class RiskBand(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class VerificationOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    LOCKED_OUT = "LOCKED_OUT"
    ERROR = "ERROR"


@dataclass
class IdentityProfile:
    """Enrolled identity, keyed by its unique phone number."""

    user_id: str
    phone_number: str  # Unique key
    voice_template: bytes  # Opaque template produced by the TemplateGenerator
    enrolled_at: datetime
    last_verification: Optional[datetime] = None
    failure_count: int = 0
    security_tier: SecurityTier = SecurityTier.MEDIUM
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate profile fields after initialization."""
        if not self.phone_number:
            raise ValueError("Profile requires a phone number")
        if not self.voice_template:
            raise ValueError("Profile requires a non-empty voice template")
        if self.failure_count < 0:
            raise ValueError(f"Failure count cannot be negative, got {self.failure_count}")


@dataclass
class Session:
    """One in-flight call-based workflow instance."""

    session_id: str
    phone_number: str
    kind: WorkflowKind
    call_sid: Optional[str] = None
    risk_score: Optional[int] = None
    transaction_type: Optional[str] = None
    amount: Optional[float] = None
    state: WorkflowState = WorkflowState.AWAITING_RECORDING
    created_at: datetime = field(default_factory=utcnow)
    ttl_seconds: int = 3600

    def __post_init__(self):
        """Validate session invariants after initialization."""
        if self.kind == WorkflowKind.ENROLLMENT and self.risk_score is not None:
            raise ValueError("Enrollment sessions do not carry a risk score")
        if self.risk_score is not None and not (0 <= self.risk_score <= 100):
            raise ValueError(f"Risk score must be between 0 and 100, got {self.risk_score}")

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serialisable representation for the session store."""
        return {
            "sessionId": self.session_id,
            "phoneNumber": self.phone_number,
            "type": self.kind.value,
            "callSid": self.call_sid,
            "riskScore": self.risk_score,
            "transactionType": self.transaction_type,
            "amount": self.amount,
            "state": self.state.value,
            "timestamp": self.created_at.isoformat(),
            "ttl": self.ttl_seconds,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Session":
        return cls(
            session_id=payload["sessionId"],
            phone_number=payload["phoneNumber"],
            kind=WorkflowKind(payload["type"]),
            call_sid=payload.get("callSid"),
            risk_score=payload.get("riskScore"),
            transaction_type=payload.get("transactionType"),
            amount=payload.get("amount"),
            state=WorkflowState(payload.get("state", WorkflowState.AWAITING_RECORDING.value)),
            created_at=datetime.fromisoformat(payload["timestamp"]),
            ttl_seconds=payload.get("ttl", 3600),
        )


@dataclass(frozen=True)
class AuditEvent:
    """Immutable, append-only audit record."""

    action: AuditAction
    result: str
    session_id: Optional[str] = None
    phone_number: Optional[str] = None
    risk_score: Optional[int] = None
    ip_address: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class InitiateResult:
    state: WorkflowState
    session_id: Optional[str] = None
    kind: Optional[WorkflowKind] = None
    risk_score: Optional[int] = None
    risk_band: Optional[RiskBand] = None
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ChallengeResult:
    state: WorkflowState
    session_id: str
    challenge_code: Optional[str] = None
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class EnrollmentResult:
    state: WorkflowState
    session_id: str
    confirmation_code: Optional[str] = None
    user_id: Optional[str] = None
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class VerificationResult:
    outcome: VerificationOutcome
    state: WorkflowState
    session_id: str
    confidence: Optional[float] = None
    failure_count: Optional[int] = None
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None
