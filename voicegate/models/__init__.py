"""Data models for the voice biometric gateway."""

from .api_models import (
    InitiateRequest,
    InitiateResponse,
    HealthResponse,
    ErrorResponse
)
from .internal_models import (
    AuditAction,
    AuditEvent,
    ChallengeResult,
    EnrollmentResult,
    ErrorKind,
    IdentityProfile,
    InitiateResult,
    RiskBand,
    SecurityTier,
    Session,
    VerificationOutcome,
    VerificationResult,
    WorkflowKind,
    WorkflowState
)

__all__ = [
    "InitiateRequest",
    "InitiateResponse",
    "HealthResponse",
    "ErrorResponse",
    "AuditAction",
    "AuditEvent",
    "ChallengeResult",
    "EnrollmentResult",
    "ErrorKind",
    "IdentityProfile",
    "InitiateResult",
    "RiskBand",
    "SecurityTier",
    "Session",
    "VerificationOutcome",
    "VerificationResult",
    "WorkflowKind",
    "WorkflowState"
]
