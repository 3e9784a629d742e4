"""
Biometric workflow endpoints.

``/initiate`` is called by the business system that needs a phone number
enrolled or verified. The remaining routes are the call provider's webhooks:
they return call-flow XML and always end with something speakable, so the
call can finish gracefully whatever happened behind them.
"""

import time
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Form, Request, Response
from fastapi.responses import JSONResponse

from voicegate.dependencies import get_orchestrator, get_voice_script
from voicegate.models.api_models import ErrorResponse, InitiateRequest, InitiateResponse
from voicegate.models.internal_models import ErrorKind, VerificationOutcome, WorkflowKind
from voicegate.observability import (
    record_initiation_metrics,
    record_outcome_metrics,
    trace_function
)
from voicegate.services.orchestrator import VerificationOrchestrator
from voicegate.utils.privacy import mask_phone
from voicegate.voice_script import VoiceScript

logger = structlog.get_logger()
router = APIRouter(prefix="/biometric", tags=["biometric"])

XML_MEDIA_TYPE = "text/xml"


def create_error_response(
    error_type: str,
    message: str,
    correlation_id: str,
    status_code: int = 500
) -> JSONResponse:
    """Create standardized error response."""
    error_response = ErrorResponse(
        error=error_type,
        message=message,
        correlation_id=correlation_id,
        timestamp=datetime.now(timezone.utc)
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json")
    )


def xml_response(body: str) -> Response:
    return Response(content=body, media_type=XML_MEDIA_TYPE)


def client_origin(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/initiate", response_model=InitiateResponse)
@trace_function("initiate_endpoint")
async def initiate(
    body: InitiateRequest,
    request: Request,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator)
):
    """
    Start an enrollment or verification call for a phone number.

    Returns 423 when the number is locked out (no call is placed), 400 when
    the transaction context is rejected and 503 when the call provider or a
    store is unavailable.
    """
    correlation_id = request.headers.get("X-Call-ID", "unknown")
    start_time = time.time()

    result = await orchestrator.initiate(
        phone_number=body.phoneNumber,
        transaction_type=body.transactionType,
        amount=body.amount,
        origin=client_origin(request)
    )

    kind = result.kind.value if result.kind else None
    record_initiation_metrics(kind, result.error.value if result.error else "STARTED")

    if result.error == ErrorKind.LOCKED_OUT:
        logger.warning("Initiate rejected, number locked out", phone=mask_phone(body.phoneNumber))
        return create_error_response(
            "LockedOut",
            "Verification is temporarily blocked for this number",
            correlation_id,
            status_code=423
        )

    if result.error == ErrorKind.INVALID_REQUEST:
        logger.warning("Initiate rejected, invalid request", phone=mask_phone(body.phoneNumber))
        return create_error_response(
            "InvalidRequest",
            "The transaction details were rejected",
            correlation_id,
            status_code=400
        )

    if not result.ok:
        logger.error("Initiate failed", phone=mask_phone(body.phoneNumber), error=result.error.value)
        return create_error_response(
            "SystemError",
            "Error en el sistema",
            correlation_id,
            status_code=503
        )

    logger.info(
        "Workflow initiated",
        phone=mask_phone(body.phoneNumber),
        kind=kind,
        risk_score=result.risk_score,
        process_time_ms=round((time.time() - start_time) * 1000, 2)
    )

    if result.kind == WorkflowKind.ENROLLMENT:
        return InitiateResponse(
            success=True,
            sessionId=result.session_id,
            workflowKind=kind,
            message="Enrollment started"
        )
    return InitiateResponse(
        success=True,
        sessionId=result.session_id,
        workflowKind=kind,
        riskLevel=result.risk_band.value,
        message="Biometric verification started"
    )


@router.post("/enrollment/{session_id}")
async def enrollment_script(
    session_id: str,
    script: VoiceScript = Depends(get_voice_script)
) -> Response:
    """Call-flow script for an enrollment call."""
    return xml_response(script.enrollment_prompt(session_id))


@router.post("/process-enrollment/{session_id}")
@trace_function("process_enrollment_webhook")
async def process_enrollment(
    session_id: str,
    request: Request,
    RecordingUrl: str = Form(...),
    From: Optional[str] = Form(None),
    FromCarrier: Optional[str] = Form(None),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
    script: VoiceScript = Depends(get_voice_script)
) -> Response:
    """Recording callback for an enrollment call."""
    result = await orchestrator.complete_enrollment(
        session_id=session_id,
        audio_reference=RecordingUrl,
        caller_metadata={"deviceInfo": From, "carrier": FromCarrier or "Unknown"},
        origin=client_origin(request)
    )
    record_outcome_metrics("enrollment", result.error.value if result.error else result.state.value)

    if not result.ok:
        logger.error("Enrollment callback failed", session=session_id[:8], error=result.error.value)
        return xml_response(script.apology())

    logger.info("Enrollment completed", session=session_id[:8])
    return xml_response(script.enrollment_confirmed(result.confirmation_code))


@router.post("/verify/{session_id}")
async def verification_script(
    session_id: str,
    request: Request,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
    script: VoiceScript = Depends(get_voice_script)
) -> Response:
    """Call-flow script for a verification call; issues the spoken challenge."""
    result = await orchestrator.issue_challenge(session_id, origin=client_origin(request))

    if not result.ok:
        logger.error("Challenge could not be issued", session=session_id[:8], error=result.error.value)
        return xml_response(script.apology())

    return xml_response(script.verification_prompt(session_id, result.challenge_code))


@router.post("/process-verification/{session_id}")
@trace_function("process_verification_webhook")
async def process_verification(
    session_id: str,
    request: Request,
    RecordingUrl: str = Form(...),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
    script: VoiceScript = Depends(get_voice_script)
) -> Response:
    """
    Recording callback for a verification call.

    The Record action callback carries no transcript; its ``Digits`` field is
    only the key that ended the recording, so the decision rests on the voice
    match alone.
    """
    result = await orchestrator.complete_verification(
        session_id=session_id,
        audio_reference=RecordingUrl,
        origin=client_origin(request)
    )
    record_outcome_metrics("verification", result.outcome.value, result.confidence)

    logger.info(
        "Verification completed",
        session=session_id[:8],
        outcome=result.outcome.value,
        failure_count=result.failure_count
    )

    if result.outcome == VerificationOutcome.SUCCESS:
        return xml_response(script.verification_succeeded())
    if result.outcome == VerificationOutcome.LOCKED_OUT:
        return xml_response(script.locked_out())
    if result.outcome == VerificationOutcome.FAILURE:
        return xml_response(script.verification_failed())
    return xml_response(script.apology())


@router.post("/call-status")
async def call_status(
    CallSid: Optional[str] = Form(None),
    CallStatus: Optional[str] = Form(None)
) -> Response:
    """Provider call status callback; logged only."""
    logger.info("Call status update", call_sid=CallSid, call_status=CallStatus)
    return Response(status_code=204)
