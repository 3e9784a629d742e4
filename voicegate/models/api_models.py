"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InitiateRequest(BaseModel):
    """Request model for the initiate endpoint."""

    phoneNumber: str = Field(..., min_length=8, max_length=20, description="E.164 phone number to call")
    transactionType: str = Field("STANDARD", max_length=64, description="Transaction type, e.g. TRANSFER, INTERNATIONAL, CRYPTO")
    amount: float = Field(0.0, ge=0.0, description="Transaction amount")

    @field_validator('phoneNumber')
    @classmethod
    def validate_phone(cls, v):
        """Light E.164 shape check; full validation is owned by the caller."""
        digits = v[1:] if v.startswith('+') else v
        if not digits.isdigit():
            raise ValueError('Phone number must contain only digits after an optional leading +')
        return v

    @field_validator('transactionType')
    @classmethod
    def normalize_transaction_type(cls, v):
        return v.strip().upper()


class InitiateResponse(BaseModel):
    """Response model for the initiate endpoint."""

    success: bool = Field(..., description="Whether the call workflow was started")
    sessionId: str = Field(..., description="Opaque session handle")
    workflowKind: str = Field(..., description="ENROLLMENT or VERIFICATION")
    riskLevel: Optional[str] = Field(None, description="Informational risk band (verification only)")
    message: str = Field(..., description="Human-readable status message")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "success": True,
            "sessionId": "kq3Yd2m8...",
            "workflowKind": "VERIFICATION",
            "riskLevel": "MEDIUM",
            "message": "Biometric verification started"
        }
    })


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Service version")
    checks: Dict[str, bool] = Field(default_factory=dict, description="Backing store reachability by component")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: str = Field(..., description="Request correlation ID for tracing")
    timestamp: datetime = Field(..., description="Error timestamp")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": "LockedOut",
            "message": "Verification temporarily blocked for this number",
            "correlation_id": "req_123456789",
            "timestamp": "2024-01-01T12:00:00Z"
        }
    })
