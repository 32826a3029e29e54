"""Pydantic request/response models for API endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Error body returned for every rejected request."""

    error: str
    error_class: Optional[str] = None
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope."""

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Input scanning
# ---------------------------------------------------------------------------


class ScanRequest(BaseModel):
    """Field map to validate against the input policy."""

    fields: Dict[str, Any] = Field(..., description="Field name to raw value")


class ThreatFindingModel(BaseModel):
    """A single detector hit."""

    type: str
    severity: str
    confidence: int
    matched_pattern: str
    message: str
    payload_excerpt: str = ""
    field: Optional[str] = None


class ScanResponse(BaseModel):
    """Outcome of a policy scan."""

    action: str
    findings: List[ThreatFindingModel]
    sanitized_fields: Optional[Dict[str, Any]] = None
    error_messages: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Login flow
# ---------------------------------------------------------------------------


class PrecheckRequest(BaseModel):
    """Login attempt about to be verified."""

    identity: str = Field(..., min_length=1, max_length=254)


class PrecheckResponse(BaseModel):
    """Allowed login attempt with its risk assessment."""

    allowed: bool = True
    risk_score: int
    risk_level: str


class LoginOutcomeRequest(BaseModel):
    """Result of credential verification."""

    identity: str = Field(..., min_length=1, max_length=254)
    success: bool
    reason: Optional[str] = Field(None, max_length=128)
    client_ip: Optional[str] = Field(
        None, max_length=64, description="End user's IP; defaults to the caller's"
    )
    user_agent: Optional[str] = Field(
        None, max_length=512, description="End user's agent; defaults to the caller's"
    )


class LoginOutcomeResponse(BaseModel):
    """Recorded successful login."""

    recorded: bool = True
    risk_score: int


# ---------------------------------------------------------------------------
# Account administration
# ---------------------------------------------------------------------------


class AccountStatsResponse(BaseModel):
    """Security summary of an identity."""

    identity: str
    failed_login_attempts: int
    is_locked: bool
    lockout_until: Optional[str] = None
    last_failed_login: Optional[str] = None
    last_successful_login: Optional[str] = None
    recent_login_ips: List[str] = Field(default_factory=list)


class UnlockResponse(BaseModel):
    """Manual unlock result."""

    identity: str
    was_locked: bool


# ---------------------------------------------------------------------------
# Security events
# ---------------------------------------------------------------------------


class SecurityEventsResponse(BaseModel):
    """Recent security events, newest first."""

    events: List[Dict[str, Any]]
    total: int


class SecurityEventStatsResponse(BaseModel):
    """Security event statistics."""

    total_events: int
    distinct_identities: int
    by_type: Dict[str, int]
