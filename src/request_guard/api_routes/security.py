"""Security API routes: input scanning, login hooks, account admin and events."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from request_guard.api_errors import bad_request, responses, unauthorized
from request_guard.api_models import (
    AccountStatsResponse,
    LoginOutcomeRequest,
    LoginOutcomeResponse,
    PrecheckRequest,
    PrecheckResponse,
    ScanRequest,
    ScanResponse,
    SecurityEventStatsResponse,
    SecurityEventsResponse,
    UnlockResponse,
)
from request_guard.config.settings import Settings
from request_guard.security.auth_context import AuthSecurityContext
from request_guard.security.events import InMemoryEventSink
from request_guard.security.models import SecurityEventType
from request_guard.security.policy import SecurityPolicyEngine
from request_guard.utils.validation import normalize_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["security"])

_MAX_EVENTS_LIMIT = 1000


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_policy_engine(request: Request) -> SecurityPolicyEngine:
    return request.app.state.policy_engine


def get_auth_context(request: Request) -> AuthSecurityContext:
    return request.app.state.auth_context


def get_event_store(request: Request) -> InMemoryEventSink:
    return request.app.state.event_store


def client_ip_for(request: Request) -> str:
    """Client IP, read from the trusted proxy header when one is configured."""
    settings: Settings = request.app.state.settings
    if settings.trusted_proxy_header:
        forwarded = request.headers.get(settings.trusted_proxy_header)
        if forwarded:
            return normalize_client_ip(forwarded)
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def user_agent_for(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")


def verify_admin(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> str:
    """Require ``Authorization: Bearer <admin token>``.

    Returns:
        The actor name recorded in audit events.
    """
    settings: Settings = request.app.state.settings
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not settings.verify_admin_token(token.strip()):
        logger.warning(
            "Rejected admin request to %s from %s",
            request.url.path,
            client_ip_for(request),
        )
        raise unauthorized()
    return "admin"


# ---------------------------------------------------------------------------
# Input scanning
# ---------------------------------------------------------------------------


@router.post(
    "/security/scan",
    response_model=ScanResponse,
    responses=responses(400, 401, 403, 429),
)
def scan_fields(
    body: ScanRequest,
    request: Request,
    dry_run: bool = False,
    _: str = Depends(verify_admin),
    engine: SecurityPolicyEngine = Depends(get_policy_engine),
) -> ScanResponse:
    """Validate a field map against the input policy (admin only).

    Rejected input answers with the matching error status unless
    ``dry_run`` is set, in which case the decision is returned as-is.
    """
    findings = engine.validate(body.fields, client_ip=client_ip_for(request))
    decision = engine.decide(findings, body.fields)
    if decision.error is not None and not dry_run:
        raise decision.error

    return ScanResponse(
        action=decision.action.value,
        findings=[f.to_dict() for f in decision.findings],
        sanitized_fields=decision.sanitized_fields,
        error_messages=decision.error_messages,
    )


# ---------------------------------------------------------------------------
# Login hooks
# ---------------------------------------------------------------------------


@router.post(
    "/auth/precheck",
    response_model=PrecheckResponse,
    responses=responses(401, 403, 429),
)
def precheck_login(
    body: PrecheckRequest,
    request: Request,
    ctx: AuthSecurityContext = Depends(get_auth_context),
) -> PrecheckResponse:
    """Check whether the caller may attempt to log in as ``identity``."""
    score = ctx.pre_login_check(body.identity, client_ip_for(request), user_agent_for(request))
    return PrecheckResponse(
        risk_score=score,
        risk_level=ctx.config.risk_thresholds.level(score).value,
    )


@router.post(
    "/auth/outcome",
    response_model=LoginOutcomeResponse,
    responses=responses(400, 401),
)
def report_login_outcome(
    body: LoginOutcomeRequest,
    request: Request,
    _: str = Depends(verify_admin),
    ctx: AuthSecurityContext = Depends(get_auth_context),
) -> LoginOutcomeResponse:
    """Record the result of credential verification (trusted auth service only).

    A failure always answers 401 with the remaining attempts, or with the
    lockout time once the account locks.
    """
    client_ip = normalize_client_ip(body.client_ip) if body.client_ip else client_ip_for(request)
    user_agent = body.user_agent or user_agent_for(request)

    if not body.success:
        ctx.on_login_failure(
            body.identity, client_ip, user_agent, body.reason or "invalid_credentials"
        )

    score = ctx.on_login_success(body.identity, client_ip, user_agent)
    return LoginOutcomeResponse(risk_score=score)


# ---------------------------------------------------------------------------
# Account administration
# ---------------------------------------------------------------------------


@router.get(
    "/security/accounts/{identity}",
    response_model=AccountStatsResponse,
    responses=responses(401),
)
def get_account_stats(
    identity: str,
    _: str = Depends(verify_admin),
    ctx: AuthSecurityContext = Depends(get_auth_context),
) -> AccountStatsResponse:
    """Get the security summary of an account (admin only)."""
    stats = ctx.get_security_stats(identity)
    return AccountStatsResponse(identity=identity, **stats.to_dict())


@router.post(
    "/security/accounts/{identity}/unlock",
    response_model=UnlockResponse,
    responses=responses(401),
)
def unlock_account(
    identity: str,
    actor: str = Depends(verify_admin),
    ctx: AuthSecurityContext = Depends(get_auth_context),
) -> UnlockResponse:
    """Manually unlock an account (admin only)."""
    was_locked = ctx.unlock_account(identity, actor=actor)
    return UnlockResponse(identity=identity, was_locked=was_locked)


# ---------------------------------------------------------------------------
# Security events
# ---------------------------------------------------------------------------


@router.get(
    "/security/events",
    response_model=SecurityEventsResponse,
    responses=responses(400, 401),
)
def get_security_events(
    limit: int = 100,
    event_type: Optional[str] = None,
    identity: Optional[str] = None,
    _: str = Depends(verify_admin),
    store: InMemoryEventSink = Depends(get_event_store),
) -> SecurityEventsResponse:
    """Get recent security events, newest first (admin only)."""
    if limit < 1 or limit > _MAX_EVENTS_LIMIT:
        raise bad_request(f"limit must be between 1 and {_MAX_EVENTS_LIMIT}")

    kind = None
    if event_type:
        try:
            kind = SecurityEventType(event_type)
        except ValueError:
            raise bad_request(
                f"Unknown event type: {event_type}",
                {"allowed": [t.value for t in SecurityEventType]},
            ) from None

    events = store.get_recent_events(limit=limit, event_type=kind, identity=identity)
    return SecurityEventsResponse(events=events, total=len(events))


@router.get(
    "/security/events/stats",
    response_model=SecurityEventStatsResponse,
    responses=responses(401),
)
def get_security_event_stats(
    _: str = Depends(verify_admin),
    store: InMemoryEventSink = Depends(get_event_store),
) -> SecurityEventStatsResponse:
    """Get security event statistics (admin only)."""
    return SecurityEventStatsResponse(**store.get_stats())
