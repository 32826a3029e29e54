"""Request input security policy.

``SecurityPolicyEngine`` combines the threat detector, a per-client rate
limiter and the sanitizer. ``validate`` collects findings for a map of
fields; ``decide`` turns findings into an allow/reject decision:

- any CRITICAL finding rejects with an authentication-class error,
- else a rate-limit finding rejects with a rate-limit error,
- else any HIGH finding rejects with a validation-class error,
- else the request is allowed, with string fields sanitized when enabled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from request_guard.security.clock import Clock, SystemClock
from request_guard.security.errors import ErrorClass, ErrorKind, SecurityError
from request_guard.security.events import EventSink, SafeEventSink, default_event_sink
from request_guard.security.models import (
    SecurityEvent,
    SecurityEventType,
    Severity,
    ThreatFinding,
    ThreatType,
)
from request_guard.security.rate_limiter import RateLimiter
from request_guard.security.sanitization import sanitize
from request_guard.security.threat_detection import DEFAULT_MAX_INPUT_LENGTH, ThreatDetector

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Per-client request rate limit for validated input."""

    enabled: bool = True
    max_requests: int = 100
    window_seconds: float = 60.0


@dataclass
class SecurityPolicyConfig:
    """Configuration for ``SecurityPolicyEngine``.

    Args:
        enable_sql_injection_detection: Run the SQL injection family.
        enable_xss_detection: Run the XSS family.
        enable_command_injection_detection: Run the command injection family.
        enable_nosql_injection_detection: Run the NoSQL injection family.
        enable_ldap_injection_detection: Run the LDAP injection family.
        enable_suspicious_pattern_detection: Run the suspicious-payload family.
        enable_input_sanitization: Sanitize string fields of allowed requests.
        enable_logging: Log and emit an event whenever findings are produced.
        max_input_length: Length above which input is reported as malformed.
        rate_limit: Per-client rate limit settings.
    """

    enable_sql_injection_detection: bool = True
    enable_xss_detection: bool = True
    enable_command_injection_detection: bool = True
    enable_nosql_injection_detection: bool = True
    enable_ldap_injection_detection: bool = True
    enable_suspicious_pattern_detection: bool = True
    enable_input_sanitization: bool = True
    enable_logging: bool = True
    max_input_length: int = DEFAULT_MAX_INPUT_LENGTH
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    def enabled_families(self) -> list[ThreatType]:
        flags = {
            ThreatType.SQL_INJECTION: self.enable_sql_injection_detection,
            ThreatType.XSS: self.enable_xss_detection,
            ThreatType.COMMAND_INJECTION: self.enable_command_injection_detection,
            ThreatType.NOSQL_INJECTION: self.enable_nosql_injection_detection,
            ThreatType.LDAP_INJECTION: self.enable_ldap_injection_detection,
            ThreatType.SUSPICIOUS_PATTERN: self.enable_suspicious_pattern_detection,
        }
        return [family for family, on in flags.items() if on]


def development_policy() -> SecurityPolicyConfig:
    """Permissive profile for local development."""
    return SecurityPolicyConfig(
        enable_suspicious_pattern_detection=False,
        enable_input_sanitization=False,
        max_input_length=50_000,
        rate_limit=RateLimitConfig(enabled=False, max_requests=1000, window_seconds=60.0),
    )


def production_policy() -> SecurityPolicyConfig:
    """Strict profile: every detector, sanitization and rate limiting on."""
    return SecurityPolicyConfig(
        max_input_length=10_000,
        rate_limit=RateLimitConfig(enabled=True, max_requests=100, window_seconds=60.0),
    )


class PolicyAction(str, Enum):
    """Outcome of a policy decision."""

    ALLOW = "allow"
    REJECT = "reject"


@dataclass
class PolicyDecision:
    """Result of ``SecurityPolicyEngine.decide``."""

    action: PolicyAction
    findings: list[ThreatFinding] = field(default_factory=list)
    sanitized_fields: Optional[dict[str, Any]] = None
    error_messages: list[str] = field(default_factory=list)
    error: Optional[SecurityError] = None

    @property
    def allowed(self) -> bool:
        return self.action is PolicyAction.ALLOW

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "findings": [f.to_dict() for f in self.findings],
            "error_messages": list(self.error_messages),
            "error": self.error.to_dict() if self.error else None,
        }


class SecurityPolicyEngine:
    """Validates request fields and decides whether a request may proceed."""

    def __init__(
        self,
        config: Optional[SecurityPolicyConfig] = None,
        *,
        detector: Optional[ThreatDetector] = None,
        rate_limiter: Optional[RateLimiter] = None,
        event_sink: Optional[EventSink] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize engine.

        Args:
            config: Policy configuration; defaults to ``SecurityPolicyConfig()``.
            detector: Threat detector; built from ``config`` when omitted.
            rate_limiter: Per-client limiter; built from ``config.rate_limit``
                when omitted.
            event_sink: Receiver for ``SUSPICIOUS_ACTIVITY`` events.
            clock: Time source shared with the rate limiter.
        """
        self.config = config or SecurityPolicyConfig()
        self._clock = clock or SystemClock()
        self.detector = detector or ThreatDetector(
            enabled_families=self.config.enabled_families(),
            max_input_length=self.config.max_input_length,
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=self.config.rate_limit.max_requests,
            window_seconds=self.config.rate_limit.window_seconds,
            clock=self._clock,
        )
        self._events = (
            SafeEventSink(event_sink) if event_sink is not None else default_event_sink()
        )

    @property
    def sanitization_enabled(self) -> bool:
        return self.config.enable_input_sanitization

    def sanitize(self, value: str) -> str:
        """Sanitize a single value, regardless of the sanitization flag."""
        return sanitize(value)

    def validate(
        self,
        fields: Mapping[str, Any],
        client_ip: Optional[str] = None,
    ) -> list[ThreatFinding]:
        """Scan every string field and apply the client rate limit.

        Args:
            fields: Field name to raw value. Non-string values are skipped.
            client_ip: Client identifier for rate limiting, if known.

        Returns:
            All findings across fields, the rate-limit finding first.
        """
        findings: list[ThreatFinding] = []

        if client_ip and self.config.rate_limit.enabled:
            finding = self.rate_limiter.check(client_ip).as_finding()
            if finding is not None:
                findings.append(finding)

        for name, value in fields.items():
            findings.extend(self.detector.scan(value, field=name))

        if findings and self.config.enable_logging:
            self._report(findings, client_ip)

        return findings

    def decide(
        self,
        findings: list[ThreatFinding],
        fields: Optional[Mapping[str, Any]] = None,
    ) -> PolicyDecision:
        """Turn findings into a decision.

        Args:
            findings: Output of :meth:`validate`.
            fields: The validated fields; sanitized copies are returned for
                allowed requests when sanitization is enabled.
        """
        critical = [f for f in findings if f.severity is Severity.CRITICAL]
        high = [
            f
            for f in findings
            if f.severity is Severity.HIGH and f.type is not ThreatType.RATE_LIMIT_EXCEEDED
        ]
        rate_limited = [f for f in findings if f.type is ThreatType.RATE_LIMIT_EXCEEDED]

        error: Optional[SecurityError] = None
        if critical:
            error = self._critical_error(critical, high)
        elif rate_limited:
            error = self._rate_limit_error(rate_limited[0])
        elif high:
            error = self._high_error(high)

        if error is not None:
            messages = [f.message for f in (critical or rate_limited or high)]
            logger.warning(
                "Request rejected (%s): %s",
                error.kind.value,
                "; ".join(messages),
            )
            return PolicyDecision(
                action=PolicyAction.REJECT,
                findings=list(findings),
                error_messages=messages,
                error=error,
            )

        sanitized = None
        if fields is not None:
            if self.sanitization_enabled:
                sanitized = {
                    k: sanitize(v) if isinstance(v, str) else v for k, v in fields.items()
                }
            else:
                sanitized = dict(fields)
        return PolicyDecision(
            action=PolicyAction.ALLOW,
            findings=list(findings),
            sanitized_fields=sanitized,
        )

    def enforce(
        self,
        fields: Mapping[str, Any],
        client_ip: Optional[str] = None,
    ) -> dict[str, Any]:
        """Validate and decide in one step.

        Returns:
            The fields to continue with (sanitized when enabled).

        Raises:
            SecurityError: If the request must be rejected.
        """
        decision = self.decide(self.validate(fields, client_ip), fields)
        if decision.error is not None:
            raise decision.error
        return decision.sanitized_fields or {}

    def _critical_error(
        self, critical: list[ThreatFinding], high: list[ThreatFinding]
    ) -> SecurityError:
        messages = ", ".join(f.message for f in critical)
        return SecurityError(
            ErrorKind.THREAT_DETECTED,
            f"Critical security threat detected: {messages}",
            severity=Severity.CRITICAL,
            error_class=ErrorClass.AUTHENTICATION,
            metadata={
                "threats": [_summary(f) for f in critical],
                "high_threats": [_summary(f) for f in high],
            },
        )

    def _high_error(self, high: list[ThreatFinding]) -> SecurityError:
        messages = ", ".join(f.message for f in high)
        fields = sorted({f.field for f in high if f.field})
        return SecurityError(
            ErrorKind.THREAT_DETECTED,
            f"Security threat detected: {messages}",
            severity=Severity.HIGH,
            error_class=ErrorClass.VALIDATION,
            metadata={
                "threats": [_summary(f) for f in high],
                "fields": fields,
            },
        )

    def _rate_limit_error(self, finding: ThreatFinding) -> SecurityError:
        return SecurityError(
            ErrorKind.RATE_LIMITED,
            finding.message,
            severity=Severity.HIGH,
            metadata=dict(finding.metadata),
        )

    def _report(self, findings: list[ThreatFinding], client_ip: Optional[str]) -> None:
        worst = max(findings, key=lambda f: f.severity.rank)
        fields = sorted({f.field for f in findings if f.field})
        logger.log(
            logging.WARNING if worst.severity.rank >= Severity.HIGH.rank else logging.INFO,
            "Security threats detected from %s in fields %s: %s",
            client_ip or "unknown",
            fields,
            [f.to_dict() for f in findings],
        )
        self._events.emit(
            SecurityEvent(
                type=SecurityEventType.SUSPICIOUS_ACTIVITY,
                client_ip=client_ip or "unknown",
                user_agent="",
                risk_score=max(f.confidence for f in findings),
                timestamp=self._clock.now(),
                metadata={
                    "reason": "input_threats",
                    "fields": fields,
                    "threat_types": sorted({f.type.value for f in findings}),
                    "max_severity": worst.severity.value,
                },
            )
        )


def _summary(finding: ThreatFinding) -> dict:
    return {
        "type": finding.type.value,
        "message": finding.message,
        "confidence": finding.confidence,
        "field": finding.field,
    }
