"""Pattern-based threat detection for untrusted input.

Scans a string against independent detector families:
- SQL injection (keywords, comments, quote escapes, blind and UNION probes)
- Cross-site scripting (script blocks, event handlers, script URIs)
- Command injection (shell binaries, metacharacters, substitutions)
- NoSQL injection (query operators, embedded JavaScript, regex literals)
- LDAP injection (filter metacharacters and operators)
- Suspicious payloads (base64 runs, long lines, binary data, traversal)

Every rule that matches contributes one finding; only the first matched
substring per rule is recorded. The detector holds no state and is safe to
share between threads.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from request_guard.security.models import Severity, ThreatFinding, ThreatType, excerpt

DEFAULT_MAX_INPUT_LENGTH = 10_000
_MATCH_EXCERPT_LENGTH = 100


@dataclass(frozen=True)
class PatternRule:
    """A single detection rule within a family."""

    pattern: re.Pattern
    severity: Severity
    confidence: int
    message: str


def _rule(pattern: str, severity: Severity, confidence: int, message: str, flags: int = 0) -> PatternRule:
    return PatternRule(re.compile(pattern, flags), severity, confidence, message)


_I = re.IGNORECASE

_SQL_INJECTION_RULES = (
    _rule(
        r"\b(union|select|insert|update|delete|drop|create|alter|exec|execute)\b",
        Severity.HIGH, 85, "SQL keyword detected", _I,
    ),
    _rule(r"--|/\*|\*/|#", Severity.MEDIUM, 70, "SQL comment marker detected"),
    _rule(r"''|\\\"|\\'|'", Severity.MEDIUM, 60, "SQL quote escape detected"),
    _rule(
        r"\b(and|or)\s+\d+\s*[=<>]\s*\d+",
        Severity.HIGH, 90, "Boolean-based blind SQL injection pattern detected", _I,
    ),
    _rule(
        r"\b(sleep|benchmark|pg_sleep)\s*\(|\bwaitfor\s*(\(|delay\b|time\b)",
        Severity.CRITICAL, 95, "Time-based blind SQL injection pattern detected", _I,
    ),
    _rule(
        r"\bunion\s+(all\s+)?select\b",
        Severity.CRITICAL, 95, "UNION-based SQL injection detected", _I,
    ),
    _rule(
        r"\b(information_schema|sysobjects|syscolumns|pg_catalog)\b",
        Severity.HIGH, 88, "Database schema introspection detected", _I,
    ),
)

_XSS_RULES = (
    _rule(
        r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>",
        Severity.CRITICAL, 95, "Script tag detected", _I,
    ),
    _rule(
        r"\bon\w+\s*=\s*[\"'][^\"']*[\"']|\bon\w+\s*=\s*\w+",
        Severity.HIGH, 85, "Inline JavaScript event handler detected", _I,
    ),
    _rule(r"javascript\s*:", Severity.HIGH, 90, "JavaScript URI detected", _I),
    _rule(r"vbscript\s*:", Severity.HIGH, 90, "VBScript URI detected", _I),
    _rule(r"data\s*:\s*[^;]*;base64", Severity.MEDIUM, 70, "Base64 data URI detected", _I),
    _rule(
        r"\b(eval|setTimeout|setInterval|Function)\s*\(",
        Severity.HIGH, 80, "JavaScript evaluation function detected", _I,
    ),
    _rule(
        r"<(iframe|object|embed|form|input|meta|link)\b[^>]*>",
        Severity.MEDIUM, 75, "Potentially dangerous HTML tag detected", _I,
    ),
)

_COMMAND_INJECTION_RULES = (
    _rule(
        r"\b(cat|ls|pwd|whoami|id|uname|ps|netstat|ifconfig|ping|wget|curl|nc|ncat|telnet)\b",
        Severity.HIGH, 85, "Shell command detected", _I,
    ),
    _rule(r"[|;&`$(){}\[\]]", Severity.MEDIUM, 70, "Shell metacharacter detected"),
    _rule(r"`[^`]*`", Severity.HIGH, 90, "Backtick command substitution detected"),
    _rule(r"\$\([^)]*\)", Severity.HIGH, 90, "Command substitution detected"),
)

_NOSQL_INJECTION_RULES = (
    _rule(r"\$\w+\s*:", Severity.HIGH, 85, "NoSQL query operator detected"),
    _rule(
        r"\b(this|function|return|var|let|const)\b",
        Severity.MEDIUM, 60, "Embedded JavaScript keyword detected", _I,
    ),
    _rule(r"/.*/[gimuy]*", Severity.MEDIUM, 70, "Inline regular expression detected"),
)

_LDAP_INJECTION_RULES = (
    _rule(r"[()\\*\x00]", Severity.HIGH, 80, "LDAP filter metacharacter detected"),
    _rule(r"[&|!]=?", Severity.MEDIUM, 70, "LDAP boolean operator detected"),
)

_SUSPICIOUS_RULES = (
    _rule(r"[A-Za-z0-9+/]{40,}={0,2}", Severity.LOW, 50, "Base64-encoded run detected"),
    _rule(r".{501,}", Severity.MEDIUM, 60, "Abnormally long input detected", re.DOTALL),
    _rule(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", Severity.MEDIUM, 70, "Binary data detected"),
    _rule(r"\.\.[/\\]|[/\\]\.\.", Severity.HIGH, 85, "Path traversal pattern detected"),
    _rule(r"\$\{[^}]*\}|\$[A-Z_]+", Severity.MEDIUM, 75, "Environment variable interpolation detected"),
)

DETECTOR_FAMILIES: dict[ThreatType, tuple[PatternRule, ...]] = {
    ThreatType.SQL_INJECTION: _SQL_INJECTION_RULES,
    ThreatType.XSS: _XSS_RULES,
    ThreatType.COMMAND_INJECTION: _COMMAND_INJECTION_RULES,
    ThreatType.NOSQL_INJECTION: _NOSQL_INJECTION_RULES,
    ThreatType.LDAP_INJECTION: _LDAP_INJECTION_RULES,
    ThreatType.SUSPICIOUS_PATTERN: _SUSPICIOUS_RULES,
}


class ThreatDetector:
    """Scans strings for injection and suspicious-payload patterns.

    Stateless; a single instance can serve every request.
    """

    def __init__(
        self,
        enabled_families: Optional[Iterable[ThreatType]] = None,
        max_input_length: int = DEFAULT_MAX_INPUT_LENGTH,
    ) -> None:
        """Initialize detector.

        Args:
            enabled_families: Families to run. Defaults to all of them.
            max_input_length: Inputs longer than this produce a
                ``MALFORMED_INPUT`` finding.
        """
        if enabled_families is None:
            enabled = tuple(DETECTOR_FAMILIES)
        else:
            wanted = set(enabled_families)
            enabled = tuple(t for t in DETECTOR_FAMILIES if t in wanted)
        self.enabled_families = enabled
        self.max_input_length = max_input_length

    def scan(self, value: object, field: Optional[str] = None) -> list[ThreatFinding]:
        """Scan a value and return every finding.

        Args:
            value: Untrusted input. Anything that is not a string is ignored.
            field: Name of the field the value came from, copied into findings.

        Returns:
            Findings in family order; empty if the value is clean.
        """
        if not isinstance(value, str) or not value:
            return []

        payload = excerpt(value)
        findings: list[ThreatFinding] = []

        if len(value) > self.max_input_length:
            findings.append(
                ThreatFinding(
                    type=ThreatType.MALFORMED_INPUT,
                    severity=Severity.MEDIUM,
                    confidence=100,
                    matched_pattern="length_exceeded",
                    message=(
                        f"Input exceeds maximum length "
                        f"({len(value)}/{self.max_input_length} characters)"
                    ),
                    payload_excerpt=payload,
                    field=field,
                )
            )

        for family in self.enabled_families:
            for rule in DETECTOR_FAMILIES[family]:
                match = rule.pattern.search(value)
                if match is None:
                    continue
                findings.append(
                    ThreatFinding(
                        type=family,
                        severity=rule.severity,
                        confidence=rule.confidence,
                        matched_pattern=excerpt(match.group(0), _MATCH_EXCERPT_LENGTH),
                        message=rule.message,
                        payload_excerpt=payload,
                        field=field,
                    )
                )

        return findings

    def scan_family(self, family: ThreatType, value: str, field: Optional[str] = None) -> list[ThreatFinding]:
        """Run a single family regardless of whether it is enabled."""
        if family not in DETECTOR_FAMILIES:
            raise ValueError(f"No detector family for {family.value}")
        scoped = ThreatDetector(enabled_families=[family], max_input_length=self.max_input_length)
        return [f for f in scoped.scan(value, field) if f.type is family]
