"""Tests for pattern-based threat detection."""

import sys

import pytest

sys.path.insert(0, "src")

from request_guard.security.models import Severity, ThreatType
from request_guard.security.threat_detection import DETECTOR_FAMILIES, ThreatDetector


def _types(findings):
    return {f.type for f in findings}


def _has(findings, threat_type, severity):
    return any(f.type is threat_type and f.severity is severity for f in findings)


class TestThreatDetector:
    """Tests for ThreatDetector.scan."""

    @pytest.fixture
    def detector(self):
        return ThreatDetector()

    def test_clean_input(self, detector):
        """Plain text produces no findings."""
        assert detector.scan("Buy milk") == []

    @pytest.mark.parametrize("value", [None, 42, ["a"], ""])
    def test_non_string_and_empty_ignored(self, detector, value):
        """Non-strings and empty strings are never scanned."""
        assert detector.scan(value) == []

    @pytest.mark.parametrize(
        "payload",
        [
            "1 UNION SELECT password FROM users",
            "1 union select 1",
            "x' UnIoN AlL SeLeCt name FROM t",
        ],
    )
    def test_union_select_is_critical(self, detector, payload):
        """UNION SELECT in any case is a critical SQL injection."""
        assert _has(detector.scan(payload), ThreatType.SQL_INJECTION, Severity.CRITICAL)

    def test_time_based_blind_sql(self, detector):
        """sleep()/waitfor are critical."""
        assert _has(detector.scan("1; SELECT sleep(5)"), ThreatType.SQL_INJECTION, Severity.CRITICAL)
        assert _has(
            detector.scan("1'; WAITFOR DELAY '0:0:5'"), ThreatType.SQL_INJECTION, Severity.CRITICAL
        )

    def test_boolean_blind_sql(self, detector):
        """OR 1=1 is a high severity SQL injection."""
        findings = detector.scan("admin OR 1=1")
        assert _has(findings, ThreatType.SQL_INJECTION, Severity.HIGH)
        assert not _has(findings, ThreatType.SQL_INJECTION, Severity.CRITICAL)

    @pytest.mark.parametrize(
        "payload",
        [
            "<script>alert(1)</script>",
            "<SCRIPT type='text/javascript'>document.cookie</SCRIPT>",
            "hello <script>x</script> world",
        ],
    )
    def test_script_block_is_critical(self, detector, payload):
        """A <script> block is a critical XSS finding."""
        assert _has(detector.scan(payload), ThreatType.XSS, Severity.CRITICAL)

    def test_event_handler(self, detector):
        """Inline event handlers are high severity XSS."""
        assert _has(detector.scan('<img src=x onerror="alert(1)">'), ThreatType.XSS, Severity.HIGH)

    def test_javascript_uri(self, detector):
        """javascript: URIs are high severity XSS."""
        assert _has(detector.scan("javascript:alert(1)"), ThreatType.XSS, Severity.HIGH)

    def test_command_substitution(self, detector):
        """$(...) is a high severity command injection."""
        findings = detector.scan("$(whoami)")
        assert _has(findings, ThreatType.COMMAND_INJECTION, Severity.HIGH)

    def test_nosql_operator(self, detector):
        """Mongo-style operators are detected."""
        assert _has(detector.scan('{$ne: null}'), ThreatType.NOSQL_INJECTION, Severity.HIGH)

    def test_ldap_metacharacters(self, detector):
        """LDAP filter metacharacters are detected."""
        assert _has(detector.scan("*)(uid=*"), ThreatType.LDAP_INJECTION, Severity.HIGH)

    def test_path_traversal(self, detector):
        """../ sequences are suspicious."""
        assert _has(detector.scan("../../etc/passwd"), ThreatType.SUSPICIOUS_PATTERN, Severity.HIGH)

    def test_environment_interpolation_is_case_sensitive(self, detector):
        """Only upper-case $NAME counts as interpolation."""
        assert any(
            f.matched_pattern == "$HOME" for f in detector.scan("echo $HOME")
        )
        assert not any(
            f.message.startswith("Environment") for f in detector.scan("costs $five")
        )

    def test_findings_carry_field_and_excerpt(self, detector):
        """Findings record the field name and a bounded payload excerpt."""
        payload = "1 UNION SELECT " + "a" * 300
        findings = detector.scan(payload, field="q")
        assert findings
        for finding in findings:
            assert finding.field == "q"
            assert len(finding.payload_excerpt) <= 103
            assert len(finding.matched_pattern) <= 103

    def test_confidence_in_range(self, detector):
        """Confidence is always within 0-100."""
        findings = detector.scan("<script>x</script> OR 1=1; $(id) ../ ${X}")
        assert findings
        assert all(0 <= f.confidence <= 100 for f in findings)


class TestLengthLimit:
    """Tests for the maximum input length."""

    def test_length_exceeded_reported_first(self):
        """Oversized input yields a MALFORMED_INPUT finding before any other."""
        detector = ThreatDetector(max_input_length=10)
        findings = detector.scan("<script>a</script>")
        assert findings[0].type is ThreatType.MALFORMED_INPUT
        assert findings[0].severity is Severity.MEDIUM
        assert findings[0].matched_pattern == "length_exceeded"
        assert ThreatType.XSS in _types(findings)

    def test_within_limit(self):
        """Input at the limit is not malformed."""
        detector = ThreatDetector(max_input_length=8)
        assert ThreatType.MALFORMED_INPUT not in _types(detector.scan("Buy milk"))


class TestFamilies:
    """Tests for enabling and disabling detector families."""

    def test_disabled_family_is_skipped(self):
        """A detector without XSS ignores script tags."""
        detector = ThreatDetector(enabled_families=[ThreatType.SQL_INJECTION])
        findings = detector.scan("<script>alert(1)</script>")
        assert ThreatType.XSS not in _types(findings)

    def test_scan_family_ignores_enabled_set(self):
        """scan_family runs one family even if it is disabled."""
        detector = ThreatDetector(enabled_families=[])
        assert detector.scan("<script>alert(1)</script>") == []
        findings = detector.scan_family(ThreatType.XSS, "<script>alert(1)</script>")
        assert findings and _types(findings) == {ThreatType.XSS}

    def test_scan_family_rejects_non_pattern_types(self):
        """Rate limit and malformed input are not pattern families."""
        with pytest.raises(ValueError):
            ThreatDetector().scan_family(ThreatType.RATE_LIMIT_EXCEEDED, "x")

    def test_all_pattern_families_registered(self):
        """Every pattern family has rules."""
        assert set(DETECTOR_FAMILIES) == {
            ThreatType.SQL_INJECTION,
            ThreatType.XSS,
            ThreatType.COMMAND_INJECTION,
            ThreatType.NOSQL_INJECTION,
            ThreatType.LDAP_INJECTION,
            ThreatType.SUSPICIOUS_PATTERN,
        }
        assert all(DETECTOR_FAMILIES.values())
