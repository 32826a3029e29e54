"""Request Guard CLI - Main entry point."""

from __future__ import annotations

import json
from enum import Enum
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from request_guard import __version__
from request_guard.security import (
    SecurityPolicyConfig,
    SecurityPolicyEngine,
    Severity,
    development_auth_config,
    development_policy,
    production_auth_config,
    production_policy,
    sanitize as sanitize_value,
)

app = typer.Typer(
    name="request-guard",
    help="Request threat detection, rate limiting and login risk checks",
    add_completion=False,
)
console = Console()

_SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


class Profile(str, Enum):
    development = "development"
    production = "production"


def _policy_for(profile: Profile) -> SecurityPolicyConfig:
    return production_policy() if profile is Profile.production else development_policy()


@app.command()
def scan(
    text: str = typer.Argument(..., help="Untrusted input to scan"),
    field: str = typer.Option("input", "--field", "-f", help="Field name to report"),
    profile: Profile = typer.Option(
        Profile.production,
        "--profile",
        "-p",
        help="Policy preset to apply",
    ),
    json_output: bool = typer.Option(
        False,
        "--json", "-j",
        help="Output the decision as JSON",
    ),
):
    """Scan a value for injection payloads and show the policy decision.

    Exits with status 1 when the value would be rejected.
    """
    engine = SecurityPolicyEngine(_policy_for(profile))
    fields = {field: text}
    decision = engine.decide(engine.validate(fields), fields)

    if json_output:
        payload = decision.to_dict()
        payload["sanitized_fields"] = decision.sanitized_fields
        print(json.dumps(payload, indent=2, default=str))
    else:
        _print_decision(decision)

    if not decision.allowed:
        raise typer.Exit(1)


def _print_decision(decision) -> None:
    if decision.findings:
        table = Table(title="Findings")
        table.add_column("Type", style="cyan")
        table.add_column("Severity")
        table.add_column("Confidence", justify="right")
        table.add_column("Field")
        table.add_column("Message")
        for finding in decision.findings:
            style = _SEVERITY_STYLES.get(finding.severity, "")
            table.add_row(
                finding.type.value,
                f"[{style}]{finding.severity.value}[/{style}]" if style else finding.severity.value,
                str(finding.confidence),
                finding.field or "-",
                finding.message,
            )
        console.print(table)
    else:
        console.print("[green]No threats detected[/green]")

    if decision.allowed:
        console.print("\n[green]✓ Allowed[/green]")
        if decision.sanitized_fields:
            for name, value in decision.sanitized_fields.items():
                console.print(f"  {name}: {value}", markup=False)
        return

    console.print(Panel(
        "\n".join(f"[red]✗[/red] {m}" for m in decision.error_messages),
        title=f"Rejected ({decision.error.kind.value})",
        border_style="red",
    ))


@app.command()
def sanitize(
    text: str = typer.Argument(..., help="Value to escape"),
):
    """Escape HTML-significant characters and strip control characters."""
    print(sanitize_value(text))


@app.command()
def presets(
    json_output: bool = typer.Option(
        False,
        "--json", "-j",
        help="Output as JSON",
    ),
):
    """Compare the development and production presets."""
    dev_policy, prod_policy = development_policy(), production_policy()
    dev_auth, prod_auth = development_auth_config(), production_auth_config()

    rows = [
        ("SQL injection detection", dev_policy.enable_sql_injection_detection, prod_policy.enable_sql_injection_detection),
        ("XSS detection", dev_policy.enable_xss_detection, prod_policy.enable_xss_detection),
        ("Command injection detection", dev_policy.enable_command_injection_detection, prod_policy.enable_command_injection_detection),
        ("NoSQL injection detection", dev_policy.enable_nosql_injection_detection, prod_policy.enable_nosql_injection_detection),
        ("LDAP injection detection", dev_policy.enable_ldap_injection_detection, prod_policy.enable_ldap_injection_detection),
        ("Suspicious pattern detection", dev_policy.enable_suspicious_pattern_detection, prod_policy.enable_suspicious_pattern_detection),
        ("Input sanitization", dev_policy.enable_input_sanitization, prod_policy.enable_input_sanitization),
        ("Max input length", dev_policy.max_input_length, prod_policy.max_input_length),
        ("Rate limiting", dev_policy.rate_limit.enabled, prod_policy.rate_limit.enabled),
        ("Requests per window", dev_policy.rate_limit.max_requests, prod_policy.rate_limit.max_requests),
        ("Rate limit window (s)", dev_policy.rate_limit.window_seconds, prod_policy.rate_limit.window_seconds),
        ("Failed logins before lock", dev_auth.max_failed_attempts, prod_auth.max_failed_attempts),
        ("Lockout duration (s)", dev_auth.lockout_duration, prod_auth.lockout_duration),
        ("High risk threshold", dev_auth.risk_thresholds.high, prod_auth.risk_thresholds.high),
        ("New location alerts", dev_auth.enable_new_location_check, prod_auth.enable_new_location_check),
    ]

    if json_output:
        data = {
            name: {"development": dev, "production": prod}
            for name, dev, prod in rows
        }
        print(json.dumps(data, indent=2))
        return

    table = Table(title="Security Presets")
    table.add_column("Setting", style="cyan")
    table.add_column("development")
    table.add_column("production")
    for name, dev, prod in rows:
        table.add_row(name, _fmt(dev), _fmt(prod))
    console.print(table)


def _fmt(value) -> str:
    if isinstance(value, bool):
        return "[green]on[/green]" if value else "[dim]off[/dim]"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    environment: Optional[str] = typer.Option(
        None,
        "--env",
        help="Override REQUEST_GUARD_ENVIRONMENT",
    ),
):
    """Run the HTTP API with uvicorn."""
    try:
        import uvicorn
    except ImportError as e:
        console.print(f"[red]Missing dependencies:[/red] {e}")
        console.print("Run: pip install uvicorn")
        raise typer.Exit(1)

    from request_guard.api import create_app
    from request_guard.config import Settings

    settings = Settings(environment=environment) if environment else None
    uvicorn.run(create_app(settings, configure=True), host=host, port=port)


@app.command()
def version():
    """Show Request Guard version."""
    console.print(f"[bold]Request Guard[/bold] v{__version__}")
    console.print("[dim]Request security and login risk engine[/dim]")


@app.callback()
def main():
    """
    Request Guard - request threat detection and login risk checks.

    Run 'request-guard --help' for available commands.
    """
    pass


if __name__ == "__main__":
    app()
