import asyncio
import json
import typer
from pathlib import Path
from typing import Any, Dict, Optional
from rich.console import Console
from rich.table import Table
from rich import print as rprint

from kibitz.errors import ConfigError, KibitzError
from kibitz.logging_config import setup_logging
from kibitz.reporter import TestReporter, load_report
from kibitz.runner import InspectorTestRunner
from kibitz.schema_validation import RunnerOptions, filter_servers, load_config
from kibitz.validator import DataValidator

app = typer.Typer(
    name="kibitz",
    help="🔎 Kibitz - automated MCP Inspector test runner",
    add_completion=False
)
console = Console()


def _status_icon(ok: bool) -> str:
    return "✅" if ok else "❌"


def _print_summary(summary: Dict[str, Any], results: list) -> None:
    table = Table(title="📊 MCP Inspector Test Results")
    table.add_column("Server", style="cyan")
    table.add_column("Status")
    table.add_column("Resources", justify="right")
    table.add_column("Tools", justify="right")
    table.add_column("Prompts", justify="right")
    table.add_column("Ping")
    table.add_column("Errors", justify="right")

    for server in results:
        capabilities = server.get("capabilities", {})
        cells = []
        for capability in ("resources", "tools", "prompts"):
            tests = capabilities.get(capability, {}).get("tests", [])
            passed = sum(1 for t in tests if t.get("status") == "success")
            cells.append(f"{passed}/{len(tests)}")
        ping = server.get("ping") or {}
        table.add_row(
            server.get("serverName", "?"),
            f"{_status_icon(server.get('status') == 'completed')} {server.get('status')}",
            *cells,
            ping.get("status", "-"),
            str(len(server.get("errors", []))),
        )

    console.print(table)
    rprint(
        f"\nServers: [bold]{summary.get('successfulServers', 0)}/{summary.get('totalServers', 0)}[/bold] successful"
        f"   Tests: [bold]{summary.get('passedTests', 0)}/{summary.get('totalTests', 0)}[/bold] passed"
        f"   Success rate: [bold]{summary.get('successRate', 0)}%[/bold]"
    )


def _print_validation(validation: Dict[str, Any]) -> None:
    for error in validation.get("errors", []):
        rprint(f"[red]  ✗ {error['message']}[/red]")
    for warning in validation.get("warnings", []):
        rprint(f"[yellow]  ⚠ {warning['message']}[/yellow]")

    counts = validation.get("summary", {})
    colour = "green" if validation.get("isValid") else "red"
    rprint(
        f"[{colour}]Validation: {counts.get('errorCount', 0)} errors, "
        f"{counts.get('warningCount', 0)} warnings[/{colour}]"
    )


@app.command()
def run(
    headless: Optional[bool] = typer.Option(None, "--headless/--gui", help="Run the browser headless (default: $HEADLESS)"),
    server: Optional[str] = typer.Option(None, "--server", "-s", help="Test only this server id"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Server config file (YAML or JSON)"),
    timeout: Optional[int] = typer.Option(None, "--timeout", "-t", help="Selector timeout in ms"),
    retries: Optional[int] = typer.Option(None, "--retries", "-r", help="Navigation retries"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Report directory"),
    no_screenshots: bool = typer.Option(False, "--no-screenshots", help="Skip screenshots on failure"),
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    """🚀 Run the Inspector test suite"""

    setup_logging(level=log_level)

    try:
        suite = load_config(config)
        servers = filter_servers(suite, server)
    except (ConfigError, ValueError) as e:
        rprint(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    options = RunnerOptions.from_env(
        headless=headless,
        timeout=timeout,
        retries=retries,
        output_dir=output,
        screenshot_on_failure=False if no_screenshots else None,
    )

    rprint(f"\n▶️  Testing [bold]{len(servers)}[/bold] server(s): {', '.join(servers)}\n")

    runner = InspectorTestRunner(options)
    try:
        outcome = asyncio.run(runner.run(servers))
    except KibitzError as e:
        rprint(f"[red]❌ Test run failed: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        rprint(f"[red]❌ Test run failed ({type(e).__name__}): {e}[/red]")
        raise typer.Exit(1)

    summary = outcome["summary"].to_dict()
    _print_summary(summary, [result.to_dict() for result in outcome["results"]])
    _print_validation(outcome["validation"])
    rprint(f"\n📄 Report: {outcome['reportPath']}")

    if summary["failedServers"] or summary["failedTests"]:
        raise typer.Exit(1)


@app.command()
def servers(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Server config file (YAML or JSON)"),
):
    """📋 List configured servers"""

    try:
        suite = load_config(config)
    except ConfigError as e:
        rprint(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="🔎 Configured MCP Servers")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Path")
    table.add_column("Capabilities")
    table.add_column("Cases", justify="right")

    for server_id, server_config in suite.servers.items():
        cases = sum(len(getattr(server_config.test_cases, cap)) for cap in ("tools", "resources", "prompts"))
        table.add_row(
            server_id,
            server_config.name,
            server_config.path,
            ", ".join(server_config.capabilities),
            str(cases),
        )

    console.print(table)


@app.command()
def validate(
    report_file: Path = typer.Argument(..., help="Saved JSON report"),
    strict: bool = typer.Option(False, "--strict", help="Treat warnings as errors"),
):
    """🔍 Validate a saved report's result tree"""

    if not report_file.exists():
        rprint(f"[red]❌ Report not found: {report_file}[/red]")
        raise typer.Exit(1)

    try:
        report = load_report(report_file)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        rprint(f"[red]❌ Report is not valid JSON: {report_file} ({e})[/red]")
        raise typer.Exit(1)
    if not isinstance(report, dict):
        rprint(f"[red]❌ Report must be a JSON object: {report_file}[/red]")
        raise typer.Exit(1)

    validation = DataValidator(strict_mode=strict).validate_test_results(report.get("testResults"))
    _print_validation(validation)

    if not validation["isValid"]:
        raise typer.Exit(1)


@app.command()
def latest(
    output: Path = typer.Option(Path("reports"), "--output", "-o", help="Report directory"),
):
    """📄 Show the most recent report"""

    report = TestReporter(str(output)).load_latest()
    if report is None:
        rprint(f"[yellow]ℹ️  No reports found in {output}. Run 'kibitz run' first.[/yellow]")
        raise typer.Exit(1)

    rprint(f"Generated: {report.get('timestamp', '?')}")
    _print_summary(report.get("summary", {}), report.get("testResults", []))


if __name__ == "__main__":
    app()
