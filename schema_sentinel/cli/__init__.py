"""
Command Line Interface for Schema Sentinel.
"""

import json
from typing import List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..db.base import get_session_local, init_database
from ..db.services import AuditResultService, AuditRunService, ConnectionService
from ..fixes.executor import FixExecutionError
from ..llm.client import CompletionError
from ..llm.investigator import UnsafeQueryError
from ..services import (
    AuditRequestError,
    apply_fixes,
    get_run_status,
    investigate_hypothesis,
    submit_audit,
)
from ..worker.loop import run_worker

app = typer.Typer(help="Schema Sentinel - database schema integrity auditor")
connections_app = typer.Typer(help="Manage registered target databases")
audit_app = typer.Typer(help="Submit and inspect audit runs")
app.add_typer(connections_app, name="connections")
app.add_typer(audit_app, name="audit")

console = Console()

SEVERITY_STYLE = {
    "CRITICAL": "bold white on red",
    "HIGH": "bold red",
    "MEDIUM": "yellow",
    "LOW": "cyan",
}
STATUS_EMOJI = {
    "queued": "🟡",
    "running": "🔵",
    "completed": "✅",
    "failed": "❌",
}


def _session():
    return get_session_local()()


@app.command("init-db")
def init_db():
    """Create the run ledger tables."""
    init_database()
    console.print("✅ Run ledger initialized")


@connections_app.command("add")
def add_connection(
    name: str = typer.Argument(..., help="Display name for the connection"),
    dsn: str = typer.Argument(..., help="SQLAlchemy connection string of the target"),
):
    """Register a target database."""
    db = _session()
    try:
        connection = ConnectionService(db).create_connection(name, dsn)
        console.print(f"✅ Registered connection {connection.name}: {connection.id}")
    finally:
        db.close()


@connections_app.command("list")
def list_connections():
    """List registered target databases."""
    db = _session()
    try:
        connections = ConnectionService(db).get_connections()
    finally:
        db.close()

    if not connections:
        console.print("No connections registered")
        return

    table = Table(title="Connections", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="yellow")
    table.add_column("Name", style="green")
    table.add_column("Created")
    for connection in connections:
        data = connection.to_dict()
        table.add_row(data["id"], data["name"], data["created_at"] or "")
    console.print(table)


@audit_app.command("submit")
def submit(
    connection_id: str = typer.Argument(..., help="Connection to audit"),
    problem: Optional[str] = typer.Option(
        None, help="Describe a suspected data problem to investigate"
    ),
    wait: bool = typer.Option(False, help="Process the queue in this process"),
):
    """Queue an audit run."""
    db = _session()
    try:
        run = submit_audit(db, connection_id, problem_statement=problem)
        run_id = run.id
    except AuditRequestError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    console.print(f"🚀 Queued audit run {run_id}")
    if wait:
        run_worker()
        _print_status(run_id)


def _print_status(run_id: str) -> None:
    db = _session()
    try:
        status = get_run_status(db, run_id)
    except AuditRequestError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    emoji = STATUS_EMOJI.get(status["status"], "❓")
    body = f"{emoji} {status['status'].title()}  {status['progress']}%"
    if status["latest_log"]:
        body += f"\n{status['latest_log']}"
    rprint(Panel.fit(body, title=f"Audit run {run_id}", style="bold blue"))


@audit_app.command("status")
def status(run_id: str = typer.Argument(..., help="Audit run to show")):
    """Show status, progress and the latest log line of a run."""
    _print_status(run_id)


@audit_app.command("report")
def report(
    run_id: str = typer.Argument(..., help="Completed audit run"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result"),
):
    """Show the issues and fix plan of a completed run."""
    db = _session()
    try:
        result = AuditResultService(db).get_result_for_run(run_id)
        if result is None:
            console.print(f"❌ Audit run {run_id} has no result")
            raise typer.Exit(code=1)
        issues = AuditResultService.load_issues(result)
        fix_plan = AuditResultService.load_fix_plan(result)
        verification = result.verification
        result_id = result.id
    finally:
        db.close()

    if as_json:
        console.print_json(
            json.dumps(
                {
                    "result_id": result_id,
                    "issues": [i.model_dump(mode="json", by_alias=True) for i in issues],
                    "fix_plan": fix_plan.model_dump(mode="json", by_alias=True),
                    "verification": verification,
                }
            )
        )
        return

    table = Table(
        title=f"Issues ({len(issues)})", show_header=True, header_style="bold magenta"
    )
    table.add_column("Severity")
    table.add_column("Category", style="cyan")
    table.add_column("Title")
    table.add_column("Tables", style="green")
    table.add_column("Rows", justify="right")
    for issue in issues:
        table.add_row(
            f"[{SEVERITY_STYLE.get(issue.severity.value, '')}]{issue.severity.value}[/]",
            issue.category.value,
            issue.title,
            ", ".join(issue.evidence.affected_tables),
            str(issue.evidence.row_count) if issue.evidence.row_count is not None else "",
        )
    console.print(table)

    if fix_plan.canonical_rule:
        console.print(Panel.fit(fix_plan.canonical_rule, title="Canonical rule"))

    fixes = Table(title="Migrations", show_header=True, header_style="bold cyan")
    fixes.add_column("#", justify="right")
    fixes.add_column("Safety")
    fixes.add_column("Status")
    fixes.add_column("Description")
    for index, fix in enumerate(fix_plan.migrations):
        fixes.add_row(
            str(index),
            fix.safety_rating.value,
            fix.status.value if fix.status else "",
            fix.description,
        )
    console.print(fixes)
    console.print(f"Result ID: {result_id}")

    if verification:
        console.print(
            f"🔁 Verification against {verification.get('baseline_run_id')}: "
            f"{verification.get('progress_percent')}% progress"
        )


@audit_app.command("fix")
def fix(
    result_id: str = typer.Argument(..., help="Audit result holding the fix plan"),
    index: List[int] = typer.Option(..., "--index", "-i", help="Migration index to apply"),
):
    """Apply selected migrations in one transaction and queue a verification run."""
    db = _session()
    try:
        outcome = apply_fixes(db, result_id, index)
    except FixExecutionError as e:
        console.print(f"❌ Fixes not applied ({e.code}): {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    console.print(f"✅ Applied {outcome.executed} migrations")
    if outcome.verification_run_id:
        console.print(f"🔁 Queued verification run {outcome.verification_run_id}")


@audit_app.command("investigate")
def investigate(
    run_id: str = typer.Argument(..., help="Completed audit run"),
    hypothesis: str = typer.Argument(..., help="What you suspect is wrong"),
):
    """Test a hypothesis with a read-only query against the run's target."""
    db = _session()
    try:
        outcome = investigate_hypothesis(db, run_id, hypothesis)
    except (AuditRequestError, CompletionError, UnsafeQueryError) as e:
        console.print(f"❌ Investigation failed ({e.code}): {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    verdict = "✅ Confirmed" if outcome.analysis.confirmed else "➖ Not confirmed"
    rprint(Panel.fit(f"{verdict}\n{outcome.analysis.evidence}", title=hypothesis))
    console.print(f"SQL: {outcome.sql}")
    console.print(f"Rows: {outcome.row_count}")


@app.command()
def worker(
    poll_interval: Optional[int] = typer.Option(
        None, help="Keep polling every N seconds instead of draining once"
    ),
):
    """Process queued audit runs."""
    processed = run_worker(poll_interval=poll_interval)
    if not poll_interval:
        console.print(f"✅ Processed {processed} audit runs")


@app.command()
def runs(
    connection_id: Optional[str] = typer.Option(None, help="Only runs for this connection"),
    limit: int = typer.Option(20, help="Maximum runs to show"),
):
    """List recent audit runs."""
    db = _session()
    try:
        items = [r.to_dict() for r in AuditRunService(db).get_runs(connection_id, limit=limit)]
    finally:
        db.close()

    table = Table(title="Audit runs", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="yellow")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Parent")
    table.add_column("Created")
    for item in items:
        table.add_row(
            item["id"],
            f"{STATUS_EMOJI.get(item['status'], '❓')} {item['status']}",
            f"{item['progress']}%",
            item["parent_run_id"] or "",
            item["created_at"] or "",
        )
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Schema Sentinel v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
