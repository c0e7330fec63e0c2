"""grcscope command-line interface.

Every command works on one tenant (``--tenant``) inside one workspace
(``--workspace``), whose ``.grcscope/config.yaml`` selects the catalog and the
store. ``--json`` switches output from rich tables to JSON.
"""

from __future__ import annotations

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import pydantic
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..core.errors import ConfigurationError, GRCScopeError

console = Console()

STATUS_STYLE = {
    "compliant": "green",
    "partially_compliant": "yellow",
    "non_compliant": "red",
    "not_applicable": "dim",
    "not_assessed": "dim",
}

RISK_STYLE = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "dim"}


def setup_logging(level: str) -> None:
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logging.basicConfig(level=level.upper(), format="%(message)s", handlers=[handler], force=True)


def _validation_message(error: pydantic.ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "input"
        problems.append(f"{field}: {item['msg']}")
    return "; ".join(problems)


def handles_errors(func):
    """Report grcscope errors as a one-line message and a non-zero exit code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigurationError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(2)
        except GRCScopeError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except pydantic.ValidationError as e:
            click.echo(f"Error: {_validation_message(e)}", err=True)
            sys.exit(1)

    return wrapper


class AppContext:
    """Lazily built engine shared by the subcommands of one invocation."""

    def __init__(self, tenant: str, workspace: Path, as_json: bool, overrides: dict) -> None:
        self.tenant = tenant
        self.workspace = workspace
        self.as_json = as_json
        self.overrides = overrides
        self._engine = None

    @property
    def engine(self):
        if self._engine is None:
            from ..core.config import get_effective_config
            from ..core.engine import ComplianceEngine

            config = get_effective_config(self.workspace, cli_overrides=self.overrides)
            setup_logging(config.get("logging", {}).get("level", "WARNING"))
            self._engine = ComplianceEngine.from_config(config, workspace=self.workspace)
        return self._engine


pass_app = click.make_pass_decorator(AppContext)


def _emit_json(data) -> None:
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [d.model_dump(mode="json") if hasattr(d, "model_dump") else d for d in data]
    elif isinstance(data, dict):
        data = {k: v.model_dump(mode="json") if hasattr(v, "model_dump") else v for k, v in data.items()}
    click.echo(json.dumps(data, indent=2, default=str))


def _status(value: str) -> str:
    style = STATUS_STYLE.get(value, "")
    return f"[{style}]{value}[/{style}]" if style else value


def _risk(value: str) -> str:
    style = RISK_STYLE.get(value, "")
    return f"[{style}]{value}[/{style}]" if style else value


def _delta(value: Optional[int]) -> str:
    if value is None:
        return "[dim]no baseline[/dim]"
    return f"{value:+d}"


@click.group()
@click.option("--tenant", "-t", envvar="GRCSCOPE_TENANT", default="default", show_default=True, help="Tenant id")
@click.option(
    "--workspace", "-w",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Workspace holding .grcscope/config.yaml",
)
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of tables")
@click.option("--catalog", type=click.Path(exists=True, file_okay=False), help="Catalog directory override")
@click.option("--store", type=click.Choice(["memory", "files", "supabase"]), help="Store backend override")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), help="Log level override")
@click.version_option(package_name="grcscope")
@click.pass_context
def cli(
    ctx: click.Context,
    tenant: str,
    workspace: Path,
    as_json: bool,
    catalog: str | None,
    store: str | None,
    log_level: str | None,
) -> None:
    """grcscope - compliance scoring and requirement assessment."""
    overrides: dict = {}
    if catalog:
        overrides["catalog"] = {"path": catalog}
    if store:
        overrides["store"] = {"backend": store}
    if log_level:
        overrides["logging"] = {"level": log_level}
    ctx.obj = AppContext(tenant, workspace, as_json, overrides)


# -- catalog --------------------------------------------------------------


@cli.command()
@pass_app
@handles_errors
def frameworks(app: AppContext) -> None:
    """List frameworks and their assessable requirement counts."""
    items = app.engine.frameworks()
    if app.as_json:
        _emit_json(items)
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Framework")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Requirements", justify="right")
    for f in items:
        table.add_row(f.id, f.full_name or f.name, f.version, str(f.leaf_count))
    console.print(table)


@cli.command()
@pass_app
@handles_errors
def domains(app: AppContext) -> None:
    """List control domains for the tenant."""
    engine = app.engine
    items = engine.domains(app.tenant)
    if app.as_json:
        _emit_json(items)
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Domain")
    table.add_column("Title")
    table.add_column("Controls", justify="right")
    for d in items:
        table.add_row(d.id, d.title, str(len(engine.controls(app.tenant, d.id))))
    console.print(table)


@cli.command()
@click.option("--domain", "-d", help="Only controls in this domain")
@pass_app
@handles_errors
def controls(app: AppContext, domain: str | None) -> None:
    """List controls with the tenant's current answers."""
    engine = app.engine
    items = engine.controls(app.tenant, domain)
    answers = engine.answers(app.tenant)
    if app.as_json:
        _emit_json(items)
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Control")
    table.add_column("Title")
    table.add_column("Risk")
    table.add_column("Answer")
    for c in items:
        answer = answers.get(c.id)
        table.add_row(c.id, c.title, _risk(c.risk_level.value), answer.value if answer else "unanswered")
    console.print(table)


@cli.command()
@click.option("--framework", "-f", help="Only this framework")
@pass_app
@handles_errors
def coverage(app: AppContext, framework: str | None) -> None:
    """Show how many leaf requirements have a mapped control."""
    stats = app.engine.coverage(app.tenant, framework)
    if app.as_json:
        _emit_json(stats)
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Framework")
    table.add_column("Leaves", justify="right")
    table.add_column("Mapped", justify="right")
    table.add_column("Unmapped", justify="right")
    table.add_column("Avg controls", justify="right")
    table.add_column("Coverage", justify="right")
    for fid, s in stats.items():
        table.add_row(fid, str(s.total), str(s.mapped), str(s.unmapped), f"{s.average_coverage:.2f}", f"{s.coverage_percent}%")
    console.print(table)


# -- responses ------------------------------------------------------------


@cli.command()
@click.argument("control_id")
@click.argument("answer", type=click.Choice(["yes", "no", "partial", "na", "unanswered"]))
@click.option("--notes", "-n", help="Free-text notes")
@pass_app
@handles_errors
def answer(app: AppContext, control_id: str, answer: str, notes: str | None) -> None:
    """Answer a control question."""
    response = app.engine.answer(app.tenant, control_id, answer, notes=notes)
    if app.as_json:
        _emit_json(response)
        return
    console.print(f"  [green]Saved[/green] {control_id} = {response.answer.value}")


@cli.command()
@click.argument("control_id")
@click.argument("plan")
@pass_app
@handles_errors
def remediate(app: AppContext, control_id: str, plan: str) -> None:
    """Record a remediation plan for a control."""
    response = app.engine.set_remediation_plan(app.tenant, control_id, plan)
    if app.as_json:
        _emit_json(response)
        return
    console.print(f"  [green]Saved[/green] remediation plan for {control_id}")


# -- scoring --------------------------------------------------------------


@cli.command()
@pass_app
@handles_errors
def score(app: AppContext) -> None:
    """Show overall, domain and framework scores."""
    breakdown = app.engine.scores(app.tenant)
    if app.as_json:
        _emit_json(breakdown)
        return
    o = breakdown.overall
    console.print(f"[bold]Overall:[/bold] {o.score}%  ({o.implemented} yes, {o.partial} partial, "
                  f"{o.not_implemented} no, {o.not_applicable} n/a, {o.not_started} unanswered)")

    table = Table(title="Frameworks", show_header=True, header_style="bold")
    table.add_column("Framework")
    table.add_column("Score", justify="right")
    table.add_column("Controls", justify="right")
    table.add_column("Gaps", justify="right")
    for f in breakdown.frameworks.values():
        table.add_row(f.id, f"{f.score}%", str(f.total), str(f.gaps))
    console.print(table)

    table = Table(title="Domains", show_header=True, header_style="bold")
    table.add_column("Domain")
    table.add_column("Score", justify="right")
    table.add_column("Controls", justify="right")
    for d in breakdown.domains.values():
        table.add_row(d.name or d.id, f"{d.score}%", str(d.total))
    console.print(table)


@cli.command()
@click.option("--limit", "-n", type=int, help="Number of gaps to show")
@pass_app
@handles_errors
def gaps(app: AppContext, limit: int | None) -> None:
    """Show critical and high risk controls answered no."""
    items = app.engine.critical_gaps(app.tenant, limit)
    if app.as_json:
        _emit_json(items)
        return
    if not items:
        console.print("  [green]No critical gaps[/green]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Control")
    table.add_column("Risk")
    table.add_column("Domain")
    table.add_column("Title")
    for g in items:
        table.add_row(g.control_id, _risk(g.risk_level.value), g.domain, g.title)
    console.print(table)


@cli.command()
@click.argument("framework_id")
@click.argument("requirement_id")
@pass_app
@handles_errors
def requirement(app: AppContext, framework_id: str, requirement_id: str) -> None:
    """Show mapped controls and implied/recorded status for a requirement."""
    view = app.engine.requirement_view(app.tenant, framework_id, requirement_id)
    if app.as_json:
        data = view.model_dump(mode="json")
        data["effective_status"] = view.effective_status.value
        _emit_json(data)
        return
    console.print(f"[bold]{framework_id} {requirement_id}[/bold] {view.requirement.title}")
    console.print(f"  Implied:   {_status(view.implied_status.value)}")
    recorded = view.recorded.status.value if view.recorded else "none"
    console.print(f"  Recorded:  {_status(recorded)}")
    console.print(f"  Effective: {_status(view.effective_status.value)}")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Control")
    table.add_column("Mapping")
    table.add_column("Answer")
    for m in view.mapped_controls + view.related_controls:
        table.add_row(m.control.id, m.mapping_type, m.answer.value)
    console.print(table)


# -- analytics ------------------------------------------------------------


@cli.command()
@pass_app
@handles_errors
def snapshot(app: AppContext) -> None:
    """Record a point-in-time snapshot of current scores."""
    snap = app.engine.create_snapshot(app.tenant)
    if app.as_json:
        _emit_json(snap)
        return
    console.print(f"  [green]Snapshot[/green] {snap.id[:8]} score {snap.overall_score}%")


@cli.command()
@click.option("--days", "-d", type=int, help="Window in days")
@pass_app
@handles_errors
def trend(app: AppContext, days: int | None) -> None:
    """Show snapshot scores over time."""
    points = app.engine.trend(app.tenant, days)
    if app.as_json:
        _emit_json(points)
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Date")
    table.add_column("Score", justify="right")
    for p in points:
        table.add_row(p.timestamp.strftime("%Y-%m-%d %H:%M"), f"{p.score}%")
    console.print(table)


@cli.command()
@click.argument("days", type=int)
@pass_app
@handles_errors
def delta(app: AppContext, days: int) -> None:
    """Score change against the snapshot DAYS ago."""
    value = app.engine.delta(app.tenant, days)
    if app.as_json:
        _emit_json({"days": days, "delta": value})
        return
    console.print(f"  {days}d change: {_delta(value)}")


@cli.command()
@pass_app
@handles_errors
def dashboard(app: AppContext) -> None:
    """Headline metrics: score, recent change, gap counts, framework readiness."""
    metrics = app.engine.dashboard(app.tenant)
    if app.as_json:
        _emit_json(metrics)
        return
    console.print(f"[bold]Score:[/bold] {metrics.overall_score}%  "
                  f"7d {_delta(metrics.score_change_7d)}  30d {_delta(metrics.score_change_30d)}")
    console.print(f"  Controls implemented: {metrics.controls_implemented}/{metrics.controls_total}")
    console.print(f"  Open gaps: {metrics.critical_gaps} critical, {metrics.high_gaps} high")
    for fid, value in metrics.framework_readiness.items():
        console.print(f"  {fid}: {value}%")


@cli.command()
@pass_app
@handles_errors
def analysis(app: AppContext) -> None:
    """Gap analysis by risk, framework and domain."""
    engine = app.engine
    result = engine.gap_analysis(app.tenant)
    domains = engine.domain_analysis(app.tenant)
    if app.as_json:
        _emit_json({"gaps": result.model_dump(mode="json"), "domains": [d.model_dump(mode="json") for d in domains]})
        return
    console.print(f"[bold]Gaps:[/bold] {len(result.critical)} critical, {len(result.high)} high, {len(result.medium)} medium")
    table = Table(title="Domains", show_header=True, header_style="bold")
    table.add_column("Domain")
    table.add_column("Score", justify="right")
    table.add_column("Risk")
    table.add_column("Open", justify="right")
    for d in domains:
        table.add_row(d.title or d.domain, f"{d.score}%", _risk(d.risk_level.value), str(result.by_domain.get(d.domain, 0)))
    console.print(table)
    table = Table(title="Frameworks", show_header=True, header_style="bold")
    table.add_column("Framework")
    table.add_column("Open", justify="right")
    for fid, count in result.by_framework.items():
        table.add_row(fid, str(count))
    console.print(table)


@cli.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Write to file")
@pass_app
@handles_errors
def export(app: AppContext, output: Path | None) -> None:
    """Export scores, gaps and trends as JSON for report generation."""
    bundle = app.engine.export(app.tenant)
    text = bundle.model_dump_json(indent=2)
    if output:
        output.write_text(text, encoding="utf-8")
        click.echo(f"Exported to {output}")
    else:
        click.echo(text)


# -- custom controls ------------------------------------------------------


@cli.group()
def custom() -> None:
    """Manage the tenant's custom controls."""


@custom.command("add")
@click.option("--title", required=True)
@click.option("--description", default="")
@click.option("--question", default="")
@click.option("--risk", type=click.Choice(["low", "medium", "high", "critical"]), default="medium")
@click.option("--map", "maps", multiple=True, help="FRAMEWORK:CLAUSE, repeatable")
@pass_app
@handles_errors
def custom_add(app: AppContext, title: str, description: str, question: str, risk: str, maps: tuple[str, ...]) -> None:
    """Create a custom control."""
    from ..core.errors import ValidationError
    from ..models.catalog import CustomControlInput, FrameworkMapping

    mappings = []
    for item in maps:
        framework_id, sep, clause_id = item.partition(":")
        if not sep or not framework_id or not clause_id:
            raise ValidationError(f"Mapping {item!r} must look like FRAMEWORK:CLAUSE")
        mappings.append(FrameworkMapping(framework_id=framework_id, clause_id=clause_id))

    control = app.engine.add_custom_control(
        app.tenant,
        CustomControlInput(title=title, description=description, question=question, risk_level=risk, mappings=mappings),
    )
    if app.as_json:
        _emit_json(control)
        return
    console.print(f"  [green]Added[/green] {control.id} {control.title}")


@custom.command("remove")
@click.argument("control_id")
@pass_app
@handles_errors
def custom_remove(app: AppContext, control_id: str) -> None:
    """Delete a custom control."""
    app.engine.remove_custom_control(app.tenant, control_id)
    console.print(f"  [green]Removed[/green] {control_id}")


# -- requirement assessment -----------------------------------------------


@cli.group()
def assess() -> None:
    """Record requirement-level verdicts."""


@assess.command("set")
@click.argument("framework_id")
@click.argument("requirement_id")
@click.argument(
    "status",
    type=click.Choice(["not_assessed", "compliant", "partially_compliant", "non_compliant", "not_applicable"]),
)
@click.option("--note", "-n", help="Note to append")
@pass_app
@handles_errors
def assess_set(app: AppContext, framework_id: str, requirement_id: str, status: str, note: str | None) -> None:
    """Save a direct verdict for a requirement."""
    record = app.engine.session(app.tenant, framework_id).save_status(status, note=note, requirement_id=requirement_id)
    if app.as_json:
        _emit_json(record)
        return
    console.print(f"  [green]Saved[/green] {framework_id} {requirement_id} = {_status(record.status.value)}")


@assess.command("decide")
@click.argument("framework_id")
@click.argument("requirement_id")
@click.argument("decision", type=click.Choice(["implemented", "alternative_implemented", "not_reasonable"]))
@click.option("--justification", "-j", default="", help="Why this decision was made")
@click.option("--alternative", default="", help="Alternative measure in place")
@pass_app
@handles_errors
def assess_decide(
    app: AppContext,
    framework_id: str,
    requirement_id: str,
    decision: str,
    justification: str,
    alternative: str,
) -> None:
    """Document an addressable-requirement decision."""
    from ..models.records import AddressableDecision

    record = app.engine.session(app.tenant, framework_id).record_addressable_decision(
        AddressableDecision(decision=decision, justification=justification, alternative_description=alternative),
        requirement_id=requirement_id,
    )
    if app.as_json:
        _emit_json(record)
        return
    console.print(f"  [green]Saved[/green] {framework_id} {requirement_id} = {_status(record.status.value)}")


@assess.command("skip")
@click.argument("framework_id")
@click.argument("requirement_id")
@pass_app
@handles_errors
def assess_skip(app: AppContext, framework_id: str, requirement_id: str) -> None:
    """Defer a requirement for later."""
    session = app.engine.session(app.tenant, framework_id)
    session.navigate_to(requirement_id)
    upcoming = session.skip()
    console.print(f"  [yellow]Skipped[/yellow] {requirement_id}")
    if upcoming is not None:
        console.print(f"  Next: {upcoming.id} {upcoming.title}")
    else:
        console.print("  Next: review")


@assess.command("note")
@click.argument("framework_id")
@click.argument("requirement_id")
@click.argument("text")
@pass_app
@handles_errors
def assess_note(app: AppContext, framework_id: str, requirement_id: str, text: str) -> None:
    """Append a note to a requirement."""
    app.engine.session(app.tenant, framework_id).add_note(text, requirement_id=requirement_id)
    console.print(f"  [green]Noted[/green] {requirement_id}")


@assess.command("next")
@click.argument("framework_id")
@pass_app
@handles_errors
def assess_next(app: AppContext, framework_id: str) -> None:
    """Show the first requirement nobody has touched yet."""
    upcoming = app.engine.session(app.tenant, framework_id).resume()
    if app.as_json:
        _emit_json({"requirement": upcoming.model_dump(mode="json") if upcoming else None})
        return
    if upcoming is None:
        console.print("  Every requirement has been touched; ready for review")
    else:
        console.print(f"  Next: {upcoming.id} {upcoming.title}")


@assess.command("summary")
@click.argument("framework_id")
@pass_app
@handles_errors
def assess_summary(app: AppContext, framework_id: str) -> None:
    """Per-status counts and compliance percentage for a framework."""
    engine = app.engine
    summary = engine.assessment_summary(app.tenant, framework_id)
    progress = engine.progress(app.tenant, framework_id)
    if app.as_json:
        data = summary.model_dump(mode="json")
        data["progress"] = {"assessed": progress.assessed, "total": progress.total, "percentage": progress.percentage}
        _emit_json(data)
        return
    console.print(f"[bold]{framework_id}[/bold] progress {progress}  compliance {summary.overall_compliance_percentage}%")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for status, count in summary.compliance_by_status.items():
        table.add_row(_status(status.value), str(count))
    console.print(table)
    if summary.critical_gaps:
        console.print(f"  Non-compliant required: {', '.join(summary.critical_gaps)}")


@assess.command("reset")
@click.argument("framework_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@pass_app
@handles_errors
def assess_reset(app: AppContext, framework_id: str, yes: bool) -> None:
    """Clear every requirement assessment for a framework."""
    if not yes:
        click.confirm(f"Clear all {framework_id} assessments for {app.tenant}?", abort=True)
    removed = app.engine.reset_framework(app.tenant, framework_id)
    console.print(f"  [green]Reset[/green] {removed} assessments")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
