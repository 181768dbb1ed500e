import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .agi import render_agi
from .compiler import DeadBranchPolicy, compile_graph
from .config import get_settings
from .errors import GraphNotCompilable, IvrFlowError
from .generator import generate_graph_from_template, list_templates, save_graph_yaml
from .runner import simulate as simulate_script
from .serializer import load_graph
from .validator import validate as validate_graph
from .visualize import ascii_plan

app = typer.Typer(no_args_is_help=True, help="ivrflow CLI: author, validate and compile IVR call flows")


def _fail(message: str) -> None:
    rprint(Panel.fit(f"[bold red]{escape(message)}[/]", title="Error"))
    raise typer.Exit(code=1)


def _policy(option: Optional[DeadBranchPolicy]) -> DeadBranchPolicy:
    policy = option or get_settings().default_dead_branch_policy
    if policy is None:
        _fail("Choose what unconnected options do: --on-dead-branch reprompt|hangup "
              "(or set IVRFLOW_DEFAULT_DEAD_BRANCH_POLICY).")
    return DeadBranchPolicy(policy)


def _print_findings(findings) -> None:
    table = Table(title="Validation Report", show_lines=True)
    table.add_column("Status", justify="center", style="bold")
    table.add_column("Code")
    table.add_column("Message")
    for f in findings:
        status = "[red]ERR[/]" if f.severity.value == "error" else "[yellow]WARN[/]"
        table.add_row(status, f.code.value, escape(f.message))
    rprint(table)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output.")):
    level = "DEBUG" if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=level, format="%(message)s", handlers=[RichHandler(show_path=False)], force=True
    )


@app.command()
def init():
    """Create a local project layout (flows/, artifacts/)."""
    settings = get_settings()
    for path in (settings.flows_dir, settings.scripts_dir):
        path.mkdir(parents=True, exist_ok=True)
    rprint(Panel.fit(f"[bold green]Initialized[/] directories: {settings.flows_dir}/, {settings.scripts_dir}/"))


@app.command()
def templates():
    """List the bundled flow templates."""
    table = Table(title="Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Blocks", justify="right")
    for name in list_templates():
        table.add_row(name, str(len(generate_graph_from_template(name).nodes)))
    rprint(table)


@app.command()
def new(template: str = typer.Option(..., help="Template to start from (see `ivrflow templates`)."),
        name: str = typer.Option("flow", help="Output filename (without .yaml)"),
        outdir: Optional[Path] = typer.Option(None, help="Where to place the YAML (default: flows dir)"),
    ):
    """Create a flow document from a bundled template."""
    try:
        graph = generate_graph_from_template(template)
    except IvrFlowError as exc:
        _fail(str(exc))
    outdir = outdir or get_settings().flows_dir
    outdir.mkdir(exist_ok=True, parents=True)
    outfile = save_graph_yaml(graph, outdir / name)
    rprint(Panel.fit(f"Saved template [bold]{template}[/] to [cyan]{outfile}[/]"))


@app.command()
def validate(file: Path):
    """Validate a flow document (structure, configuration, reachability)."""
    try:
        graph = load_graph(file)
    except IvrFlowError as exc:
        _fail(str(exc))
    report = validate_graph(graph)
    table = Table(title="Validation Report", show_lines=True)
    table.add_column("Status", justify="center", style="bold")
    table.add_column("Message")
    for m in report.messages():
        status, _, text = m.partition(": ")
        style = {"OK": "green", "ERR": "red", "WARN": "yellow"}[status]
        table.add_row(f"[{style}]{status}[/]", escape(text))
    rprint(table)
    if not report.compilable:
        raise typer.Exit(code=1)


@app.command(name="compile")
def compile_(file: Path,
             on_dead_branch: Optional[DeadBranchPolicy] = typer.Option(
                 None, "--on-dead-branch", help="What an unconnected option does."),
             fmt: str = typer.Option("json", "--format", help="json | agi"),
             out: Optional[Path] = typer.Option(None, help="Output file (default: scripts dir)."),
    ):
    """Compile a flow into a call-control script."""
    if fmt not in ("json", "agi"):
        _fail(f"Unknown format '{fmt}'. Use one of: json, agi")
    policy = _policy(on_dead_branch)
    try:
        script = compile_graph(load_graph(file), policy)
    except GraphNotCompilable as exc:
        _print_findings(exc.errors)
        _fail(str(exc))
    except IvrFlowError as exc:
        _fail(str(exc))

    text = render_agi(script) if fmt == "agi" else script.model_dump_json(indent=2)
    if out is None:
        out = get_settings().scripts_dir / f"{file.stem}.{fmt}"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text if text.endswith("\n") else text + "\n")
    rprint(Panel.fit(f"Compiled [bold]{len(script)}[/] unit(s) to [cyan]{out}[/]"))


@app.command()
def explain(file: Path):
    """Print an ASCII outline of the flow."""
    try:
        graph = load_graph(file)
    except IvrFlowError as exc:
        _fail(str(exc))
    print(ascii_plan(graph))


@app.command()
def simulate(file: Path,
             inputs: List[str] = typer.Option([], "--input", "-i", help="Caller input, repeat per prompt."),
             on_dead_branch: Optional[DeadBranchPolicy] = typer.Option(
                 None, "--on-dead-branch", help="What an unconnected option does."),
    ):
    """Walk a compiled flow with the given caller inputs."""
    policy = _policy(on_dead_branch)
    try:
        script = compile_graph(load_graph(file), policy)
    except GraphNotCompilable as exc:
        _print_findings(exc.errors)
        _fail(str(exc))
    except IvrFlowError as exc:
        _fail(str(exc))

    result = simulate_script(script, inputs)
    table = Table(title="Simulation", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Block")
    table.add_column("Kind")
    table.add_column("Input")
    for i, step in enumerate(result.trace, 1):
        shown = step.input or ""
        if step.reprompt:
            shown += " (re-prompt)"
        table.add_row(str(i), step.name, step.kind, shown)
    rprint(table)
    rprint(Panel.fit(f"Outcome: [bold]{result.outcome.value}[/]"))


if __name__ == "__main__":
    app()
