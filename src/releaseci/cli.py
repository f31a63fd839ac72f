# cli.py
from __future__ import annotations

import subprocess
import sys
from dataclasses import replace
from pathlib import Path

import click

from releaseci import gate
from releaseci.dag import build_dag, topo_levels
from releaseci.errors import ConfigurationError
from releaseci.executor import DryRunExecutor, ShellExecutor
from releaseci.git_facts.git import get_remote_url
from releaseci.matrix import expand
from releaseci.model import TriggerContext
from releaseci.runner import load_workflow, read_workflow, run_dag
from releaseci.services import services_from_settings
from releaseci.settings import Settings, load_settings
from releaseci.trigger import resolve_from_environment, resolve_from_git, resolve_trigger
from releaseci.ui.console import Console, get_console, set_console
from releaseci.version import DEFAULT_VERSION_ARG, build_args, resolve_version

DEFAULT_WORKFLOW = "releaseci_workflow.py"


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory: releaseci_workflow.py first, then *_workflow.py."""
    current_dir = Path(".")
    workflow_files = []

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        return [default_workflow]

    for path in current_dir.glob("*_workflow.py"):
        workflow_files.append(path)
    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  releaseci run --workflow my_workflow.py",
            )
            sys.exit(2)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  releaseci run --workflow my_workflow.py",
        )
        sys.exit(2)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion=f"Specify a workflow explicitly:\n  releaseci run --workflow {workflow_files[0]}",
        )
        sys.exit(2)

    return workflow_files[0]


def _repository_name(settings: Settings) -> str:
    if settings.repository:
        return settings.repository
    try:
        repo_url = get_remote_url("origin")
        return repo_url.rstrip("/").split("/")[-1].replace(".git", "")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(".").resolve().name


def trigger_options(fn):
    """Options shared by every command that needs a trigger."""
    options = [
        click.option("--event", default="workflow_dispatch", show_default=True,
                     help="Trigger kind: pull_request or workflow_dispatch"),
        click.option("--ref", default=None, help="Ref name (defaults to the current git branch)"),
        click.option("--sha", default=None, help="Commit hash (defaults to git HEAD)"),
        click.option("--tag", default=None, help="Optional version tag (manual dispatch input)"),
        click.option("--from-env", is_flag=True, default=False,
                     help="Read the trigger from GITHUB_EVENT_NAME / GITHUB_REF / GITHUB_SHA"),
        click.option("--protected-branch", default=None, help="Protected branch (default: master)"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _resolve(event, ref, sha, tag, from_env) -> TriggerContext:
    if from_env:
        return resolve_from_environment()
    if ref is not None and sha is not None:
        return resolve_trigger(event, ref, sha, tag)
    return resolve_from_git(event, ref_name=ref, commit_hash=sha, user_tag=tag)


def _settings(protected_branch: str | None, **overrides) -> Settings:
    settings = load_settings()
    if protected_branch:
        settings = replace(settings, protected_branch=protected_branch)
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return replace(settings, **overrides) if overrides else settings


def _config_error(ctx, e: ConfigurationError) -> None:
    console = get_console()
    console.print_error(
        "Configuration error",
        e.message,
        details=[f"{k}: {v}" for k, v in e.details.items()] or None,
    )
    if ctx.obj.get("debug", False):
        console.print_exception(e)
    sys.exit(2)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """releaseci: build-and-release pipeline orchestrator."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file whose VERSION_ARG names the version build arg")
@trigger_options
@click.pass_context
def version(ctx, workflow, event, ref, sha, tag, from_env, protected_branch):
    """Print the resolved version tags and build args."""
    console = get_console()
    if workflow:
        workflow_path = discover_workflow(workflow)
    else:
        found = find_workflow_files()
        workflow_path = found[0] if len(found) == 1 else None
    try:
        settings = _settings(protected_branch)
        trigger = _resolve(event, ref, sha, tag, from_env)
        version_arg = read_workflow(workflow_path)[1] if workflow_path else DEFAULT_VERSION_ARG
    except ConfigurationError as e:
        _config_error(ctx, e)

    resolved = resolve_version(trigger, protected_branch=settings.protected_branch)
    console.print_info(f"primary_tag={resolved.primary_tag}")
    console.print_info(f"legacy_tag={resolved.legacy_tag}")
    for key, value in build_args(trigger, resolved, version_arg=version_arg).items():
        console.print_info(f"{key}={value}")


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@trigger_options
@click.pass_context
def plan(ctx, workflow, event, ref, sha, tag, from_env, protected_branch):
    """Show the expanded job instances and gate decisions without running anything."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        settings = _settings(protected_branch)
        trigger = _resolve(event, ref, sha, tag, from_env)
        nodes = load_workflow(workflow_path)
        adj, indeg = build_dag(nodes)
        levels = topo_levels(adj, indeg)
    except ConfigurationError as e:
        _config_error(ctx, e)

    resolved = resolve_version(trigger, protected_branch=settings.protected_branch)
    decision = gate.evaluate(trigger, settings.protected_branch)
    console.print_info(f"Version: {resolved.primary_tag} (legacy: {resolved.legacy_tag})")
    console.print_info(f"Publish gate: {'open' if decision.should_publish else 'closed'} ({decision.reason})")

    by_name = {n.name: n for n in nodes}
    rows = []
    for idx, level in enumerate(levels):
        for name in level:
            node = by_name[name]
            notes = [f"stage {idx + 1}"]
            if node.needs:
                notes.append("needs " + ", ".join(node.needs))
            if not node.when(trigger):
                notes.append("skipped: predicate false")
            elif node.is_publishing:
                notes.append("publishes" if decision.should_publish else "publish skipped")
            for inst in expand(node, trigger, resolved):
                rows.append((inst.instance_id, "; ".join(notes)))
    console.print_plan(rows)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@trigger_options
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Number of parallel workers")
@click.option("--artifact-dir", default=None, help="Artifact relay directory (default: .releaseci/artifacts)")
@click.option("--dry-run", is_flag=True, default=False, help="Print steps and side effects instead of running them")
@click.pass_context
def run(ctx, workflow, event, ref, sha, tag, from_env, protected_branch, workers, artifact_dir, dry_run):
    """Run a releaseci workflow for one trigger."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        settings = _settings(protected_branch, max_workers=workers, artifact_dir=artifact_dir)
        trigger = _resolve(event, ref, sha, tag, from_env)
        nodes, version_arg = read_workflow(workflow_path)
    except ConfigurationError as e:
        _config_error(ctx, e)

    try:
        resolved = resolve_version(trigger, protected_branch=settings.protected_branch)
        console.print_run_started(
            repository=_repository_name(settings),
            workflow=workflow_path.name,
            trigger=f"{trigger.event_kind.value} {trigger.ref_name}@{resolved.commit_short}",
            primary_tag=resolved.primary_tag,
            legacy_tag=resolved.legacy_tag,
            job_count=len(nodes),
        )

        result = run_dag(
            nodes,
            trigger,
            executor=DryRunExecutor() if dry_run else ShellExecutor("."),
            services=services_from_settings(settings, dry_run=dry_run),
            settings=settings,
            artifact_dir=None if dry_run else settings.artifact_dir,
            version_arg=version_arg,
        )

        console.print_results(result.rows(), result.status)
        sys.exit(result.exit_code)

    except ConfigurationError as e:
        _config_error(ctx, e)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    cli()
