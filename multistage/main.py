"""
Multi-stage pod generator — CLI entrypoint.

Usage:
    python -m multistage.main --help
    python -m multistage.main generate
    python -m multistage.main check
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
import yaml

from multistage.core.observability.logging_config import (
    FILE_ENV,
    FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)

from multistage import __version__


@click.group()
@click.version_option(version=__version__, prog_name="multistage")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to multistage.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Compile multi-stage test steps into Kubernetes pods."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(FILE_ENV),
        log_file_level=os.environ.get(FILE_LEVEL_ENV),
    )


@cli.command()
@click.option(
    "--csi/--no-csi",
    "enable_csi",
    default=None,
    help="Mount credentials through the secrets-store CSI driver (default: from config).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--metrics", "show_metrics", is_flag=True, help="Print generation metrics to stderr.")
@click.pass_context
def generate(
    ctx: click.Context,
    enable_csi: bool | None,
    as_json: bool,
    show_metrics: bool,
) -> None:
    """Generate step pods and their auxiliary resources."""
    from multistage.core.use_cases.compile import run_generate

    result = run_generate(config_path=ctx.obj.get("config_path"), enable_csi=enable_csi)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(1)

    assert result.result is not None  # guaranteed after error check above
    manifests = result.manifests()
    if manifests:
        click.echo(yaml.safe_dump_all(manifests, sort_keys=False), nl=False)

    quiet = ctx.obj.get("quiet", False)
    if result.result.best_effort_steps and not quiet:
        click.secho(
            f"ℹ️  Best-effort steps: {', '.join(sorted(result.result.best_effort_steps))}",
            fg="cyan",
            err=True,
        )

    if show_metrics and result.metrics is not None:
        for counter in result.metrics.counters():
            click.echo(f"   {counter.name}: {counter.total}", err=True)
        for timing in result.metrics.to_dict()["timings"]:
            click.echo(f"   {timing['name']}: {timing['total_ms']} ms", err=True)

    if not result.ok:
        click.secho("❌ Step errors:", fg="red", bold=True, err=True)
        for err in result.result.errors:
            click.echo(f"   • {err}", err=True)
        sys.exit(1)


@cli.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate multistage.yml configuration."""
    from multistage.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)
        return

    if result.valid:
        assert result.request is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Test: {result.request.test}")
        click.echo(f"   Steps: {len(result.request.steps)}")
        click.echo(f"   Observers: {len(result.request.observers)}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


# ── Sub-groups ──────────────────────────────────────────────────

from multistage.ui.cli.names import names  # noqa: E402

cli.add_command(names)


if __name__ == "__main__":
    cli()
