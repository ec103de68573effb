"""
UPM — CLI entrypoint.

Usage:
    python -m upm.main --help
    upm --lang elisp-cask search magit
    upm add "requests >=2.31"
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from upm import __version__
from upm.backends.base import LanguageBackend, supports_lock
from upm.backends.registry import BackendRegistry, default_registry
from upm.core.config.loader import load_config
from upm.core.errors import UpmError
from upm.core.models.package import PackageInfo
from upm.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="upm")
@click.option("--lang", "-l", "language", default=None, help="Backend name (default: auto-detect).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to upm.yml (default: auto-detect).",
)
@click.option("--verbose", "-v", is_flag=True, help="Show commands run and files written.")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(
    ctx: click.Context,
    language: str | None,
    config_path: str | None,
    verbose: bool,
    quiet: bool,
    debug: bool,
) -> None:
    """UPM — one interface to many package managers."""
    ctx.ensure_object(dict)
    ctx.obj["language"] = language
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("UPM_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("UPM_LOG_FILE"),
        log_file_level=os.environ.get("UPM_LOG_FILE_LEVEL"),
    )


# ── Helpers ─────────────────────────────────────────────────────


@contextmanager
def _fail_on_error() -> Iterator[None]:
    """Turn any backend error into one red line and exit code 1."""
    try:
        yield
    except UpmError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


def _registry(ctx: click.Context) -> BackendRegistry:
    config = load_config(ctx.obj.get("config_path"))
    return default_registry(config, Path.cwd())


def _resolve_backend(ctx: click.Context) -> LanguageBackend:
    """Backend named by --lang, else the one detected in the cwd."""
    registry = _registry(ctx)
    language = ctx.obj.get("language")
    if language:
        return registry.get(language)

    backend = registry.detect(Path.cwd())
    if backend is None:
        raise UpmError("Cannot detect a language for this project; pass --lang")
    return backend


def _parse_add_arg(arg: str) -> tuple[str, str]:
    """``"name"`` or ``"name spec"`` → (name, spec)."""
    name, _, spec = arg.strip().partition(" ")
    return name, spec.strip()


def _echo_info(info: PackageInfo) -> None:
    rows = [
        ("Name", info.name),
        ("Description", info.description),
        ("Version", info.version),
        ("Homepage", info.homepage_url),
        ("Documentation", info.documentation_url),
        ("Source code", info.source_code_url),
        ("Bug tracker", info.bug_tracker_url),
        ("Author", info.author),
        ("License", info.license),
        ("Dependencies", ", ".join(info.dependencies)),
    ]
    for label, value in rows:
        if value:
            click.echo(f"   {label + ':':<15} {value}")


# ── Backends ────────────────────────────────────────────────────


@cli.command("list-languages")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_languages(ctx: click.Context, as_json: bool) -> None:
    """List available backends."""
    with _fail_on_error():
        backends = _registry(ctx).describe()

    if as_json:
        click.echo(json.dumps(backends, indent=2))
        return

    for b in backends:
        quirks = f" [{', '.join(b['quirks'])}]" if b["quirks"] else ""
        click.echo(f"   {b['name']:<24} {b['specfile']:<16} {b['lockfile']}{quirks}")


@cli.command("which-language")
@click.pass_context
def which_language(ctx: click.Context) -> None:
    """Show which backend would be used here."""
    with _fail_on_error():
        backend = _resolve_backend(ctx)
    click.echo(backend.name)


# ── Index ───────────────────────────────────────────────────────


@cli.command()
@click.argument("query", nargs=-1, required=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def search(ctx: click.Context, query: tuple[str, ...], as_json: bool) -> None:
    """Search the package index."""
    with _fail_on_error():
        results = _resolve_backend(ctx).search(" ".join(query))

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    if not results:
        click.secho("No results", fg="yellow")
        return

    for r in results:
        click.echo(f"   {r.name:<30} {r.version:<12} {r.description}")


@cli.command()
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def info(ctx: click.Context, name: str, as_json: bool) -> None:
    """Show metadata for one package."""
    with _fail_on_error():
        result = _resolve_backend(ctx).info(name)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.is_empty:
        click.secho(f"❌ Package not found: {name}", fg="red", err=True)
        sys.exit(1)

    _echo_info(result)


# ── Specfile ────────────────────────────────────────────────────


@cli.command()
@click.argument("packages", nargs=-1)
@click.option("--guess", "use_guess", is_flag=True, help="Also add guessed dependencies.")
@click.pass_context
def add(ctx: click.Context, packages: tuple[str, ...], use_guess: bool) -> None:
    """Add packages to the specfile ("name" or "name spec")."""
    from upm.core.use_cases.guess import guess_missing

    with _fail_on_error():
        backend = _resolve_backend(ctx)
        pkgs = dict(_parse_add_arg(arg) for arg in packages)
        if use_guess:
            for name in sorted(guess_missing(backend)):
                pkgs.setdefault(name, "")

        if not pkgs:
            click.secho("Nothing to add", fg="yellow")
            return

        backend.add(pkgs)

    click.secho(f"✅ Added {', '.join(pkgs)}", fg="green")


@cli.command()
@click.argument("packages", nargs=-1, required=True)
@click.pass_context
def remove(ctx: click.Context, packages: tuple[str, ...]) -> None:
    """Remove packages from the specfile."""
    with _fail_on_error():
        _resolve_backend(ctx).remove(set(packages))
    click.secho(f"✅ Removed {', '.join(packages)}", fg="green")


# ── Environment ─────────────────────────────────────────────────


@cli.command()
@click.pass_context
def lock(ctx: click.Context) -> None:
    """Regenerate the lockfile from the specfile."""
    with _fail_on_error():
        backend = _resolve_backend(ctx)
        if not supports_lock(backend):
            click.echo(f"{backend.name} has no separate lock step; run install")
            return
        backend.lock()
    click.secho(f"✅ Locked {backend.lockfile}", fg="green")


@cli.command()
@click.pass_context
def install(ctx: click.Context) -> None:
    """Install packages from the specfile/lockfile."""
    with _fail_on_error():
        _resolve_backend(ctx).install()
    click.secho("✅ Installed", fg="green")


# ── Observe ─────────────────────────────────────────────────────


@cli.command("list")
@click.option("--all", "-a", "from_lockfile", is_flag=True, help="List the lockfile instead.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_packages(ctx: click.Context, from_lockfile: bool, as_json: bool) -> None:
    """List declared (or, with --all, locked) packages."""
    with _fail_on_error():
        backend = _resolve_backend(ctx)
        pkgs = backend.list_lockfile() if from_lockfile else backend.list_specfile()

    if as_json:
        click.echo(json.dumps(pkgs, indent=2, sort_keys=True))
        return

    if not pkgs:
        click.secho("No packages", fg="yellow")
        return

    for name in sorted(pkgs):
        click.echo(f"   {name:<30} {pkgs[name]}")


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def guess(ctx: click.Context, as_json: bool) -> None:
    """Guess dependencies from source files."""
    with _fail_on_error():
        names = sorted(_resolve_backend(ctx).guess())

    if as_json:
        click.echo(json.dumps(names, indent=2))
        return

    for name in names:
        click.echo(name)


if __name__ == "__main__":
    cli()
