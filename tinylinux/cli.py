"""Thin CLI wrapper for tinylinux.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from tinylinux import __version__
from tinylinux.arch import UnsupportedArchitectureError
from tinylinux.config import get_settings, print_settings_json

app = typer.Typer(
    name="tinylinux",
    help=(
        "tinylinux - build a statically linked kernel and initramfs "
        "for x86_64 and aarch64. Runs the full build when no command is given."
    ),
)
console = Console()
err_console = Console(stderr=True)

ArchOption = Annotated[
    list[str] | None,
    typer.Option(
        "--arch",
        "-a",
        help="Target architecture (can be repeated; default: all)",
    ),
]


def configure_logging(level: str) -> None:
    """Route log records through Rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"tinylinux version {__version__}")
        raise typer.Exit()


def _open_session_factory():  # type: ignore[no-untyped-def]
    from tinylinux.db import open_database

    return open_database(get_settings().database_url)


def _run_build(arch: list[str] | None) -> None:
    from tinylinux.kernel.build import KernelBuildError
    from tinylinux.packaging import CpioError, PackagingError
    from tinylinux.pipeline import run_build
    from tinylinux.plan import get_build_plan
    from tinylinux.rootfs import RootfsError
    from tinylinux.runner import CommandError
    from tinylinux.sources import (
        DownloadError,
        ExtractionError,
        OfflineModeError,
        VerificationError,
    )

    settings = get_settings()
    plan = get_build_plan()
    factory = _open_session_factory()

    with factory() as session:
        try:
            results = run_build(session, settings, plan, architectures=arch)
        except UnsupportedArchitectureError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1) from None
        except (
            CommandError,
            KernelBuildError,
            RootfsError,
            CpioError,
            PackagingError,
            DownloadError,
            VerificationError,
            ExtractionError,
            OfflineModeError,
        ) as e:
            session.commit()
            console.print(f"[red]Build failed: {e}[/red]")
            raise typer.Exit(code=1) from None
        session.commit()

    console.print()
    console.print("[bold]Build Results:[/bold]")
    for result in results:
        console.print(f"  [green]✓ {result.arch.value}[/green]")
        for a in result.artifacts:
            console.print(f"      {a.kind.value}: {a.path} ({a.size_bytes:,} bytes)")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """tinylinux - build a statically linked kernel and initramfs."""
    configure_logging(get_settings().log_level)
    if ctx.invoked_subcommand is None:
        _run_build(None)


@app.command()
def build(arch: ArchOption = None) -> None:
    """Run the full build: sources, toolchains, kernel, rootfs, packaging."""
    _run_build(arch)


@app.command("config-update")
def config_update(
    arch: ArchOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Refresh the persisted kernel configs (best-effort, always exits 0).

    Failures are reported per architecture but do not change the exit
    status. Check the printed results rather than the exit code.
    """
    from tinylinux.pipeline import run_config_update
    from tinylinux.plan import get_build_plan

    settings = get_settings()
    plan = get_build_plan()
    factory = _open_session_factory()

    with factory() as session:
        try:
            results = run_config_update(session, settings, plan, architectures=arch)
        except UnsupportedArchitectureError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1) from None
        session.commit()

    if json_output:
        output = [
            {
                "arch": r.arch.value,
                "status": r.status.value,
                "message": r.message,
                "code": r.code,
            }
            for r in results
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    console.print("[bold]Config Update Results:[/bold]")
    for r in results:
        if r.succeeded:
            console.print(f"  [green]✓ {r.arch.value}[/green] {r.message}")
        else:
            console.print(f"  [yellow]! {r.arch.value} (tolerated)[/yellow] {r.message}")


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    epoch_display = (
        str(settings.source_date_epoch)
        if settings.source_date_epoch is not None
        else "(wall clock)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Repository root:     {settings.repo_root}")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Build directory:     {settings.build_dir}")
    console.print(f"  Artifacts directory: {settings.artifacts_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  CA bundle:           {settings.ca_bundle}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Offline mode:        {settings.offline}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Host architecture:   {settings.host_arch or '(detected)'}")
    console.print(f"  Jobs:                {settings.jobs or '(CPU count)'}")
    console.print()
    console.print("[bold]Kernel:[/bold]")
    console.print(f"  SOURCE_DATE_EPOCH:   {epoch_display}")
    console.print(f"  AWK:                 {settings.awk}")
    console.print(f"  Config overrides:    {len(settings.kconfig_overrides)}")
    console.print(f"  Overrides file:      {settings.kconfig_overrides_file or '-'}")


@app.command()
def sources(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List downloaded sources and toolchains."""
    from tinylinux.sources import list_sources

    factory = _open_session_factory()
    with factory() as session:
        records = list_sources(session)

    if not records:
        if json_output:
            console.print("[]")
        else:
            console.print("[yellow]No sources downloaded[/yellow]")
        return

    if json_output:
        output = [
            {
                "name": r.name,
                "version": r.version,
                "state": r.state,
                "url": r.url,
                "root_dir": r.root_dir,
                "checksum": r.checksum,
            }
            for r in records
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    console.print(f"[bold]Found {len(records)} source(s):[/bold]")
    console.print()
    for r in records:
        state_color = {"extracted": "green", "fetched": "blue"}.get(r.state, "yellow")
        console.print(f"  [{state_color}]{r.name}-{r.version}[/{state_color}]")
        console.print(f"    State: {r.state}")
        if r.root_dir:
            console.print(f"    Root: {r.root_dir}")
        if r.checksum:
            console.print(f"    SHA256: {r.checksum[:16]}...")
        console.print()


if __name__ == "__main__":
    app()
