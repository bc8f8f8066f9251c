"""Thin CLI wrapper for diskrun.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from diskrun import __version__
from diskrun.config import get_settings, print_settings_json
from diskrun.errors import DiskrunError
from diskrun.packages.reader import PackageError

if TYPE_CHECKING:
    from diskrun.network.allocator import AddressAllocator

app = typer.Typer(
    name="diskrun",
    help="diskrun - build VM disks from packages and run them under a hypervisor",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"diskrun version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through a Rich handler on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def fail(error: Exception) -> NoReturn:
    """Print an error with its code and exit with status 1."""
    code = getattr(error, "code", "error")
    err_console.print(f"[red]{escape(f'[{code}] {error}')}[/red]", highlight=False)
    raise typer.Exit(code=1)


@app.callback()
def main(
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
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level (overrides DISKRUN_LOG_LEVEL)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Shorthand for --log-level DEBUG"),
    ] = False,
) -> None:
    """diskrun - build VM disks from packages and run them under a hypervisor."""
    level = "DEBUG" if verbose else (log_level or get_settings().log_level)
    configure_logging(level)


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
        console.print(print_settings_json(settings))
    else:
        tmp_dir_display = (
            str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  State directory:     {settings.state_dir}")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print(f"  Temp directory:      {tmp_dir_display}")
        console.print(f"  Kernel directory:    {settings.kernel_dir}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Image engine:        {settings.image_engine or '(not set)'}")
        console.print()
        console.print("[bold]Networking:[/bold]")
        console.print(f"  Bridge:              {settings.bridge_name} ({settings.bridge_ip})")
        console.print(f"  Address pool:        {settings.network_cidr}")
        console.print(f"  Hyper-V switch:      {settings.hyperv_switch}")


@app.command()
def backends(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List hypervisor backends and whether they can run on this host."""
    from diskrun.virtualizers.registry import list_backends

    settings = get_settings()
    rows = []
    for descriptor in list_backends():
        supported = descriptor.supports_platform()
        rows.append(
            {
                "backend": descriptor.backend_id.value,
                "disk_format": descriptor.disk_format.name,
                "platforms": sorted(descriptor.platforms) or ["any"],
                "supported": supported,
                "available": supported and descriptor.is_available(settings),
            }
        )

    if json_output:
        console.print(json.dumps(rows, indent=2))
        return

    table = Table(title="Backends")
    table.add_column("Backend")
    table.add_column("Disk format")
    table.add_column("Platforms")
    table.add_column("Available")
    for row in rows:
        if row["available"]:
            status = "[green]yes[/green]"
        elif not row["supported"]:
            status = "[yellow]unsupported OS[/yellow]"
        else:
            status = "[red]no[/red]"
        table.add_row(row["backend"], row["disk_format"], ", ".join(row["platforms"]), status)
    console.print(table)


@app.command()
def run(
    package: Annotated[Path, typer.Argument(help="Package directory")],
    backend: Annotated[
        str,
        typer.Option("--backend", "-b", help="Hypervisor backend"),
    ] = "qemu",
    gui: Annotated[
        bool,
        typer.Option("--gui", help="Show a graphical display instead of running headless"),
    ] = False,
    shell: Annotated[
        bool,
        typer.Option("--shell", help="Boot into a shell"),
    ] = False,
    record: Annotated[
        str | None,
        typer.Option("--record", help="Record the session to this path"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Save a copy of the built disk to this path"),
    ] = None,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="VM display name"),
    ] = None,
) -> None:
    """Build a disk from a package and run it until the VM exits."""
    from diskrun.db import create_all_tables, get_engine, get_session_factory
    from diskrun.disk.engine import load_image_engine
    from diskrun.network.allocator import AddressAllocator
    from diskrun.packages.reader import open_package
    from diskrun.runs.orchestrator import LaunchRequest
    from diskrun.runs.service import run_and_record
    from diskrun.types import LaunchOptions

    settings = get_settings()
    engine = get_engine()
    create_all_tables(engine)
    factory = get_session_factory(engine)

    try:
        image_engine = load_image_engine(settings.image_engine)
        with open_package(package) as reader, factory() as session:
            request = LaunchRequest(
                reader=reader,
                config=reader.vm_config(),
                backend=backend,
                name=name or package.resolve().name,
                disk_output=output,
                options=LaunchOptions(gui=gui, shell=shell, record=record),
            )
            with AddressAllocator(
                cidr=settings.network_cidr, gateway=settings.bridge_ip, engine=engine
            ) as allocator:
                run_record, result = run_and_record(
                    session,
                    request,
                    settings=settings,
                    engine=image_engine,
                    allocator=allocator,
                )
            session.commit()
    except (DiskrunError, PackageError, ValueError) as e:
        fail(e)

    if result.relocation_error is not None:
        console.print(f"[yellow]Warning: {escape(str(result.relocation_error))}[/yellow]")
    elif output is not None:
        console.print(f"Saved disk to {output}")
    console.print(
        f"[green]VM '{result.vm_name}' exited with code {result.exit_code}[/green] "
        f"(run {run_record.id})"
    )
    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


@app.command()
def build(
    package: Annotated[Path, typer.Argument(help="Package directory")],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Path to write the disk image to"),
    ],
    disk_format: Annotated[
        str,
        typer.Option("--format", "-f", help="Disk format"),
    ] = "raw",
    shell: Annotated[
        bool,
        typer.Option("--shell", help="Boot into a shell"),
    ] = False,
) -> None:
    """Build a disk image from a package without running it."""
    from diskrun.disk.engine import load_image_engine
    from diskrun.disk.formats import get_format
    from diskrun.packages.reader import open_package
    from diskrun.runs.orchestrator import build_only
    from diskrun.types import LaunchOptions

    settings = get_settings()
    try:
        fmt = get_format(disk_format)
        image_engine = load_image_engine(settings.image_engine)
        with open_package(package) as reader:
            result = build_only(
                reader,
                reader.vm_config(),
                fmt,
                output,
                settings=settings,
                engine=image_engine,
                options=LaunchOptions(shell=shell),
            )
    except (DiskrunError, PackageError, ValueError) as e:
        fail(e)

    console.print(f"[green]Built {result.disk_format} disk: {result.output}[/green]")
    if result.kernel:
        console.print(f"  Kernel: {result.kernel}")


network_app = typer.Typer(help="Inspect and manage the guest address pool")
app.add_typer(network_app, name="network")


def _allocator() -> "AddressAllocator":
    from diskrun.network.allocator import AddressAllocator

    return AddressAllocator.from_settings(get_settings())


@network_app.command("status")
def network_status(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the address pool and how many addresses are left."""
    settings = get_settings()
    with _allocator() as allocator:
        remaining = allocator.remaining()

    if json_output:
        console.print(
            json.dumps(
                {
                    "cidr": settings.network_cidr,
                    "gateway": settings.bridge_ip,
                    "remaining": remaining,
                },
                indent=2,
            )
        )
        return
    console.print(f"Pool:      {settings.network_cidr}")
    console.print(f"Gateway:   {settings.bridge_ip}")
    if remaining:
        console.print(f"Remaining: {remaining}")
    else:
        console.print("Remaining: [red]0 (exhausted)[/red]")


@network_app.command("leases")
def network_leases(
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of leases to show"),
    ] = 20,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the most recently leased addresses."""
    with _allocator() as allocator:
        leases = allocator.leases(limit=limit)

    if json_output:
        output = [
            {
                "address": lease.address,
                "gateway": lease.gateway,
                "mask": lease.mask,
                "owner": lease.owner,
                "leased_at": lease.leased_at.isoformat() if lease.leased_at else None,
            }
            for lease in leases
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not leases:
        console.print("[yellow]No leases found[/yellow]")
        return
    for lease in leases:
        console.print(
            f"  [green]{lease.address}[/green]  {lease.owner or '-'}  {lease.leased_at}"
        )


@network_app.command("reset")
def network_reset(
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """Refill the address pool. Running guests may get duplicate addresses."""
    if not yes:
        typer.confirm("Reset the address pool?", abort=True)
    with _allocator() as allocator:
        allocator.reset()
        remaining = allocator.remaining()
    console.print(f"[green]Address pool reset: {remaining} addresses available[/green]")


runs_app = typer.Typer(help="Inspect run history")
app.add_typer(runs_app, name="runs")


@runs_app.command("list")
def runs_list(
    backend: Annotated[
        str | None,
        typer.Option("--backend", "-b", help="Filter by backend"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option(
            "--status", "-s", help="Filter by status (pending/running/succeeded/failed)"
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List run records."""
    from diskrun.db import create_all_tables, get_engine, get_session_factory
    from diskrun.runs.service import list_runs
    from diskrun.types import BackendId, RunStatus

    try:
        backend_filter = BackendId(backend) if backend else None
    except ValueError:
        console.print(f"[red]Invalid backend: {backend}[/red]")
        raise typer.Exit(code=1) from None
    try:
        status_filter = RunStatus(status) if status else None
    except ValueError:
        console.print(f"[red]Invalid status: {status}[/red]")
        raise typer.Exit(code=1) from None

    engine = get_engine()
    create_all_tables(engine)
    factory = get_session_factory(engine)

    with factory() as session:
        runs = list_runs(session, backend=backend_filter, status=status_filter, limit=limit)

        if json_output:
            output = [
                {
                    "id": r.id,
                    "vm_name": r.vm_name,
                    "backend": r.backend,
                    "status": r.status,
                    "exit_code": r.exit_code,
                    "kernel": r.kernel,
                    "error_type": r.error_type,
                    "error_message": r.error_message,
                    "relocation_error": r.relocation_error,
                }
                for r in runs
            ]
            console.print(json.dumps(output, indent=2))
            return

        if not runs:
            console.print("[yellow]No runs found[/yellow]")
            return

        console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
        for r in runs:
            color = {"succeeded": "green", "failed": "red"}.get(r.status, "blue")
            console.print(
                f"  {r.id}  [{color}]{r.status}[/{color}]  {r.backend}  {r.vm_name}"
            )
            if r.error_message:
                console.print(f"      Error: {r.error_message}")


if __name__ == "__main__":
    app()
