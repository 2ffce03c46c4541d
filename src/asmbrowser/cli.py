"""Command line interface for asmbrowser."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from asmbrowser.config import AppConfig
from asmbrowser.decompiler.engine import DecompilationError, ILSpyDecompiler
from asmbrowser.decompiler.export import export_project
from asmbrowser.index.store import AssemblyNotFoundError, AssemblyStore
from asmbrowser.utils.files import is_assembly_path
from asmbrowser.web.app import create_app


console = Console()
app = typer.Typer(help="asmbrowser - browse and decompile .NET assemblies locally")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _open_store(upload_dir: Optional[Path]) -> AssemblyStore:
    config = AppConfig(upload_dir=upload_dir)
    return AssemblyStore(config.resolve_upload_dir(Path.cwd()))


@app.command()
def serve(
    host: str = typer.Option(AppConfig().host, help="Host interface (loopback by default)"),
    port: int = typer.Option(AppConfig().port, help="Server port"),
    upload_dir: Path = typer.Option(None, "--upload-dir", help="Directory holding uploaded assemblies"),
    ilspycmd: str = typer.Option(AppConfig().ilspycmd, help="ilspycmd executable"),
    timeout: Optional[float] = typer.Option(None, help="Per-call decompilation timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Start the web interface."""
    _setup_logging(verbose)
    import uvicorn

    config = AppConfig(
        upload_dir=upload_dir,
        host=host,
        port=port,
        ilspycmd=ilspycmd,
        decompile_timeout=timeout,
    )
    resolved_dir = config.resolve_upload_dir(Path.cwd())
    resolved_dir.mkdir(parents=True, exist_ok=True)

    console.print(f"Starting web interface on http://{host}:{port} (uploads: {resolved_dir})")
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        reload=False,
        log_level="debug" if verbose else "info",
    )


@app.command("list")
def list_assemblies(
    upload_dir: Path = typer.Option(None, "--upload-dir", help="Directory holding uploaded assemblies"),
) -> None:
    """Show the stored assemblies."""
    store = _open_store(upload_dir)
    records = store.list()
    if not records:
        console.print("[yellow]No assemblies stored.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Size", justify="right")

    for record in records:
        table.add_row(record.id, record.display_name, record.version, str(record.size_bytes))

    console.print(table)


@app.command()
def add(
    inputs: List[Path] = typer.Argument(..., help="Assemblies to copy into the store.", resolve_path=True),
    upload_dir: Path = typer.Option(None, "--upload-dir", help="Directory holding uploaded assemblies"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Copy assemblies from disk into the store."""
    _setup_logging(verbose)
    store = _open_store(upload_dir)
    failed = 0
    for path in inputs:
        if not path.is_file():
            console.print(f"[red]File not found:[/red] {path}")
            failed += 1
            continue
        if not is_assembly_path(path):
            console.print(f"[yellow]Skipping {path.name}: only .dll and .exe files are supported[/yellow]")
            failed += 1
            continue
        record = store.import_file(path)
        console.print(f"Added [bold]{record.stored_file_name}[/bold] (id: {record.id}, version: {record.version})")

    if failed:
        raise typer.Exit(1)


@app.command()
def remove(
    assembly_id: str = typer.Argument(..., help="Assembly id (file name with or without extension)"),
    upload_dir: Path = typer.Option(None, "--upload-dir", help="Directory holding uploaded assemblies"),
) -> None:
    """Delete an assembly from the store."""
    store = _open_store(upload_dir)
    try:
        path = store.delete(assembly_id)
    except AssemblyNotFoundError:
        console.print(f"[red]Assembly not found:[/red] {assembly_id}")
        raise typer.Exit(1)
    console.print(f"Deleted {path.name}")


@app.command()
def export(
    assembly_id: str = typer.Argument(..., help="Assembly id (file name with or without extension)"),
    upload_dir: Path = typer.Option(None, "--upload-dir", help="Directory holding uploaded assemblies"),
    ilspycmd: str = typer.Option(AppConfig().ilspycmd, help="ilspycmd executable"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Decompile an assembly into a C# project under exported/."""
    _setup_logging(verbose)
    store = _open_store(upload_dir)
    path = store.resolve(assembly_id)
    if path is None:
        console.print(f"[red]Assembly not found:[/red] {assembly_id}")
        raise typer.Exit(1)

    try:
        result = export_project(ILSpyDecompiler(ilspycmd), path, store.export_dir(path))
    except DecompilationError as exc:
        console.print(f"[red]Export failed:[/red] {exc}")
        raise typer.Exit(1)

    console.print(
        f"Exported to [bold]{result.path}[/bold]: {len(result.files)} files, "
        f"skipped: {result.skipped}, failed: {result.failed}"
    )
