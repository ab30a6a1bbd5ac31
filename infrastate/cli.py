"""
Infrastate CLI - inspect and save provisioning state held in the cluster.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import InfrastateError, NoStateError
from .models import ProvisioningOutputs
from .persistence import delete_state, save_cluster_state, save_master_node_state, save_node_state
from .reader import FleetStateReader
from .settings import InfrastateSettings, get_settings
from .sinks import ClusterStateSaver, NodeStateSaver, StateSink
from .store import RecordStore, store_from_settings
from .watcher import StateFileWatcher

# Setup
app = typer.Typer(
    name="infrastate",
    help="Durable provisioning state for cluster infrastructure",
    add_completion=False,
)
console = Console()


def configure_logging():
    """Configure logging based on settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Configure logging on module import
configure_logging()


@app.callback()
def main(
    ctx: typer.Context,
    store: Optional[str] = typer.Option(
        None, "--store", help="Store backend: kubectl or file (overrides .env)"
    ),
    store_file: Optional[Path] = typer.Option(
        None, "--store-file", help="Records file for the file backend (overrides .env)"
    ),
):
    """Durable provisioning state for cluster infrastructure."""
    settings = get_settings()
    overrides = {}
    if store:
        overrides["store_backend"] = store
    if store_file:
        overrides["store_file"] = store_file
    ctx.obj = settings.model_copy(update=overrides) if overrides else settings


# Helper functions to reduce duplication across commands
def _settings(ctx: typer.Context) -> InfrastateSettings:
    return ctx.obj if isinstance(ctx.obj, InfrastateSettings) else get_settings()


def _open_store(ctx: typer.Context) -> RecordStore:
    try:
        return store_from_settings(_settings(ctx))
    except InfrastateError as e:
        _handle_command_error(e, "store setup")


def _read_file(path: Path) -> bytes:
    if not path.exists():
        console.print(f"[bold red]✗ Error:[/bold red] File not found: {path}")
        raise typer.Exit(code=1)
    return path.read_bytes()


def _handle_command_error(e: Exception, command_type: str) -> None:
    """Print the error and exit with code 1.

    Raises:
        SystemExit: Always exits with code 1
    """
    console.print(f"\n[bold red]✗ {command_type.capitalize()} failed:[/bold red] {e}")
    raise typer.Exit(code=1)


@app.command()
def nodes(ctx: typer.Context):
    """Show terraform state of all nodes, grouped by node group."""
    store = _open_store(ctx)
    try:
        groups = FleetStateReader(store, strict_group_settings=_settings(ctx).strict_group_settings).get_nodes_state()
    except InfrastateError as e:
        _handle_command_error(e, "read")

    if not groups:
        console.print("[dim]No node state records found[/dim]")
        return

    table = Table(title="Node state")
    table.add_column("Node group", style="cyan")
    table.add_column("Node")
    table.add_column("State bytes", justify="right")
    table.add_column("Settings bytes", justify="right")
    for group_name in sorted(groups):
        group = groups[group_name]
        settings_size = "-" if group.settings is None else str(len(group.settings))
        for node_name in sorted(group.state):
            table.add_row(group_name, node_name, str(len(group.state[node_name])), settings_size)
    console.print(table)


@app.command(name="cluster-state")
def cluster_state(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the state to this file"),
):
    """Print or export the cluster terraform state."""
    store = _open_store(ctx)
    try:
        state = FleetStateReader(store).get_cluster_state()
    except InfrastateError as e:
        _handle_command_error(e, "read")

    if not state:
        console.print("[yellow]No cluster state in the cluster yet[/yellow]")
        return
    if output:
        output.write_bytes(state)
        console.print(f"[bold green]✓[/bold green] Cluster state written to {output} ({len(state)} bytes)")
    else:
        typer.echo(state.decode("utf-8", errors="replace"))


@app.command()
def uuid(ctx: typer.Context):
    """Print the cluster UUID."""
    store = _open_store(ctx)
    try:
        typer.echo(FleetStateReader(store).get_cluster_uuid())
    except InfrastateError as e:
        _handle_command_error(e, "read")


@app.command(name="save-node")
def save_node(
    ctx: typer.Context,
    node_name: str = typer.Argument(..., help="Node name"),
    node_group: str = typer.Argument(..., help="Node group name"),
    state_file: Path = typer.Argument(..., help="Terraform state file"),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="Node group settings file"),
):
    """Save the final state of a node."""
    store = _open_store(ctx)
    state = _read_file(state_file)
    settings = _read_file(settings_file) if settings_file else None
    console.print(Panel.fit(f"[bold blue]Save node state[/bold blue]\nNode: {node_name}\nGroup: {node_group}", border_style="blue"))
    try:
        save_node_state(store, node_name, node_group, state, settings)
    except NoStateError:
        console.print("[yellow]⚠ State file is empty, nothing saved[/yellow]")
        return
    except InfrastateError as e:
        _handle_command_error(e, "save")
    console.print("\n[bold green]✓ Node state saved![/bold green]")


@app.command(name="save-master")
def save_master(
    ctx: typer.Context,
    node_name: str = typer.Argument(..., help="Master node name"),
    state_file: Path = typer.Argument(..., help="Terraform state file"),
    device_path: str = typer.Option(..., "--device-path", help="Kubernetes data device path"),
):
    """Save the final state of a master node and its data device path."""
    store = _open_store(ctx)
    state = _read_file(state_file)
    console.print(Panel.fit(f"[bold blue]Save master state[/bold blue]\nNode: {node_name}", border_style="blue"))
    try:
        save_master_node_state(store, node_name, state, device_path.encode("utf-8"))
    except NoStateError:
        console.print("[yellow]⚠ State file is empty, nothing saved[/yellow]")
        return
    except InfrastateError as e:
        _handle_command_error(e, "save")
    console.print("\n[bold green]✓ Master node state saved![/bold green]")


@app.command(name="save-cluster")
def save_cluster(
    ctx: typer.Context,
    state_file: Path = typer.Argument(..., help="Terraform state file"),
    discovery_file: Optional[Path] = typer.Option(None, "--discovery", help="Cloud discovery data file"),
):
    """Save the final cluster state and publish cloud discovery data."""
    store = _open_store(ctx)
    outputs = ProvisioningOutputs(
        state=_read_file(state_file),
        cloud_discovery=_read_file(discovery_file) if discovery_file else b"",
    )
    console.print(Panel.fit("[bold blue]Save cluster state[/bold blue]", border_style="blue"))
    try:
        save_cluster_state(store, outputs)
    except NoStateError:
        console.print("[yellow]⚠ State file is empty, nothing saved[/yellow]")
        return
    except InfrastateError as e:
        _handle_command_error(e, "save")
    console.print("\n[bold green]✓ Cluster state saved![/bold green]")


@app.command()
def delete(
    ctx: typer.Context,
    record_name: str = typer.Argument(..., help="Name of the state record"),
):
    """Delete a terraform state record."""
    store = _open_store(ctx)
    try:
        deleted = delete_state(store, record_name)
    except InfrastateError as e:
        _handle_command_error(e, "delete")
    if deleted:
        console.print(f"[bold green]✓[/bold green] Deleted {record_name}")
    else:
        console.print(f"[dim]{record_name} was already deleted[/dim]")


@app.command()
def watch(
    ctx: typer.Context,
    state_file: Path = typer.Argument(..., help="Working state file of the provisioning engine"),
    node_name: Optional[str] = typer.Option(None, "--node", help="Checkpoint into this node's record"),
    node_group: Optional[str] = typer.Option(None, "--group", help="Node group of --node"),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="Node group settings file"),
    cluster: bool = typer.Option(False, "--cluster", help="Checkpoint into the cluster state record"),
):
    """Checkpoint a state file on every change until interrupted."""
    if cluster == bool(node_name):
        console.print("[bold red]✗ Error:[/bold red] Pass either --cluster or --node with --group")
        raise typer.Exit(code=1)
    if node_name and not node_group:
        console.print("[bold red]✗ Error:[/bold red] --node requires --group")
        raise typer.Exit(code=1)

    store = _open_store(ctx)
    stop = threading.Event()
    try:
        sink: StateSink
        if cluster:
            sink = ClusterStateSaver(store, cancel=stop)
        else:
            settings = _read_file(settings_file) if settings_file else None
            sink = NodeStateSaver(store, node_name, node_group, settings, cancel=stop)
    except InfrastateError as e:
        _handle_command_error(e, "watch")

    target = "cluster" if cluster else f"node {node_name}"
    console.print(Panel.fit(f"[bold cyan]Watching {state_file}[/bold cyan]\nTarget: {target}", border_style="cyan"))
    watcher = StateFileWatcher(state_file, sink)
    with watcher:
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            stop.set()
    console.print(f"\n[dim]Stopped after {watcher.checkpoints} checkpoints[/dim]")


@app.command()
def version():
    """Show Infrastate version."""
    from . import __version__

    console.print(f"Infrastate version: [bold]{__version__}[/bold]")


if __name__ == "__main__":
    app()
