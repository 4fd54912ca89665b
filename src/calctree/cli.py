"""Command-line interface for calctree."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click

from calctree import __version__
from calctree.errors import CalcTreeError
from calctree.nodes import NodeKindCode


@click.group()
@click.version_option(version=__version__, prog_name="calctree")
def main() -> None:
    """calctree -- evaluate formula graphs stored in a project database."""


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _parse_value(text: str) -> Any:
    """Parse a binding value: a number or a JSON array of numbers."""
    text = text.strip()
    if text.startswith("["):
        try:
            value = json.loads(text)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"Invalid array value {text!r}: {e.msg}")
        return value
    try:
        return float(text)
    except ValueError:
        raise click.ClickException(f"Invalid numeric value: {text!r}")


def _parse_assignments(items: tuple[str, ...], option: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise click.ClickException(f"Invalid {option} format: {item!r}. Use key=value.")
        k, v = item.split("=", 1)
        out[k.strip()] = _parse_value(v)
    return out


def _parse_bindings(items: tuple[str, ...]) -> dict[int, Any]:
    bindings: dict[int, Any] = {}
    for key, value in _parse_assignments(items, "--bind").items():
        try:
            bindings[int(key)] = value
        except ValueError:
            raise click.ClickException(f"--bind expects a node id, got {key!r}")
    return bindings


def _open_store(directory: str):
    from calctree.project import database_path
    from calctree.store import DefinitionStore

    db = database_path(Path(directory))
    if not db.exists():
        raise click.ClickException(f"No definitions database at {db}")
    return DefinitionStore(db)


_KIND_CHOICES = [k.name for k in NodeKindCode]


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path())
def new(directory: str) -> None:
    """Scaffold a new project at DIRECTORY."""
    from calctree.project import scaffold_project

    try:
        result = scaffold_project(Path(directory))
    except FileExistsError as e:
        raise click.ClickException(str(e))
    click.echo(f"Created project at {result}")


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@main.command("add-node")
@click.argument("directory", type=click.Path(exists=True))
@click.option("--id", "node_id", required=True, type=int, help="Node id.")
@click.option("--kind", required=True, type=click.Choice(_KIND_CHOICES), help="Node kind.")
@click.option("--value", required=True, help="Variable name, formula, literal or query text.")
@click.option("--name", default=None, help="Optional display name.")
def add_node(directory: str, node_id: int, kind: str, value: str, name: str | None) -> None:
    """Add or replace a node definition."""
    with _open_store(directory) as store:
        store.add_node(node_id, NodeKindCode[kind], value, name=name)
    click.echo(f"Node {node_id} ({kind}) saved")


@main.command("add-edge")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("node_id", type=int)
@click.argument("input_id", type=int)
def add_edge(directory: str, node_id: int, input_id: int) -> None:
    """Append INPUT_ID to the inputs of NODE_ID."""
    with _open_store(directory) as store:
        edge_id = store.add_edge(node_id, input_id)
    click.echo(f"Edge {edge_id}: {input_id} -> {node_id}")


@main.command("import")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("nodes_file", type=click.Path(exists=True))
@click.argument("edges_file", type=click.Path(exists=True))
def import_cmd(directory: str, nodes_file: str, edges_file: str) -> None:
    """Import node and edge definitions from CSV or Parquet files."""
    from calctree.tables import load_definitions

    try:
        nodes, edges = load_definitions(Path(nodes_file), Path(edges_file))
    except ValueError as e:
        raise click.ClickException(str(e))
    with _open_store(directory) as store:
        store.import_definitions(nodes, edges)
    click.echo(f"Imported {len(nodes)} nodes and {len(edges)} edges")


# ---------------------------------------------------------------------------
# Inspect
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("root", type=int)
def show(directory: str, root: int) -> None:
    """Show the nodes ROOT depends on, root first."""
    from calctree.session import Session

    try:
        tree = Session(Path(directory)).load_tree(root)
        order = tree.reachable(root)
    except (CalcTreeError, FileNotFoundError) as e:
        raise click.ClickException(str(e))

    for node_id in order:
        node = tree[node_id]
        inputs = ", ".join(str(i) for i in node.inputs) or "-"
        click.echo(f"  {node.identifier:8s} {node.kind_code.name:18s} inputs: {inputs}  {node.kind!r}")


@main.command("eval")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("root", type=int)
@click.option("--bind", "binds", multiple=True, help="Bind a variable node as ID=VALUE.")
@click.option("--var", "variables", multiple=True, help="Bind variables by name as NAME=VALUE.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def eval_cmd(
    directory: str,
    root: int,
    binds: tuple[str, ...],
    variables: tuple[str, ...],
    as_json: bool,
) -> None:
    """Evaluate ROOT with the given variable values."""
    from calctree.session import Session

    bindings = _parse_bindings(binds)
    named = _parse_assignments(variables, "--var")

    try:
        result = Session(Path(directory)).run(root, bindings=bindings, variables=named)
    except (CalcTreeError, FileNotFoundError, KeyError) as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps({
            "run_id": result.run_id,
            "root_id": result.root_id,
            "value": result.output.value,
            "timings_ms": result.timings_ms,
        }, indent=2))
    else:
        click.echo(json.dumps(result.output.value))


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]))
@click.option("--run", "run_id", default=None, help="Show one run's events.")
@click.option("--limit", default=50, type=int)
def logs(directory: str, level: str | None, run_id: str | None, limit: int) -> None:
    """Show recent events, newest first."""
    from calctree.logging.sink import EventSink

    sink = EventSink(Path(directory))
    if run_id:
        events = list(reversed(sink.read_run_log(run_id)))
        if level:
            events = [e for e in events if e.get("level") == level]
        events = events[:limit]
    else:
        events = sink.read_global(level=level, limit=limit)
    if not events:
        click.echo("No events.")
        return
    for evt in events:
        code = f" [{evt['error_code']}]" if evt.get("error_code") else ""
        click.echo(f"{evt.get('ts', '')}  {evt.get('level', ''):7s} {evt.get('event_type', '')}{code}  {evt.get('message', '')}")
