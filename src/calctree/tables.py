"""Tabular import/export of definitions and outputs with Polars."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

import polars as pl

from calctree.nodes import EdgeDefinition, NodeDefinition, NodeOutput

NODE_COLUMNS = ("node_id", "kind", "value")
EDGE_COLUMNS = ("node_id", "input_id")


def read_frame(path: Path) -> pl.DataFrame:
    """Read a CSV or Parquet file, chosen by suffix.

    Raises:
        ValueError: For any other suffix, or a file polars cannot read.
    """
    suffix = path.suffix.lower()
    if suffix not in (".csv", ".parquet"):
        raise ValueError(f"Unsupported table format: {path.suffix!r}")
    try:
        if suffix == ".csv":
            # Keep value text verbatim: "1.50" must not become 1.5
            return pl.read_csv(path, infer_schema_length=0)
        return pl.read_parquet(path)
    except pl.exceptions.PolarsError as e:
        raise ValueError(f"{path}: unreadable table: {e}") from e


def _require_columns(df: pl.DataFrame, columns: tuple[str, ...], path: Path) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing columns {missing}; found {df.columns}")


def _cast(df: pl.DataFrame, path: Path, *columns: pl.Expr) -> pl.DataFrame:
    try:
        return df.select(*columns)
    except pl.exceptions.PolarsError as e:
        raise ValueError(f"{path}: invalid column value: {e}") from e


def load_definitions(
    nodes_path: Path,
    edges_path: Path,
) -> tuple[list[NodeDefinition], list[EdgeDefinition]]:
    """Load node and edge definitions from two tables, in file order.

    Node tables need ``node_id, kind, value`` columns and edge tables
    ``node_id, input_id``.  Extra columns are ignored.

    Returns:
        ``(node_definitions, edge_definitions)``.
    """
    nodes_df = read_frame(nodes_path)
    _require_columns(nodes_df, NODE_COLUMNS, nodes_path)
    nodes_df = _cast(
        nodes_df,
        nodes_path,
        pl.col("node_id").cast(pl.Int64),
        pl.col("kind").cast(pl.Int64),
        pl.col("value").cast(pl.Utf8).fill_null(""),
    )

    edges_df = read_frame(edges_path)
    _require_columns(edges_df, EDGE_COLUMNS, edges_path)
    edges_df = _cast(
        edges_df,
        edges_path,
        pl.col("node_id").cast(pl.Int64),
        pl.col("input_id").cast(pl.Int64),
    )

    nodes = [NodeDefinition.model_validate(row) for row in nodes_df.iter_rows(named=True)]
    edges = [EdgeDefinition.model_validate(row) for row in edges_df.iter_rows(named=True)]
    return nodes, edges


def outputs_frame(results: Mapping[int, NodeOutput]) -> pl.DataFrame:
    """Long-form frame of outputs: one row per (node_id, position)."""
    node_ids: list[int] = []
    positions: list[int] = []
    values: list[float] = []
    for node_id, output in results.items():
        for position, value in enumerate(output.values):
            node_ids.append(node_id)
            positions.append(position)
            values.append(value)
    return pl.DataFrame(
        {"node_id": node_ids, "position": positions, "value": values},
        schema={"node_id": pl.Int64, "position": pl.Int64, "value": pl.Float64},
    )
