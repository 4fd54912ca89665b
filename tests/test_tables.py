"""Tests for Polars-based definition import and output frames."""

from __future__ import annotations

from pathlib import Path

import polars as pl
import pytest

from calctree import NodeOutput, build_tree, evaluate
from calctree.tables import load_definitions, outputs_frame


@pytest.fixture
def csv_files(tmp_path: Path) -> tuple[Path, Path]:
    nodes = tmp_path / "nodes.csv"
    nodes.write_text(
        "node_id,kind,value\n"
        "0,2,1.50\n"
        '1,3,"[5.5, 9.5]"\n'
        '2,1,"(id1 - id0) / 2"\n'
    )
    edges = tmp_path / "edges.csv"
    edges.write_text("node_id,input_id\n2,0\n2,1\n")
    return nodes, edges


class TestLoadDefinitions:
    def test_csv(self, csv_files: tuple[Path, Path]) -> None:
        nodes, edges = load_definitions(*csv_files)
        assert [n.node_id for n in nodes] == [0, 1, 2]
        assert nodes[0].value == "1.50"
        assert [(e.node_id, e.input_id) for e in edges] == [(2, 0), (2, 1)]
        assert evaluate(build_tree(nodes, edges), 2).value == [2.0, 4.0]

    def test_parquet(self, tmp_path: Path) -> None:
        nodes = tmp_path / "nodes.parquet"
        edges = tmp_path / "edges.parquet"
        pl.DataFrame(
            {"node_id": [0, 1], "kind": [0, 1], "value": ["a", "a * 2"], "note": ["x", "y"]}
        ).write_parquet(nodes)
        pl.DataFrame({"node_id": [1], "input_id": [0]}).write_parquet(edges)

        node_defs, edge_defs = load_definitions(nodes, edges)
        tree = build_tree(node_defs, edge_defs)
        assert evaluate(tree, 1, {0: [1, 2]}).value == [2.0, 4.0]

    def test_missing_columns(self, tmp_path: Path, csv_files: tuple[Path, Path]) -> None:
        bad = tmp_path / "bad.csv"
        bad.write_text("node_id,value\n0,1\n")
        with pytest.raises(ValueError, match="missing columns"):
            load_definitions(bad, csv_files[1])

    def test_non_integer_node_id(self, tmp_path: Path, csv_files: tuple[Path, Path]) -> None:
        bad = tmp_path / "bad_nodes.csv"
        bad.write_text("node_id,kind,value\nabc,2,1\n")
        with pytest.raises(ValueError, match="bad_nodes.csv"):
            load_definitions(bad, csv_files[1])

    def test_non_integer_input_id(self, tmp_path: Path, csv_files: tuple[Path, Path]) -> None:
        bad = tmp_path / "bad_edges.csv"
        bad.write_text("node_id,input_id\n2,zero\n")
        with pytest.raises(ValueError, match="bad_edges.csv"):
            load_definitions(csv_files[0], bad)

    def test_unsupported_format(self, tmp_path: Path, csv_files: tuple[Path, Path]) -> None:
        with pytest.raises(ValueError, match="Unsupported"):
            load_definitions(tmp_path / "nodes.json", csv_files[1])


class TestOutputsFrame:
    def test_long_form(self) -> None:
        df = outputs_frame({2: NodeOutput((2.0, 4.0)), 0: NodeOutput.scalar(1.5)})
        assert df.columns == ["node_id", "position", "value"]
        assert df.rows() == [(2, 0, 2.0), (2, 1, 4.0), (0, 0, 1.5)]

    def test_empty(self) -> None:
        df = outputs_frame({})
        assert df.height == 0
        assert df.schema["value"] == pl.Float64
