"""Tests for the SQLite definition store and ancestor-subgraph query."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from calctree import NodeKindCode, build_tree, evaluate
from calctree.store import DefinitionStore, kind_label

K = NodeKindCode


@pytest.fixture
def store(tmp_path: Path):
    s = DefinitionStore(tmp_path / "defs.db")
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def populated(store: DefinitionStore) -> DefinitionStore:
    """Two independent graphs sharing node 0.

    3 = (id1 - id0) / 2 over 1 = [5.5, 9.5] and 0 = 1.5
    4 = id3 ^ 2
    6 = id5 + id0 with 5 a variable
    """
    store.add_node(0, K.constant, "1.5")
    store.add_node(1, K.constant_sequence, "[5.5, 9.5]")
    store.add_node(3, K.formula, "(id1 - id0) / 2")
    store.add_node(4, K.formula, "id3 ^ 2")
    store.add_node(5, K.variable, "x")
    store.add_node(6, K.formula, "id5 + id0")
    store.add_edge(3, 0)
    store.add_edge(3, 1)
    store.add_edge(4, 3)
    store.add_edge(6, 5)
    store.add_edge(6, 0)
    return store


class TestDefinitionsFor:
    def test_ancestor_subgraph(self, populated: DefinitionStore) -> None:
        nodes, edges = populated.definitions_for(4)
        assert sorted(n.node_id for n in nodes) == [0, 1, 3, 4]
        assert [(e.node_id, e.input_id) for e in edges] == [(3, 0), (3, 1), (4, 3)]

    def test_subgraph_excludes_unrelated_nodes(self, populated: DefinitionStore) -> None:
        nodes, edges = populated.definitions_for(6)
        assert sorted(n.node_id for n in nodes) == [0, 5, 6]
        assert [(e.node_id, e.input_id) for e in edges] == [(6, 5), (6, 0)]

    def test_leaf_root(self, populated: DefinitionStore) -> None:
        nodes, edges = populated.definitions_for(1)
        assert [n.node_id for n in nodes] == [1]
        assert edges == []

    def test_unknown_root(self, populated: DefinitionStore) -> None:
        nodes, edges = populated.definitions_for(99)
        assert nodes == []
        assert edges == []

    def test_build_and_evaluate(self, populated: DefinitionStore) -> None:
        nodes, edges = populated.definitions_for(4)
        tree = build_tree(nodes, edges)
        assert evaluate(tree, 4).value == [4.0, 16.0]

    def test_cyclic_edges_terminate(self, store: DefinitionStore) -> None:
        store.add_node(0, K.formula, "id1")
        store.add_node(1, K.formula, "id0")
        store.add_edge(0, 1)
        store.add_edge(1, 0)
        nodes, edges = store.definitions_for(0)
        assert sorted(n.node_id for n in nodes) == [0, 1]
        assert len(edges) == 2

    def test_kind_round_trip(self, populated: DefinitionStore) -> None:
        node = populated.get_node(5)
        assert node is not None
        assert node.kind == K.variable
        assert node.value == "x"
        assert populated.get_node(42) is None


class TestWrites:
    def test_add_edge_returns_increasing_ids(self, store: DefinitionStore) -> None:
        store.add_node(0, K.constant, "1")
        store.add_node(1, K.formula, "id0")
        first = store.add_edge(1, 0)
        second = store.add_edge(1, 0)
        assert second > first

    def test_import_definitions(self, store: DefinitionStore) -> None:
        from calctree import EdgeDefinition, NodeDefinition

        store.import_definitions(
            [NodeDefinition(node_id=0, kind=2, value="2"), NodeDefinition(node_id=1, kind=1, value="id0 * 3")],
            [EdgeDefinition(node_id=1, input_id=0)],
        )
        nodes, edges = store.all_definitions()
        assert [n.node_id for n in nodes] == [0, 1]
        assert evaluate(build_tree(nodes, edges), 1).value == 6.0

    def test_reimport_replaces_inputs(self, store: DefinitionStore) -> None:
        from calctree import EdgeDefinition, NodeDefinition

        nodes = [
            NodeDefinition(node_id=0, kind=2, value="2"),
            NodeDefinition(node_id=1, kind=2, value="5"),
            NodeDefinition(node_id=2, kind=1, value="id0 + id1"),
        ]
        edges = [EdgeDefinition(node_id=2, input_id=0), EdgeDefinition(node_id=2, input_id=1)]
        store.import_definitions(nodes, edges)
        store.import_definitions(nodes, edges)

        _, stored = store.definitions_for(2)
        assert [(e.node_id, e.input_id) for e in stored] == [(2, 0), (2, 1)]
        tree = build_tree(*store.definitions_for(2))
        assert tree[2].inputs == (0, 1)
        assert evaluate(tree, 2).value == 7.0

    def test_import_keeps_edges_of_other_nodes(self, populated: DefinitionStore) -> None:
        from calctree import NodeDefinition

        populated.import_definitions([NodeDefinition(node_id=7, kind=2, value="1")], [])
        _, edges = populated.definitions_for(4)
        assert [(e.node_id, e.input_id) for e in edges] == [(3, 0), (3, 1), (4, 3)]

    def test_blob_operation_is_decoded(self, tmp_path: Path) -> None:
        db = tmp_path / "blob.db"
        with DefinitionStore(db) as s:
            s.create_schema()
        conn = sqlite3.connect(str(db))
        conn.execute("INSERT INTO node(node_id, type, operation) VALUES (1, 1, ?)", (b"a * 2",))
        conn.commit()
        conn.close()
        with DefinitionStore(db) as s:
            assert s.get_node(1).value == "a * 2"


def test_kind_label() -> None:
    assert kind_label(3) == "constant_sequence"
    assert kind_label(17) == "?"
