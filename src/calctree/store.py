"""SQLite store for node and edge definitions.

Schema::

    node(node_id INTEGER PRIMARY KEY, type INTEGER, operation TEXT,
         name TEXT, symbol TEXT)
    edge(edge_id INTEGER PRIMARY KEY AUTOINCREMENT, node_id INTEGER,
         input_id INTEGER)

``definitions_for(root)`` returns the ancestor subgraph of a root: every
edge reachable by following ``input_id`` from the root, and the node
definitions for every id those edges touch.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

from calctree.nodes import EdgeDefinition, NodeDefinition, NodeKindCode

SCHEMA = """
CREATE TABLE IF NOT EXISTS node (
    node_id   INTEGER PRIMARY KEY,
    type      INTEGER NOT NULL,
    operation TEXT NOT NULL,
    name      TEXT,
    symbol    TEXT
);

CREATE TABLE IF NOT EXISTS edge (
    edge_id  INTEGER PRIMARY KEY AUTOINCREMENT,
    node_id  INTEGER NOT NULL REFERENCES node(node_id),
    input_id INTEGER NOT NULL REFERENCES node(node_id)
);

CREATE INDEX IF NOT EXISTS edge_node_idx ON edge(node_id);
"""

# UNION (not UNION ALL) so shared ancestors are walked once.
_ANCESTOR_EDGES_SQL = """
WITH RECURSIVE child_tree(edge_id, node_id, input_id) AS (
    SELECT edge_id, node_id, input_id
    FROM edge
    WHERE node_id = ?

    UNION

    SELECT e.edge_id, e.node_id, e.input_id
    FROM edge e
    JOIN child_tree ct ON e.node_id = ct.input_id
)
SELECT edge_id, node_id, input_id FROM child_tree ORDER BY edge_id
"""

# SQLite's default host-parameter limit is 999 on older builds.
_IN_CHUNK = 500


class DefinitionStore:
    """Read/write access to definitions in a SQLite database.

    Usage::

        with DefinitionStore(db_path) as store:
            nodes, edges = store.definitions_for(root_id)
            tree = build_tree(nodes, edges)
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._conn = sqlite3.connect(str(self.path))
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> DefinitionStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def create_schema(self) -> None:
        """Create the node/edge tables if they do not exist."""
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_node(
        self,
        node_id: int,
        kind: int,
        value: str,
        *,
        name: str | None = None,
        symbol: str | None = None,
    ) -> None:
        """Insert or replace one node definition."""
        self._conn.execute(
            "INSERT OR REPLACE INTO node(node_id, type, operation, name, symbol) "
            "VALUES (?, ?, ?, ?, ?)",
            (node_id, int(kind), value, name, symbol),
        )
        self._conn.commit()

    def add_edge(self, node_id: int, input_id: int) -> int:
        """Append an edge; returns its ``edge_id``.

        Edge ids grow monotonically, so insertion order is input order.
        """
        cur = self._conn.execute(
            "INSERT INTO edge(node_id, input_id) VALUES (?, ?)",
            (node_id, input_id),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def import_definitions(
        self,
        nodes: list[NodeDefinition],
        edges: list[EdgeDefinition],
    ) -> None:
        """Write a batch of definitions in a single transaction.

        An imported node replaces any stored node with the same id, and its
        stored input edges are dropped before the batch's edges are added,
        so importing the same files twice leaves one copy of each edge.
        """
        with self._conn:
            self._conn.executemany(
                "INSERT OR REPLACE INTO node(node_id, type, operation) VALUES (?, ?, ?)",
                [(n.node_id, n.kind, n.value) for n in nodes],
            )
            self._conn.executemany(
                "DELETE FROM edge WHERE node_id = ?",
                [(node_id,) for node_id in {n.node_id for n in nodes}],
            )
            self._conn.executemany(
                "INSERT INTO edge(node_id, input_id) VALUES (?, ?)",
                [(e.node_id, e.input_id) for e in edges],
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def definitions_for(self, root_id: int) -> tuple[list[NodeDefinition], list[EdgeDefinition]]:
        """Return the ancestor subgraph of *root_id* (inclusive).

        Edges come back in ``edge_id`` order.  A root with no edges yields
        just its own node definition; an unknown root yields no nodes.
        """
        rows = self._conn.execute(_ANCESTOR_EDGES_SQL, (root_id,)).fetchall()

        node_ids: set[int] = {root_id}
        edges: list[EdgeDefinition] = []
        for row in rows:
            node_ids.add(row["node_id"])
            node_ids.add(row["input_id"])
            edges.append(EdgeDefinition(node_id=row["node_id"], input_id=row["input_id"]))

        return self._nodes_by_id(sorted(node_ids)), edges

    def all_definitions(self) -> tuple[list[NodeDefinition], list[EdgeDefinition]]:
        """Return every stored node and edge."""
        nodes = [
            _row_to_node(row)
            for row in self._conn.execute("SELECT * FROM node ORDER BY node_id")
        ]
        edges = [
            EdgeDefinition(node_id=row["node_id"], input_id=row["input_id"])
            for row in self._conn.execute("SELECT node_id, input_id FROM edge ORDER BY edge_id")
        ]
        return nodes, edges

    def get_node(self, node_id: int) -> NodeDefinition | None:
        row = self._conn.execute("SELECT * FROM node WHERE node_id = ?", (node_id,)).fetchone()
        return _row_to_node(row) if row is not None else None

    def _nodes_by_id(self, node_ids: list[int]) -> list[NodeDefinition]:
        nodes: list[NodeDefinition] = []
        for start in range(0, len(node_ids), _IN_CHUNK):
            chunk = node_ids[start:start + _IN_CHUNK]
            placeholders = ",".join("?" * len(chunk))
            query = f"SELECT * FROM node WHERE node_id IN ({placeholders}) ORDER BY node_id"
            nodes.extend(_row_to_node(row) for row in self._conn.execute(query, chunk))
        return nodes


def _row_to_node(row: sqlite3.Row) -> NodeDefinition:
    operation = row["operation"]
    if isinstance(operation, bytes):
        operation = operation.decode("utf-8")
    return NodeDefinition(node_id=row["node_id"], kind=row["type"], value=str(operation))


def kind_label(kind: int) -> str:
    """Readable name for a kind discriminator (``"?"`` if unknown)."""
    try:
        return NodeKindCode(kind).name
    except ValueError:
        return "?"
