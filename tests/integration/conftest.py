"""
Integration test fixtures: a fresh SQLite catalog per test.
"""

import os
import tempfile

import pytest

from catalog.lrm_server.schema import FieldKind, get_registry
from catalog.lrm_server.store import Database, EntityStore, QueryFacade, RelationshipGraph


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db(data_dir):
    """Database with the catalog schema created."""
    database = Database(os.path.join(data_dir, "catalog.db"), get_registry(), wal_mode=False)
    database.create_schema()
    return database


@pytest.fixture
def entities(db):
    return EntityStore(db)


@pytest.fixture
def graph(db, entities):
    return RelationshipGraph(db, entities, batch_size=2)


@pytest.fixture
def queries(entities, graph):
    return QueryFacade(entities, graph)


@pytest.fixture
def populated_layers():
    """Build an attribute set with every field of every layer of a kind filled in."""
    registry = get_registry()

    def sample(layer_name, f):
        if f.kind == FieldKind.STRING:
            return f"{layer_name}-{f.name}"
        if f.kind == FieldKind.INTEGER:
            return 1000 + f.field_id
        if f.kind == FieldKind.TIMESTAMP:
            return 1_700_000_000_000 + f.field_id
        if f.kind == FieldKind.JSON:
            return {"layer": layer_name, "values": [1, "two", None, {"nested": True}]}
        return [f"{f.name}-a", f"{f.name}-b"]

    def build(kind):
        return {
            layer.name: {f.name: sample(layer.name, f) for f in layer.fields}
            for layer in registry.layers_for(kind)
        }

    return build
