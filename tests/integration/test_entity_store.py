"""
Integration tests for the entity store.

Tests cover:
- Multi-layer create and hydration
- Validation before any write
- Transaction rollback on storage failure
- Corrupt entity detection
- Batched reads, patch updates and cascading deletes
- Cursor paging
"""

import logging
import sqlite3

import pytest

from catalog.lrm_server.errors import (
    CorruptEntityError,
    NotFoundError,
    StorageUnavailableError,
    UnknownKindError,
    ValidationError,
)
from catalog.lrm_server.schema import EntityKind
from catalog.lrm_server.store.entity_store import decode_cursor, encode_cursor


def raw_count(db, table, entity_id=None):
    """Count rows with a plain connection, bypassing the store."""
    with db.connect() as conn:
        if entity_id is None:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE id = ?", (entity_id,)
        ).fetchone()[0]


class TestCreateEntity:
    """Tests for create_entity and get_entity."""

    @pytest.mark.asyncio
    async def test_create_person(self, entities, db):
        """A person writes a root row, an agent row and a person row."""
        person = await entities.create_entity(
            "person",
            notes=["imported"],
            layers={
                "agent": {"language": ["ja"], "field_of_activity": ["manga"]},
                "person": {"profession": ["illustrator"]},
            },
        )

        assert person.kind == EntityKind.PERSON
        assert person.updated_at is None
        assert raw_count(db, "mp_res", person.id) == 1
        assert raw_count(db, "mp_agent", person.id) == 1
        assert raw_count(db, "mp_person", person.id) == 1

        fetched = await entities.get_entity(person.id)
        assert list(fetched.layers) == ["agent", "person"]
        assert fetched.attributes["profession"] == ["illustrator"]
        assert fetched.attributes["language"] == ["ja"]
        assert fetched.attributes["contact_info"] is None
        assert fetched.notes == ["imported"]
        assert fetched.created_at == person.created_at

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", list(EntityKind), ids=lambda k: k.value)
    async def test_round_trip_every_kind(self, entities, populated_layers, kind):
        """Every kind reads back with its kind and every layer attribute intact."""
        layers = populated_layers(kind)

        created = await entities.create_entity(kind, notes=["first", "second"], layers=layers)
        fetched = await entities.get_entity(created.id)

        assert fetched.kind == kind
        assert fetched.layers == layers
        assert list(fetched.layers) == [layer.name for layer in entities.registry.layers_for(kind)]
        assert fetched.notes == ["first", "second"]
        assert created.layers == layers

    @pytest.mark.asyncio
    async def test_omitted_layer_stored_null(self, entities):
        person = await entities.create_entity("person", layers={"person": {"profession": ["writer"]}})
        fetched = await entities.get_entity(person.id)
        assert fetched.layers["agent"] == {
            "contact_info": None,
            "field_of_activity": None,
            "language": None,
        }

    @pytest.mark.asyncio
    async def test_res_has_root_only(self, entities):
        res = await entities.create_entity(EntityKind.RES, notes=["placeholder"])
        fetched = await entities.get_entity(res.id)
        assert fetched.layers == {}
        assert fetched.to_dict()["kind"] == "res"

    @pytest.mark.asyncio
    async def test_to_dict_is_flat(self, entities):
        work = await entities.create_entity(
            "work",
            layers={"work": {"category": ["manga"], "representative_attributes": {"title": "Akira"}}},
        )
        record = (await entities.get_entity(work.id)).to_dict()
        assert record["id"] == work.id
        assert record["category"] == ["manga"]
        assert record["representative_attributes"] == {"title": "Akira"}

    @pytest.mark.asyncio
    async def test_unknown_kind_writes_nothing(self, entities, db):
        with pytest.raises(UnknownKindError):
            await entities.create_entity("novel")
        assert raw_count(db, "mp_res") == 0

    @pytest.mark.asyncio
    async def test_foreign_layer_rejected(self, entities, db):
        """Layers outside the kind's chain are rejected before any write."""
        with pytest.raises(ValidationError, match="not part of kind 'person'"):
            await entities.create_entity("person", layers={"work": {"category": ["x"]}})
        assert raw_count(db, "mp_res") == 0

    @pytest.mark.asyncio
    async def test_missing_required_field(self, entities, db):
        with pytest.raises(ValidationError) as exc_info:
            await entities.create_entity("nomen", layers={"nomen": {"category": ["title"]}})
        assert "Field 'nomen_string' is required" in exc_info.value.errors
        assert raw_count(db, "mp_res") == 0

    @pytest.mark.asyncio
    async def test_wrong_type(self, entities):
        with pytest.raises(ValidationError):
            await entities.create_entity("image", layers={"image": {"width": "wide"}})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("width", [2**63, 2**70, -(2**63) - 1])
    async def test_integer_out_of_range(self, entities, db, width):
        """Integers SQLite can't store are rejected before the write starts."""
        with pytest.raises(ValidationError) as exc_info:
            await entities.create_entity("image", layers={"image": {"width": width}})
        assert "Field 'width' is out of the 64-bit integer range" in exc_info.value.errors
        assert raw_count(db, "mp_res") == 0

    @pytest.mark.asyncio
    async def test_integer_range_edges(self, entities):
        image = await entities.create_entity(
            "image", layers={"image": {"width": 2**63 - 1, "height": -(2**63)}}
        )
        fetched = await entities.get_entity(image.id)
        assert fetched.attributes["width"] == 2**63 - 1
        assert fetched.attributes["height"] == -(2**63)

    @pytest.mark.asyncio
    async def test_timestamp_out_of_range(self, entities, db):
        with pytest.raises(ValidationError):
            await entities.create_entity("link", layers={"link": {"last_checked": 2**64}})
        assert raw_count(db, "mp_res") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value",
        [{"k": {1, 2}}, {1: "a"}, {"k": b"raw"}, {"k": float("nan")}, ("a", "b")],
        ids=["set", "int-key", "bytes", "nan", "tuple"],
    )
    async def test_json_must_round_trip(self, entities, db, value):
        """JSON attributes must come back exactly as supplied, or be rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await entities.create_entity(
                "work", layers={"work": {"representative_attributes": value}}
            )
        assert exc_info.value.errors == [
            "Field 'representative_attributes' is not representable as JSON"
        ]
        assert raw_count(db, "mp_res") == 0

    @pytest.mark.asyncio
    async def test_json_update_validated(self, entities):
        work = await entities.create_entity("work")
        with pytest.raises(ValidationError):
            await entities.update_entity(
                work.id, layers={"work": {"representative_attributes": {2: "b"}}}
            )
        fetched = await entities.get_entity(work.id)
        assert fetched.attributes["representative_attributes"] is None

    @pytest.mark.asyncio
    async def test_notes_must_be_strings(self, entities):
        with pytest.raises(ValidationError):
            await entities.create_entity("work", notes=[1, 2])

    @pytest.mark.asyncio
    async def test_layer_failure_rolls_back(self, entities, db):
        """A failing child layer insert leaves no root or parent layer row."""
        with db.connect() as conn:
            conn.execute(
                "CREATE TRIGGER fail_person BEFORE INSERT ON mp_person "
                "BEGIN SELECT RAISE(ABORT, 'disk on fire'); END"
            )

        with pytest.raises(StorageUnavailableError) as exc_info:
            await entities.create_entity("person", layers={"person": {"profession": ["x"]}})

        # A trigger abort is a constraint violation and fails the same way again
        assert not exc_info.value.retryable
        assert raw_count(db, "mp_res") == 0
        assert raw_count(db, "mp_agent") == 0

    @pytest.mark.asyncio
    async def test_locked_database_is_retryable(self, db):
        from catalog.lrm_server.store import Database, EntityStore

        store = EntityStore(Database(str(db.path), db.registry, wal_mode=False, busy_timeout_ms=50))
        with db.connect() as writer:
            writer.execute("BEGIN IMMEDIATE")
            try:
                with pytest.raises(StorageUnavailableError) as exc_info:
                    await store.create_entity("work")
            finally:
                writer.execute("ROLLBACK")

        assert exc_info.value.retryable
        assert raw_count(db, "mp_res") == 0

    @pytest.mark.asyncio
    async def test_missing_database(self, data_dir):
        from catalog.lrm_server.schema import get_registry
        from catalog.lrm_server.store import Database, EntityStore

        store = EntityStore(Database(f"{data_dir}/absent.db", get_registry()))
        with pytest.raises(StorageUnavailableError):
            await store.get_entity("8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e")


class TestReadEntity:
    """Tests for reads."""

    @pytest.mark.asyncio
    async def test_not_found(self, entities):
        with pytest.raises(NotFoundError):
            await entities.get_entity("8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e")

    @pytest.mark.asyncio
    async def test_malformed_id_not_found(self, entities):
        with pytest.raises(NotFoundError):
            await entities.get_entity("not-a-uuid")

    @pytest.mark.asyncio
    async def test_corrupt_entity(self, entities, db, caplog):
        """A root row without its person row is reported, not half-hydrated."""
        person = await entities.create_entity("person")
        with db.connect() as conn:
            conn.execute("DELETE FROM mp_person WHERE id = ?", (person.id,))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(CorruptEntityError) as exc_info:
                await entities.get_entity(person.id)

        assert exc_info.value.missing_layers == ["person"]
        assert exc_info.value.kind == "person"
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    @pytest.mark.asyncio
    async def test_get_entities_preserves_order(self, entities):
        work = await entities.create_entity("work")
        person = await entities.create_entity("person")
        tag = await entities.create_entity("tag", layers={"tag": {"label": "isekai"}})

        result = await entities.get_entities([tag.id, work.id, person.id, tag.id])

        assert [e.id for e in result] == [tag.id, work.id, person.id, tag.id]
        assert result[0].attributes["label"] == "isekai"
        assert result[2].kind == EntityKind.PERSON

    @pytest.mark.asyncio
    async def test_get_entities_names_missing(self, entities):
        work = await entities.create_entity("work")
        absent = "8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e"

        with pytest.raises(NotFoundError) as exc_info:
            await entities.get_entities([work.id, absent, "bogus"])

        assert exc_info.value.resource_id == [absent, "bogus"]

    @pytest.mark.asyncio
    async def test_get_entities_empty(self, entities):
        assert await entities.get_entities([]) == []

    @pytest.mark.asyncio
    async def test_resolve_kind(self, entities):
        collective = await entities.create_entity("collective_agent")
        assert await entities.resolve_kind(collective.id) == EntityKind.COLLECTIVE_AGENT


class TestUpdateEntity:
    """Tests for update_entity."""

    @pytest.mark.asyncio
    async def test_patch_one_layer(self, entities):
        person = await entities.create_entity(
            "person",
            layers={"agent": {"language": ["ja"]}, "person": {"profession": ["writer"]}},
        )

        updated = await entities.update_entity(
            person.id, layers={"person": {"profession": ["writer", "editor"]}}
        )

        assert updated.attributes["profession"] == ["writer", "editor"]
        assert updated.attributes["language"] == ["ja"]
        assert updated.kind == EntityKind.PERSON
        assert updated.updated_at is not None
        assert updated.updated_at >= person.created_at

    @pytest.mark.asyncio
    async def test_replace_notes(self, entities):
        work = await entities.create_entity("work", notes=["a"])
        updated = await entities.update_entity(work.id, notes=["b", "c"])
        assert updated.notes == ["b", "c"]

    @pytest.mark.asyncio
    async def test_no_changes(self, entities):
        work = await entities.create_entity("work")
        with pytest.raises(ValidationError, match="No changes"):
            await entities.update_entity(work.id)

    @pytest.mark.asyncio
    async def test_cannot_add_foreign_layer(self, entities):
        work = await entities.create_entity("work")
        with pytest.raises(ValidationError):
            await entities.update_entity(work.id, layers={"person": {"profession": ["x"]}})
        assert (await entities.get_entity(work.id)).updated_at is None

    @pytest.mark.asyncio
    async def test_cannot_null_required(self, entities):
        nomen = await entities.create_entity("nomen", layers={"nomen": {"nomen_string": "Akira"}})
        with pytest.raises(ValidationError):
            await entities.update_entity(nomen.id, layers={"nomen": {"nomen_string": None}})

    @pytest.mark.asyncio
    async def test_update_absent(self, entities):
        with pytest.raises(NotFoundError):
            await entities.update_entity("8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e", notes=[])


class TestDeleteEntity:
    """Tests for delete_entity."""

    @pytest.mark.asyncio
    async def test_delete_cascades_layers(self, entities, db):
        image = await entities.create_entity(
            "image",
            layers={"digital_resource": {"uri": "s3://covers/1.png"}, "image": {"width": 640}},
        )

        await entities.delete_entity(image.id)

        assert raw_count(db, "mp_res", image.id) == 0
        assert raw_count(db, "mp_digital_resource", image.id) == 0
        assert raw_count(db, "mp_image", image.id) == 0
        with pytest.raises(NotFoundError):
            await entities.get_entity(image.id)

    @pytest.mark.asyncio
    async def test_delete_twice(self, entities):
        work = await entities.create_entity("work")
        await entities.delete_entity(work.id)
        with pytest.raises(NotFoundError):
            await entities.delete_entity(work.id)

    @pytest.mark.asyncio
    async def test_layer_row_needs_root(self, db):
        """Storage refuses a layer row without its parent rows."""
        with db.connect() as conn:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO mp_person (id, profession) VALUES (?, ?)",
                    ("8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e", "[]"),
                )


class TestListEntities:
    """Tests for list_entities and iter_entities."""

    @pytest.mark.asyncio
    async def test_pages_are_disjoint_and_ordered(self, entities):
        created = [await entities.create_entity("work") for _ in range(5)]

        seen = []
        cursor = None
        while True:
            page = await entities.list_entities("work", cursor=cursor, limit=2)
            assert len(page.items) <= 2
            seen.extend(page.items)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert sorted(e.id for e in seen) == sorted(e.id for e in created)
        positions = [(e.created_at, e.id) for e in seen]
        assert positions == sorted(positions, reverse=True)
        assert len(set(positions)) == len(positions)

    @pytest.mark.asyncio
    async def test_exact_kind_by_default(self, entities):
        agent = await entities.create_entity("agent")
        person = await entities.create_entity("person")
        await entities.create_entity("work")

        exact = await entities.list_entities("agent")
        assert [e.id for e in exact.items] == [agent.id]

        subtree = await entities.list_entities("agent", include_subkinds=True)
        assert {e.id for e in subtree.items} == {agent.id, person.id}

    @pytest.mark.asyncio
    async def test_all_kinds(self, entities):
        await entities.create_entity("agent")
        await entities.create_entity("work")
        page = await entities.list_entities()
        assert {e.kind for e in page.items} == {EntityKind.AGENT, EntityKind.WORK}
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_invalid_cursor(self, entities):
        with pytest.raises(ValidationError):
            await entities.list_entities(cursor="definitely-not-a-cursor")

    @pytest.mark.asyncio
    async def test_invalid_limit(self, entities):
        with pytest.raises(ValidationError):
            await entities.list_entities(limit=0)

    @pytest.mark.asyncio
    async def test_unknown_kind(self, entities):
        with pytest.raises(UnknownKindError):
            await entities.list_entities("novel")

    @pytest.mark.asyncio
    async def test_iter_entities(self, entities):
        created = {(await entities.create_entity("tag")).id for _ in range(5)}
        walked = [e.id async for e in entities.iter_entities("tag", page_size=2)]
        assert set(walked) == created
        assert len(walked) == 5


def test_cursor_round_trip():
    cursor = encode_cursor(1700000000000, "8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e")
    assert decode_cursor(cursor) == (1700000000000, "8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e")
