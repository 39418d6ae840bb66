"""
Entity store for the LRM catalog.

Creates, reads, updates and deletes entities as ordered writes and reads
across the root table and the specialization layers of the entity's kind.

Invariants:
    - An entity is created in one transaction: root row first, then each
      layer parent -> child; any failure rolls back all of it
    - Attribute sets are validated before the transaction starts
    - Layer membership never changes after creation
    - A root row without an expected layer row is reported as corrupt,
      never hydrated as a partial record
    - Deletion removes the root row only; layers and edges cascade in storage

How to change safely:
    - Keep validation ahead of the first write
    - Use Database.transaction() for every multi-statement write
    - Keep the listing order (created_at DESC, id DESC) stable; cursors depend on it
"""

from __future__ import annotations

import base64
import json
import logging
import sqlite3
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ..errors import CorruptEntityError, NotFoundError, ValidationError
from ..schema import EntityKind, LayerDef, TypeRegistry
from .database import ROOT_TABLE, Database, chunked, now_ms, placeholders, quote

logger = logging.getLogger(__name__)


def canonical_id(value: Any) -> str | None:
    """Canonical hyphenated form of a UUID, or None if the value isn't one."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if not isinstance(value, str):
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def encode_cursor(created_at: int, entity_id: str) -> str:
    """Opaque paging cursor for a (created_at, id) position."""
    raw = json.dumps([created_at, entity_id], separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[int, str]:
    """Decode a paging cursor.

    Raises:
        ValidationError: If the cursor is malformed
    """
    try:
        created_at, entity_id = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid cursor: {e}", field_name="cursor") from e
    if not isinstance(created_at, int) or not isinstance(entity_id, str):
        raise ValidationError("Invalid cursor position", field_name="cursor")
    return created_at, entity_id


@dataclass
class Entity:
    """A hydrated entity: the root record plus every layer of its kind.

    Attributes:
        id: Identity shared by the root row and all layer rows
        kind: Concrete entity kind
        notes: Ordered free-text notes
        created_at: Creation timestamp (Unix ms)
        updated_at: Last mutation timestamp (Unix ms), None if never mutated
        layers: Attribute values per layer, least to most specialized
    """

    id: str
    kind: EntityKind
    notes: list[str]
    created_at: int
    updated_at: int | None
    layers: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def attributes(self) -> dict[str, Any]:
        """All layer attributes merged into one mapping."""
        merged: dict[str, Any] = {}
        for values in self.layers.values():
            merged.update(values)
        return merged

    def to_dict(self) -> dict[str, Any]:
        """Flat record: root attributes merged with all layer attributes."""
        record: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind.value,
            "notes": list(self.notes),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        record.update(self.attributes)
        return record


@dataclass
class EntityPage:
    """One page of a listing.

    Attributes:
        items: Entities, newest first
        next_cursor: Cursor for the following page, None on the last page
    """

    items: list[Entity]
    next_cursor: str | None = None


class EntityStore:
    """Multi-layer entity persistence.

    Example:
        >>> store = EntityStore(db)
        >>> person = await store.create_entity(
        ...     "person",
        ...     notes=["imported"],
        ...     layers={"agent": {"language": ["ja"]}, "person": {"profession": ["illustrator"]}},
        ... )
        >>> (await store.get_entity(person.id)).attributes["profession"]
        ['illustrator']
    """

    def __init__(self, db: Database, registry: TypeRegistry | None = None) -> None:
        """Initialize the entity store.

        Args:
            db: Catalog database
            registry: Type registry (defaults to the database's registry)
        """
        self.db = db
        self.registry = registry or db.registry

    # Validation

    def _validate_notes(self, notes: Any) -> list[str]:
        if notes is None:
            return []
        if not isinstance(notes, list) or not all(isinstance(n, str) for n in notes):
            raise ValidationError("notes must be a list of strings", field_name="notes")
        return list(notes)

    def _validate_layers(
        self,
        kind: EntityKind,
        layers: Mapping[str, Mapping[str, Any]] | None,
        partial: bool = False,
    ) -> list[tuple[LayerDef, dict[str, Any]]]:
        """Check attribute sets against the kind's layer chain.

        Args:
            kind: Entity kind
            layers: Attribute values keyed by layer name
            partial: Update semantics (only validate what is supplied)

        Returns:
            (layer, values) pairs in chain order

        Raises:
            ValidationError: On foreign layers, unknown fields or bad values
        """
        layers = layers or {}
        chain = self.registry.layers_for(kind)
        chain_names = {layer.name for layer in chain}

        foreign = sorted(set(layers) - chain_names)
        if foreign:
            raise ValidationError(
                f"Layers {foreign} are not part of kind '{kind.value}'",
                field_name="layers",
                errors=[f"Allowed layers: {[layer.name for layer in chain]}"],
            )

        errors: list[str] = []
        resolved: list[tuple[LayerDef, dict[str, Any]]] = []
        for layer in chain:
            if partial and layer.name not in layers:
                continue
            values = layers.get(layer.name) or {}
            if not isinstance(values, Mapping):
                errors.append(f"Attributes of layer '{layer.name}' must be an object")
                continue
            values = dict(values)
            errors.extend(layer.validate_payload(values, partial=partial))
            resolved.append((layer, values))

        if errors:
            raise ValidationError(
                f"Invalid attributes for kind '{kind.value}'",
                field_name="layers",
                errors=errors,
            )
        return resolved

    # Reads

    def _fetch_roots(self, conn: sqlite3.Connection, ids: list[str]) -> dict[str, sqlite3.Row]:
        roots: dict[str, sqlite3.Row] = {}
        for chunk in chunked(ids):
            cursor = conn.execute(
                f"SELECT * FROM {ROOT_TABLE} WHERE id IN ({placeholders(len(chunk))})",
                chunk,
            )
            for row in cursor.fetchall():
                roots[row["id"]] = row
        return roots

    def _corrupt(self, entity_id: str, kind: EntityKind, missing: list[str]) -> CorruptEntityError:
        logger.error(
            "Corrupt entity: root row without layer rows",
            extra={"entity_id": entity_id, "kind": kind.value, "missing_layers": missing},
        )
        return CorruptEntityError(
            f"Entity {entity_id} of kind '{kind.value}' is missing layers {missing}",
            entity_id=entity_id,
            kind=kind.value,
            missing_layers=missing,
        )

    def _hydrate(
        self, conn: sqlite3.Connection, roots: Iterable[sqlite3.Row]
    ) -> dict[str, Entity]:
        """Attach layer attributes to root rows with one query per layer table."""
        roots = list(roots)
        kinds = {row["id"]: EntityKind(row["kind"]) for row in roots}

        ids_by_layer: dict[str, list[str]] = {}
        for entity_id, kind in kinds.items():
            for layer in self.registry.layers_for(kind):
                ids_by_layer.setdefault(layer.name, []).append(entity_id)

        layer_rows: dict[tuple[str, str], sqlite3.Row] = {}
        for layer_name, layer_ids in ids_by_layer.items():
            layer = self.registry.get_layer(layer_name)
            for chunk in chunked(layer_ids):
                cursor = conn.execute(
                    f"SELECT * FROM {quote(layer.table)} WHERE id IN ({placeholders(len(chunk))})",
                    chunk,
                )
                for row in cursor.fetchall():
                    layer_rows[(layer_name, row["id"])] = row

        entities: dict[str, Entity] = {}
        for row in roots:
            entity_id = row["id"]
            kind = kinds[entity_id]
            layers: dict[str, dict[str, Any]] = {}
            missing: list[str] = []
            for layer in self.registry.layers_for(kind):
                layer_row = layer_rows.get((layer.name, entity_id))
                if layer_row is None:
                    missing.append(layer.name)
                    continue
                layers[layer.name] = {f.name: f.from_column(layer_row[f.name]) for f in layer.fields}
            if missing:
                raise self._corrupt(entity_id, kind, missing)

            entities[entity_id] = Entity(
                id=entity_id,
                kind=kind,
                notes=json.loads(row["notes_json"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                layers=layers,
            )
        return entities

    def _load(self, conn: sqlite3.Connection, entity_id: str) -> Entity:
        roots = self._fetch_roots(conn, [entity_id])
        if entity_id not in roots:
            raise NotFoundError(f"Entity not found: {entity_id}", "entity", entity_id)
        return self._hydrate(conn, roots.values())[entity_id]

    def resolve_kinds(self, conn: sqlite3.Connection, ids: list[str]) -> dict[str, EntityKind]:
        """Kinds of the given entities, read inside the caller's transaction.

        Absent ids are omitted from the result.
        """
        kinds: dict[str, EntityKind] = {}
        for chunk in chunked(list(dict.fromkeys(ids))):
            cursor = conn.execute(
                f"SELECT id, kind FROM {ROOT_TABLE} WHERE id IN ({placeholders(len(chunk))})",
                chunk,
            )
            for row in cursor.fetchall():
                kinds[row["id"]] = EntityKind(row["kind"])
        return kinds

    async def resolve_kind(self, entity_id: str) -> EntityKind:
        """Concrete kind of one entity.

        Raises:
            NotFoundError: If the entity doesn't exist
        """
        canonical = canonical_id(entity_id)
        if canonical is not None:
            with self.db.connect() as conn:
                kinds = self.resolve_kinds(conn, [canonical])
            if canonical in kinds:
                return kinds[canonical]
        raise NotFoundError(f"Entity not found: {entity_id}", "entity", str(entity_id))

    async def get_entity(self, entity_id: str) -> Entity:
        """Get a fully hydrated entity.

        Raises:
            NotFoundError: If there is no root row
            CorruptEntityError: If an expected layer row is missing
        """
        canonical = canonical_id(entity_id)
        if canonical is None:
            raise NotFoundError(f"Entity not found: {entity_id}", "entity", str(entity_id))

        with self.db.connect() as conn, self.db.read_snapshot(conn):
            return self._load(conn, canonical)

    async def get_entities(self, entity_ids: list[str]) -> list[Entity]:
        """Hydrate many entities with batched reads.

        Args:
            entity_ids: Identities, duplicates allowed

        Returns:
            Entities in the order of ``entity_ids``

        Raises:
            NotFoundError: Naming every id without a root row
            CorruptEntityError: If an expected layer row is missing
        """
        if not entity_ids:
            return []

        with self.db.connect() as conn, self.db.read_snapshot(conn):
            return self.load_many(conn, entity_ids)

    def load_many(self, conn: sqlite3.Connection, entity_ids: list[str]) -> list[Entity]:
        """Hydrate entities inside the caller's read snapshot.

        Raises:
            NotFoundError: Naming every id without a root row
            CorruptEntityError: If an expected layer row is missing
        """
        canonical = [canonical_id(i) for i in entity_ids]
        unique = list(dict.fromkeys(c for c in canonical if c is not None))

        roots = self._fetch_roots(conn, unique)
        missing = [
            str(original)
            for original, c in zip(entity_ids, canonical)
            if c is None or c not in roots
        ]
        if missing:
            raise NotFoundError(f"Entities not found: {missing}", "entity", missing)
        entities = self._hydrate(conn, roots.values())
        return [entities[c] for c in canonical]

    async def list_entities(
        self,
        kind: EntityKind | str | None = None,
        cursor: str | None = None,
        limit: int = 50,
        include_subkinds: bool = False,
    ) -> EntityPage:
        """List entities newest first.

        Args:
            kind: Only this kind (None lists every kind)
            cursor: Cursor returned by the previous page
            limit: Maximum entities per page
            include_subkinds: Also list specializations of ``kind``

        Returns:
            EntityPage ordered by (created_at, id) descending

        Raises:
            UnknownKindError: If ``kind`` isn't registered
            ValidationError: If the cursor or limit is invalid
        """
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}", field_name="limit")

        query = f"SELECT * FROM {ROOT_TABLE}"
        where: list[str] = []
        params: list[Any] = []

        if kind is not None:
            kind = self.registry.entity_kind(kind)
            kinds = self.registry.subkinds(kind) if include_subkinds else [kind]
            where.append(f"kind IN ({placeholders(len(kinds))})")
            params.extend(k.value for k in kinds)

        if cursor:
            created_at, last_id = decode_cursor(cursor)
            where.append("(created_at < ? OR (created_at = ? AND id < ?))")
            params.extend([created_at, created_at, last_id])

        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit + 1)

        with self.db.connect() as conn, self.db.read_snapshot(conn):
            rows = conn.execute(query, params).fetchall()
            has_more = len(rows) > limit
            rows = rows[:limit]
            hydrated = self._hydrate(conn, rows)

        items = [hydrated[row["id"]] for row in rows]
        next_cursor = None
        if has_more and items:
            next_cursor = encode_cursor(items[-1].created_at, items[-1].id)
        return EntityPage(items=items, next_cursor=next_cursor)

    async def iter_entities(
        self,
        kind: EntityKind | str | None = None,
        cursor: str | None = None,
        page_size: int = 100,
        include_subkinds: bool = False,
    ) -> AsyncIterator[Entity]:
        """Lazily walk every page of a listing.

        Passing the cursor of a previous page restarts the walk from there.
        """
        while True:
            page = await self.list_entities(kind, cursor, page_size, include_subkinds)
            for entity in page.items:
                yield entity
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    # Writes

    def _insert_layer(
        self,
        conn: sqlite3.Connection,
        entity_id: str,
        layer: LayerDef,
        values: dict[str, Any],
    ) -> None:
        columns = ["id"] + layer.get_field_names()
        row = [entity_id] + [f.to_column(values.get(f.name)) for f in layer.fields]
        conn.execute(
            f"INSERT INTO {quote(layer.table)} ({', '.join(quote(c) for c in columns)}) "
            f"VALUES ({placeholders(len(columns))})",
            row,
        )

    async def create_entity(
        self,
        kind: EntityKind | str,
        notes: list[str] | None = None,
        layers: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> Entity:
        """Create an entity with all of its layers atomically.

        Args:
            kind: Entity kind
            notes: Ordered free-text notes
            layers: Attribute values keyed by layer name; a layer left out is
                stored with every attribute null

        Returns:
            The created Entity (with generated id and created_at)

        Raises:
            UnknownKindError: If the kind isn't registered (nothing written)
            ValidationError: If an attribute set is invalid (nothing written)
            StorageUnavailableError: If the store fails (everything rolled back)
        """
        kind = self.registry.entity_kind(kind)
        notes = self._validate_notes(notes)
        resolved = self._validate_layers(kind, layers)

        entity_id = str(uuid.uuid4())
        now = now_ms()

        with self.db.connect() as conn, self.db.transaction(conn):
            conn.execute(
                f"""
                INSERT INTO {ROOT_TABLE} (id, kind, notes_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, NULL)
                """,
                (entity_id, kind.value, json.dumps(notes), now),
            )
            for layer, values in resolved:
                self._insert_layer(conn, entity_id, layer, values)

        logger.debug(
            "Created entity",
            extra={
                "entity_id": entity_id,
                "kind": kind.value,
                "layers": [layer.name for layer, _ in resolved],
            },
        )

        return Entity(
            id=entity_id,
            kind=kind,
            notes=notes,
            created_at=now,
            updated_at=None,
            layers={
                layer.name: {f.name: values.get(f.name) for f in layer.fields}
                for layer, values in resolved
            },
        )

    async def update_entity(
        self,
        entity_id: str,
        notes: list[str] | None = None,
        layers: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> Entity:
        """Update notes and/or layer attributes.

        Uses PATCH semantics per layer: only the supplied fields change.
        Layer membership never changes. Touches updated_at.

        Raises:
            NotFoundError: If the entity doesn't exist
            ValidationError: If nothing is supplied or a value is invalid
            CorruptEntityError: If a layer row to update is missing
        """
        canonical = canonical_id(entity_id)
        if canonical is None:
            raise NotFoundError(f"Entity not found: {entity_id}", "entity", str(entity_id))
        if notes is None and not layers:
            raise ValidationError("No changes supplied")
        if notes is not None:
            notes = self._validate_notes(notes)

        with self.db.connect() as conn, self.db.transaction(conn):
            row = conn.execute(
                f"SELECT kind FROM {ROOT_TABLE} WHERE id = ?", (canonical,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Entity not found: {entity_id}", "entity", canonical)

            kind = EntityKind(row["kind"])
            resolved = self._validate_layers(kind, layers, partial=True)
            now = now_ms()

            for layer, values in resolved:
                if not values:
                    continue
                fields = [layer.get_field(name) for name in values]
                assignments = ", ".join(f"{quote(f.name)} = ?" for f in fields)
                cursor = conn.execute(
                    f"UPDATE {quote(layer.table)} SET {assignments} WHERE id = ?",
                    [f.to_column(values[f.name]) for f in fields] + [canonical],
                )
                if cursor.rowcount == 0:
                    raise self._corrupt(canonical, kind, [layer.name])

            conn.execute(
                f"""
                UPDATE {ROOT_TABLE}
                SET updated_at = ?, notes_json = COALESCE(?, notes_json)
                WHERE id = ?
                """,
                (now, json.dumps(notes) if notes is not None else None, canonical),
            )
            entity = self._load(conn, canonical)

        logger.debug(
            "Updated entity",
            extra={"entity_id": canonical, "kind": kind.value},
        )
        return entity

    async def delete_entity(self, entity_id: str) -> None:
        """Delete an entity.

        Layer rows and every relationship naming the entity are removed by
        the storage cascade.

        Raises:
            NotFoundError: If the entity doesn't exist
        """
        canonical = canonical_id(entity_id)
        if canonical is None:
            raise NotFoundError(f"Entity not found: {entity_id}", "entity", str(entity_id))

        with self.db.connect() as conn, self.db.transaction(conn):
            cursor = conn.execute(f"DELETE FROM {ROOT_TABLE} WHERE id = ?", (canonical,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Entity not found: {entity_id}", "entity", canonical)

        logger.debug("Deleted entity", extra={"entity_id": canonical})
