"""
Relationship graph for the LRM catalog.

Stores directed, typed edges between any two resources in one generic
table and validates endpoint kinds against the type registry on write.

Invariants:
    - Both endpoints exist when an edge is written (checked in the same
      immediate transaction as the insert)
    - Endpoint kinds are-a the kinds allowed for the relationship kind
    - Edges disappear with either endpoint (storage cascade)
    - Traversal order is edge creation time, then edge id

How to change safely:
    - Keep endpoint resolution and insert in one transaction
    - Keep traversal lazy; never materialize whole neighbourhoods
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import (
    EndpointNotFoundError,
    NotFoundError,
    TypeMismatchError,
    ValidationError,
)
from ..schema import RelationshipKind, TypeRegistry
from ..schema.types import is_int64
from .database import EDGE_TABLE, Database, now_ms
from .entity_store import EntityStore, canonical_id

logger = logging.getLogger(__name__)


class Direction(Enum):
    """Which side of an edge the anchor is on."""

    OUTBOUND = "outbound"  # anchor is the source, yields targets
    INBOUND = "inbound"  # anchor is the target, yields sources


@dataclass
class Relationship:
    """A typed edge between two resources.

    Attributes:
        id: Edge identity
        source_id: Source resource
        target_id: Target resource
        rel_type: Relationship kind
        start_date: Start of validity (Unix ms), optional
        end_date: End of validity (Unix ms), optional
        note: Free text, optional
        created_at: Creation timestamp (Unix ms)
    """

    id: str
    source_id: str
    target_id: str
    rel_type: RelationshipKind
    start_date: int | None
    end_date: int | None
    note: str | None
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Relationship:
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            target_id=row["target_id"],
            rel_type=RelationshipKind(row["rel_type"]),
            start_date=row["start_date"],
            end_date=row["end_date"],
            note=row["note"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "rel_type": self.rel_type.value,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "note": self.note,
            "created_at": self.created_at,
        }


def _check_interval(start_date: Any, end_date: Any) -> None:
    for name, value in (("start_date", start_date), ("end_date", end_date)):
        if value is not None and not is_int64(value):
            raise ValidationError(
                f"{name} must be Unix milliseconds within the 64-bit integer range",
                field_name=name,
            )
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ValidationError(
            f"start_date {start_date} is after end_date {end_date}",
            field_name="start_date",
        )


class RelationshipGraph:
    """Typed edge storage and traversal.

    Example:
        >>> graph = RelationshipGraph(db, entities)
        >>> await graph.create_relationship(work.id, author.id, "MP_R5")
        >>> [i async for i in graph.traverse(author.id, "MP_R5", Direction.INBOUND)]
        [work.id]
    """

    def __init__(
        self,
        db: Database,
        entities: EntityStore,
        registry: TypeRegistry | None = None,
        batch_size: int = 256,
    ) -> None:
        """Initialize the graph.

        Args:
            db: Catalog database
            entities: Entity store used to resolve endpoint kinds
            registry: Type registry (defaults to the database's registry)
            batch_size: Rows fetched per round trip while traversing
        """
        self.db = db
        self.entities = entities
        self.registry = registry or db.registry
        self.batch_size = batch_size

    async def create_relationship(
        self,
        source_id: str,
        target_id: str,
        rel_type: RelationshipKind | str,
        start_date: int | None = None,
        end_date: int | None = None,
        note: str | None = None,
    ) -> Relationship:
        """Create a typed edge.

        Args:
            source_id: Source resource
            target_id: Target resource
            rel_type: Relationship kind (enum, value or name)
            start_date: Start of validity (Unix ms)
            end_date: End of validity (Unix ms)
            note: Free text

        Returns:
            The created Relationship

        Raises:
            UnknownKindError: If rel_type isn't registered (nothing read)
            ValidationError: If the interval or note is malformed
            EndpointNotFoundError: If either endpoint doesn't exist
            TypeMismatchError: If an endpoint kind isn't permitted
        """
        rel = self.registry.relationship_kind(rel_type)
        _check_interval(start_date, end_date)
        if note is not None and not isinstance(note, str):
            raise ValidationError("note must be a string", field_name="note")

        source = canonical_id(source_id)
        target = canonical_id(target_id)
        edge_id = str(uuid.uuid4())
        now = now_ms()

        with self.db.connect() as conn, self.db.transaction(conn):
            kinds = self.entities.resolve_kinds(
                conn, [c for c in (source, target) if c is not None]
            )
            missing = [
                str(original)
                for original, c in ((source_id, source), (target_id, target))
                if c is None or c not in kinds
            ]
            if missing:
                raise EndpointNotFoundError(
                    f"Relationship endpoints not found: {missing}", missing=missing
                )

            actual = (kinds[source], kinds[target])
            if not self.registry.endpoints_allowed(rel, *actual):
                expected = self.registry.allowed_endpoint_kinds(rel)
                raise TypeMismatchError(
                    f"{rel.value} requires {expected[0].value} -> {expected[1].value}, "
                    f"got {actual[0].value} -> {actual[1].value}",
                    rel_type=rel.value,
                    expected=(expected[0].value, expected[1].value),
                    actual=(actual[0].value, actual[1].value),
                )

            conn.execute(
                f"""
                INSERT INTO {EDGE_TABLE}
                    (id, source_id, target_id, rel_type, start_date, end_date, note, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (edge_id, source, target, rel.value, start_date, end_date, note, now),
            )

        logger.debug(
            "Created relationship",
            extra={
                "relationship_id": edge_id,
                "rel_type": rel.value,
                "source_id": source,
                "target_id": target,
            },
        )

        return Relationship(
            id=edge_id,
            source_id=source,
            target_id=target,
            rel_type=rel,
            start_date=start_date,
            end_date=end_date,
            note=note,
            created_at=now,
        )

    async def get_relationship(self, relationship_id: str) -> Relationship:
        """Get an edge by id.

        Raises:
            NotFoundError: If the edge doesn't exist
        """
        canonical = canonical_id(relationship_id)
        row = None
        if canonical is not None:
            with self.db.connect() as conn:
                row = conn.execute(
                    f"SELECT * FROM {EDGE_TABLE} WHERE id = ?", (canonical,)
                ).fetchone()
        if row is None:
            raise NotFoundError(
                f"Relationship not found: {relationship_id}",
                "relationship",
                str(relationship_id),
            )
        return Relationship.from_row(row)

    async def delete_relationship(self, relationship_id: str) -> None:
        """Delete an edge.

        Raises:
            NotFoundError: If the edge is already absent
        """
        canonical = canonical_id(relationship_id)
        if canonical is None:
            raise NotFoundError(
                f"Relationship not found: {relationship_id}",
                "relationship",
                str(relationship_id),
            )

        with self.db.connect() as conn, self.db.transaction(conn):
            cursor = conn.execute(f"DELETE FROM {EDGE_TABLE} WHERE id = ?", (canonical,))
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Relationship not found: {relationship_id}", "relationship", canonical
                )

        logger.debug("Deleted relationship", extra={"relationship_id": canonical})

    async def traverse(
        self,
        anchor_id: str,
        rel_type: RelationshipKind | str,
        direction: Direction | str = Direction.OUTBOUND,
    ) -> AsyncIterator[str]:
        """Lazily yield the ids on the far side of an anchor's edges.

        Rows are fetched ``batch_size`` at a time inside one read
        transaction, so the sequence is a consistent snapshot. An absent
        anchor yields nothing.

        Args:
            anchor_id: Resource to start from
            rel_type: Relationship kind to follow
            direction: OUTBOUND yields targets, INBOUND yields sources

        Raises:
            UnknownKindError: If rel_type isn't registered
        """
        rel = self.registry.relationship_kind(rel_type)
        direction = Direction(direction)
        anchor = canonical_id(anchor_id)
        if anchor is None:
            return

        with self.db.connect() as conn, self.db.read_snapshot(conn):
            for far_id in self.scan(conn, anchor, rel, direction):
                yield far_id

    def scan(
        self,
        conn: sqlite3.Connection,
        anchor_id: str,
        rel: RelationshipKind,
        direction: Direction,
    ) -> Iterator[str]:
        """Far-side ids of an anchor's edges, read on the caller's connection.

        Args:
            conn: Connection inside the caller's read snapshot
            anchor_id: Canonical id of the anchor
            rel: Relationship kind to follow
            direction: OUTBOUND yields targets, INBOUND yields sources
        """
        if direction == Direction.OUTBOUND:
            near, far = "source_id", "target_id"
        else:
            near, far = "target_id", "source_id"

        cursor = conn.execute(
            f"""
            SELECT {far} FROM {EDGE_TABLE}
            WHERE {near} = ? AND rel_type = ?
            ORDER BY created_at, id
            """,
            (anchor_id, rel.value),
        )
        while True:
            rows = cursor.fetchmany(self.batch_size)
            if not rows:
                break
            for row in rows:
                yield row[0]

    async def relationships(
        self,
        anchor_id: str,
        rel_type: RelationshipKind | str | None = None,
        direction: Direction | str = Direction.OUTBOUND,
    ) -> list[Relationship]:
        """Full edge records on one side of an anchor.

        Args:
            anchor_id: Resource to start from
            rel_type: Only this relationship kind (None for all)
            direction: OUTBOUND for edges where the anchor is the source
        """
        direction = Direction(direction)
        anchor = canonical_id(anchor_id)
        if anchor is None:
            return []

        near = "source_id" if direction == Direction.OUTBOUND else "target_id"
        query = f"SELECT * FROM {EDGE_TABLE} WHERE {near} = ?"
        params: list[Any] = [anchor]
        if rel_type is not None:
            query += " AND rel_type = ?"
            params.append(self.registry.relationship_kind(rel_type).value)
        query += " ORDER BY created_at, id"

        with self.db.connect() as conn:
            return [Relationship.from_row(row) for row in conn.execute(query, params).fetchall()]
