"""
Query facade for the LRM catalog.

Read-only composite lookups built from a relationship traversal followed by
one batched hydration of the entities found. Has no storage of its own and
lets NotFoundError and TypeMismatchError from its collaborators propagate.

Invariants:
    - The anchor check, the edge scan and the hydration share one read
      snapshot, so every id the scan yields can be hydrated
"""

from __future__ import annotations

import logging

from ..errors import NotFoundError, TypeMismatchError
from ..schema import RelationshipKind
from .entity_store import Entity, EntityStore, canonical_id
from .relationship_graph import Direction, RelationshipGraph

logger = logging.getLogger(__name__)


class QueryFacade:
    """Composite graph questions answered without custom joins.

    Example:
        >>> queries = QueryFacade(entities, graph)
        >>> works = await queries.works_created_by(author.id)
    """

    def __init__(self, entities: EntityStore, graph: RelationshipGraph) -> None:
        self.entities = entities
        self.graph = graph
        self.db = graph.db
        self.registry = graph.registry

    async def related_entities(
        self,
        anchor_id: str,
        rel_type: RelationshipKind | str,
        direction: Direction | str = Direction.OUTBOUND,
    ) -> list[Entity]:
        """Hydrated entities on the far side of an anchor's edges.

        Args:
            anchor_id: Resource to start from
            rel_type: Relationship kind to follow
            direction: OUTBOUND when the anchor is the source

        Returns:
            Entities in traversal order

        Raises:
            UnknownKindError: If rel_type isn't registered
            NotFoundError: If the anchor doesn't exist
            TypeMismatchError: If the anchor kind can't be on that side of rel_type
        """
        rel = self.registry.relationship_kind(rel_type)
        direction = Direction(direction)
        anchor = canonical_id(anchor_id)
        if anchor is None:
            raise NotFoundError(f"Entity not found: {anchor_id}", "entity", str(anchor_id))

        with self.db.connect() as conn, self.db.read_snapshot(conn):
            anchor_kind = self.entities.resolve_kinds(conn, [anchor]).get(anchor)
            if anchor_kind is None:
                raise NotFoundError(f"Entity not found: {anchor_id}", "entity", anchor)

            source_kind, target_kind = self.registry.allowed_endpoint_kinds(rel)
            side_kind = source_kind if direction == Direction.OUTBOUND else target_kind
            if not self.registry.is_a(anchor_kind, side_kind):
                raise TypeMismatchError(
                    f"{anchor_kind.value} cannot be the {direction.value} anchor of {rel.value}",
                    rel_type=rel.value,
                    expected=(source_kind.value, target_kind.value),
                    actual=(
                        (anchor_kind.value, "*")
                        if direction == Direction.OUTBOUND
                        else ("*", anchor_kind.value)
                    ),
                )

            ids = list(self.graph.scan(conn, anchor, rel, direction))
            related = self.entities.load_many(conn, ids)

        logger.debug(
            "Resolved related entities",
            extra={
                "anchor_id": anchor,
                "rel_type": rel.value,
                "direction": direction.value,
                "count": len(related),
            },
        )
        return related

    async def works_created_by(self, agent_id: str) -> list[Entity]:
        """Works created by an agent (person or collective agent)."""
        return await self.related_entities(agent_id, RelationshipKind.MP_R5, Direction.INBOUND)

    async def creators_of(self, work_id: str) -> list[Entity]:
        """Agents that created a work."""
        return await self.related_entities(work_id, RelationshipKind.MP_R5, Direction.OUTBOUND)

    async def expressions_of(self, work_id: str) -> list[Entity]:
        return await self.related_entities(work_id, RelationshipKind.MP_R2, Direction.OUTBOUND)

    async def manifestations_of(self, expression_id: str) -> list[Entity]:
        return await self.related_entities(
            expression_id, RelationshipKind.MP_R3, Direction.OUTBOUND
        )

    async def items_of(self, manifestation_id: str) -> list[Entity]:
        return await self.related_entities(
            manifestation_id, RelationshipKind.MP_R4, Direction.OUTBOUND
        )

    async def appellations_of(self, res_id: str) -> list[Entity]:
        """Nomens naming any resource."""
        return await self.related_entities(res_id, RelationshipKind.MP_R13, Direction.OUTBOUND)

    async def tags_of(self, res_id: str) -> list[Entity]:
        return await self.related_entities(res_id, RelationshipKind.MP_R37, Direction.OUTBOUND)

    async def members_of(self, collective_agent_id: str) -> list[Entity]:
        """Agents that are members of a collective agent."""
        return await self.related_entities(
            collective_agent_id, RelationshipKind.MP_R30, Direction.INBOUND
        )
