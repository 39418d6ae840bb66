"""
API routes for the LRM catalog.

REST endpoints over the entity store, the relationship graph and the
query facade. Handlers only decode requests and encode results; every
failure is a CatalogError translated by the handler in app.py.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..schema import TypeRegistry
from ..store import Database, Direction, EntityStore, QueryFacade, RelationshipGraph
from ..store.relationship_graph import Relationship
from .config import ApiSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["LRM Catalog"])


# --- Request/Response Models ---


class EntityCreateRequest(BaseModel):
    """Request to create an entity."""

    kind: str = Field(..., description="Entity kind, e.g. 'person'")
    notes: list[str] | None = Field(None, description="Free-text notes")
    layers: dict[str, dict[str, Any]] | None = Field(
        None, description="Attribute values keyed by layer name"
    )


class EntityUpdateRequest(BaseModel):
    """Request to update an entity. Only the supplied fields change."""

    notes: list[str] | None = Field(None, description="Replacement notes")
    layers: dict[str, dict[str, Any]] | None = Field(
        None, description="Attribute values keyed by layer name"
    )


class RelationshipCreateRequest(BaseModel):
    """Request to create a relationship."""

    source_id: str = Field(..., description="Source entity ID")
    target_id: str = Field(..., description="Target entity ID")
    rel_type: str = Field(..., description="Relationship kind, e.g. 'MP_R5'")
    start_date: int | None = Field(None, description="Start of validity (Unix ms)")
    end_date: int | None = Field(None, description="End of validity (Unix ms)")
    note: str | None = Field(None, description="Free-text note")


class RelationshipResponse(BaseModel):
    """Relationship response."""

    id: str
    source_id: str
    target_id: str
    rel_type: str
    start_date: int | None = None
    end_date: int | None = None
    note: str | None = None
    created_at: int


class EntityListResponse(BaseModel):
    """Cursor-paginated entity list."""

    items: list[dict[str, Any]]
    next_cursor: str | None = None


class RelationshipListResponse(BaseModel):
    items: list[RelationshipResponse]


# --- Dependencies ---


def get_entities(request: Request) -> EntityStore:
    return request.app.state.entities


def get_graph(request: Request) -> RelationshipGraph:
    return request.app.state.graph


def get_queries(request: Request) -> QueryFacade:
    return request.app.state.queries


def get_settings(request: Request) -> ApiSettings:
    return request.app.state.settings


def _relationship_response(relationship: Relationship) -> RelationshipResponse:
    return RelationshipResponse(**relationship.to_dict())


# --- Entity Routes ---


@router.post("/entities", status_code=201)
async def create_entity(
    request: EntityCreateRequest,
    entities: EntityStore = Depends(get_entities),
) -> dict[str, Any]:
    """
    Create an entity with all of its layers.

    Either the whole entity is stored or nothing is.
    """
    entity = await entities.create_entity(request.kind, request.notes, request.layers)
    return entity.to_dict()


@router.get("/entities", response_model=EntityListResponse)
async def list_entities(
    kind: str | None = Query(None, description="Filter by entity kind"),
    cursor: str | None = Query(None, description="Cursor from the previous page"),
    limit: int | None = Query(None, ge=1, description="Page size"),
    include_subkinds: bool = Query(False, description="Include specializations of kind"),
    entities: EntityStore = Depends(get_entities),
    settings: ApiSettings = Depends(get_settings),
):
    """
    List entities newest first.

    Follow next_cursor to fetch the following page.
    """
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    page = await entities.list_entities(kind, cursor, page_size, include_subkinds)
    return EntityListResponse(
        items=[entity.to_dict() for entity in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/entities/{entity_id}")
async def get_entity(
    entity_id: str,
    entities: EntityStore = Depends(get_entities),
) -> dict[str, Any]:
    """Get a fully hydrated entity."""
    entity = await entities.get_entity(entity_id)
    return entity.to_dict()


@router.patch("/entities/{entity_id}")
async def update_entity(
    entity_id: str,
    request: EntityUpdateRequest,
    entities: EntityStore = Depends(get_entities),
) -> dict[str, Any]:
    """
    Update an entity.

    Only the specified fields are updated; the kind never changes.
    """
    entity = await entities.update_entity(entity_id, request.notes, request.layers)
    return entity.to_dict()


@router.delete("/entities/{entity_id}", status_code=204)
async def delete_entity(
    entity_id: str,
    entities: EntityStore = Depends(get_entities),
) -> None:
    """
    Delete an entity.

    Its layers and every relationship naming it are removed too.
    """
    await entities.delete_entity(entity_id)


@router.get("/entities/{entity_id}/related", response_model=EntityListResponse)
async def related_entities(
    entity_id: str,
    rel_type: str = Query(..., description="Relationship kind to follow"),
    direction: Direction = Query(Direction.OUTBOUND, description="outbound or inbound"),
    queries: QueryFacade = Depends(get_queries),
):
    """Entities on the far side of an entity's relationships."""
    related = await queries.related_entities(entity_id, rel_type, direction)
    return EntityListResponse(items=[entity.to_dict() for entity in related])


@router.get("/entities/{entity_id}/relationships", response_model=RelationshipListResponse)
async def entity_relationships(
    entity_id: str,
    rel_type: str | None = Query(None, description="Filter by relationship kind"),
    direction: Direction = Query(Direction.OUTBOUND, description="outbound or inbound"),
    graph: RelationshipGraph = Depends(get_graph),
):
    """Relationship records where the entity is the source (or target)."""
    edges = await graph.relationships(entity_id, rel_type, direction)
    return RelationshipListResponse(items=[_relationship_response(e) for e in edges])


@router.get("/agents/{agent_id}/works", response_model=EntityListResponse)
async def works_created_by(
    agent_id: str,
    queries: QueryFacade = Depends(get_queries),
):
    """Works created by an agent."""
    works = await queries.works_created_by(agent_id)
    return EntityListResponse(items=[work.to_dict() for work in works])


# --- Relationship Routes ---


@router.post("/relationships", response_model=RelationshipResponse, status_code=201)
async def create_relationship(
    request: RelationshipCreateRequest,
    graph: RelationshipGraph = Depends(get_graph),
):
    """
    Create a relationship.

    Endpoint kinds are checked against the relationship kind.
    """
    relationship = await graph.create_relationship(
        request.source_id,
        request.target_id,
        request.rel_type,
        start_date=request.start_date,
        end_date=request.end_date,
        note=request.note,
    )
    return _relationship_response(relationship)


@router.get("/relationships/{relationship_id}", response_model=RelationshipResponse)
async def get_relationship(
    relationship_id: str,
    graph: RelationshipGraph = Depends(get_graph),
):
    relationship = await graph.get_relationship(relationship_id)
    return _relationship_response(relationship)


@router.delete("/relationships/{relationship_id}", status_code=204)
async def delete_relationship(
    relationship_id: str,
    graph: RelationshipGraph = Depends(get_graph),
) -> None:
    await graph.delete_relationship(relationship_id)


# --- Registry / Health ---


@router.get("/registry")
async def get_registry_snapshot(request: Request) -> dict[str, Any]:
    """
    Get the type registry.

    Returns layers, entity kinds, relationship kinds and the fingerprint.
    """
    registry: TypeRegistry = request.app.state.registry
    snapshot = registry.to_dict()
    snapshot["fingerprint"] = registry.fingerprint
    return snapshot


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    db: Database = request.app.state.db
    stats = await db.get_stats()
    return {"status": "healthy", "service": "lrm-catalog", **stats}
