"""
Storage components for the LRM catalog.

- Database: SQLite file, generated DDL, transaction boundaries
- EntityStore: multi-layer entity persistence
- RelationshipGraph: typed edges, endpoint validation, traversal
- QueryFacade: composite read-only lookups
"""

from .database import Database
from .entity_store import Entity, EntityPage, EntityStore
from .query import QueryFacade
from .relationship_graph import Direction, Relationship, RelationshipGraph

__all__ = [
    "Database",
    "Entity",
    "EntityPage",
    "EntityStore",
    "Direction",
    "Relationship",
    "RelationshipGraph",
    "QueryFacade",
]
