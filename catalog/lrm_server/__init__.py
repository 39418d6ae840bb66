"""
LRM Server - class-table-inheritance catalog of bibliographic resources.

This package implements the core of a library catalog built on the IFLA
Library Reference Model:
- Resources (works, expressions, manifestations, items, agents, ...) stored
  as one root row plus one row per specialization layer
- One generic, typed relationship table connecting any two resources
- A static type registry describing layers and allowed relationship endpoints

Architecture:
    ┌──────────────┐     ┌──────────────┐     ┌──────────────────┐
    │  HTTP / CLI  │────▶│ Query Facade │────▶│ RelationshipGraph│
    └──────────────┘     └──────┬───────┘     └────────┬─────────┘
                                │                      │
                                ▼                      ▼
                         ┌──────────────┐      ┌──────────────┐
                         │ EntityStore  │◀─────│ TypeRegistry │
                         └──────┬───────┘      └──────────────┘
                                ▼
                         ┌──────────────┐
                         │   SQLite     │
                         └──────────────┘

Invariants:
    - A layer row exists only together with its root row and parent layers
    - Deleting a root row cascades to its layers and to every edge touching it
    - Relationship endpoint kinds are validated against the registry on write
    - The registry is frozen before the store serves requests

How to change safely:
    - New kinds and relationship kinds are registry changes (schema/catalog.py)
    - Never reuse a relationship kind value for a different meaning
    - Attribute columns are added, never renamed
"""

from ._version import __version__

__all__ = ["__version__"]
