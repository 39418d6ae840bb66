"""
Schema module for the LRM catalog.

This module provides the type system for the kind hierarchy, including:
- Closed enumerations (EntityKind, RelationshipKind)
- Definitions (LayerDef, EntityKindDef, RelationshipTypeDef, FieldDef)
- The type registry with layer chains and allowed relationship endpoints

Invariants:
    - Enumeration values are persisted and never reused
    - The registry is built and frozen once, before the stores start
    - Layer chains always run from least to most specialized
"""

from .registry import (
    DuplicateRegistrationError,
    RegistryFrozenError,
    TypeRegistry,
    get_registry,
    reset_registry,
)
from .types import (
    EntityKind,
    EntityKindDef,
    FieldDef,
    FieldKind,
    LayerDef,
    RelationshipKind,
    RelationshipTypeDef,
    field,
)

__all__ = [
    # Types
    "EntityKind",
    "RelationshipKind",
    "FieldDef",
    "FieldKind",
    "LayerDef",
    "EntityKindDef",
    "RelationshipTypeDef",
    "field",
    # Registry
    "TypeRegistry",
    "get_registry",
    "reset_registry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
]
