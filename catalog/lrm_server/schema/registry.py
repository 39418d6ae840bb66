"""
Type Registry for the LRM catalog.

The TypeRegistry is the central authority for the kind hierarchy.
It provides:
- Registration of layers, entity kinds and relationship types
- Layer chain lookup (least to most specialized) per entity kind
- Allowed endpoint kinds per relationship kind
- Schema fingerprinting for consistency checks
- Freeze mechanism to prevent runtime modifications

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Once frozen, no new definitions can be registered
    - Every layer in a chain names the previous layer as its parent
    - Attribute names never collide along one chain
    - Fingerprint changes when the schema changes

How to change safely:
    - Register all definitions before calling freeze()
    - Run `mp-registry validate` after editing schema/catalog.py
    - Never modify registered definitions after freeze

Example:
    >>> from catalog.lrm_server.schema import get_registry, EntityKind
    >>> registry = get_registry()
    >>> [layer.name for layer in registry.layers_for(EntityKind.PERSON)]
    ['agent', 'person']
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, Optional

from ..errors import UnknownKindError
from .types import (
    EntityKind,
    EntityKindDef,
    LayerDef,
    RelationshipKind,
    RelationshipTypeDef,
)

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: Optional[TypeRegistry] = None
_registry_lock = threading.Lock()


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""
    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a duplicate definition."""
    pass


class TypeRegistry:
    """Central registry for layers, entity kinds and relationship types.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the schema (computed on freeze)
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._layers: Dict[str, LayerDef] = {}
        self._kinds: Dict[EntityKind, EntityKindDef] = {}
        self._relationships: Dict[RelationshipKind, RelationshipTypeDef] = {}
        self._relationships_by_name: Dict[str, RelationshipTypeDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def _check_mutable(self, what: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register {what}: registry is frozen")

    def register_layer(self, layer: LayerDef) -> None:
        """Register a specialization layer.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the layer name is taken
        """
        with self._lock:
            self._check_mutable(f"layer '{layer.name}'")
            if layer.name in self._layers:
                raise DuplicateRegistrationError(f"Layer '{layer.name}' already registered")
            if layer.parent is not None and layer.parent not in self._layers:
                raise ValueError(
                    f"Layer '{layer.name}' references unregistered parent '{layer.parent}'"
                )
            self._layers[layer.name] = layer
            logger.debug(f"Registered layer: {layer.name} (parent={layer.parent})")

    def register_entity_kind(self, kind_def: EntityKindDef) -> None:
        """Register the layer chain of an entity kind.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the kind is already registered
            ValueError: If the chain references unknown layers or breaks parentage
        """
        with self._lock:
            self._check_mutable(f"entity kind '{kind_def.kind.value}'")
            if kind_def.kind in self._kinds:
                raise DuplicateRegistrationError(
                    f"Entity kind '{kind_def.kind.value}' already registered"
                )

            expected_parent: str | None = None
            for layer_name in kind_def.layers:
                layer = self._layers.get(layer_name)
                if layer is None:
                    raise ValueError(
                        f"Entity kind '{kind_def.kind.value}' references unknown layer '{layer_name}'"
                    )
                if layer.parent != expected_parent:
                    raise ValueError(
                        f"Layer '{layer_name}' has parent '{layer.parent}', "
                        f"expected '{expected_parent}' in chain of '{kind_def.kind.value}'"
                    )
                expected_parent = layer_name

            self._kinds[kind_def.kind] = kind_def
            logger.debug(f"Registered entity kind: {kind_def.kind.value} {kind_def.layers}")

    def register_relationship_type(self, rel_def: RelationshipTypeDef) -> None:
        """Register a relationship kind and its allowed endpoints.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the kind or one of its labels is already registered
        """
        with self._lock:
            self._check_mutable(f"relationship type '{rel_def.kind.value}'")
            if rel_def.kind in self._relationships:
                raise DuplicateRegistrationError(
                    f"Relationship type {rel_def.kind.value} already registered"
                )
            for label in rel_def.labels:
                if label in self._relationships_by_name:
                    existing = self._relationships_by_name[label]
                    raise DuplicateRegistrationError(
                        f"Relationship name '{label}' already registered as {existing.kind.value}"
                    )

            for side in (rel_def.source_kind, rel_def.target_kind):
                if side not in self._kinds:
                    logger.warning(
                        f"Relationship type {rel_def.kind.value} references "
                        f"unregistered entity kind '{side.value}'"
                    )

            self._relationships[rel_def.kind] = rel_def
            for label in rel_def.labels:
                self._relationships_by_name[label] = rel_def
            logger.debug(f"Registered relationship type: {rel_def.kind.value} ({rel_def.name})")

    # Lookups

    def entity_kind(self, value: EntityKind | str) -> EntityKind:
        """Coerce a kind value to a registered EntityKind.

        Raises:
            UnknownKindError: If the value is not a registered kind
        """
        if isinstance(value, EntityKind):
            kind = value
        else:
            try:
                kind = EntityKind(value)
            except ValueError:
                raise UnknownKindError(f"Unknown entity kind: {value!r}", value=value)
        if kind not in self._kinds:
            raise UnknownKindError(
                f"Entity kind '{kind.value}' is not registered", value=kind.value
            )
        return kind

    def relationship_kind(self, value: RelationshipKind | str) -> RelationshipKind:
        """Coerce a relationship value (enum, "MP_R5", its name or an alias) to a RelationshipKind.

        Raises:
            UnknownKindError: If the value is not a registered relationship kind
        """
        if isinstance(value, RelationshipKind):
            kind = value
        elif value in self._relationships_by_name:
            kind = self._relationships_by_name[value].kind
        else:
            try:
                kind = RelationshipKind(value)
            except ValueError:
                raise UnknownKindError(
                    f"Unknown relationship kind: {value!r}", value=value, namespace="relationship"
                )
        if kind not in self._relationships:
            raise UnknownKindError(
                f"Relationship kind '{kind.value}' is not registered",
                value=kind.value,
                namespace="relationship",
            )
        return kind

    def get_layer(self, name: str) -> Optional[LayerDef]:
        """Get a layer by name."""
        return self._layers.get(name)

    def get_entity_kind(self, kind: EntityKind | str) -> EntityKindDef:
        """Get the definition of an entity kind."""
        return self._kinds[self.entity_kind(kind)]

    def get_relationship_type(self, rel: RelationshipKind | str) -> RelationshipTypeDef:
        """Get the definition of a relationship kind."""
        return self._relationships[self.relationship_kind(rel)]

    def layers_for(self, kind: EntityKind | str) -> tuple[LayerDef, ...]:
        """Layers of a kind ordered from least to most specialized.

        Raises:
            UnknownKindError: If the kind is not registered
        """
        kind_def = self.get_entity_kind(kind)
        return tuple(self._layers[name] for name in kind_def.layers)

    def parent_layer(self, layer: LayerDef | str) -> Optional[LayerDef]:
        """Parent of a layer, or None when it extends the root directly.

        Raises:
            UnknownKindError: If the layer is not registered
        """
        name = layer.name if isinstance(layer, LayerDef) else layer
        layer_def = self._layers.get(name)
        if layer_def is None:
            raise UnknownKindError(f"Unknown layer: {name!r}", value=name, namespace="layer")
        if layer_def.parent is None:
            return None
        return self._layers[layer_def.parent]

    def allowed_endpoint_kinds(
        self, rel: RelationshipKind | str
    ) -> tuple[EntityKind, EntityKind]:
        """Allowed (source_kind, target_kind) for a relationship kind.

        Raises:
            UnknownKindError: If the relationship kind is not registered
        """
        return self.get_relationship_type(rel).endpoints

    def is_a(self, kind: EntityKind | str, ancestor: EntityKind | str) -> bool:
        """Whether ``kind`` is ``ancestor`` or one of its specializations.

        Every kind is a res. Otherwise the most specialized layer of
        ``ancestor`` must appear in the chain of ``kind``.
        """
        kind = self.entity_kind(kind)
        ancestor = self.entity_kind(ancestor)
        if ancestor == EntityKind.RES or kind == ancestor:
            return True
        ancestor_layers = self._kinds[ancestor].layers
        if not ancestor_layers:
            return False
        return ancestor_layers[-1] in self._kinds[kind].layers

    def subkinds(self, kind: EntityKind | str) -> list[EntityKind]:
        """All registered kinds that are ``kind`` or specialize it."""
        kind = self.entity_kind(kind)
        return [k for k in self._kinds if self.is_a(k, kind)]

    def endpoints_allowed(
        self,
        rel: RelationshipKind | str,
        source_kind: EntityKind | str,
        target_kind: EntityKind | str,
    ) -> bool:
        """Whether the resolved endpoint kinds satisfy a relationship kind."""
        allowed_source, allowed_target = self.allowed_endpoint_kinds(rel)
        return self.is_a(source_kind, allowed_source) and self.is_a(target_kind, allowed_target)

    def layers(self) -> Iterator[LayerDef]:
        """Iterate over all layers in registration (parent-first) order."""
        yield from self._layers.values()

    def entity_kinds(self) -> Iterator[EntityKindDef]:
        """Iterate over all registered entity kinds."""
        yield from self._kinds.values()

    def relationship_types(self) -> Iterator[RelationshipTypeDef]:
        """Iterate over all registered relationship types."""
        yield from self._relationships.values()

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Type registry frozen with {len(self._layers)} layers, "
                f"{len(self._kinds)} entity kinds, {len(self._relationships)} relationship types, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the canonical JSON schema."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation, sorted for determinism."""
        return {
            "layers": [self._layers[name].to_dict() for name in sorted(self._layers)],
            "entity_kinds": [
                self._kinds[kind].to_dict()
                for kind in sorted(self._kinds, key=lambda k: k.value)
            ],
            "relationship_types": [
                self._relationships[rel].to_dict()
                for rel in sorted(self._relationships, key=lambda r: int(r.value[4:]))
            ],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Convert registry to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    def validate_all(self) -> list[str]:
        """Validate all registered definitions for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        for kind in EntityKind:
            if kind not in self._kinds:
                errors.append(f"Entity kind '{kind.value}' has no layer chain")

        for rel in RelationshipKind:
            if rel not in self._relationships:
                errors.append(f"Relationship kind {rel.value} has no endpoint definition")

        for rel_def in self._relationships.values():
            for side in (rel_def.source_kind, rel_def.target_kind):
                if side not in self._kinds:
                    errors.append(
                        f"Relationship {rel_def.kind.value} references "
                        f"unregistered entity kind '{side.value}'"
                    )

        for kind_def in self._kinds.values():
            seen: dict[str, str] = {}
            for layer_name in kind_def.layers:
                for f in self._layers[layer_name].fields:
                    if f.name in seen:
                        errors.append(
                            f"Field '{f.name}' of layer '{layer_name}' collides with layer "
                            f"'{seen[f.name]}' in chain of '{kind_def.kind.value}'"
                        )
                    seen[f.name] = layer_name

        return errors


def get_registry() -> TypeRegistry:
    """Get the global type registry.

    Builds and freezes the LRM catalog registry on first use.

    Returns:
        Global, frozen TypeRegistry instance
    """
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            from .catalog import build_registry

            _global_registry = build_registry()
        return _global_registry


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
