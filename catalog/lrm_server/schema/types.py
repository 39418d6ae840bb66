"""
Core type definitions for the catalog type registry.

This module defines the foundational types for the class-table-inheritance
model:
- EntityKind: Closed enumeration of entity discriminators
- RelationshipKind: Closed enumeration of relationship discriminators
- FieldDef: Individual attribute within a layer
- LayerDef: One specialization table (e.g. agent, person)
- EntityKindDef: The ordered layer chain of an entity kind
- RelationshipTypeDef: Allowed (source kind, target kind) for an edge kind

Invariants:
    - Enumeration values are persisted; never rename or reuse them
    - field_id must be unique within a layer (1-2^16)
    - A layer names at most one parent layer
    - Field names are column names and stay stable

How to change safely:
    - Add new entity kinds and relationship kinds at the end of the enums
    - Add new fields with new field_ids
    - Register the new definitions in schema/catalog.py

Example:
    >>> from catalog.lrm_server.schema.types import LayerDef, field
    >>> Person = LayerDef(
    ...     name="person",
    ...     parent="agent",
    ...     fields=(field(1, "profession", "list_str"),),
    ... )
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

# SQLite INTEGER is a signed 64-bit value
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def is_int64(value: Any) -> bool:
    """Whether value is a non-bool int that fits an SQLite INTEGER column."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and INT64_MIN <= value <= INT64_MAX
    )


def is_json_faithful(value: Any) -> bool:
    """Whether value survives a JSON round trip unchanged.

    Rejects values json can't encode (sets, bytes, NaN) and values it would
    rewrite (non-string keys, tuples).
    """
    try:
        return json.loads(json.dumps(value, allow_nan=False)) == value
    except (TypeError, ValueError):
        return False


class EntityKind(Enum):
    """Discriminator stored in the root table for every resource."""

    # LRM core
    RES = "res"
    WORK = "work"
    EXPRESSION = "expression"
    MANIFESTATION = "manifestation"
    ITEM = "item"
    AGENT = "agent"
    PERSON = "person"
    COLLECTIVE_AGENT = "collective_agent"
    NOMEN = "nomen"
    PLACE = "place"
    TIME_SPAN = "time_span"
    # System types
    LANGUAGE = "language"
    CONTENT_RATING = "content_rating"
    TYPE = "type"
    STATUS = "status"
    TAG = "tag"
    DIGITAL_RESOURCE = "digital_resource"
    IMAGE = "image"
    LINK = "link"
    RSS_FEED = "rss_feed"
    FILE = "file"


class RelationshipKind(Enum):
    """Discriminator stored in the relationship table."""

    MP_R1 = "MP_R1"
    MP_R2 = "MP_R2"
    MP_R3 = "MP_R3"
    MP_R4 = "MP_R4"
    MP_R5 = "MP_R5"
    MP_R6 = "MP_R6"
    MP_R7 = "MP_R7"
    MP_R8 = "MP_R8"
    MP_R9 = "MP_R9"
    MP_R10 = "MP_R10"
    MP_R11 = "MP_R11"
    MP_R12 = "MP_R12"
    MP_R13 = "MP_R13"
    MP_R14 = "MP_R14"
    MP_R15 = "MP_R15"
    MP_R16 = "MP_R16"
    MP_R17 = "MP_R17"
    MP_R18 = "MP_R18"
    MP_R19 = "MP_R19"
    MP_R20 = "MP_R20"
    MP_R21 = "MP_R21"
    MP_R22 = "MP_R22"
    MP_R23 = "MP_R23"
    MP_R24 = "MP_R24"
    MP_R25 = "MP_R25"
    MP_R26 = "MP_R26"
    MP_R27 = "MP_R27"
    MP_R28 = "MP_R28"
    MP_R29 = "MP_R29"
    MP_R30 = "MP_R30"
    MP_R31 = "MP_R31"
    MP_R32 = "MP_R32"
    MP_R33 = "MP_R33"
    MP_R34 = "MP_R34"
    MP_R35 = "MP_R35"
    MP_R36 = "MP_R36"
    # System extensions
    MP_R37 = "MP_R37"
    MP_R38 = "MP_R38"
    MP_R39 = "MP_R39"
    MP_R40 = "MP_R40"


class FieldKind(Enum):
    """Supported attribute types.

    These map to SQLite column types and validation rules.
    """

    STRING = "str"
    INTEGER = "int"
    TIMESTAMP = "timestamp"  # Unix milliseconds
    JSON = "json"  # Arbitrary JSON value
    LIST_STRING = "list_str"  # Ordered multivalued text

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Args:
            value: String name of the field kind

        Returns:
            Corresponding FieldKind enum value

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def sql_type(self) -> str:
        """SQLite column affinity for this kind."""
        if self in (FieldKind.INTEGER, FieldKind.TIMESTAMP):
            return "INTEGER"
        return "TEXT"

    @property
    def json_encoded(self) -> bool:
        """Whether values are stored as JSON text."""
        return self in (FieldKind.JSON, FieldKind.LIST_STRING)


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single attribute within a layer.

    Attributes:
        field_id: Stable numeric identifier (never reused)
        name: Column name
        kind: The data type of the field
        required: Whether the column is NOT NULL
        description: Human-readable description

    Example:
        >>> nomen_string = FieldDef(
        ...     field_id=2,
        ...     name="nomen_string",
        ...     kind=FieldKind.STRING,
        ...     required=True,
        ... )
    """

    field_id: int
    name: str
    kind: FieldKind
    required: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if self.field_id <= 0:
            raise ValueError(f"field_id must be positive, got {self.field_id}")
        if self.field_id > 65535:
            raise ValueError(f"field_id must be <= 65535, got {self.field_id}")
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if not self.name.isidentifier():
            raise ValueError(f"Field name '{self.name}' must be a valid identifier")

    def validate_value(self, value: Any) -> tuple[bool, str | None]:
        """Validate a value against this field definition.

        Args:
            value: The value to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value is None:
            if self.required:
                return False, f"Field '{self.name}' is required"
            return True, None

        validators = {
            FieldKind.STRING: lambda v: isinstance(v, str),
            FieldKind.INTEGER: is_int64,
            FieldKind.TIMESTAMP: lambda v: is_int64(v) and v >= 0,
            FieldKind.JSON: is_json_faithful,
            FieldKind.LIST_STRING: lambda v: isinstance(v, list)
            and all(isinstance(i, str) for i in v),
        }

        validator = validators.get(self.kind)
        if validator and not validator(value):
            if self.kind == FieldKind.JSON:
                return False, f"Field '{self.name}' is not representable as JSON"
            if isinstance(value, int) and not isinstance(value, bool) and not is_int64(value):
                return False, f"Field '{self.name}' is out of the 64-bit integer range"
            return False, f"Field '{self.name}' has invalid type for kind {self.kind.value}"

        return True, None

    def to_column(self, value: Any) -> Any:
        """Encode a validated value for storage."""
        if value is None:
            return None
        if self.kind.json_encoded:
            return json.dumps(value)
        return value

    def from_column(self, value: Any) -> Any:
        """Decode a stored value."""
        if value is None:
            return None
        if self.kind.json_encoded:
            return json.loads(value)
        return value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "field_id": self.field_id,
            "name": self.name,
            "kind": self.kind.value,
        }
        if self.required:
            result["required"] = True
        if self.description:
            result["description"] = self.description
        return result


def field(
    field_id: int,
    name: str,
    kind: str | FieldKind,
    *,
    required: bool = False,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Example:
        >>> category = field(1, "category", "list_str")
        >>> nomen_string = field(2, "nomen_string", "str", required=True)
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    return FieldDef(
        field_id=field_id,
        name=name,
        kind=kind,
        required=required,
        description=description,
    )


@dataclass(frozen=True)
class LayerDef:
    """Definition of one specialization layer (one physical table).

    Attributes:
        name: Layer name; the table is ``mp_<name>``
        parent: Name of the parent layer, or None when the layer extends the root
        fields: Tuple of attribute definitions
        description: Human-readable description

    Invariants:
        - The layer row shares its id with the root row
        - The id column references the parent layer (or the root) with cascade
    """

    name: str
    parent: str | None = None
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    description: str = ""

    def __post_init__(self) -> None:
        """Validate layer definition."""
        if not self.name or not self.name.isidentifier():
            raise ValueError(f"Invalid layer name '{self.name}'")
        if self.parent == self.name:
            raise ValueError(f"Layer '{self.name}' cannot be its own parent")

        field_ids = [f.field_id for f in self.fields]
        if len(field_ids) != len(set(field_ids)):
            raise ValueError(f"Duplicate field_id in layer '{self.name}'")

        field_names = [f.name for f in self.fields]
        if len(field_names) != len(set(field_names)):
            raise ValueError(f"Duplicate field name in layer '{self.name}'")
        if "id" in field_names:
            raise ValueError(f"Layer '{self.name}' cannot define an 'id' field")

    @property
    def table(self) -> str:
        """Physical table name."""
        return f"mp_{self.name}"

    def get_field(self, name: str) -> FieldDef | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        """Get list of all field names in declaration order."""
        return [f.name for f in self.fields]

    def validate_payload(self, payload: dict[str, Any], partial: bool = False) -> list[str]:
        """Validate attribute values for this layer.

        Args:
            payload: Dictionary of field values
            partial: Only validate the fields present (update semantics)

        Returns:
            List of errors (empty if valid)
        """
        errors: list[str] = []

        known_names = {f.name for f in self.fields}
        unknown = set(payload.keys()) - known_names
        if unknown:
            errors.append(f"Unknown fields in layer '{self.name}': {sorted(unknown)}")

        for f in self.fields:
            if partial and f.name not in payload:
                continue
            is_valid, error = f.validate_value(payload.get(f.name))
            if not is_valid and error:
                errors.append(error)

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "table": self.table,
            "parent": self.parent,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class EntityKindDef:
    """Ordered layer chain for an entity kind.

    Attributes:
        kind: The entity kind
        layers: Layer names from least to most specialized
        lrm_ref: Reference into the model (e.g. "LRM-E7")
        description: Human-readable description
    """

    kind: EntityKind
    layers: tuple[str, ...] = ()
    lrm_ref: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "layers": list(self.layers),
        }
        if self.lrm_ref:
            result["lrm_ref"] = self.lrm_ref
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class RelationshipTypeDef:
    """Definition of a directed relationship kind.

    Attributes:
        kind: The relationship kind
        name: Documented meaning, read source -> target
        source_kind: Kind the source must be (or specialize)
        target_kind: Kind the target must be (or specialize)
        lrm_ref: Reference into the model (e.g. "LRM-R5")
        aliases: Other labels the kind can be looked up by

    Example:
        >>> CreatedBy = RelationshipTypeDef(
        ...     kind=RelationshipKind.MP_R5,
        ...     name="Work was created by Agent",
        ...     source_kind=EntityKind.WORK,
        ...     target_kind=EntityKind.AGENT,
        ... )
    """

    kind: RelationshipKind
    name: str
    source_kind: EntityKind
    target_kind: EntityKind
    lrm_ref: str = ""
    aliases: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError(f"Relationship type {self.kind.value} needs a name")
        if self.name in self.aliases:
            raise ValueError(f"Relationship type {self.kind.value} lists its name as an alias")

    @property
    def labels(self) -> tuple[str, ...]:
        """Name followed by the aliases."""
        return (self.name, *self.aliases)

    @property
    def endpoints(self) -> tuple[EntityKind, EntityKind]:
        """Allowed (source_kind, target_kind)."""
        return self.source_kind, self.target_kind

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "source_kind": self.source_kind.value,
            "target_kind": self.target_kind.value,
        }
        if self.lrm_ref:
            result["lrm_ref"] = self.lrm_ref
        if self.aliases:
            result["aliases"] = list(self.aliases)
        return result
