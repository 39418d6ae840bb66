"""
LRM catalog definitions.

Declares every layer, entity kind and relationship kind of the catalog and
builds the frozen registry used by the stores.

Layer tree:
    res
    ├── work, expression, manifestation, item      (WEMI, independent siblings)
    ├── agent ── person | collective_agent
    ├── nomen, place, time_span
    ├── language, content_rating, type, status, tag
    └── digital_resource ── image | link | rss_feed | file

How to change safely:
    - Append new fields with the next field_id of their layer
    - Append new relationship kinds; never change an existing pair
"""

from __future__ import annotations

from .registry import TypeRegistry
from .types import (
    EntityKind,
    EntityKindDef,
    LayerDef,
    RelationshipKind,
    RelationshipTypeDef,
    field,
)

K = EntityKind
R = RelationshipKind

LAYERS: tuple[LayerDef, ...] = (
    # WEMI
    LayerDef(
        name="work",
        description="The intellectual or artistic content.",
        fields=(
            field(1, "category", "list_str", description="e.g. termination intention, creative domain"),
            field(2, "representative_attributes", "json",
                  description="Cached values from the canonical expression"),
        ),
    ),
    LayerDef(
        name="expression",
        description="A distinct combination of signs conveying content.",
        fields=(
            field(1, "category", "list_str", description="e.g. content type, notation"),
            field(2, "extent", "list_str", description="e.g. duration, word count"),
            field(3, "intended_audience", "list_str"),
            field(4, "use_rights", "list_str"),
            field(5, "cartographic_scale", "list_str"),
            field(6, "language", "list_str"),
            field(7, "musical_key", "list_str"),
            field(8, "medium_of_performance", "list_str"),
        ),
    ),
    LayerDef(
        name="manifestation",
        description="A set of all carriers sharing the same content and form.",
        fields=(
            field(1, "carrier_category", "list_str", description="e.g. volume, online resource"),
            field(2, "extent", "list_str"),
            field(3, "intended_audience", "list_str"),
            field(4, "manifestation_statement", "list_str", description="Transcribed title, imprint"),
            field(5, "access_conditions", "list_str"),
            field(6, "use_rights", "list_str"),
        ),
    ),
    LayerDef(
        name="item",
        description="An object carrying signs (the concrete copy).",
        fields=(
            field(1, "location", "list_str", description="Shelf mark, repository"),
            field(2, "use_rights", "list_str", description="Specific to this copy"),
        ),
    ),
    # Agents
    LayerDef(
        name="agent",
        description="Superclass for Person and Collective Agent.",
        fields=(
            field(1, "contact_info", "list_str"),
            field(2, "field_of_activity", "list_str"),
            field(3, "language", "list_str"),
        ),
    ),
    LayerDef(
        name="person",
        parent="agent",
        description="An individual human being.",
        fields=(field(1, "profession", "list_str"),),
    ),
    LayerDef(
        name="collective_agent",
        parent="agent",
        description="A gathering or organization acting as a unit.",
        fields=(field(1, "organization_type", "str"),),
    ),
    # Contextual entities
    LayerDef(
        name="nomen",
        description="An association between an entity and a designation.",
        fields=(
            field(1, "category", "list_str", description="e.g. identifier, name, title"),
            field(2, "nomen_string", "str", required=True),
            field(3, "scheme", "list_str", description="e.g. ISBN, LCSH"),
            field(4, "intended_audience", "list_str"),
            field(5, "context_of_use", "list_str"),
            field(6, "reference_source", "list_str"),
            field(7, "language", "list_str"),
            field(8, "script", "list_str"),
            field(9, "script_conversion", "list_str"),
        ),
    ),
    LayerDef(
        name="place",
        description="A given extent of space.",
        fields=(
            field(1, "category", "list_str"),
            field(2, "location_data", "json", description="GeoJSON or coordinates"),
        ),
    ),
    LayerDef(
        name="time_span",
        description="A temporal extent.",
        fields=(
            field(1, "start_date", "timestamp"),
            field(2, "end_date", "timestamp"),
            field(3, "duration", "str", description="ISO 8601 duration"),
        ),
    ),
    # System entities
    LayerDef(
        name="language",
        description="Controlled vocabulary of languages.",
        fields=(field(1, "iso_code", "str"), field(2, "name", "str")),
    ),
    LayerDef(
        name="content_rating",
        description="Content advisories.",
        fields=(
            field(1, "authority", "str", description="e.g. MPAA, ESRB"),
            field(2, "rating_value", "str"),
        ),
    ),
    LayerDef(
        name="type",
        description="Resource typing.",
        fields=(field(1, "category", "str"), field(2, "label", "str")),
    ),
    LayerDef(
        name="status",
        description="Workflow status.",
        fields=(field(1, "status_code", "str"), field(2, "label", "str")),
    ),
    LayerDef(
        name="tag",
        description="Folksonomy tagging.",
        fields=(field(1, "label", "str"), field(2, "slug", "str")),
    ),
    # Digital resources
    LayerDef(
        name="digital_resource",
        description="Superclass for digital assets.",
        fields=(field(1, "uri", "str"), field(2, "access_restrictions", "list_str")),
    ),
    LayerDef(
        name="image",
        parent="digital_resource",
        fields=(field(1, "width", "int"), field(2, "height", "int"), field(3, "mime_type", "str")),
    ),
    LayerDef(
        name="link",
        parent="digital_resource",
        fields=(field(1, "target_url", "str"), field(2, "last_checked", "timestamp")),
    ),
    LayerDef(
        name="rss_feed",
        parent="digital_resource",
        fields=(field(1, "feed_url", "str"), field(2, "update_frequency", "str")),
    ),
    LayerDef(
        name="file",
        parent="digital_resource",
        fields=(
            field(1, "filename", "str"),
            field(2, "file_size_bytes", "int"),
            field(3, "checksum", "str"),
            field(4, "extension", "str"),
        ),
    ),
)

ENTITY_KINDS: tuple[EntityKindDef, ...] = (
    EntityKindDef(K.RES, (), "LRM-E1", "Top level entity"),
    EntityKindDef(K.WORK, ("work",), "LRM-E2"),
    EntityKindDef(K.EXPRESSION, ("expression",), "LRM-E3"),
    EntityKindDef(K.MANIFESTATION, ("manifestation",), "LRM-E4"),
    EntityKindDef(K.ITEM, ("item",), "LRM-E5"),
    EntityKindDef(K.AGENT, ("agent",), "LRM-E6"),
    EntityKindDef(K.PERSON, ("agent", "person"), "LRM-E7"),
    EntityKindDef(K.COLLECTIVE_AGENT, ("agent", "collective_agent"), "LRM-E8"),
    EntityKindDef(K.NOMEN, ("nomen",), "LRM-E9"),
    EntityKindDef(K.PLACE, ("place",), "LRM-E10"),
    EntityKindDef(K.TIME_SPAN, ("time_span",), "LRM-E11"),
    EntityKindDef(K.LANGUAGE, ("language",)),
    EntityKindDef(K.CONTENT_RATING, ("content_rating",)),
    EntityKindDef(K.TYPE, ("type",)),
    EntityKindDef(K.STATUS, ("status",)),
    EntityKindDef(K.TAG, ("tag",)),
    EntityKindDef(K.DIGITAL_RESOURCE, ("digital_resource",)),
    EntityKindDef(K.IMAGE, ("digital_resource", "image")),
    EntityKindDef(K.LINK, ("digital_resource", "link")),
    EntityKindDef(K.RSS_FEED, ("digital_resource", "rss_feed")),
    EntityKindDef(K.FILE, ("digital_resource", "file")),
)


def _rel(
    kind: RelationshipKind,
    name: str,
    source: EntityKind,
    target: EntityKind,
    *aliases: str,
) -> RelationshipTypeDef:
    number = kind.value.split("_R")[1]
    lrm_ref = f"LRM-R{number}" if int(number) <= 36 else ""
    return RelationshipTypeDef(kind, name, source, target, lrm_ref, aliases)


RELATIONSHIP_TYPES: tuple[RelationshipTypeDef, ...] = (
    _rel(R.MP_R1, "Res is associated with Res", K.RES, K.RES),
    _rel(R.MP_R2, "Work is realized through Expression", K.WORK, K.EXPRESSION),
    _rel(R.MP_R3, "Expression is embodied in Manifestation", K.EXPRESSION, K.MANIFESTATION),
    _rel(R.MP_R4, "Manifestation is exemplified by Item", K.MANIFESTATION, K.ITEM),
    _rel(R.MP_R5, "Work was created by Agent", K.WORK, K.AGENT, "Work created by Agent"),
    _rel(R.MP_R6, "Expression was created by Agent", K.EXPRESSION, K.AGENT, "Expression created by Agent"),
    _rel(R.MP_R7, "Manifestation was created by Agent", K.MANIFESTATION, K.AGENT,
         "Manifestation created by Agent"),
    _rel(R.MP_R8, "Manifestation was manufactured by Agent", K.MANIFESTATION, K.AGENT),
    _rel(R.MP_R9, "Manifestation is distributed by Agent", K.MANIFESTATION, K.AGENT),
    _rel(R.MP_R10, "Item is owned by Agent", K.ITEM, K.AGENT),
    _rel(R.MP_R11, "Item was modified by Agent", K.ITEM, K.AGENT),
    _rel(R.MP_R12, "Work has as subject Res", K.WORK, K.RES),
    _rel(R.MP_R13, "Res has appellation Nomen", K.RES, K.NOMEN),
    _rel(R.MP_R14, "Agent assigned Nomen", K.AGENT, K.NOMEN),
    _rel(R.MP_R15, "Nomen is equivalent to Nomen", K.NOMEN, K.NOMEN),
    _rel(R.MP_R16, "Nomen has part Nomen", K.NOMEN, K.NOMEN),
    _rel(R.MP_R17, "Nomen is derivation of Nomen", K.NOMEN, K.NOMEN),
    _rel(R.MP_R18, "Work has part Work", K.WORK, K.WORK),
    _rel(R.MP_R19, "Work precedes Work", K.WORK, K.WORK),
    _rel(R.MP_R20, "Work accompanies / complements Work", K.WORK, K.WORK),
    _rel(R.MP_R21, "Work is inspiration for Work", K.WORK, K.WORK),
    _rel(R.MP_R22, "Work is a transformation of Work", K.WORK, K.WORK),
    _rel(R.MP_R23, "Expression has part Expression", K.EXPRESSION, K.EXPRESSION),
    _rel(R.MP_R24, "Expression is derivation of Expression", K.EXPRESSION, K.EXPRESSION),
    _rel(R.MP_R25, "Expression was aggregated by Expression", K.EXPRESSION, K.EXPRESSION),
    _rel(R.MP_R26, "Manifestation has part Manifestation", K.MANIFESTATION, K.MANIFESTATION),
    _rel(R.MP_R27, "Manifestation has reproduction Manifestation", K.MANIFESTATION, K.MANIFESTATION),
    _rel(R.MP_R28, "Item has reproduction Manifestation", K.ITEM, K.MANIFESTATION),
    _rel(R.MP_R29, "Manifestation has alternate Manifestation", K.MANIFESTATION, K.MANIFESTATION),
    _rel(R.MP_R30, "Agent is member of Collective Agent", K.AGENT, K.COLLECTIVE_AGENT),
    _rel(R.MP_R31, "Collective Agent has part Collective Agent", K.COLLECTIVE_AGENT, K.COLLECTIVE_AGENT),
    _rel(R.MP_R32, "Collective Agent precedes Collective Agent", K.COLLECTIVE_AGENT, K.COLLECTIVE_AGENT),
    _rel(R.MP_R33, "Res has association with Place", K.RES, K.PLACE),
    _rel(R.MP_R34, "Place has part Place", K.PLACE, K.PLACE),
    _rel(R.MP_R35, "Res has association with Time-span", K.RES, K.TIME_SPAN),
    _rel(R.MP_R36, "Time-span has part Time-span", K.TIME_SPAN, K.TIME_SPAN),
    _rel(R.MP_R37, "Res has Tag", K.RES, K.TAG),
    _rel(R.MP_R38, "Res has Digital Resource representation", K.RES, K.DIGITAL_RESOURCE),
    _rel(R.MP_R39, "Res is in Language", K.RES, K.LANGUAGE),
    _rel(R.MP_R40, "Res has Content Rating", K.RES, K.CONTENT_RATING),
)


def build_registry(freeze: bool = True, validate: bool = True) -> TypeRegistry:
    """Build the catalog registry.

    Args:
        freeze: Freeze the registry before returning it
        validate: Raise ValueError if validate_all() reports errors

    Returns:
        TypeRegistry with every layer, kind and relationship type registered
    """
    registry = TypeRegistry()
    for layer in LAYERS:
        registry.register_layer(layer)
    for kind_def in ENTITY_KINDS:
        registry.register_entity_kind(kind_def)
    for rel_def in RELATIONSHIP_TYPES:
        registry.register_relationship_type(rel_def)

    errors = registry.validate_all() if validate else []
    if errors:
        raise ValueError(f"Invalid catalog registry: {errors}")

    if freeze:
        registry.freeze()
    return registry
