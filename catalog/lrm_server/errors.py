"""
Error types for the LRM catalog core.

This module defines every exception raised by the registry, the entity store
and the relationship graph:
- CatalogError: Base exception
- UnknownKindError: Bad entity kind or relationship kind discriminator
- NotFoundError: Identity absent where required
- EndpointNotFoundError: Relationship endpoint absent
- TypeMismatchError: Relationship endpoint kinds violate the registry
- CorruptEntityError: Root row present without an expected layer row
- StorageUnavailableError: Failure talking to the underlying store
- ValidationError: Attribute payload or argument validation failure

Invariants:
    - All errors inherit from CatalogError
    - Every error carries a stable code for programmatic handling
    - Only StorageUnavailableError is retryable (constraint violations are not)
    - Messages are for developers; transports translate codes for users
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CatalogError(Exception):
    """Base exception for all catalog errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        retryable: Whether repeating the call may succeed
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CATALOG_ERROR"
        self.details = details or {}


class UnknownKindError(CatalogError):
    """Entity kind or relationship kind is not in the registry.

    Raised when:
    - A discriminator string is not a member of the closed enumeration
    - An enumeration member has no registry entry (misconfiguration)
    """

    def __init__(self, message: str, value: Any = None, namespace: str = "entity") -> None:
        super().__init__(
            message,
            code="UNKNOWN_KIND",
            details={"value": value, "namespace": namespace},
        )
        self.value = value
        self.namespace = namespace


class NotFoundError(CatalogError):
    """Resource not found.

    Raised when:
    - Entity doesn't exist
    - Relationship doesn't exist
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str | list[str],
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class EndpointNotFoundError(CatalogError):
    """A relationship endpoint does not exist."""

    def __init__(self, message: str, missing: List[str]) -> None:
        super().__init__(
            message,
            code="ENDPOINT_NOT_FOUND",
            details={"missing": missing},
        )
        self.missing = missing


class TypeMismatchError(CatalogError):
    """Endpoint kinds are not permitted for a relationship kind.

    Attributes:
        rel_type: Relationship kind value
        expected: Allowed (source_kind, target_kind)
        actual: Resolved (source_kind, target_kind)
    """

    def __init__(
        self,
        message: str,
        rel_type: str,
        expected: tuple[str, str],
        actual: tuple[str, str],
    ) -> None:
        super().__init__(
            message,
            code="TYPE_MISMATCH",
            details={
                "rel_type": rel_type,
                "expected": list(expected),
                "actual": list(actual),
            },
        )
        self.rel_type = rel_type
        self.expected = expected
        self.actual = actual


class CorruptEntityError(CatalogError):
    """Root row exists but an expected layer row is missing.

    Never retried. Indicates a write escaped its transaction.
    """

    def __init__(self, message: str, entity_id: str, kind: str, missing_layers: List[str]) -> None:
        super().__init__(
            message,
            code="CORRUPT_ENTITY",
            details={
                "entity_id": entity_id,
                "kind": kind,
                "missing_layers": missing_layers,
            },
        )
        self.entity_id = entity_id
        self.kind = kind
        self.missing_layers = missing_layers


class StorageUnavailableError(CatalogError):
    """The underlying store failed or could not be reached.

    Any write interrupted by this error has been rolled back. Retryable unless
    the store rejected the write with a constraint violation.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_UNAVAILABLE",
            details={"operation": operation},
        )
        self.operation = operation
        self.retryable = retryable


class ValidationError(CatalogError):
    """Payload validation failed.

    Raised when:
    - A layer is not part of the entity kind's chain
    - A field is unknown, has the wrong type or is required but missing
    - A paging cursor or interval is malformed
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []
