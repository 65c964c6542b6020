"""Exception types raised by dakota."""

from __future__ import annotations


class DakotaError(Exception):
    """Base class for all dakota errors."""


class InvalidArgument(DakotaError, ValueError):
    """Malformed caller input."""


class ParseError(DakotaError, ValueError):
    """A type string could not be parsed."""


class UnknownTypeError(DakotaError, LookupError):
    """A type string names a base type that is not registered."""


class TypeValidationError(DakotaError, TypeError):
    """A value does not conform to its declared column type."""


class BuildError(DakotaError):
    """A statement cannot be compiled for the requested operation."""


class SchemaError(DakotaError):
    """Base class for schema reconciliation failures."""


class ProbeError(SchemaError):
    """The metadata probe query failed."""


class CreateError(SchemaError):
    """A CREATE statement failed."""


class AlterError(SchemaError):
    """An ALTER statement failed."""


class DropError(SchemaError):
    """A DROP statement failed."""


class MismatchWarning(UserWarning):
    """A schema mismatch found while reconciling.

    Mismatch warnings are logged and collected on the reconciliation
    result; they are never raised.
    """

    def __init__(self, entity: str, name: str, message: str) -> None:
        self.entity = entity
        self.name = name
        self.message = message
        super().__init__(f"{entity} {name}: {message}")
