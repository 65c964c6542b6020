"""Type definitions and the column type registry."""

from __future__ import annotations

import ipaddress
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from dakota.errors import InvalidArgument, ParseError, TypeValidationError, UnknownTypeError
from dakota.parsing import TypeParser, TypeSpec
from dakota.statement import quote_identifier

MARSHAL_PREFIX = "org.apache.cassandra.db.marshal."


class PrimitiveType(Enum):
    """Built-in CQL scalar types."""

    ASCII = "ascii"
    BIGINT = "bigint"
    BLOB = "blob"
    BOOLEAN = "boolean"
    COUNTER = "counter"
    DATE = "date"
    DECIMAL = "decimal"
    DOUBLE = "double"
    DURATION = "duration"
    FLOAT = "float"
    INET = "inet"
    INT = "int"
    SMALLINT = "smallint"
    TEXT = "text"
    TIME = "time"
    TIMESTAMP = "timestamp"
    TIMEUUID = "timeuuid"
    TINYINT = "tinyint"
    UUID = "uuid"
    VARCHAR = "varchar"
    VARINT = "varint"

    @property
    def canonical_name(self) -> str:
        """Return the name the cluster reports for this type."""
        if self is PrimitiveType.VARCHAR:
            return PrimitiveType.TEXT.value
        return self.value

    @property
    def marshal_class(self) -> str:
        """Return the legacy marshal class name for this type."""
        classes = {
            PrimitiveType.ASCII: "AsciiType",
            PrimitiveType.BIGINT: "LongType",
            PrimitiveType.BLOB: "BytesType",
            PrimitiveType.BOOLEAN: "BooleanType",
            PrimitiveType.COUNTER: "CounterColumnType",
            PrimitiveType.DATE: "SimpleDateType",
            PrimitiveType.DECIMAL: "DecimalType",
            PrimitiveType.DOUBLE: "DoubleType",
            PrimitiveType.DURATION: "DurationType",
            PrimitiveType.FLOAT: "FloatType",
            PrimitiveType.INET: "InetAddressType",
            PrimitiveType.INT: "Int32Type",
            PrimitiveType.SMALLINT: "ShortType",
            PrimitiveType.TEXT: "UTF8Type",
            PrimitiveType.TIME: "TimeType",
            PrimitiveType.TIMESTAMP: "TimestampType",
            PrimitiveType.TIMEUUID: "TimeUUIDType",
            PrimitiveType.TINYINT: "ByteType",
            PrimitiveType.UUID: "UUIDType",
            PrimitiveType.VARCHAR: "UTF8Type",
            PrimitiveType.VARINT: "IntegerType",
        }
        return MARSHAL_PREFIX + classes[self]


# Generic type constructors and the number of type arguments they take
# (None means one or more)
GENERIC_ARITY: dict[str, int | None] = {
    "frozen": 1,
    "list": 1,
    "set": 1,
    "map": 2,
    "tuple": None,
}

# Inclusive ranges for fixed-width integer types
INTEGER_RANGES: dict[PrimitiveType, tuple[int, int]] = {
    PrimitiveType.TINYINT: (-(2**7), 2**7 - 1),
    PrimitiveType.SMALLINT: (-(2**15), 2**15 - 1),
    PrimitiveType.INT: (-(2**31), 2**31 - 1),
    PrimitiveType.BIGINT: (-(2**63), 2**63 - 1),
    PrimitiveType.COUNTER: (-(2**63), 2**63 - 1),
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class TypeDefinition:
    """Base class for all type definitions."""

    name: str

    @property
    def cql(self) -> str:
        """Return the canonical CQL spelling of this type."""
        raise NotImplementedError

    @property
    def is_collection(self) -> bool:
        """Return whether this type is a list, set or map."""
        return False

    @property
    def is_frozen(self) -> bool:
        """Return whether values of this type are immutable as a whole."""
        return False

    @property
    def is_counter(self) -> bool:
        return False

    def resolve_base_type(self) -> TypeDefinition:
        """Resolve through frozen wrappers to get the underlying type."""
        return self


@dataclass
class PrimitiveTypeDefinition(TypeDefinition):
    """Type definition wrapping a primitive type."""

    primitive: PrimitiveType

    @property
    def cql(self) -> str:
        return self.primitive.canonical_name

    @property
    def is_counter(self) -> bool:
        return self.primitive is PrimitiveType.COUNTER


@dataclass
class FrozenTypeDefinition(TypeDefinition):
    """Type definition for ``frozen<T>``.

    Freezing changes how a value is stored (as a single blob that can only
    be replaced as a whole), not what the value is, so validation and value
    conversion look straight through to the base type.
    """

    base_type: TypeDefinition

    @property
    def cql(self) -> str:
        return f"frozen<{self.base_type.cql}>"

    @property
    def is_collection(self) -> bool:
        return self.base_type.is_collection

    @property
    def is_frozen(self) -> bool:
        return True

    def resolve_base_type(self) -> TypeDefinition:
        return self.base_type.resolve_base_type()


@dataclass
class ListTypeDefinition(TypeDefinition):
    """Type definition for ``list<T>``."""

    element_type: TypeDefinition

    @property
    def cql(self) -> str:
        return f"list<{self.element_type.cql}>"

    @property
    def is_collection(self) -> bool:
        return True


@dataclass
class SetTypeDefinition(TypeDefinition):
    """Type definition for ``set<T>``."""

    element_type: TypeDefinition

    @property
    def cql(self) -> str:
        return f"set<{self.element_type.cql}>"

    @property
    def is_collection(self) -> bool:
        return True


@dataclass
class MapTypeDefinition(TypeDefinition):
    """Type definition for ``map<K, V>``."""

    key_type: TypeDefinition
    value_type: TypeDefinition

    @property
    def cql(self) -> str:
        return f"map<{self.key_type.cql}, {self.value_type.cql}>"

    @property
    def is_collection(self) -> bool:
        return True


@dataclass
class TupleTypeDefinition(TypeDefinition):
    """Type definition for ``tuple<T1, T2, ...>``."""

    element_types: list[TypeDefinition] = field(default_factory=list)

    @property
    def cql(self) -> str:
        return "tuple<" + ", ".join(t.cql for t in self.element_types) + ">"


@dataclass
class FieldDefinition:
    """Definition of a field within a user-defined type."""

    name: str
    type_def: TypeDefinition


@dataclass
class UserDefinedTypeDefinition(TypeDefinition):
    """Type definition for a named user-defined type."""

    fields: list[FieldDefinition] = field(default_factory=list)

    @property
    def cql(self) -> str:
        return quote_identifier(self.name)

    def get_field(self, name: str) -> FieldDefinition | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None


def referenced_user_types(type_def: TypeDefinition) -> list[UserDefinedTypeDefinition]:
    """Return the user-defined types a type refers to, dependencies first.

    The list is ordered so that every type appears after the types its own
    fields refer to, which is the order they must be created in.
    """
    found: list[UserDefinedTypeDefinition] = []

    def visit(td: TypeDefinition) -> None:
        if isinstance(td, FrozenTypeDefinition):
            visit(td.base_type)
        elif isinstance(td, (ListTypeDefinition, SetTypeDefinition)):
            visit(td.element_type)
        elif isinstance(td, MapTypeDefinition):
            visit(td.key_type)
            visit(td.value_type)
        elif isinstance(td, TupleTypeDefinition):
            for t in td.element_types:
                visit(t)
        elif isinstance(td, UserDefinedTypeDefinition):
            if any(u.name == td.name for u in found):
                return
            for f in td.fields:
                visit(f.type_def)
            found.append(td)

    visit(type_def)
    return found


def freeze_tuples(type_def: TypeDefinition) -> TypeDefinition:
    """Return ``type_def`` with every tuple wrapped in ``frozen``.

    Tuples are always frozen, and the cluster reports them that way whether
    or not the declaration said so.
    """
    if isinstance(type_def, FrozenTypeDefinition):
        if isinstance(type_def.base_type, TupleTypeDefinition):
            return freeze_tuples(type_def.base_type)
        base = freeze_tuples(type_def.base_type)
        return FrozenTypeDefinition(name=f"frozen<{base.cql}>", base_type=base)
    if isinstance(type_def, ListTypeDefinition):
        element = freeze_tuples(type_def.element_type)
        return ListTypeDefinition(name=f"list<{element.cql}>", element_type=element)
    if isinstance(type_def, SetTypeDefinition):
        element = freeze_tuples(type_def.element_type)
        return SetTypeDefinition(name=f"set<{element.cql}>", element_type=element)
    if isinstance(type_def, MapTypeDefinition):
        key = freeze_tuples(type_def.key_type)
        value = freeze_tuples(type_def.value_type)
        return MapTypeDefinition(name=f"map<{key.cql}, {value.cql}>", key_type=key, value_type=value)
    if isinstance(type_def, TupleTypeDefinition):
        tuple_def = TupleTypeDefinition(
            name="", element_types=[freeze_tuples(t) for t in type_def.element_types]
        )
        tuple_def.name = tuple_def.cql
        return FrozenTypeDefinition(name=f"frozen<{tuple_def.cql}>", base_type=tuple_def)
    return type_def


class TypeRegistry:
    """Registry of all known column types.

    Holds the primitive CQL types and the user-defined types declared when
    the registry is constructed. The registry is never modified afterwards.
    """

    def __init__(self, user_defined_types: Mapping[str, Mapping[str, str]] | None = None) -> None:
        self._types: dict[str, TypeDefinition] = {}
        self._parser = TypeParser()
        self._parsed: dict[str, TypeDefinition] = {}
        self._register_primitives()
        self._register_user_types(user_defined_types or {})

    def _register_primitives(self) -> None:
        """Register all primitive types."""
        for pt in PrimitiveType:
            self._types[pt.value] = PrimitiveTypeDefinition(name=pt.value, primitive=pt)

    def _register_user_types(self, definitions: Mapping[str, Mapping[str, str]]) -> None:
        """Register user-defined types using two-phase resolution.

        Phase 1 registers an empty definition for every name so that types
        may refer to each other in any order. Phase 2 parses the field types.
        """
        for name in definitions:
            if name in self._types:
                raise InvalidArgument(f"Type '{name}' is already defined")
            self._types[name] = UserDefinedTypeDefinition(name=name, fields=[])

        for name, fields in definitions.items():
            udt = self._types[name]
            assert isinstance(udt, UserDefinedTypeDefinition)
            udt.fields = [
                FieldDefinition(name=field_name, type_def=self.parse_type(type_string))
                for field_name, type_string in fields.items()
            ]

    def get(self, name: str) -> TypeDefinition | None:
        """Get a named type."""
        return self._types.get(name)

    def get_or_raise(self, name: str) -> TypeDefinition:
        """Get a named type, raising if not found."""
        type_def = self._types.get(name)
        if type_def is None:
            raise UnknownTypeError(f"Type '{name}' not found")
        return type_def

    def user_defined_types(self) -> list[UserDefinedTypeDefinition]:
        """List the registered user-defined types."""
        return [t for t in self._types.values() if isinstance(t, UserDefinedTypeDefinition)]

    def __contains__(self, name: str) -> bool:
        return name in self._types

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_type(self, type_string: str | TypeDefinition) -> TypeDefinition:
        """Parse a CQL type string into a type definition."""
        if isinstance(type_string, TypeDefinition):
            return type_string
        if not isinstance(type_string, str):
            raise ParseError(f"Type must be a string, got {type(type_string).__name__}")
        cached = self._parsed.get(type_string)
        if cached is not None:
            return cached
        spec = self._parser.parse(type_string)
        type_def = self._resolve(spec)
        self._parsed[type_string] = type_def
        return type_def

    def _resolve(self, spec: TypeSpec) -> TypeDefinition:
        """Resolve a parsed type spec against the registered types."""
        name = spec.name.lower() if spec.name.lower() in GENERIC_ARITY else spec.name
        if name in GENERIC_ARITY:
            arity = GENERIC_ARITY[name]
            if not spec.args or (arity is not None and len(spec.args) != arity):
                expected = "at least 1" if arity is None else str(arity)
                raise ParseError(
                    f"Type '{name}' takes {expected} type argument(s), got {len(spec.args)}"
                )
            args = [self._resolve(a) for a in spec.args]
            if name == "frozen":
                return FrozenTypeDefinition(name=f"frozen<{args[0].cql}>", base_type=args[0])
            if name == "list":
                return ListTypeDefinition(name=f"list<{args[0].cql}>", element_type=args[0])
            if name == "set":
                return SetTypeDefinition(name=f"set<{args[0].cql}>", element_type=args[0])
            if name == "map":
                return MapTypeDefinition(
                    name=f"map<{args[0].cql}, {args[1].cql}>",
                    key_type=args[0],
                    value_type=args[1],
                )
            tuple_def = TupleTypeDefinition(name="", element_types=args)
            tuple_def.name = tuple_def.cql
            return tuple_def

        if spec.args:
            raise ParseError(f"Type '{spec.name}' does not take type arguments")
        # Keyspace-qualified user type names resolve to the bare name
        bare = spec.name.rsplit(".", 1)[-1]
        type_def = self._types.get(bare) or self._types.get(bare.lower())
        if type_def is None:
            raise UnknownTypeError(f"Type '{spec.name}' not found")
        return type_def

    def canonicalize(self, type_string: str | TypeDefinition) -> str:
        """Return the normalized spelling of a type string."""
        return self.parse_type(type_string).cql

    def is_collection(self, type_string: str | TypeDefinition) -> bool:
        """Return whether a type is a list, set or map (frozen or not)."""
        return self.parse_type(type_string).is_collection

    def element_type(self, type_string: str | TypeDefinition) -> TypeDefinition:
        """Return the element type of a list or set type."""
        base = self.parse_type(type_string).resolve_base_type()
        if isinstance(base, (ListTypeDefinition, SetTypeDefinition)):
            return base.element_type
        raise TypeError(f"Type '{base.cql}' has no element type")

    def key_type(self, type_string: str | TypeDefinition) -> TypeDefinition:
        """Return the key type of a map type."""
        base = self.parse_type(type_string).resolve_base_type()
        if isinstance(base, MapTypeDefinition):
            return base.key_type
        raise TypeError(f"Type '{base.cql}' has no key type")

    def value_type(self, type_string: str | TypeDefinition) -> TypeDefinition:
        """Return the value type of a map type."""
        base = self.parse_type(type_string).resolve_base_type()
        if isinstance(base, MapTypeDefinition):
            return base.value_type
        raise TypeError(f"Type '{base.cql}' has no value type")

    def element_types(self, type_string: str | TypeDefinition) -> list[TypeDefinition]:
        """Return the element types of a tuple type."""
        base = self.parse_type(type_string).resolve_base_type()
        if isinstance(base, TupleTypeDefinition):
            return list(base.element_types)
        raise TypeError(f"Type '{base.cql}' is not a tuple")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, type_string: str | TypeDefinition, value: Any, path: str = "value") -> None:
        """Check that a value conforms to a type.

        None is always accepted (CQL columns and elements are nullable).

        Raises:
            TypeValidationError: If the value does not conform.
        """
        if value is None:
            return
        type_def = self.parse_type(type_string)
        base = type_def.resolve_base_type()

        if isinstance(base, PrimitiveTypeDefinition):
            if not _primitive_accepts(base.primitive, value):
                raise TypeValidationError(
                    f"{path}: expected {base.primitive.value}, got {value!r}"
                )
        elif isinstance(base, ListTypeDefinition):
            if not isinstance(value, (list, tuple)):
                raise TypeValidationError(f"{path}: expected a list, got {value!r}")
            for i, element in enumerate(value):
                self.validate(base.element_type, element, f"{path}[{i}]")
        elif isinstance(base, SetTypeDefinition):
            if not isinstance(value, (set, frozenset, list, tuple)):
                raise TypeValidationError(f"{path}: expected a set, got {value!r}")
            for element in value:
                self.validate(base.element_type, element, f"{path}{{}}")
        elif isinstance(base, MapTypeDefinition):
            if not isinstance(value, Mapping):
                raise TypeValidationError(f"{path}: expected a map, got {value!r}")
            for k, v in value.items():
                if k is None:
                    raise TypeValidationError(f"{path}: map keys cannot be null")
                self.validate(base.key_type, k, f"{path} key")
                self.validate(base.value_type, v, f"{path}[{k!r}]")
        elif isinstance(base, TupleTypeDefinition):
            if not isinstance(value, (list, tuple)):
                raise TypeValidationError(f"{path}: expected a tuple, got {value!r}")
            if len(value) != len(base.element_types):
                raise TypeValidationError(
                    f"{path}: expected {len(base.element_types)} tuple elements, got {len(value)}"
                )
            for i, (element_type, element) in enumerate(zip(base.element_types, value)):
                self.validate(element_type, element, f"{path}[{i}]")
        elif isinstance(base, UserDefinedTypeDefinition):
            if not isinstance(value, Mapping):
                raise TypeValidationError(f"{path}: expected a {base.name} mapping, got {value!r}")
            for k, v in value.items():
                udt_field = base.get_field(k)
                if udt_field is None:
                    raise TypeValidationError(f"{path}: type '{base.name}' has no field '{k}'")
                self.validate(udt_field.type_def, v, f"{path}.{k}")

    # ------------------------------------------------------------------
    # Value conversion
    # ------------------------------------------------------------------

    def parse_value(self, type_string: str | TypeDefinition, raw: Any) -> Any:
        """Convert a value read from the cluster into plain Python values."""
        if raw is None:
            return None
        base = self.parse_type(type_string).resolve_base_type()

        if isinstance(base, PrimitiveTypeDefinition):
            return _parse_primitive(base.primitive, raw)
        if isinstance(base, ListTypeDefinition):
            return [self.parse_value(base.element_type, e) for e in raw]
        if isinstance(base, SetTypeDefinition):
            return _as_set([self.parse_value(base.element_type, e) for e in raw])
        if isinstance(base, MapTypeDefinition):
            items = raw.items() if hasattr(raw, "items") else raw
            return {
                self.parse_value(base.key_type, k): self.parse_value(base.value_type, v)
                for k, v in items
            }
        if isinstance(base, TupleTypeDefinition):
            return tuple(
                self.parse_value(t, v) for t, v in zip(base.element_types, raw)
            )
        if isinstance(base, UserDefinedTypeDefinition):
            if isinstance(raw, Mapping):
                source = raw
            elif hasattr(raw, "_asdict"):
                source = raw._asdict()
            else:
                source = {f.name: getattr(raw, f.name, None) for f in base.fields}
            return {
                f.name: self.parse_value(f.type_def, source.get(f.name))
                for f in base.fields
                if f.name in source
            }
        return raw

    # ------------------------------------------------------------------
    # Legacy validators
    # ------------------------------------------------------------------

    def db_validator(self, type_string: str | TypeDefinition, keyspace: str) -> str:
        """Return the marshal class string the legacy schema tables store.

        User-defined types are qualified with ``keyspace`` and carry their
        name and field names hex-encoded, as the cluster writes them.
        """
        type_def = self.parse_type(type_string)
        return _marshal(type_def, keyspace)


def _marshal(type_def: TypeDefinition, keyspace: str) -> str:
    if isinstance(type_def, PrimitiveTypeDefinition):
        return type_def.primitive.marshal_class
    if isinstance(type_def, FrozenTypeDefinition):
        return f"{MARSHAL_PREFIX}FrozenType({_marshal(type_def.base_type, keyspace)})"
    if isinstance(type_def, ListTypeDefinition):
        return f"{MARSHAL_PREFIX}ListType({_marshal(type_def.element_type, keyspace)})"
    if isinstance(type_def, SetTypeDefinition):
        return f"{MARSHAL_PREFIX}SetType({_marshal(type_def.element_type, keyspace)})"
    if isinstance(type_def, MapTypeDefinition):
        key = _marshal(type_def.key_type, keyspace)
        value = _marshal(type_def.value_type, keyspace)
        return f"{MARSHAL_PREFIX}MapType({key},{value})"
    if isinstance(type_def, TupleTypeDefinition):
        inner = ",".join(_marshal(t, keyspace) for t in type_def.element_types)
        return f"{MARSHAL_PREFIX}TupleType({inner})"
    if isinstance(type_def, UserDefinedTypeDefinition):
        parts = [keyspace, type_def.name.encode("utf-8").hex()]
        for f in type_def.fields:
            parts.append(f"{f.name.encode('utf-8').hex()}:{_marshal(f.type_def, keyspace)}")
        return f"{MARSHAL_PREFIX}UserType({','.join(parts)})"
    raise TypeError(f"Cannot build a validator for {type_def!r}")


def _as_set(elements: list[Any]) -> set[Any] | list[Any]:
    """Return a set, or a list when the elements cannot be hashed."""
    try:
        return set(elements)
    except TypeError:
        return elements


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _primitive_accepts(primitive: PrimitiveType, value: Any) -> bool:
    """Check a scalar value against a primitive type."""
    if primitive in INTEGER_RANGES:
        low, high = INTEGER_RANGES[primitive]
        return _is_int(value) and low <= value <= high
    if primitive is PrimitiveType.VARINT:
        return _is_int(value)
    if primitive in (PrimitiveType.FLOAT, PrimitiveType.DOUBLE):
        return _is_int(value) or isinstance(value, float)
    if primitive is PrimitiveType.DECIMAL:
        return _is_int(value) or isinstance(value, (float, Decimal))
    if primitive is PrimitiveType.BOOLEAN:
        return isinstance(value, bool)
    if primitive is PrimitiveType.ASCII:
        return isinstance(value, str) and value.isascii()
    if primitive in (PrimitiveType.TEXT, PrimitiveType.VARCHAR):
        return isinstance(value, str)
    if primitive is PrimitiveType.BLOB:
        return isinstance(value, (bytes, bytearray, memoryview))
    if primitive is PrimitiveType.INET:
        if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            return True
        if not isinstance(value, str):
            return False
        try:
            ipaddress.ip_address(value)
        except ValueError:
            return False
        return True
    if primitive is PrimitiveType.UUID:
        return isinstance(value, uuid.UUID)
    if primitive is PrimitiveType.TIMEUUID:
        return isinstance(value, uuid.UUID) and value.version == 1
    if primitive is PrimitiveType.TIMESTAMP:
        return isinstance(value, (datetime, date)) or _is_int(value)
    if primitive is PrimitiveType.DATE:
        return isinstance(value, date) or _is_int(value)
    if primitive is PrimitiveType.TIME:
        return isinstance(value, time) or _is_int(value)
    if primitive is PrimitiveType.DURATION:
        return isinstance(value, timedelta) or hasattr(value, "nanoseconds")
    return False


_ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]")


def _parse_primitive(primitive: PrimitiveType, raw: Any) -> Any:
    """Convert a scalar read from the cluster."""
    if primitive in (PrimitiveType.UUID, PrimitiveType.TIMEUUID) and isinstance(raw, str):
        return uuid.UUID(raw)
    if primitive is PrimitiveType.TIMESTAMP:
        if _is_int(raw):
            return _EPOCH + timedelta(milliseconds=raw)
        if isinstance(raw, str) and _ISO_TIMESTAMP.match(raw):
            return datetime.fromisoformat(raw)
    if primitive is PrimitiveType.DECIMAL and isinstance(raw, str):
        return Decimal(raw)
    if primitive is PrimitiveType.INET and not isinstance(raw, str):
        return str(raw)
    return raw
