"""Dakota - schema-aware data mapping for Cassandra and ScyllaDB."""

from dakota.changes import ChangeTracker, Mutation, MutationKind
from dakota.client import Dakota
from dakota.config import EnsureExists, KeyspaceOptions, LoggerOptions, Options, load_options
from dakota.errors import (
    AlterError,
    BuildError,
    CreateError,
    DakotaError,
    DropError,
    InvalidArgument,
    MismatchWarning,
    ParseError,
    ProbeError,
    SchemaError,
    TypeValidationError,
    UnknownTypeError,
)
from dakota.executor import Executor
from dakota.keyspace import Keyspace
from dakota.model import Model, ModelQuery
from dakota.query import Query
from dakota.reconcile import Reconciliation, ReconcileState
from dakota.schema import Column, Schema
from dakota.statement import Statement
from dakota.table import Table
from dakota.types import TypeDefinition, TypeRegistry
from dakota.user_defined_type import UserDefinedType

__all__ = [
    # Main API
    "Dakota",
    "Model",
    "ModelQuery",
    "Schema",
    "Column",
    # Statements
    "Query",
    "Statement",
    "Executor",
    "ChangeTracker",
    "Mutation",
    "MutationKind",
    # Schema entities
    "Keyspace",
    "Table",
    "UserDefinedType",
    "Reconciliation",
    "ReconcileState",
    # Types
    "TypeDefinition",
    "TypeRegistry",
    # Options
    "Options",
    "KeyspaceOptions",
    "EnsureExists",
    "LoggerOptions",
    "load_options",
    # Errors
    "DakotaError",
    "InvalidArgument",
    "ParseError",
    "UnknownTypeError",
    "TypeValidationError",
    "BuildError",
    "SchemaError",
    "ProbeError",
    "CreateError",
    "AlterError",
    "DropError",
    "MismatchWarning",
]

__version__ = "0.1.0"
