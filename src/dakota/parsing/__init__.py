"""Parsing module for CQL type strings."""

from dakota.parsing.type_parser import TypeParser, TypeSpec

__all__ = [
    "TypeParser",
    "TypeSpec",
]
