"""Parser for CQL type strings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import ply.yacc as yacc

from dakota.errors import ParseError
from dakota.parsing.type_lexer import TypeLexer


@dataclass
class TypeSpec:
    """A parsed type expression before resolution.

    ``name`` is the base type or generic constructor, ``args`` the nested
    type arguments (empty for scalars and user-defined type names).
    """

    name: str
    args: list[TypeSpec] = field(default_factory=list)


class TypeParser:
    """LALR grammar for ``name<arg, ...>`` type expressions."""

    tokens = TypeLexer.tokens
    start = "type_ref"

    def __init__(self) -> None:
        self.lexer = TypeLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_type_ref_simple(self, p: yacc.YaccProduction) -> None:
        """type_ref : IDENTIFIER"""
        p[0] = TypeSpec(name=p[1])

    def p_type_ref_generic(self, p: yacc.YaccProduction) -> None:
        """type_ref : IDENTIFIER LT type_list GT"""
        p[0] = TypeSpec(name=p[1], args=p[3])

    def p_type_list_single(self, p: yacc.YaccProduction) -> None:
        """type_list : type_ref"""
        p[0] = [p[1]]

    def p_type_list_multiple(self, p: yacc.YaccProduction) -> None:
        """type_list : type_list COMMA type_ref"""
        p[0] = p[1] + [p[3]]

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise ParseError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise ParseError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, **kwargs)

    def parse(self, data: str) -> TypeSpec:
        """Parse a type string and return its spec tree."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)
        if not data.strip():
            raise ParseError("Empty type string")
        return self.parser.parse(data, lexer=self.lexer.lexer)
