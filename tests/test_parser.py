"""Tests for the type string lexer and parser."""

import pytest

from dakota.errors import ParseError
from dakota.parsing import TypeParser, TypeSpec
from dakota.parsing.type_lexer import TypeLexer


class TestTypeLexer:
    """Tests for TypeLexer."""

    def setup_method(self):
        self.lexer = TypeLexer()
        self.lexer.build()

    def test_tokens(self):
        """Test a nested generic tokenizes into identifiers and punctuation."""
        tokens = self.lexer.tokenize("map<text, frozen<list<int>>>")
        assert [t.type for t in tokens] == [
            "IDENTIFIER", "LT", "IDENTIFIER", "COMMA", "IDENTIFIER", "LT",
            "IDENTIFIER", "LT", "IDENTIFIER", "GT", "GT", "GT",
        ]

    def test_whitespace_ignored(self):
        """Test spaces, tabs and newlines are skipped."""
        tokens = self.lexer.tokenize(" list \n<\tint > ")
        assert [t.value for t in tokens] == ["list", "<", "int", ">"]

    def test_qualified_identifier(self):
        """Test a keyspace-qualified name is a single token."""
        tokens = self.lexer.tokenize("app.address")
        assert len(tokens) == 1
        assert tokens[0].value == "app.address"

    def test_quoted_identifier(self):
        """Test quoted identifiers keep their case and unescape quotes."""
        tokens = self.lexer.tokenize('"MyType"')
        assert tokens[0].value == "MyType"
        tokens = self.lexer.tokenize('"say ""hi"""')
        assert tokens[0].value == 'say "hi"'

    def test_illegal_character(self):
        """Test an unexpected character raises."""
        with pytest.raises(ParseError, match="Illegal character"):
            self.lexer.tokenize("list<int>;")


class TestTypeParser:
    """Tests for TypeParser."""

    def setup_method(self):
        self.parser = TypeParser()

    def test_simple(self):
        """Test a scalar type name."""
        assert self.parser.parse("int") == TypeSpec(name="int")

    def test_generic(self):
        """Test a generic with several arguments."""
        spec = self.parser.parse("map<text, int>")
        assert spec == TypeSpec(name="map", args=[TypeSpec(name="text"), TypeSpec(name="int")])

    def test_nested(self):
        """Test deeply nested generics."""
        spec = self.parser.parse("list<frozen<tuple<text, int, text>>>")
        assert spec.name == "list"
        frozen = spec.args[0]
        assert frozen.name == "frozen"
        assert [a.name for a in frozen.args[0].args] == ["text", "int", "text"]

    def test_parser_is_reusable(self):
        """Test the same parser handles several strings."""
        assert self.parser.parse("set<int>").name == "set"
        assert self.parser.parse("list<text>").name == "list"

    @pytest.mark.parametrize("text", ["list<>", "map<text,>", "<int>", "list<int", "list<int>>", "a b"])
    def test_syntax_errors(self, text):
        """Test malformed input raises ParseError."""
        with pytest.raises(ParseError):
            self.parser.parse(text)

    def test_empty(self):
        """Test empty input."""
        with pytest.raises(ParseError, match="Empty"):
            self.parser.parse("  ")
