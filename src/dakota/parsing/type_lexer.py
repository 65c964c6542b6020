"""Lexer for CQL type strings."""

import ply.lex as lex

from dakota.errors import ParseError


class TypeLexer:
    """Lexer for tokenizing CQL type strings such as ``map<text, frozen<list<int>>>``."""

    # Token list
    tokens = [
        "IDENTIFIER",
        "LT",
        "GT",
        "COMMA",
    ]

    # Simple tokens
    t_LT = r"<"
    t_GT = r">"
    t_COMMA = r","

    # Ignored characters (spaces, tabs, and newlines)
    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r'"(?:[^"]|"")+"|[a-zA-Z_][a-zA-Z0-9_]*(?:\.[a-zA-Z_][a-zA-Z0-9_]*)?'
        # Quoted identifiers keep their case; doubled quotes are escapes
        if t.value.startswith('"'):
            t.value = t.value[1:-1].replace('""', '"')
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise ParseError(f"Illegal character '{t.value[0]}' at position {t.lexpos}")

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        """Set the input string to tokenize."""
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        """Return the next token."""
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
