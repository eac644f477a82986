"""Free-text query syntax and the compiler that turns it into a query plan.

Supported syntax (a subset of the classic Lucene query parser):

- bare terms: ``kotlin coroutines``
- phrases with optional slop: ``"structured concurrency"``, ``"kotlin flow"~2``
- prefix and wildcard terms: ``prog*``, ``te?t`` (no leading wildcard)
- fuzzy terms: ``kotlin~``, ``kotlin~1`` (at most 2 edits)
- boosts: ``kotlin^2``, ``"a b"^0.5``, ``(a b)^3``
- required / prohibited: ``+kotlin -java``, ``!java``
- boolean operators: ``AND`` / ``OR`` / ``NOT`` and ``&&`` / ``||``
- grouping with parentheses, field scoping: ``title:kotlin``, ``tags:(a b)``
- backslash escapes for any special character: ``c\\+\\+``

The default operator is OR. An unscoped term is searched in every text field
of the schema with that field's weight and the per-field scores add up.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
import logging

from docsearch_server.domain.errors import QuerySyntaxError
from docsearch_server.search.analyzers import Analyzer, get_analyzer
from docsearch_server.search.fuzzy import MAX_EDIT_DISTANCE
from docsearch_server.search.query import (
    BooleanClause,
    BooleanQuery,
    CompiledQuery,
    FuzzyQuery,
    Occur,
    PhraseQuery,
    PrefixQuery,
    Query,
    TermQuery,
    WildcardQuery,
    with_boost,
)
from docsearch_server.search.schema import Schema, TextField, create_document_schema


logger = logging.getLogger(__name__)

_WHITESPACE = frozenset(" \t\r\n　")
# Characters that end a bare term; "+", "-" and "!" only act as operators at the start of one.
_TERM_BREAK = frozenset('()":^~[]{}/') | _WHITESPACE
_UNSUPPORTED = {
    "[": "range queries are not supported",
    "]": "range queries are not supported",
    "{": "range queries are not supported",
    "}": "range queries are not supported",
    "/": "regular expression queries are not supported",
}


class TokenKind(str, Enum):
    TERM = "term"
    PHRASE = "phrase"
    LPAREN = "("
    RPAREN = ")"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    PLUS = "+"
    MINUS = "-"
    COLON = ":"
    CARET = "^"
    TILDE = "~"


@dataclass(frozen=True)
class QueryToken:
    kind: TokenKind
    position: int
    text: str = ""
    wildcards: tuple[int, ...] = ()


class QueryLexer:
    """Splits query text into tokens, resolving backslash escapes."""

    def __init__(self, query: str) -> None:
        self.query = query
        self._pos = 0

    def error(self, reason: str, position: int | None = None) -> QuerySyntaxError:
        return QuerySyntaxError(self.query, reason, self._pos if position is None else position)

    def tokenize(self) -> list[QueryToken]:
        tokens: list[QueryToken] = []
        text = self.query
        while self._pos < len(text):
            char = text[self._pos]
            start = self._pos
            if char in _WHITESPACE:
                self._pos += 1
            elif char in _UNSUPPORTED:
                raise self.error(_UNSUPPORTED[char])
            elif char == "(":
                tokens.append(QueryToken(TokenKind.LPAREN, start))
                self._pos += 1
            elif char == ")":
                tokens.append(QueryToken(TokenKind.RPAREN, start))
                self._pos += 1
            elif char == ":":
                tokens.append(QueryToken(TokenKind.COLON, start))
                self._pos += 1
            elif char == '"':
                tokens.append(self._read_phrase())
            elif char == "^":
                self._pos += 1
                number = self._read_number()
                if not number:
                    raise self.error("'^' must be followed by a boost value", start)
                tokens.append(QueryToken(TokenKind.CARET, start, number))
            elif char == "~":
                self._pos += 1
                tokens.append(QueryToken(TokenKind.TILDE, start, self._read_number()))
            elif text.startswith("&&", start):
                tokens.append(QueryToken(TokenKind.AND, start, "&&"))
                self._pos += 2
            elif text.startswith("||", start):
                tokens.append(QueryToken(TokenKind.OR, start, "||"))
                self._pos += 2
            elif char == "+":
                tokens.append(QueryToken(TokenKind.PLUS, start))
                self._pos += 1
            elif char in "-!":
                kind = TokenKind.MINUS if char == "-" else TokenKind.NOT
                tokens.append(QueryToken(kind, start, char))
                self._pos += 1
            else:
                tokens.append(self._read_term())
        return tokens

    def _read_number(self) -> str:
        text = self.query
        start = self._pos
        while self._pos < len(text) and (text[self._pos].isdigit() or text[self._pos] == "."):
            self._pos += 1
        return text[start : self._pos]

    def _read_phrase(self) -> QueryToken:
        text = self.query
        start = self._pos
        self._pos += 1
        chars: list[str] = []
        while self._pos < len(text):
            char = text[self._pos]
            if char == "\\":
                if self._pos + 1 >= len(text):
                    raise self.error("dangling escape character")
                chars.append(text[self._pos + 1])
                self._pos += 2
                continue
            if char == '"':
                self._pos += 1
                return QueryToken(TokenKind.PHRASE, start, "".join(chars))
            chars.append(char)
            self._pos += 1
        raise self.error("unterminated phrase", start)

    def _read_term(self) -> QueryToken:
        text = self.query
        start = self._pos
        chars: list[str] = []
        wildcards: list[int] = []
        escaped_any = False
        while self._pos < len(text) and text[self._pos] not in _TERM_BREAK:
            char = text[self._pos]
            if char == "\\":
                if self._pos + 1 >= len(text):
                    raise self.error("dangling escape character")
                chars.append(text[self._pos + 1])
                escaped_any = True
                self._pos += 2
                continue
            if char in "*?":
                wildcards.append(len(chars))
            chars.append(char)
            self._pos += 1
        value = "".join(chars)
        if not escaped_any and value in ("AND", "OR", "NOT"):
            return QueryToken(TokenKind(value), start, value)
        return QueryToken(TokenKind.TERM, start, value, tuple(wildcards))


# -- syntax tree -------------------------------------------------------------


@dataclass
class ParsedTerm:
    text: str
    position: int
    field: str | None = None
    wildcards: tuple[int, ...] = ()
    fuzzy: bool = False
    max_edits: int | None = None
    boost: float = 1.0


@dataclass
class ParsedPhrase:
    text: str
    position: int
    field: str | None = None
    slop: int = 0
    boost: float = 1.0


@dataclass
class ParsedClause:
    occur: Occur
    node: ParsedTerm | ParsedPhrase | ParsedGroup


@dataclass
class ParsedGroup:
    position: int
    clauses: list[ParsedClause] = field(default_factory=list)
    field: str | None = None
    boost: float = 1.0


class QueryParser:
    """Recursive-descent parser producing a :class:`ParsedGroup`.

    Grammar::

        query  := clause ((AND | OR)? clause)*
        clause := (+ | - | ! | NOT)? (field ':')? (term | phrase | '(' query ')') ('~' n?)? ('^' n)?
    """

    def __init__(self, query: str, searchable_fields: Sequence[str]) -> None:
        self.query = query
        self.searchable_fields = frozenset(searchable_fields)
        self._tokens: list[QueryToken] = []
        self._index = 0

    def error(self, reason: str, position: int | None = None) -> QuerySyntaxError:
        return QuerySyntaxError(self.query, reason, position)

    def parse(self) -> ParsedGroup:
        if not self.query or not self.query.strip():
            raise self.error("query is empty")
        self._tokens = QueryLexer(self.query).tokenize()
        self._index = 0
        group = self._parse_query(position=0)
        token = self._peek()
        if token is not None:
            if token.kind == TokenKind.RPAREN:
                raise self.error("unbalanced parenthesis", token.position)
            raise self.error(f"unexpected '{token.text or token.kind.value}'", token.position)
        if not group.clauses:
            raise self.error("query is empty")
        return group

    def _peek(self) -> QueryToken | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _advance(self) -> QueryToken:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _parse_query(self, position: int, field_name: str | None = None) -> ParsedGroup:
        group = ParsedGroup(position=position, field=field_name)
        conjunction: TokenKind | None = None
        while True:
            token = self._peek()
            if token is None or token.kind == TokenKind.RPAREN:
                if conjunction is not None:
                    raise self.error(f"'{conjunction.value}' is missing its right operand", position)
                return group
            if token.kind in (TokenKind.AND, TokenKind.OR):
                if not group.clauses:
                    raise self.error(f"'{token.text}' is missing its left operand", token.position)
                if conjunction is not None:
                    raise self.error(f"unexpected '{token.text}'", token.position)
                conjunction = TokenKind.AND if token.kind == TokenKind.AND else TokenKind.OR
                position = token.position
                self._advance()
                continue

            modifier: TokenKind | None = None
            if token.kind in (TokenKind.PLUS, TokenKind.MINUS, TokenKind.NOT):
                modifier = TokenKind.MINUS if token.kind == TokenKind.NOT else token.kind
                self._advance()
                following = self._peek()
                if following is None or following.kind in (TokenKind.RPAREN, TokenKind.AND, TokenKind.OR):
                    raise self.error(f"'{token.text or token.kind.value}' must be followed by a clause", token.position)

            node = self._parse_clause(group.field)
            self._add_clause(group, conjunction, modifier, node)
            conjunction = None

    @staticmethod
    def _add_clause(
        group: ParsedGroup,
        conjunction: TokenKind | None,
        modifier: TokenKind | None,
        node: ParsedTerm | ParsedPhrase | ParsedGroup,
    ) -> None:
        # "a AND b" makes the left operand required too, unless it is prohibited.
        if group.clauses and conjunction == TokenKind.AND and group.clauses[-1].occur != Occur.MUST_NOT:
            group.clauses[-1].occur = Occur.MUST

        if modifier == TokenKind.MINUS:
            occur = Occur.MUST_NOT
        elif modifier == TokenKind.PLUS or conjunction == TokenKind.AND:
            occur = Occur.MUST
        else:
            occur = Occur.SHOULD
        group.clauses.append(ParsedClause(occur=occur, node=node))

    def _parse_clause(self, inherited_field: str | None) -> ParsedTerm | ParsedPhrase | ParsedGroup:
        token = self._peek()
        if token is None:
            raise self.error("unexpected end of query", len(self.query))

        field_name = inherited_field
        if token.kind == TokenKind.COLON:
            raise self.error("':' must follow a field name", token.position)
        if token.kind == TokenKind.TERM and self._lookahead_is_colon():
            field_name = self._parse_field(token)
            colon_position = self._tokens[self._index - 1].position
            token = self._peek()
            if token is None or token.kind not in (TokenKind.TERM, TokenKind.PHRASE, TokenKind.LPAREN):
                raise self.error("field name must be followed by a term, phrase or group", colon_position)

        self._advance()
        node: ParsedTerm | ParsedPhrase | ParsedGroup
        if token.kind == TokenKind.TERM:
            if token.wildcards and token.wildcards[0] == 0:
                raise self.error("leading wildcards are not allowed", token.position)
            node = ParsedTerm(text=token.text, position=token.position, field=field_name, wildcards=token.wildcards)
        elif token.kind == TokenKind.PHRASE:
            node = ParsedPhrase(text=token.text, position=token.position, field=field_name)
        elif token.kind == TokenKind.LPAREN:
            node = self._parse_query(position=token.position, field_name=field_name)
            closing = self._peek()
            if closing is None or closing.kind != TokenKind.RPAREN:
                raise self.error("unbalanced parenthesis", token.position)
            self._advance()
            if not node.clauses:
                raise self.error("empty group", token.position)
        else:
            raise self.error(f"unexpected '{token.text or token.kind.value}'", token.position)

        self._parse_modifiers(node)
        return node

    def _lookahead_is_colon(self) -> bool:
        following = self._tokens[self._index + 1] if self._index + 1 < len(self._tokens) else None
        return following is not None and following.kind == TokenKind.COLON

    def _parse_field(self, token: QueryToken) -> str:
        name = token.text
        if token.wildcards or name not in self.searchable_fields:
            allowed = ", ".join(sorted(self.searchable_fields))
            raise self.error(f"unknown field '{name}' (searchable fields: {allowed})", token.position)
        self._advance()
        self._advance()
        return name

    def _parse_modifiers(self, node: ParsedTerm | ParsedPhrase | ParsedGroup) -> None:
        seen: set[TokenKind] = set()
        while (token := self._peek()) is not None and token.kind in (TokenKind.TILDE, TokenKind.CARET):
            self._advance()
            if token.kind in seen:
                raise self.error(f"duplicate '{token.kind.value}'", token.position)
            seen.add(token.kind)
            if token.kind == TokenKind.CARET:
                node.boost = self._parse_boost(token)
            elif isinstance(node, ParsedTerm):
                if node.wildcards:
                    raise self.error("a wildcard term cannot be fuzzy", token.position)
                node.fuzzy = True
                node.max_edits = self._parse_edits(token)
            elif isinstance(node, ParsedPhrase):
                node.slop = self._parse_slop(token)
            else:
                raise self.error("'~' cannot be applied to a group", token.position)

    def _parse_boost(self, token: QueryToken) -> float:
        try:
            boost = float(token.text)
        except ValueError:
            raise self.error(f"invalid boost '{token.text}'", token.position) from None
        return boost

    def _parse_edits(self, token: QueryToken) -> int | None:
        if not token.text:
            return None
        try:
            value = float(token.text)
        except ValueError:
            raise self.error(f"invalid fuzzy distance '{token.text}'", token.position) from None
        if value != int(value) or not 0 <= value <= MAX_EDIT_DISTANCE:
            raise self.error(f"fuzzy distance must be an integer between 0 and {MAX_EDIT_DISTANCE}", token.position)
        return int(value)

    def _parse_slop(self, token: QueryToken) -> int:
        if not token.text:
            return 0
        try:
            value = float(token.text)
        except ValueError:
            raise self.error(f"invalid phrase slop '{token.text}'", token.position) from None
        if value != int(value) or value < 0:
            raise self.error("phrase slop must be a non-negative integer", token.position)
        return int(value)


# -- plan building -----------------------------------------------------------


class QueryCompiler:
    """Compile free text plus structured options into a :class:`CompiledQuery`.

    Args:
        schema: Index schema; its text fields and their boosts drive the
            multi-field expansion of unscoped terms.
        max_limit: Upper bound applied to the requested result count.
    """

    def __init__(self, schema: Schema | None = None, *, max_limit: int = 1000) -> None:
        self.schema = schema or create_document_schema()
        self.max_limit = max_limit
        self._text_fields: list[TextField] = self.schema.text_fields
        self._analyzers: dict[str, Analyzer] = {f.name: get_analyzer(f.analyzer_name) for f in self._text_fields}

    @property
    def searchable_fields(self) -> list[str]:
        return [f.name for f in self._text_fields]

    def compile(
        self,
        text: str,
        category: str | None = None,
        limit: int = 10,
        highlight: bool = False,
    ) -> CompiledQuery:
        """Compile one search request.

        Raises:
            QuerySyntaxError: ``text`` is malformed or contains nothing searchable.
            ValueError: ``limit`` is below 1.
        """
        if limit < 1:
            msg = f"limit must be at least 1, got {limit}"
            raise ValueError(msg)

        parsed = QueryParser(text, self.searchable_fields).parse()
        text_query = self._build_group(text, parsed)
        if text_query is None:
            raise QuerySyntaxError(text, "query contains no searchable terms")

        query: Query = text_query
        if category is not None:
            query = BooleanQuery(
                clauses=(
                    BooleanClause(text_query, Occur.MUST),
                    BooleanClause(TermQuery("category", category), Occur.FILTER),
                )
            )
        return CompiledQuery(
            raw=text,
            query=query,
            text_query=text_query,
            category=category,
            limit=min(limit, self.max_limit),
            highlight=highlight,
        )

    def _fields_for(self, field_name: str | None) -> list[TextField]:
        if field_name is None:
            return self._text_fields
        return [f for f in self._text_fields if f.name == field_name]

    def _build_node(self, raw: str, node: ParsedTerm | ParsedPhrase | ParsedGroup) -> Query | None:
        if isinstance(node, ParsedGroup):
            built = self._build_group(raw, node)
        elif isinstance(node, ParsedPhrase):
            built = self._expand(node.field, lambda f: self._phrase_for_field(f, node))
        else:
            built = self._expand(node.field, lambda f: self._term_for_field(f, node))
        if built is None:
            return None
        return with_boost(built, node.boost)

    def _build_group(self, raw: str, group: ParsedGroup) -> Query | None:
        clauses: list[BooleanClause] = []
        for clause in group.clauses:
            built = self._build_node(raw, clause.node)
            if built is not None:
                clauses.append(BooleanClause(built, clause.occur))
        if not clauses:
            return None
        if len(clauses) == 1 and clauses[0].occur in (Occur.SHOULD, Occur.MUST):
            return clauses[0].query
        return BooleanQuery(clauses=tuple(clauses))

    def _expand(self, field_name: str | None, build) -> Query | None:
        """Build the clause for each target field; several fields become a weighted disjunction."""
        per_field: list[Query] = []
        for text_field in self._fields_for(field_name):
            built = build(text_field)
            if built is not None:
                per_field.append(with_boost(built, text_field.boost))
        if not per_field:
            return None
        if len(per_field) == 1:
            return per_field[0]
        return BooleanQuery(clauses=tuple(BooleanClause(q, Occur.SHOULD) for q in per_field))

    def _term_for_field(self, text_field: TextField, node: ParsedTerm) -> Query | None:
        if node.wildcards:
            lowered = node.text.lower()
            if len(node.wildcards) == 1 and node.wildcards[0] == len(node.text) - 1 and node.text.endswith("*"):
                return PrefixQuery(text_field.name, lowered[:-1])
            return WildcardQuery(text_field.name, _wildcard_pattern(node.text, node.wildcards))

        tokens = self._analyzers[text_field.name](node.text)
        if not tokens:
            return None
        if node.fuzzy:
            return self._join([FuzzyQuery(text_field.name, t.text, node.max_edits) for t in tokens])
        return self._join([TermQuery(text_field.name, t.text) for t in tokens])

    def _phrase_for_field(self, text_field: TextField, node: ParsedPhrase) -> Query | None:
        tokens = self._analyzers[text_field.name](node.text)
        if not tokens:
            return None
        if len(tokens) == 1:
            return TermQuery(text_field.name, tokens[0].text)
        return PhraseQuery(text_field.name, tuple(t.text for t in tokens), slop=node.slop)

    @staticmethod
    def _join(queries: list[Query]) -> Query:
        # A bare term that analyzes to several tokens ("e-mail") matches any of them.
        if len(queries) == 1:
            return queries[0]
        return BooleanQuery(clauses=tuple(BooleanClause(q, Occur.SHOULD) for q in queries))


def _wildcard_pattern(text: str, wildcards: tuple[int, ...]) -> str:
    """Lowercase a wildcard term, bracketing escaped ``*``, ``?`` and ``[`` so they match literally."""
    parts: list[str] = []
    for index, char in enumerate(text):
        if index in wildcards:
            parts.append(char)
        elif char in "*?[":
            parts.append(f"[{char}]")
        else:
            parts.append(char.lower())
    return "".join(parts)
