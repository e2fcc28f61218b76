"""Filter expressions for collection queries.

A filter is a small predicate language over document fields:

    fileExtension == '.py'
    fileExtension in ['.ts', '.tsx'] and startLine == 1

The parser turns the text into a tree of predicates which is then compiled
to a parameterised SQL fragment. Text the grammar does not recognise is
kept as a Raw clause and passed through verbatim. Statement separators are
removed before parsing, so they can never reach the database.
"""

import re
from dataclasses import dataclass

# Filter field alias -> column name
FIELD_COLUMNS: dict[str, str] = {
    "id": "id",
    "relativePath": "relative_path",
    "startLine": "start_line",
    "endLine": "end_line",
    "fileExtension": "file_extension",
    "isDefinition": "is_definition",
}
FIELD_COLUMNS.update({column: column for column in list(FIELD_COLUMNS.values())})

STATEMENT_SEPARATORS = ";"

Value = str | int | float


@dataclass(frozen=True)
class Comparison:
    field: str
    value: Value


@dataclass(frozen=True)
class Membership:
    field: str
    values: tuple[Value, ...]


@dataclass(frozen=True)
class Conjunction:
    terms: tuple["Comparison | Membership", ...]


@dataclass(frozen=True)
class Raw:
    text: str


Predicate = Comparison | Membership | Conjunction | Raw


class FilterSyntaxError(ValueError):
    """Raised by the parser when text does not match the filter grammar."""

    pass


_TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<string>'[^']*'|"[^"]*")
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op>==|&&|\[|\]|,)
      | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
    )""",
    re.VERBOSE,
)


def strip_separators(text: str) -> str:
    """Remove statement separators from filter text."""
    return "".join(ch for ch in text if ch not in STATEMENT_SEPARATORS)


def tokenize(text: str) -> list[tuple[str, str]]:
    """Split filter text into (kind, value) tokens."""
    tokens: list[tuple[str, str]] = []
    position = 0
    text = text.rstrip()
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if match is None or match.end() == position:
            raise FilterSyntaxError(f"Unexpected input at position {position}: {text[position:]!r}")
        kind = match.lastgroup or ""
        tokens.append((kind, match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, str]]):
        self.tokens = tokens
        self.index = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise FilterSyntaxError("Unexpected end of filter")
        self.index += 1
        return token

    def expect(self, value: str) -> None:
        kind, text = self.take()
        if text != value:
            raise FilterSyntaxError(f"Expected {value!r}, got {text!r}")

    def parse(self) -> Comparison | Membership | Conjunction:
        terms = [self.term()]
        while self.peek() is not None:
            kind, text = self.take()
            if not (text == "&&" or (kind == "word" and text.lower() == "and")):
                raise FilterSyntaxError(f"Expected 'and', got {text!r}")
            terms.append(self.term())
        if len(terms) == 1:
            return terms[0]
        return Conjunction(tuple(terms))

    def term(self) -> Comparison | Membership:
        kind, field = self.take()
        if kind != "word" or field not in FIELD_COLUMNS:
            raise FilterSyntaxError(f"Unknown field {field!r}")
        kind, op = self.take()
        if op == "==":
            return Comparison(field, self.literal())
        if kind == "word" and op.lower() == "in":
            self.expect("[")
            values = [self.literal()]
            while True:
                _, text = self.take()
                if text == "]":
                    break
                if text != ",":
                    raise FilterSyntaxError(f"Expected ',' or ']', got {text!r}")
                values.append(self.literal())
            return Membership(field, tuple(values))
        raise FilterSyntaxError(f"Unsupported operator {op!r}")

    def literal(self) -> Value:
        kind, text = self.take()
        if kind == "string":
            return text[1:-1]
        if kind == "number":
            return float(text) if "." in text else int(text)
        if kind == "word" and text.lower() in ("true", "false"):
            return 1 if text.lower() == "true" else 0
        raise FilterSyntaxError(f"Expected a literal, got {text!r}")


def parse_filter(text: str | None) -> Predicate | None:
    """Parse filter text into a predicate tree; None means no filter."""
    if text is None:
        return None
    cleaned = strip_separators(text).strip()
    if not cleaned:
        return None
    try:
        return _Parser(tokenize(cleaned)).parse()
    except FilterSyntaxError:
        return Raw(cleaned)


def compile_predicate(predicate: Predicate | None) -> tuple[str, list]:
    """Compile a predicate tree into (sql_fragment, params) for SQLite."""
    if predicate is None:
        return "1=1", []
    if isinstance(predicate, Raw):
        return f"({predicate.text})", []
    if isinstance(predicate, Comparison):
        return f"{FIELD_COLUMNS[predicate.field]} = ?", [predicate.value]
    if isinstance(predicate, Membership):
        placeholders = ", ".join("?" for _ in predicate.values)
        return f"{FIELD_COLUMNS[predicate.field]} IN ({placeholders})", list(predicate.values)

    parts: list[str] = []
    params: list = []
    for term in predicate.terms:
        sql, term_params = compile_predicate(term)
        parts.append(sql)
        params.extend(term_params)
    return " AND ".join(parts), params


def compile_filter(text: str | None) -> tuple[str, list]:
    """Parse and compile filter text in one step."""
    return compile_predicate(parse_filter(text))


def extension_filter(extensions: list[str]) -> str | None:
    """Build a filter expression restricting results to file extensions."""
    if not extensions:
        return None
    quoted = ", ".join(f"'{ext}'" for ext in extensions)
    return f"fileExtension in [{quoted}]"
