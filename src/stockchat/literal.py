"""Restricted parser for Mongo shell style literals.

Model output such as ``[{ $match: { name: /cable/i } }]`` is read into a
small tagged AST and lowered into plain Python documents. Nothing is ever
evaluated: the grammar only knows documents, arrays, strings, numbers,
booleans, null, regex literals and a handful of constructors (``new Date``,
``ISODate``, ``ObjectId``). Every ``$`` key must appear in a fixed whitelist.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from bson import ObjectId
from bson.errors import InvalidId

from stockchat.errors import LiteralSyntaxError

# Stages that only read
READ_STAGES = frozenset({
    "$match", "$group", "$project", "$sort", "$limit", "$skip", "$lookup",
    "$unwind", "$count", "$addFields", "$facet", "$bucket", "$sortByCount",
    "$sample", "$graphLookup",
})

# Stages that materialize or replace documents
WRITE_STAGES = frozenset({"$out", "$merge", "$replaceRoot", "$replaceWith"})

OPERATORS = frozenset({
    # query
    "$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$and", "$or",
    "$nor", "$not", "$exists", "$type", "$regex", "$options", "$expr",
    "$elemMatch", "$size", "$all", "$mod",
    # accumulators
    "$sum", "$avg", "$min", "$max", "$first", "$last", "$push", "$addToSet",
    # expressions
    "$add", "$subtract", "$multiply", "$divide", "$round", "$abs", "$ceil",
    "$floor", "$trunc", "$concat", "$toLower", "$toUpper", "$substr",
    "$substrCP", "$strLenCP", "$toString", "$toInt", "$toDouble", "$cmp",
    "$cond", "$ifNull", "$switch", "$arrayElemAt", "$filter", "$map", "$let",
    "$literal", "$dateToString", "$year", "$month", "$dayOfMonth",
    "$dayOfWeek", "$week", "$hour", "$isArray",
})

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}
_NUMBER_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_$][\w$.]*")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "0": "\0"}


# ============================================================================
# AST
# ============================================================================

@dataclass(frozen=True)
class Scalar:
    value: Union[str, int, float, bool, None]


@dataclass(frozen=True)
class Pattern:
    source: str
    flags: str = ""


@dataclass(frozen=True)
class Timestamp:
    """A date constructor; ``value`` is None for ``new Date()`` (now)."""
    value: datetime | None


@dataclass(frozen=True)
class Identifier:
    value: str


@dataclass(frozen=True)
class Array:
    items: tuple


@dataclass(frozen=True)
class Document:
    fields: tuple

    def keys(self) -> list[str]:
        return [key for key, _ in self.fields]


Node = Union[Scalar, Pattern, Timestamp, Identifier, Array, Document]


# ============================================================================
# Parser
# ============================================================================

class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message: str) -> LiteralSyntaxError:
        return LiteralSyntaxError(message, self.pos)

    def skip(self) -> None:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch.isspace():
                self.pos += 1
            elif text.startswith("//", self.pos):
                end = text.find("\n", self.pos)
                self.pos = len(text) if end == -1 else end + 1
            elif text.startswith("/*", self.pos):
                end = text.find("*/", self.pos + 2)
                if end == -1:
                    raise self.error("Unterminated comment")
                self.pos = end + 2
            else:
                break

    def peek(self) -> str:
        self.skip()
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def expect(self, ch: str) -> None:
        if self.peek() != ch:
            found = self.text[self.pos:self.pos + 1] or "end of input"
            raise self.error(f"Expected '{ch}' but found '{found}'")
        self.pos += 1

    def at_end(self) -> bool:
        return self.peek() == ""

    def value(self) -> Node:
        ch = self.peek()
        if ch == "{":
            return self.document()
        if ch == "[":
            return self.array()
        if ch in ("'", '"'):
            return Scalar(self.string())
        if ch == "/":
            return self.regex()
        if ch and (ch.isdigit() or ch in "-."):
            return self.number()
        if ch and (ch.isalpha() or ch in "_$"):
            return self.word()
        raise self.error(f"Unexpected character '{ch or 'end of input'}'")

    def document(self) -> Document:
        self.expect("{")
        fields = []
        while self.peek() != "}":
            key = self.key()
            self.expect(":")
            fields.append((key, self.value()))
            if self.peek() == ",":
                self.pos += 1
                continue
            if self.peek() != "}":
                raise self.error("Expected ',' or '}' in document")
        self.pos += 1
        return Document(tuple(fields))

    def array(self) -> Array:
        self.expect("[")
        items = []
        while self.peek() != "]":
            items.append(self.value())
            if self.peek() == ",":
                self.pos += 1
                continue
            if self.peek() != "]":
                raise self.error("Expected ',' or ']' in array")
        self.pos += 1
        return Array(tuple(items))

    def key(self) -> str:
        ch = self.peek()
        if ch in ("'", '"'):
            return self.string()
        match = _IDENT_RE.match(self.text, self.pos)
        if not match:
            raise self.error("Expected a document key")
        self.pos = match.end()
        return match.group(0)

    def string(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        out = []
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == quote:
                self.pos += 1
                return "".join(out)
            if ch == "\\":
                self.pos += 1
                if self.pos >= len(text):
                    break
                esc = text[self.pos]
                if esc == "u":
                    digits = text[self.pos + 1:self.pos + 5]
                    if len(digits) != 4 or not all(c in "0123456789abcdefABCDEF" for c in digits):
                        raise self.error("Invalid unicode escape")
                    out.append(chr(int(digits, 16)))
                    self.pos += 5
                    continue
                out.append(_ESCAPES.get(esc, esc))
                self.pos += 1
                continue
            out.append(ch)
            self.pos += 1
        raise self.error("Unterminated string")

    def number(self) -> Scalar:
        match = _NUMBER_RE.match(self.text, self.pos)
        if not match:
            raise self.error("Invalid number")
        self.pos = match.end()
        raw = match.group(0)
        if any(c in raw for c in ".eE"):
            return Scalar(float(raw))
        return Scalar(int(raw))

    def regex(self) -> Pattern:
        text = self.text
        start = self.pos
        self.pos += 1
        source = []
        in_class = False
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == "\\" and self.pos + 1 < len(text):
                source.append(text[self.pos:self.pos + 2])
                self.pos += 2
                continue
            if ch == "[":
                in_class = True
            elif ch == "]":
                in_class = False
            elif ch == "/" and not in_class:
                self.pos += 1
                flags_start = self.pos
                while self.pos < len(text) and text[self.pos].isalpha():
                    self.pos += 1
                flags = text[flags_start:self.pos]
                unknown = set(flags) - set(_REGEX_FLAGS)
                if unknown:
                    raise self.error(f"Unsupported regex flags '{''.join(sorted(unknown))}'")
                return Pattern("".join(source), flags)
            elif ch == "\n":
                break
            source.append(ch)
            self.pos += 1
        self.pos = start
        raise self.error("Unterminated regex literal")

    def word(self) -> Node:
        match = _IDENT_RE.match(self.text, self.pos)
        self.pos = match.end()
        word = match.group(0)
        if word == "true":
            return Scalar(True)
        if word == "false":
            return Scalar(False)
        if word in ("null", "undefined"):
            return Scalar(None)
        if word == "new":
            return self.constructor(self.key())
        if word in ("ISODate", "Date", "ObjectId"):
            return self.constructor(word)
        return Identifier(word)

    def constructor(self, name: str) -> Node:
        if name not in ("Date", "ISODate", "ObjectId"):
            raise self.error(f"Constructor '{name}' is not allowed")
        self.expect("(")
        arg = None
        if self.peek() != ")":
            node = self.value()
            if not isinstance(node, Scalar) or not isinstance(node.value, (str, int)):
                raise self.error(f"{name}() only accepts a literal argument")
            arg = node.value
        self.expect(")")

        if name == "ObjectId":
            try:
                return Scalar(ObjectId(arg))
            except (InvalidId, TypeError):
                raise self.error(f"Invalid ObjectId '{arg}'")
        if arg is None:
            return Timestamp(None)
        return Timestamp(_to_datetime(arg, self))


def _to_datetime(arg: Union[str, int], parser: _Parser) -> datetime:
    if isinstance(arg, int):
        return datetime.fromtimestamp(arg / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(arg.replace("Z", "+00:00"))
    except ValueError:
        raise parser.error(f"Invalid date '{arg}'")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_literal(text: str) -> Node:
    """Parse exactly one literal value; trailing content is an error."""
    parser = _Parser(text)
    node = parser.value()
    if not parser.at_end():
        raise parser.error("Unexpected trailing content")
    return node


def parse_arguments(text: str) -> list[Node]:
    """Parse a comma separated argument list such as ``{...}, {...}``."""
    parser = _Parser(text)
    args = []
    while not parser.at_end():
        args.append(parser.value())
        if parser.peek() == ",":
            parser.pos += 1
        elif not parser.at_end():
            raise parser.error("Expected ',' between arguments")
    return args


# ============================================================================
# Whitelist checks and lowering
# ============================================================================

def check_operators(node: Node, stages: bool = False) -> None:
    """Reject write stages anywhere and any ``$`` key outside the whitelist.

    ``stages`` is true while walking documents that are themselves pipeline
    stages, where read stage names are also accepted as keys.
    """
    if isinstance(node, Array):
        for item in node.items:
            check_operators(item, stages)
    elif isinstance(node, Document):
        for key, child in node.fields:
            if key in WRITE_STAGES:
                raise LiteralSyntaxError(f"Write stage '{key}' is not allowed")
            if key.startswith("$"):
                if key not in OPERATORS and not (stages and key in READ_STAGES):
                    raise LiteralSyntaxError(f"Operator '{key}' is not allowed")
            # $lookup and $facet embed sub-pipelines
            if key == "$facet" and isinstance(child, Document):
                for _, branch in child.fields:
                    check_operators(branch, stages=True)
            else:
                check_operators(child, stages=(key == "pipeline"))
    elif isinstance(node, Identifier):
        raise LiteralSyntaxError(f"Bare identifier '{node.value}' is not a value")


def stage_names(node: Node) -> list[str]:
    """Return the stage name of each pipeline element, validating the shape."""
    if not isinstance(node, Array):
        raise LiteralSyntaxError("Pipeline must be an array of stage documents")
    names = []
    for item in node.items:
        if not isinstance(item, Document) or len(item.fields) != 1:
            raise LiteralSyntaxError("Each pipeline stage must be a single-key document")
        names.append(item.fields[0][0])
    return names


def to_python(node: Node) -> Any:
    if isinstance(node, Scalar):
        return node.value
    if isinstance(node, Pattern):
        flags = 0
        for flag in node.flags:
            flags |= _REGEX_FLAGS[flag]
        try:
            return re.compile(node.source, flags)
        except re.error as e:
            raise LiteralSyntaxError(f"Invalid regex /{node.source}/: {e}")
    if isinstance(node, Timestamp):
        return node.value or datetime.now(timezone.utc)
    if isinstance(node, Array):
        return [to_python(item) for item in node.items]
    if isinstance(node, Document):
        return {key: to_python(child) for key, child in node.fields}
    raise LiteralSyntaxError(f"Cannot convert {type(node).__name__} to a value")


def parse_pipeline(text: str) -> list[dict]:
    """Parse a pipeline literal into an ordered list of stage documents."""
    node = parse_literal(text)
    if isinstance(node, Document):
        node = Array((node,))
    for name in stage_names(node):
        if name in WRITE_STAGES:
            raise LiteralSyntaxError(f"Write stage '{name}' is not allowed")
        if name not in READ_STAGES:
            raise LiteralSyntaxError(f"Unknown pipeline stage '{name}'")
    check_operators(node, stages=True)
    return to_python(node)


def parse_document(node: Node) -> dict:
    """Lower a filter or projection document after the operator check."""
    if not isinstance(node, Document):
        raise LiteralSyntaxError("Expected a document")
    check_operators(node)
    return to_python(node)


def find_closing(text: str, start: int) -> int:
    """Return the index of the bracket closing the one at ``start``, or -1.

    Brackets inside quoted strings are ignored.
    """
    pairs = {"[": "]", "(": ")", "{": "}"}
    stack = []
    quote = None
    i = start
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch in pairs:
            stack.append(pairs[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
            if not stack:
                return i
        elif ch in ")]}":
            return -1
        i += 1
    return -1
