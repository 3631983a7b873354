"""Read-only screening of candidate query text.

Two independent phases must both pass: a lexical scan for write-intent
words and a structural check that the text is one of the three query shapes
the interpreter understands. No data is touched here.
"""
import logging
import re

from stockchat.catalog import SchemaCatalog
from stockchat.errors import LiteralSyntaxError, UnauthorizedOperation
from stockchat.literal import (
    READ_STAGES,
    Array,
    Document,
    Scalar,
    check_operators,
    find_closing,
    parse_arguments,
    parse_literal,
    stage_names,
)
from stockchat.queries import ValidationVerdict

logger = logging.getLogger(__name__)

# Forbidden keywords (write intent)
FORBIDDEN_KEYWORDS = (
    "insert", "update", "delete", "drop", "truncate", "alter",
    "create", "grant", "revoke", "exec", "execute",
)

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)

# Mongo shell write helpers, e.g. db.products.insertOne(...)
_WRITE_CALL_RE = re.compile(
    r"\.\s*(insertOne|insertMany|updateOne|updateMany|deleteOne|deleteMany|remove|"
    r"replaceOne|findOneAndUpdate|findOneAndReplace|findOneAndDelete|findAndModify|"
    r"bulkWrite|save|dropDatabase|renameCollection|createIndex|createCollection)\s*\(",
    re.IGNORECASE,
)

# Materialize/replace stages, caught even if quoted or spread over lines
_WRITE_STAGE_RE = re.compile(r"\$(out|merge|replaceRoot|replaceWith)\b")

_LEADING_COMMENTS_RE = re.compile(r"^(?:\s*(?://[^\n]*(?:\n|$)|/\*.*?\*/))*\s*", re.DOTALL)
CALL_RE = re.compile(r"^(?:db\s*\.\s*([A-Za-z_][\w]*)\s*\.\s*)?(find|aggregate)\s*\(", re.IGNORECASE)
_CHAIN_RE = re.compile(r"\.\s*(sort|limit|toArray|pretty)\s*\(")
_SELECT_RE = re.compile(r"^select\b", re.IGNORECASE)


def strip_leading_comments(text: str) -> str:
    return _LEADING_COMMENTS_RE.sub("", text, count=1)


class QuerySafetyValidator:
    """Defense-in-depth check independent of the translator's instructions."""

    def __init__(self, catalog: SchemaCatalog):
        self.catalog = catalog

    def check(self, text: str) -> ValidationVerdict:
        if not text or not text.strip():
            return ValidationVerdict(False, "Empty query")

        reason = self._lexical(text) or self._structural(text.strip().rstrip(";").strip())
        if reason:
            return ValidationVerdict(False, reason)
        return ValidationVerdict(True)

    def validate(self, text: str) -> str:
        """Return the normalized query text or raise UnauthorizedOperation."""
        verdict = self.check(text)
        if not verdict.allowed:
            logger.warning(f"Query rejected: {verdict.reason}")
            raise UnauthorizedOperation(verdict.reason)
        return text.strip().rstrip(";").strip()

    # ------------------------------------------------------------------
    # Lexical phase
    # ------------------------------------------------------------------

    def _lexical(self, text: str) -> str | None:
        match = _FORBIDDEN_RE.search(text)
        if match:
            return f"Forbidden keyword detected: {match.group(1).upper()}"
        match = _WRITE_CALL_RE.search(text)
        if match:
            return f"Write method detected: {match.group(1)}"
        return None

    # ------------------------------------------------------------------
    # Structural phase
    # ------------------------------------------------------------------

    def _structural(self, text: str) -> str | None:
        match = _WRITE_STAGE_RE.search(text)
        if match:
            return f"Write stage detected: ${match.group(1)}"

        body = strip_leading_comments(text)

        if body.startswith("[") and body.endswith("]"):
            return self._check_pipeline(body)

        call = CALL_RE.match(body)
        if call:
            return self._check_call(body, call)

        if _SELECT_RE.match(body):
            if ";" in body:
                return "Multiple statements not allowed"
            return None

        return "Query is not a pipeline, a find/aggregate call, or a SELECT"

    def _check_pipeline(self, text: str) -> str | None:
        try:
            node = parse_literal(text)
            names = stage_names(node)
            for name in names:
                if name not in READ_STAGES:
                    return f"Stage '{name}' is not a read stage"
            check_operators(node, stages=True)
        except LiteralSyntaxError as e:
            return f"Malformed pipeline: {e}"
        return self._check_lookups(node)

    def _check_call(self, text: str, call: re.Match) -> str | None:
        open_idx = call.end() - 1
        close_idx = find_closing(text, open_idx)
        if close_idx == -1:
            return "Unbalanced parentheses in query call"

        chain = text[close_idx + 1:].strip()
        while chain:
            link = _CHAIN_RE.match(chain)
            if not link:
                return f"Unsupported call chain: {chain[:40]}"
            end = find_closing(chain, link.end() - 1)
            if end == -1:
                return "Unbalanced parentheses in call chain"
            chain = chain[end + 1:].strip()

        args = text[open_idx + 1:close_idx].strip()
        if call.group(2).lower() == "aggregate":
            return self._check_pipeline(args)

        try:
            nodes = parse_arguments(args)
        except LiteralSyntaxError as e:
            return f"Malformed find arguments: {e}"
        if len(nodes) > 2:
            return "find() takes at most a filter and a projection"
        for node in nodes:
            if not isinstance(node, Document):
                return "find() arguments must be documents"
            try:
                check_operators(node)
            except LiteralSyntaxError as e:
                return str(e)
        return None

    def _check_lookups(self, node) -> str | None:
        """Joins may only reach collections declared in the catalog."""
        if isinstance(node, Array):
            for item in node.items:
                reason = self._check_lookups(item)
                if reason:
                    return reason
        elif isinstance(node, Document):
            for key, child in node.fields:
                if key in ("$lookup", "$graphLookup") and isinstance(child, Document):
                    target = dict(child.fields).get("from")
                    if not isinstance(target, Scalar) or not isinstance(target.value, str):
                        return f"{key} needs a literal 'from' collection"
                    if self.catalog.resolve_collection(target.value) is None:
                        return f"{key} into undeclared collection '{target.value}'"
                reason = self._check_lookups(child)
                if reason:
                    return reason
        return None
