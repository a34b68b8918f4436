"""Structured edits of JSON-with-comments text (tsconfig.json, jsconfig.json).

A key inside a document is addressed by a path of object keys, e.g.
``("compilerOptions", "paths", "@/*")``. :func:`set_value` rewrites only
the byte range of that value (or inserts a new member into the deepest
existing object), so comments, ordering and formatting elsewhere in the
file survive untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple


class PatchError(ValueError):
    """Raised when text cannot be tokenized or the key path cannot be edited."""


# ===================================================================
# Tokenizer
# ===================================================================

PUNCT = "{}[]:,"


@dataclass(frozen=True)
class Token:
    kind: str  # punct | string | literal | comment
    text: str
    start: int
    end: int


def tokenize(text: str, keep_comments: bool = False) -> Iterator[Token]:
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if text.startswith("//", i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            if keep_comments:
                yield Token("comment", text[i:end], i, end)
            i = end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise PatchError(f"Unterminated block comment at offset {i}")
            if keep_comments:
                yield Token("comment", text[i:end + 2], i, end + 2)
            i = end + 2
            continue
        if ch in PUNCT:
            yield Token("punct", ch, i, i + 1)
            i += 1
            continue
        if ch == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == "\\" else 1
            if j >= n:
                raise PatchError(f"Unterminated string at offset {i}")
            yield Token("string", text[i:j + 1], i, j + 1)
            i = j + 1
            continue
        j = i
        while j < n and not text[j].isspace() and text[j] not in PUNCT and not text.startswith(("//", "/*"), j):
            j += 1
        yield Token("literal", text[i:j], i, j)
        i = j


def parse_jsonc(text: str) -> Any:
    """Parse JSON that may contain comments and trailing commas."""
    tokens = list(tokenize(text))
    kept: List[str] = []
    for index, token in enumerate(tokens):
        if token.text == "," and index + 1 < len(tokens) and tokens[index + 1].text in ("}", "]"):
            continue
        kept.append(token.text)
    if not kept:
        raise PatchError("Empty document")
    try:
        return json.loads(" ".join(kept))
    except json.JSONDecodeError as exc:
        raise PatchError(str(exc)) from exc


# ===================================================================
# Span tree
# ===================================================================

@dataclass
class Node:
    kind: str  # object | array | scalar
    start: int
    end: int
    members: Dict[str, Tuple[Token, "Node"]] = field(default_factory=dict)
    last_member_end: Optional[int] = None
    trailing_comma_end: Optional[int] = None


class _SpanParser:
    def __init__(self, text: str) -> None:
        self.tokens = list(tokenize(text))
        self.pos = 0

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self, expected: Optional[str] = None) -> Token:
        token = self.peek()
        if token is None:
            raise PatchError("Unexpected end of document")
        if expected is not None and token.text != expected:
            raise PatchError(f"Expected '{expected}' at offset {token.start}, found '{token.text}'")
        self.pos += 1
        return token

    def value(self) -> Node:
        token = self.take()
        if token.text == "{":
            return self._object(token)
        if token.text == "[":
            return self._array(token)
        if token.kind in ("string", "literal"):
            return Node("scalar", token.start, token.end)
        raise PatchError(f"Unexpected '{token.text}' at offset {token.start}")

    def _object(self, opening: Token) -> Node:
        node = Node("object", opening.start, opening.end)
        while True:
            token = self.peek()
            if token is None:
                raise PatchError("Unterminated object")
            if token.text == "}":
                node.end = self.take().end
                return node
            key = self.take()
            if key.kind != "string":
                raise PatchError(f"Expected object key at offset {key.start}")
            self.take(":")
            child = self.value()
            node.members[json.loads(key.text)] = (key, child)
            node.last_member_end = child.end
            node.trailing_comma_end = None
            if self.peek() is not None and self.peek().text == ",":
                node.trailing_comma_end = self.take().end

    def _array(self, opening: Token) -> Node:
        while True:
            token = self.peek()
            if token is None:
                raise PatchError("Unterminated array")
            if token.text == "]":
                return Node("array", opening.start, self.take().end)
            self.value()
            if self.peek() is not None and self.peek().text == ",":
                self.take()


def parse_spans(text: str) -> Node:
    parser = _SpanParser(text)
    root = parser.value()
    if parser.peek() is not None:
        raise PatchError(f"Trailing content at offset {parser.peek().start}")
    return root


def find_value(text: str, path: Sequence[str]) -> Optional[Tuple[int, int]]:
    """Return the ``(start, end)`` offsets of the value at *path*, if present."""
    node = parse_spans(text)
    for key in path:
        if node.kind != "object" or key not in node.members:
            return None
        node = node.members[key][1]
    return node.start, node.end


# ===================================================================
# Editing
# ===================================================================

def _line_indent(text: str, offset: int) -> str:
    line_start = text.rfind("\n", 0, offset) + 1
    indent = ""
    for ch in text[line_start:offset]:
        if ch not in " \t":
            break
        indent += ch
    return indent


def _render(value: Any, indent: str, step: str) -> str:
    if isinstance(value, dict) and value:
        inner = indent + step
        members = [f"{inner}{json.dumps(k)}: {_render(v, inner, step)}" for k, v in value.items()]
        return "{\n" + ",\n".join(members) + "\n" + indent + "}"
    return json.dumps(value)


def set_value(text: str, path: Sequence[str], value: Any, step: str = "  ") -> str:
    """Return *text* with the value at *path* replaced or inserted.

    Missing intermediate objects are created. Every byte outside the edited
    range is preserved.
    """
    if not path:
        raise PatchError("Key path must not be empty")
    node = parse_spans(text)
    if node.kind != "object":
        raise PatchError("Document root is not an object")

    for depth, key in enumerate(path):
        if key in node.members:
            key_token, child = node.members[key]
            if depth == len(path) - 1:
                rendered = _render(value, _line_indent(text, key_token.start), step)
                return text[:child.start] + rendered + text[child.end:]
            if child.kind != "object":
                raise PatchError(f"'{'.'.join(path[:depth + 1])}' is not an object")
            node = child
            continue

        remainder: Any = value
        for missing in reversed(path[depth + 1:]):
            remainder = {missing: remainder}
        return _insert_member(text, node, key, remainder, step)
    return text


def _insert_member(text: str, node: Node, key: str, value: Any, step: str) -> str:
    if node.last_member_end is None:
        outer = _line_indent(text, node.start)
        inner = outer + step
        member = f"{inner}{json.dumps(key)}: {_render(value, inner, step)}"
        body_start = node.start + 1
        return text[:body_start] + "\n" + member + "\n" + outer + text[node.end - 1:]

    last_key = list(node.members.values())[-1][0]
    inner = _line_indent(text, last_key.start)
    member = f"{json.dumps(key)}: {_render(value, inner, step)}"
    if node.trailing_comma_end is not None:
        at = node.trailing_comma_end
        return text[:at] + "\n" + inner + member + "," + text[at:]
    at = node.last_member_end
    return text[:at] + ",\n" + inner + member + text[at:]
