"""Statement-level import/export extraction for JS/TS sources.

The engine only ever talks to :class:`Extractor`; :class:`PatternExtractor`
is one interchangeable implementation built on regular expressions rather
than a full grammar. A lexer-backed extractor can replace it without
touching the graph builder or the detectors.

What the pattern extractor recognizes:

- ``import X from``, ``import { a, b as c } from``, ``import * as ns from``,
  ``import X, { a } from``, ``import type { T } from``, ``import 'side-effect'``
- ``import('x')`` and ``require('x')`` (including destructured requires)
- ``export const|let|var|function|class|type|interface|enum ...``
- ``export default ...``, ``export = ...``, ``export { a, b as c }``
- re-exports: ``export * from``, ``export * as ns from``, ``export { a } from``
- CommonJS ``module.exports = ...`` and ``exports.name = ...``

Files with ``import``/``export`` statements none of these patterns cover are
reported as ambiguous and contribute no imports or exports at all.
"""

from __future__ import annotations

import bisect
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .models import DEFAULT, WILDCARD, ExportSymbol, Extraction, ImportedName, ImportRecord

logger = logging.getLogger(__name__)

_IDENT = r"[A-Za-z_$][\w$]*"

_IMPORT_FROM = re.compile(
    r"^[ \t]*import\s+(?P<type>type\s+)?(?P<clause>[\w$\s{},*]+?)\s*from\s*"
    r"(?P<q>['\"])(?P<path>[^'\"\n]+)(?P=q)",
    re.M,
)
_IMPORT_SIDE_EFFECT = re.compile(r"^[ \t]*import\s*(?P<q>['\"])(?P<path>[^'\"\n]+)(?P=q)", re.M)
_DYNAMIC_IMPORT = re.compile(r"(?<![\w$.])import\(\s*(?P<q>['\"`])(?P<path>[^'\"`\n$]+)(?P=q)\s*\)")
_REQUIRE = re.compile(
    r"(?:\b(?:const|let|var)\s+(?P<binding>\{[^}]*\}|" + _IDENT + r")\s*=\s*)?"
    r"(?<![\w$.])require\(\s*(?P<q>['\"])(?P<path>[^'\"\n]+)(?P=q)\s*\)"
)

_EXPORT_DECL = re.compile(
    r"^[ \t]*export\s+(?P<default>default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?P<kw>function\s*\*?|class|const\s+enum|const|let|var|type|interface|enum|namespace)\s+"
    r"(?P<name>" + _IDENT + r")",
    re.M,
)
_EXPORT_DESTRUCTURE = re.compile(
    r"^[ \t]*export\s+(?:const|let|var)\s+\{(?P<names>[^}]*)\}\s*=", re.M
)
_EXPORT_DEFAULT = re.compile(r"^[ \t]*export\s+default\b", re.M)
_EXPORT_ASSIGN = re.compile(r"^[ \t]*export\s*=", re.M)
_EXPORT_LIST = re.compile(
    r"^[ \t]*export\s+(?P<type>type\s+)?\{(?P<names>[^}]*)\}"
    r"(?:\s*from\s*(?P<q>['\"])(?P<path>[^'\"\n]+)(?P=q))?",
    re.M,
)
_EXPORT_STAR = re.compile(
    r"^[ \t]*export\s+(?P<type>type\s+)?\*\s*(?:as\s+(?P<ns>" + _IDENT + r")\s*)?from\s*"
    r"(?P<q>['\"])(?P<path>[^'\"\n]+)(?P=q)",
    re.M,
)
_CJS_DEFAULT = re.compile(r"^[ \t]*module\.exports\s*=\s*(?P<obj>\{[^}]*\})?", re.M)
_CJS_NAMED = re.compile(r"^[ \t]*(?:module\.)?exports\.(?P<name>" + _IDENT + r")\s*=", re.M)

_STATEMENT_START = re.compile(r"^[ \t]*(?:import|export)\b(?![.(])", re.M)
_IDENTIFIER = re.compile(r"(?<![\w$])" + _IDENT)

_TYPE_KEYWORDS = {"type", "interface"}


# ===================================================================
# Comment and literal blanking
# ===================================================================

# Text right before a quote that makes the quoted string a module specifier
_SPECIFIER_LEAD = re.compile(r"(?<![\w$.])(?:from|import|(?:import|require)\s*\()\s*$")


def strip_comments(content: str) -> str:
    """Blank out comments, keeping string literals, offsets and newlines intact."""
    return _blank(content, literals=False)


def mask_literals(content: str) -> str:
    """Blank out comments and the contents of string and template literals.

    Module specifiers (``from './x'``, ``import('./x')``, ``require('./x')``)
    keep their text, as do quotes and ``${...}`` code inside templates.
    Whitespace is never touched, so offsets and line numbers computed on the
    result hold for the original content. Import/export patterns run on this
    text so code-like lines inside a literal are never read as statements.
    """
    return _blank(content, literals=True)


def _is_specifier(out: List[str], quote: int) -> bool:
    return bool(_SPECIFIER_LEAD.search("".join(out[max(0, quote - 64):quote])))


def _blank_range(out: List[str], begin: int, end: int) -> None:
    for j in range(begin, end):
        if not out[j].isspace():
            out[j] = " "


def _blank(content: str, literals: bool) -> str:
    out = list(content)
    n = len(content)
    i = 0
    # Stack of open contexts: "code" inside ${...}, "`" inside a template
    stack: List[str] = []
    brace_depth: List[int] = []
    masked: List[bool] = []
    while i < n:
        ch = content[i]
        if stack and stack[-1] == "`":
            if ch == "`":
                stack.pop()
                masked.pop()
                i += 1
                continue
            if ch == "$" and i + 1 < n and content[i + 1] == "{":
                stack.append("code")
                brace_depth.append(0)
                i += 2
                continue
            step = 2 if ch == "\\" else 1
            if masked[-1]:
                _blank_range(out, i, min(i + step, n))
            i += step
            continue

        nxt = content[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            while i < n and content[i] != "\n":
                out[i] = " "
                i += 1
            continue
        if ch == "/" and nxt == "*":
            end = content.find("*/", i + 2)
            end = n if end == -1 else end + 2
            for j in range(i, end):
                if content[j] != "\n":
                    out[j] = " "
            i = end
            continue
        if ch in ("'", '"'):
            quote = i
            i += 1
            while i < n and content[i] != ch and content[i] != "\n":
                i += 2 if content[i] == "\\" else 1
            if literals and not _is_specifier(out, quote):
                _blank_range(out, quote + 1, min(i, n))
            i += 1
            continue
        if ch == "`":
            stack.append("`")
            masked.append(literals and not _is_specifier(out, i))
        elif stack and ch == "{":
            brace_depth[-1] += 1
        elif stack and ch == "}":
            if brace_depth[-1] == 0:
                stack.pop()
                brace_depth.pop()
            else:
                brace_depth[-1] -= 1
        i += 1
    return "".join(out)


# ===================================================================
# Extractor interface
# ===================================================================

class Extractor(ABC):
    """Turns raw file content into import records and export symbols."""

    @abstractmethod
    def extract(self, content: str, module: str = "") -> Extraction:
        ...


class PatternExtractor(Extractor):
    """Regex-driven extractor working on literal-masked text."""

    def extract(self, content: str, module: str = "") -> Extraction:
        text = mask_literals(content)
        lines = _LineIndex(text)
        covered: Set[int] = set()
        spans: List[Tuple[int, int]] = []

        imports: List[ImportRecord] = []
        exports: List[ExportSymbol] = []
        ambiguous = False

        for m in _IMPORT_FROM.finditer(text):
            names = _parse_import_clause(m.group("clause"), type_only=bool(m.group("type")))
            if names is None:
                ambiguous = True
                continue
            start, end = lines.span(m)
            covered.update(range(start, end + 1))
            spans.append(m.span())
            imports.append(ImportRecord(
                source=module,
                path=m.group("path"),
                names=tuple(names),
                line=start,
                end_line=end,
                type_only=bool(m.group("type")),
            ))

        for m in _IMPORT_SIDE_EFFECT.finditer(text):
            start, end = lines.span(m)
            covered.update(range(start, end + 1))
            spans.append(m.span())
            imports.append(ImportRecord(
                source=module, path=m.group("path"), names=(), line=start, end_line=end,
                kind="side-effect",
            ))

        for m in _DYNAMIC_IMPORT.finditer(text):
            start, end = lines.span(m)
            imports.append(ImportRecord(
                source=module, path=m.group("path"),
                names=(ImportedName(WILDCARD, WILDCARD),),
                line=start, end_line=end, kind="dynamic",
            ))

        for m in _REQUIRE.finditer(text):
            start, end = lines.span(m)
            binding = m.group("binding")
            if binding and binding.startswith("{"):
                names = tuple(
                    ImportedName(original, local) for original, local in _split_bindings(binding[1:-1], ":")
                )
                spans.append(m.span())
            elif binding:
                names = (ImportedName(WILDCARD, binding),)
                spans.append(m.span())
            else:
                names = (ImportedName(WILDCARD, WILDCARD),)
            imports.append(ImportRecord(
                source=module, path=m.group("path"), names=names,
                line=start, end_line=end, kind="require",
            ))

        for m in _EXPORT_STAR.finditer(text):
            start, end = lines.span(m)
            covered.update(range(start, end + 1))
            path = m.group("path")
            ns = m.group("ns")
            kind = "type" if m.group("type") else "value"
            exports.append(ExportSymbol(
                name=ns or WILDCARD, module=module, kind=kind, line=start,
                source_path=path, source_name=WILDCARD,
            ))
            imports.append(ImportRecord(
                source=module, path=path, names=(ImportedName(WILDCARD, ns or WILDCARD),),
                line=start, end_line=end, type_only=bool(m.group("type")), kind="reexport",
            ))

        for m in _EXPORT_LIST.finditer(text):
            start, end = lines.span(m)
            covered.update(range(start, end + 1))
            list_type = bool(m.group("type"))
            path = m.group("path")
            reexported: List[ImportedName] = []
            for original, exported, type_only in _parse_export_list(m.group("names")):
                kind = "type" if (list_type or type_only) else "value"
                exports.append(ExportSymbol(
                    name=exported, module=module, kind=kind, line=start,
                    source_path=path, source_name=original,
                ))
                if path:
                    reexported.append(ImportedName(original, exported, list_type or type_only))
            if path:
                imports.append(ImportRecord(
                    source=module, path=path, names=tuple(reexported),
                    line=start, end_line=end, type_only=list_type, kind="reexport",
                ))

        for m in _EXPORT_DECL.finditer(text):
            start, _ = lines.span(m)
            covered.add(start)
            keyword = m.group("kw").split()[0].rstrip("*")
            kind = "type" if keyword in _TYPE_KEYWORDS else "value"
            if m.group("default"):
                exports.append(ExportSymbol(name=DEFAULT, module=module, kind=kind, line=start))
                continue
            exports.append(ExportSymbol(
                name=m.group("name"), module=module, kind=kind, line=start,
                isolated=_is_isolated_declaration(keyword, lines.line_text(start), m.group("name")),
            ))

        for m in _EXPORT_DESTRUCTURE.finditer(text):
            start, end = lines.span(m)
            covered.update(range(start, end + 1))
            for _, local in _split_bindings(m.group("names"), ":"):
                exports.append(ExportSymbol(name=local, module=module, line=start))

        for pattern in (_EXPORT_DEFAULT, _EXPORT_ASSIGN):
            for m in pattern.finditer(text):
                start, _ = lines.span(m)
                covered.add(start)
                exports.append(ExportSymbol(name=DEFAULT, module=module, line=start))

        for m in _CJS_DEFAULT.finditer(text):
            start, _ = lines.span(m)
            exports.append(ExportSymbol(name=DEFAULT, module=module, line=start))
            if m.group("obj"):
                for original, _ in _split_bindings(m.group("obj")[1:-1], ":"):
                    exports.append(ExportSymbol(name=original, module=module, line=start))

        for m in _CJS_NAMED.finditer(text):
            start, _ = lines.span(m)
            exports.append(ExportSymbol(name=m.group("name"), module=module, line=start))

        for m in _STATEMENT_START.finditer(text):
            if lines.line_of(m.start()) not in covered:
                ambiguous = True
                break

        if ambiguous:
            logger.debug("Ambiguous import/export statements in %s", module or "<content>")
            return Extraction(ambiguous=True)

        imports = _mark_usage(text, spans, imports)
        imports.sort(key=lambda r: (r.line, r.path, r.kind))
        return Extraction(
            imports=tuple(imports),
            exports=tuple(_dedupe_exports(exports)),
        )


_DEFAULT_EXTRACTOR = PatternExtractor()


def extract_imports_exports(
    content: str, module: str = ""
) -> Tuple[List[ImportRecord], List[ExportSymbol]]:
    """Narrow extraction entry point used by callers that need no extra metadata."""
    result = _DEFAULT_EXTRACTOR.extract(content, module)
    return list(result.imports), list(result.exports)


# ===================================================================
# Helpers
# ===================================================================

class _LineIndex:
    """Offset -> 1-based line number lookups over one text."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._starts = [0] + [i + 1 for i, ch in enumerate(text) if ch == "\n"]

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self._starts, offset)

    def span(self, match: "re.Match[str]") -> Tuple[int, int]:
        start, end = match.span()
        return self.line_of(start), self.line_of(max(start, end - 1))

    def line_text(self, line: int) -> str:
        begin = self._starts[line - 1]
        end = self._starts[line] - 1 if line < len(self._starts) else len(self.text)
        return self.text[begin:end]


def _split_bindings(body: str, separator: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(original, local)`` pairs from ``a, b as c`` / ``a, b: c`` lists."""
    for part in body.split(","):
        part = part.strip()
        if not part or part.startswith("..."):
            continue
        if separator in part:
            original, _, local = part.partition(separator)
        elif " as " in part:
            original, _, local = part.partition(" as ")
        else:
            original = local = part
        original, local = original.strip(), local.strip()
        # drop default values in destructuring: { a = 1 }
        local = local.split("=")[0].strip()
        original = original.split("=")[0].strip()
        if re.fullmatch(_IDENT, original) and re.fullmatch(_IDENT, local):
            yield original, local


def _parse_import_clause(clause: str, type_only: bool) -> Optional[List[ImportedName]]:
    clause = " ".join(clause.split())
    names: List[ImportedName] = []

    brace_start = clause.find("{")
    named_part = ""
    if brace_start != -1:
        brace_end = clause.find("}", brace_start)
        if brace_end == -1:
            return None
        named_part = clause[brace_start + 1:brace_end]
        head = clause[:brace_start] + clause[brace_end + 1:]
    else:
        head = clause

    for piece in (p.strip() for p in head.split(",")):
        if not piece:
            continue
        ns = re.fullmatch(r"\*\s*as\s+(" + _IDENT + r")", piece)
        if ns:
            names.append(ImportedName(WILDCARD, ns.group(1), type_only))
        elif re.fullmatch(_IDENT, piece):
            names.append(ImportedName(DEFAULT, piece, type_only))
        else:
            return None

    for part in (p.strip() for p in named_part.split(",")):
        if not part:
            continue
        part_type = type_only
        if part.startswith("type "):
            part_type = True
            part = part[5:].strip()
        original, _, local = part.partition(" as ")
        original = original.strip()
        local = local.strip() or original
        if not (re.fullmatch(_IDENT, original) and re.fullmatch(_IDENT, local)):
            return None
        names.append(ImportedName(original, local, part_type))

    return names


def _parse_export_list(body: str) -> Iterator[Tuple[str, str, bool]]:
    """Yield ``(original, exported, type_only)`` from an ``export { ... }`` body."""
    for part in (p.strip() for p in body.split(",")):
        if not part:
            continue
        type_only = False
        if part.startswith("type "):
            type_only = True
            part = part[5:].strip()
        original, _, exported = part.partition(" as ")
        original = original.strip()
        exported = exported.strip() or original
        if re.fullmatch(_IDENT, original) and re.fullmatch(_IDENT, exported):
            yield original, exported, type_only


def _is_isolated_declaration(keyword: str, line: str, name: str) -> bool:
    """True when the line declares exactly one exported binding and nothing else."""
    if line.count("export ") != 1:
        return False
    if keyword in ("function", "class", "interface", "enum", "namespace", "type"):
        return True
    if keyword not in ("const", "let", "var"):
        return False
    rest = line.split(name, 1)[1]
    depth = 0
    quote = ""
    for ch in rest:
        if quote:
            if ch == quote:
                quote = ""
            continue
        if ch in "'\"`":
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth <= 0:
            return False
        elif ch == ";" and depth <= 0:
            return not rest.split(";", 1)[1].strip()
    return True


def _mark_usage(
    text: str, spans: List[Tuple[int, int]], imports: List[ImportRecord]
) -> List[ImportRecord]:
    """Flag import bindings that never occur outside their import statements."""
    body = list(text)
    for start, end in spans:
        for i in range(start, end):
            if body[i] != "\n":
                body[i] = " "
    blanked = "".join(body)

    referenced: Set[str] = set()
    for m in _IDENTIFIER.finditer(blanked):
        pos = m.start()
        if pos and blanked[pos - 1] == "." and blanked[max(0, pos - 3):pos] != "...":
            continue
        referenced.add(m.group(0))

    marked: List[ImportRecord] = []
    for record in imports:
        if record.kind not in ("static", "require"):
            marked.append(record)
            continue
        names = tuple(
            ImportedName(n.name, n.alias, n.type_only, n.alias in referenced or n.alias == WILDCARD)
            for n in record.names
        )
        marked.append(ImportRecord(
            source=record.source, path=record.path, names=names, line=record.line,
            end_line=record.end_line, type_only=record.type_only, kind=record.kind,
        ))
    return marked


def _dedupe_exports(exports: List[ExportSymbol]) -> List[ExportSymbol]:
    seen: Dict[Tuple[str, Optional[str]], ExportSymbol] = {}
    for symbol in sorted(exports, key=lambda e: (e.line, e.name)):
        key = (symbol.name, symbol.source_path if symbol.is_star else None)
        if key not in seen:
            seen[key] = symbol
    return list(seen.values())
