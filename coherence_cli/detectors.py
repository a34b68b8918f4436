"""Graph-level issue detectors.

Every detector is a pure function of the built :class:`ModuleGraph` (plus,
for the text-level ones, the scanned sources) and returns a fresh list of
issues. Detectors never read each other's output.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from pathlib import PurePosixPath
from typing import Iterable, List, Sequence, Set, Tuple

from .config import (
    APP_ROUTER_ENTRY_NAMES,
    DEBUG_PRINT_CALLS,
    ENTRY_POINT_PATTERNS,
    PAGES_ROUTER_ENTRY_NAMES,
    ROOT_ENTRY_NAMES,
)
from .extractor import mask_literals
from .graph import ModuleGraph
from .models import (
    DEFAULT,
    WILDCARD,
    Category,
    CoherenceError,
    Issue,
    IssueKind,
    Severity,
    SourceFile,
)

logger = logging.getLogger(__name__)

_TEST_FILE = re.compile(r"(\.test\.|\.spec\.|(^|/)__tests__/|(^|/)tests?/)")


def is_test_file(path: str) -> bool:
    return bool(_TEST_FILE.search(path))


def is_entry_point(path: str, extra_patterns: Iterable[str] = ()) -> bool:
    """Modules invoked by the host framework rather than imported."""
    parts = PurePosixPath(path).parts
    stem, folders = parts[-1].split(".")[0], parts[:-1]
    if stem in APP_ROUTER_ENTRY_NAMES and "app" in folders:
        return True
    if stem in PAGES_ROUTER_ENTRY_NAMES and "pages" in folders:
        return True
    if stem in ROOT_ENTRY_NAMES and folders in ((), ("src",)):
        return True
    patterns = list(ENTRY_POINT_PATTERNS) + list(extra_patterns)
    return any(fnmatch.fnmatch(path, pattern) for pattern in patterns)


# ===================================================================
# Import resolution
# ===================================================================

def check_import_resolution(graph: ModuleGraph) -> List[Issue]:
    """Unresolved-import issues raised while building, after an edge sanity check."""
    for (source, target) in graph.edges:
        if source not in graph.modules or target not in graph.modules:
            raise CoherenceError(f"Edge {source} -> {target} points outside the graph")
    return list(graph.issues)


# ===================================================================
# Export matching
# ===================================================================

def check_exports(graph: ModuleGraph, types_only: bool = False) -> List[Issue]:
    """Verify every imported name exists in the target's export table.

    Named re-exports are part of the table; ``export *`` is chased one hop.
    Type-only names are skipped when the target forwards anything through
    ``export *`` or is a declaration file, since those can carry types the
    extractor never sees.
    """
    issues: List[Issue] = []
    for edge in graph.edges.values():
        target = graph.modules[edge.target]
        if target.ambiguous:
            continue
        opaque = graph.has_opaque_star(edge.target)
        for record in edge.imports:
            for imported in record.names:
                type_only = imported.type_only or record.type_only
                if types_only and not type_only:
                    continue
                if imported.name == WILDCARD:
                    continue
                if imported.name == DEFAULT:
                    if target.export(DEFAULT) is None:
                        issues.append(Issue(
                            category=Category.IMPORT,
                            severity=Severity.ERROR,
                            kind=IssueKind.MISSING_DEFAULT_EXPORT,
                            file=record.source,
                            line=record.line,
                            message=f"No default export in '{record.path}'",
                            fix="Add 'export default' or change to a named import",
                            symbol=DEFAULT,
                        ))
                    continue
                if graph.lookup_export(edge.target, imported.name) is not None:
                    continue
                if opaque:
                    continue
                if type_only and (target.star_sources or target.path.endswith(".d.ts")):
                    continue
                issues.append(Issue(
                    category=Category.EXPORT,
                    severity=Severity.ERROR,
                    kind=IssueKind.EXPORT_MISMATCH,
                    file=record.source,
                    line=record.line,
                    message=f"'{imported.name}' is not exported from '{record.path}' ({edge.target})",
                    fix=(
                        f"Add 'export {{ {imported.name} }}' to {PurePosixPath(edge.target).name} "
                        "or correct the import"
                    ),
                    symbol=imported.name,
                ))
    return issues


# ===================================================================
# Circular dependencies
# ===================================================================

def find_cycles(graph: ModuleGraph) -> List[List[str]]:
    """Depth-first search with an explicit stack; one entry per distinct cycle."""
    visited: Set[str] = set()
    cycles: List[List[str]] = []
    seen_keys: Set[Tuple[str, ...]] = set()

    for start in sorted(graph.modules):
        if start in visited:
            continue
        visited.add(start)
        path = [start]
        on_stack = {start}
        pending = [iter(graph.successors(start))]
        while pending:
            nxt = next(pending[-1], None)
            if nxt is None:
                pending.pop()
                on_stack.discard(path.pop())
                continue
            if nxt in on_stack:
                cycle = path[path.index(nxt):] + [nxt]
                key = tuple(sorted(set(cycle)))
                if key not in seen_keys:
                    seen_keys.add(key)
                    cycles.append(cycle)
                continue
            if nxt in visited:
                continue
            visited.add(nxt)
            on_stack.add(nxt)
            path.append(nxt)
            pending.append(iter(graph.successors(nxt)))
    return cycles


def check_circular(graph: ModuleGraph) -> List[Issue]:
    issues = []
    for cycle in find_cycles(graph):
        issues.append(Issue(
            category=Category.CIRCULAR,
            severity=Severity.WARNING,
            kind=IssueKind.CIRCULAR_DEPENDENCY,
            file=cycle[0],
            message=f"Circular dependency: {' → '.join(cycle)}",
            fix="Break the cycle by extracting shared code to a separate module",
        ))
    if issues:
        logger.debug("Found %d import cycle(s)", len(issues))
    return issues


# ===================================================================
# Dead exports
# ===================================================================

def used_exports(graph: ModuleGraph) -> Tuple[Set[Tuple[str, str]], Set[str]]:
    """Return ``(module, name)`` pairs some import references, and fully-consumed modules."""
    used: Set[Tuple[str, str]] = set()
    consumed: Set[str] = set()
    for edge in graph.edges.values():
        for record in edge.imports:
            for imported in record.names:
                if imported.name == WILDCARD:
                    # a bare `export * from` forwards names instead of consuming them
                    if not (record.is_reexport and imported.alias == WILDCARD):
                        consumed.add(edge.target)
                    continue
                used.add((edge.target, imported.name))
                found = graph.lookup_export(edge.target, imported.name)
                if found is not None:
                    used.add((found[0], imported.name))
    return used, consumed


def check_dead_exports(graph: ModuleGraph, entry_patterns: Iterable[str] = ()) -> List[Issue]:
    patterns = list(entry_patterns)
    used, consumed = used_exports(graph)
    issues: List[Issue] = []
    for path, module in graph.modules.items():
        if module.ambiguous or path in consumed or is_entry_point(path, patterns):
            continue
        for symbol in module.exports:
            if symbol.name == DEFAULT or symbol.is_star or symbol.is_reexport:
                continue
            if (path, symbol.name) in used:
                continue
            issues.append(Issue(
                category=Category.DEAD_CODE,
                severity=Severity.INFO,
                kind=IssueKind.DEAD_EXPORT,
                file=path,
                line=symbol.line,
                message=f"Export '{symbol.name}' is never imported",
                fix=(
                    "Remove the 'export' keyword, or delete the declaration if it is unused locally"
                    if symbol.isolated
                    else f"Remove '{symbol.name}' from the export statement if it is no longer needed"
                ),
                auto_fixable=symbol.isolated,
                symbol=symbol.name,
            ))
    return issues


# ===================================================================
# Unused imports and debug prints
# ===================================================================

def check_unused_imports(graph: ModuleGraph) -> List[Issue]:
    issues: List[Issue] = []
    for path, module in graph.modules.items():
        jsx = path.endswith((".jsx", ".tsx"))
        for record in module.imports:
            if record.kind not in ("static", "require"):
                continue
            for imported in record.names:
                if imported.used or (jsx and imported.alias == "React"):
                    continue
                issues.append(Issue(
                    category=Category.IMPORT,
                    severity=Severity.WARNING,
                    kind=IssueKind.UNUSED_IMPORT,
                    file=path,
                    line=record.line,
                    message=f"Unused import: '{imported.alias}' is imported from '{record.path}' but never used",
                    fix=f"Remove '{imported.alias}' from the import",
                    auto_fixable=record.kind == "static" and record.single_line,
                    symbol=imported.alias,
                ))
    return issues


def _debug_call_pattern(calls: Sequence[str]) -> "re.Pattern[str]":
    alternatives = "|".join(re.escape(call) for call in sorted(calls, key=len, reverse=True))
    return re.compile(r"(?<![\w$.])(?:" + alternatives + r")\s*\(")


def is_sole_statement(line: str, call: str) -> bool:
    """A debug call that makes up the whole line, with balanced parentheses."""
    stripped = line.strip()
    if not stripped.startswith(call):
        return False
    depth = 0
    closed_at = -1
    for i, ch in enumerate(stripped):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                closed_at = i
                break
    if closed_at == -1:
        return False
    return stripped[closed_at + 1:].strip() in ("", ";")


def check_debug_prints(
    sources: Sequence[SourceFile], calls: Sequence[str] = DEBUG_PRINT_CALLS
) -> List[Issue]:
    if not calls:
        return []
    pattern = _debug_call_pattern(calls)
    issues: List[Issue] = []
    for source in sources:
        if is_test_file(source.path):
            continue
        code = mask_literals(source.text)
        for number, line in enumerate(code.splitlines(), start=1):
            m = pattern.search(line)
            if not m:
                continue
            call = m.group(0).rstrip("( \t")
            issues.append(Issue(
                category=Category.DEAD_CODE,
                severity=Severity.WARNING,
                kind=IssueKind.DEBUG_PRINT,
                file=source.path,
                line=number,
                message=f"{call} found in production code",
                fix="Remove the call or replace it with proper logging",
                auto_fixable=is_sole_statement(line, call),
                symbol=call,
            ))
    return issues

