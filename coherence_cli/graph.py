"""Module graph construction: import resolution, edges and export lookups."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .config import COMPILED_EXTENSION_MAP, DEFAULT_ALIASES, RESOLVE_FALLBACKS
from .models import (
    Category,
    Edge,
    ExportSymbol,
    Extraction,
    ImportRecord,
    Issue,
    IssueKind,
    ModuleNode,
    Severity,
)
from .walker import rel_path

logger = logging.getLogger(__name__)

EXTERNAL = "external"
MODULE = "module"
ASSET = "asset"
UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class Resolution:
    status: str
    target: Optional[str] = None


@dataclass(frozen=True)
class ScannedModule:
    """Per-file extraction output handed from the worker pool to the builder."""

    path: str
    abs_path: Path
    extraction: Extraction
    line_count: int
    scanned_at: float


class ImportResolver:
    """Map import specifiers to root-relative module paths.

    Resolution order: configured alias prefixes (longest first), then
    relative/absolute paths, then the fixed extension and index fallbacks.
    Anything that is neither relative nor aliased is an external package
    and is never resolved.
    """

    def __init__(
        self,
        root: Path,
        module_paths: Iterable[str],
        aliases: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.root = root
        self.module_paths: Set[str] = set(module_paths)
        alias_map = dict(DEFAULT_ALIASES if aliases is None else aliases)
        self._aliases: List[Tuple[str, str]] = sorted(
            alias_map.items(), key=lambda item: (-len(item[0]), item[0])
        )
        self._file_cache: Dict[str, bool] = {}

    def is_external(self, specifier: str) -> bool:
        if specifier.startswith((".", "/")):
            return False
        return self._match_alias(specifier) is None

    def resolve(self, specifier: str, from_path: Path) -> Resolution:
        if self.is_external(specifier):
            return Resolution(EXTERNAL)

        base = self._base_path(specifier, from_path)
        for candidate in self._candidates(base):
            if self._is_file(candidate):
                target = rel_path(self.root, Path(candidate))
                if target in self.module_paths:
                    return Resolution(MODULE, target)
                logger.debug("'%s' resolved to non-module file %s", specifier, target)
                return Resolution(ASSET, target)
        return Resolution(UNRESOLVED)

    def _match_alias(self, specifier: str) -> Optional[Tuple[str, str]]:
        for prefix, directory in self._aliases:
            if prefix.endswith("/"):
                if specifier.startswith(prefix):
                    return prefix, directory
            elif specifier == prefix:
                return prefix, directory
        return None

    def _base_path(self, specifier: str, from_path: Path) -> str:
        alias = self._match_alias(specifier)
        if alias is not None:
            prefix, directory = alias
            remainder = specifier[len(prefix):]
            joined = os.path.join(str(self.root), directory, remainder)
        elif specifier.startswith("/"):
            joined = os.path.join(str(self.root), specifier.lstrip("/"))
        else:
            joined = os.path.join(str(from_path.parent), specifier)
        return os.path.normpath(joined)

    def _candidates(self, base: str) -> List[str]:
        candidates = [base]
        candidates.extend(base + suffix for suffix in RESOLVE_FALLBACKS)
        stem, ext = os.path.splitext(base)
        for replacement in COMPILED_EXTENSION_MAP.get(ext, ()):
            candidates.append(stem + replacement)
        return candidates

    def _is_file(self, candidate: str) -> bool:
        cached = self._file_cache.get(candidate)
        if cached is None:
            cached = os.path.isfile(candidate)
            self._file_cache[candidate] = cached
        return cached


class ModuleGraph:
    """Directed module graph plus per-module export tables for one run."""

    def __init__(
        self,
        modules: Dict[str, ModuleNode],
        edges: Dict[Tuple[str, str], Edge],
        issues: Sequence[Issue] = (),
        imports_checked: int = 0,
        external_imports: int = 0,
    ) -> None:
        self.modules = modules
        self.edges = edges
        self.issues: Tuple[Issue, ...] = tuple(issues)
        self.imports_checked = imports_checked
        self.external_imports = external_imports
        self._successors: Dict[str, List[str]] = {}
        for source, target in edges:
            self._successors.setdefault(source, []).append(target)
        for targets in self._successors.values():
            targets.sort()

    def successors(self, path: str) -> List[str]:
        return self._successors.get(path, [])

    @property
    def exports_found(self) -> int:
        return sum(len(m.exports) for m in self.modules.values())

    def reexport_target(self, module: ModuleNode, symbol: ExportSymbol) -> Optional[str]:
        """Resolved module a re-export statement forwards from, if it is in the graph."""
        for record in module.imports:
            if record.is_reexport and record.path == symbol.source_path and record.line == symbol.line:
                return record.resolved
        return None

    def lookup_export(self, target: str, name: str) -> Optional[Tuple[str, ExportSymbol]]:
        """Find *name* in *target*'s export table, chasing ``export *`` one hop."""
        module = self.modules.get(target)
        if module is None:
            return None
        direct = module.export(name)
        if direct is not None:
            return target, direct
        for symbol in module.exports:
            if not symbol.is_star:
                continue
            source = self.reexport_target(module, symbol)
            if source is None or source == target:
                continue
            forwarded = self.modules[source].export(name)
            if forwarded is not None and not forwarded.is_star:
                return source, forwarded
        return None

    def has_opaque_star(self, target: str) -> bool:
        """True when an ``export *`` of *target* forwards from something not in the graph."""
        module = self.modules[target]
        for symbol in module.exports:
            if symbol.is_star:
                source = self.reexport_target(module, symbol)
                if source is None or self.modules[source].ambiguous:
                    return True
        return False


class GraphBuilder:
    """Resolve every extracted import and assemble the :class:`ModuleGraph`."""

    def __init__(self, root: Path, aliases: Optional[Mapping[str, str]] = None) -> None:
        self.root = root
        self.aliases = aliases

    def build(self, scanned: Sequence[ScannedModule]) -> ModuleGraph:
        resolver = ImportResolver(self.root, (s.path for s in scanned), self.aliases)
        modules: Dict[str, ModuleNode] = {}
        edge_records: Dict[Tuple[str, str], List[ImportRecord]] = {}
        issues: List[Issue] = []
        imports_checked = 0
        external = 0

        for item in scanned:
            resolved_imports: List[ImportRecord] = []
            for record in item.extraction.imports:
                imports_checked += 1
                resolution = resolver.resolve(record.path, item.abs_path)
                if resolution.status == EXTERNAL:
                    external += 1
                    resolved_imports.append(record)
                elif resolution.status == UNRESOLVED:
                    issues.append(Issue(
                        category=Category.IMPORT,
                        severity=Severity.ERROR,
                        kind=IssueKind.UNRESOLVED_IMPORT,
                        file=item.path,
                        line=record.line,
                        message=f"Import target not found: '{record.path}'",
                        fix="Create the file or update the import path",
                        symbol=record.path,
                    ))
                    resolved_imports.append(record)
                elif resolution.status == ASSET:
                    resolved_imports.append(record)
                else:
                    resolved = replace(record, resolved=resolution.target)
                    resolved_imports.append(resolved)
                    edge_records.setdefault((item.path, resolution.target), []).append(resolved)

            modules[item.path] = ModuleNode(
                path=item.path,
                abs_path=item.abs_path,
                imports=tuple(resolved_imports),
                exports=item.extraction.exports,
                line_count=item.line_count,
                scanned_at=item.scanned_at,
                ambiguous=item.extraction.ambiguous,
            )

        edges = {
            key: Edge(source=key[0], target=key[1], imports=tuple(records))
            for key, records in sorted(edge_records.items())
        }
        logger.debug(
            "Built graph: %d modules, %d edges, %d unresolved imports",
            len(modules), len(edges), len(issues),
        )
        return ModuleGraph(
            modules=modules,
            edges=edges,
            issues=issues,
            imports_checked=imports_checked,
            external_imports=external,
        )
