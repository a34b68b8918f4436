"""Engine orchestration: walk, parallel extraction, graph build, detectors, report."""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import SCHEMA_EXTENSIONS
from .config_manager import EngineSettings
from .contracts import check_api_contracts, check_env, check_schema, collect_env_reads
from .detectors import (
    check_circular,
    check_dead_exports,
    check_debug_prints,
    check_exports,
    check_import_resolution,
    check_unused_imports,
)
from .extractor import Extractor, PatternExtractor
from .graph import GraphBuilder, ModuleGraph, ScannedModule
from .heal import AutoHealer, HealResult
from .models import Category, CoherenceError, Focus, Issue, IssueKind, ScanStats, Severity, SourceFile
from .report import CoherenceReport
from .walker import FileWalker, rel_path

logger = logging.getLogger(__name__)

# Detectors each focus runs; ALL runs every detector except the types-only
# export pass, which export matching already covers.
FOCUS_DETECTORS: Dict[Focus, Tuple[str, ...]] = {
    Focus.IMPORTS: ("import-resolution", "export-matching", "unused-imports"),
    Focus.TYPES: ("type-exports",),
    Focus.CIRCULAR: ("circular",),
    Focus.DEAD_CODE: ("dead-exports", "debug-prints"),
    Focus.ENV: ("env",),
    Focus.API: ("api",),
    Focus.SCHEMA: ("schema",),
}
ALL_DETECTORS: Tuple[str, ...] = (
    "import-resolution",
    "export-matching",
    "unused-imports",
    "circular",
    "dead-exports",
    "debug-prints",
    "env",
    "api",
    "schema",
)


@dataclass(frozen=True)
class _FileScan:
    source: Optional[SourceFile] = None
    module: Optional[ScannedModule] = None
    issue: Optional[Issue] = None


def _count_lines(text: str) -> int:
    if not text:
        return 0
    return text.count("\n") + (0 if text.endswith("\n") else 1)


class CoherenceEngine:
    """One analysis over *root*. Every :meth:`run` rebuilds everything from disk."""

    def __init__(
        self,
        root: Path,
        settings: Optional[EngineSettings] = None,
        extractor: Optional[Extractor] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.settings = settings or EngineSettings()
        self.extractor = extractor or PatternExtractor()
        self.max_workers = max_workers or self.settings.max_workers or os.cpu_count() or 1

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def run(self, focus: Focus = Focus.ALL) -> CoherenceReport:
        if not self.root.is_dir():
            raise CoherenceError(f"Not a directory: {self.root}")
        started = time.perf_counter()
        stats = ScanStats()
        issues: List[Issue] = []

        paths, scans, walk_issues = self._extract()
        issues.extend(walk_issues)
        stats.unreadable_dirs = len(walk_issues)
        stats.files_scanned = len(paths)

        sources: List[SourceFile] = []
        modules: List[ScannedModule] = []
        for scan in scans:
            if scan.issue is not None:
                issues.append(scan.issue)
                if scan.issue.kind == IssueKind.FILE_UNREADABLE:
                    stats.unreadable_files += 1
                else:
                    stats.ambiguous_files += 1
            if scan.source is not None:
                sources.append(scan.source)
            if scan.module is not None:
                modules.append(scan.module)

        graph = GraphBuilder(self.root, self.settings.aliases).build(modules)
        stats.imports_checked = graph.imports_checked
        stats.external_imports = graph.external_imports
        stats.exports_found = graph.exports_found
        stats.env_vars_found = len(collect_env_reads(sources))

        detectors = self._detectors(graph, sources)
        names = ALL_DETECTORS if focus == Focus.ALL else FOCUS_DETECTORS[focus]
        for name in names:
            issues.extend(self._run_detector(name, detectors[name], stats))

        report = CoherenceReport(root=str(self.root), focus=focus, stats=stats, issues=issues)
        logger.debug(
            "Scanned %d files in %.2fs: %d issues", stats.files_scanned,
            time.perf_counter() - started, len(report.issues),
        )
        return report

    def build_graph(self) -> ModuleGraph:
        """Walk, extract and resolve without running any detector."""
        if not self.root.is_dir():
            raise CoherenceError(f"Not a directory: {self.root}")
        _, scans, _ = self._extract()
        return GraphBuilder(self.root, self.settings.aliases).build(
            [scan.module for scan in scans if scan.module is not None]
        )

    def audit(self, focus: Focus = Focus.ALL, auto_fix: bool = False) -> Tuple[CoherenceReport, Optional[HealResult]]:
        """Run, optionally heal the auto-fixable issues, and re-run to report what remains."""
        report = self.run(focus)
        if not auto_fix or not report.auto_fixable_count:
            return report, None
        healed = AutoHealer(self.root).heal(report.issues)
        if healed.fixed:
            report = self.run(focus)
        return report, healed

    def _extract(self) -> Tuple[List[Path], List[_FileScan], List[Issue]]:
        walker = self._walker(self.settings.extensions)
        paths = list(walker)
        # map() keeps input order, so merging is deterministic
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            scans = list(pool.map(self._scan_file, paths))
        return paths, scans, list(walker.issues)

    def _walker(self, extensions: Sequence[str]) -> FileWalker:
        return FileWalker(
            self.root,
            extensions=extensions,
            include_dirs=self.settings.include_dirs,
            exclude_dirs=self.settings.exclude_dirs,
            include_dependency_dirs=self.settings.include_dependency_dirs,
        )

    def _scan_file(self, abs_path: Path) -> _FileScan:
        path = rel_path(self.root, abs_path)
        try:
            text = abs_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping unreadable file %s: %s", path, exc)
            return _FileScan(issue=Issue(
                category=Category.IMPORT,
                severity=Severity.WARNING,
                kind=IssueKind.FILE_UNREADABLE,
                file=path,
                message=f"File could not be read or decoded: {exc}",
                fix="Check file permissions and encoding (UTF-8 expected)",
            ))

        source = SourceFile(path=path, abs_path=abs_path, text=text)
        extraction = self.extractor.extract(text, path)
        module = ScannedModule(
            path=path,
            abs_path=abs_path,
            extraction=extraction,
            line_count=_count_lines(text),
            scanned_at=time.time(),
        )
        issue = None
        if extraction.ambiguous:
            logger.debug("Ambiguous import/export syntax in %s", path)
            issue = Issue(
                category=Category.IMPORT,
                severity=Severity.INFO,
                kind=IssueKind.PARSE_AMBIGUOUS,
                file=path,
                message="Import/export statements could not be recognized; file analyzed as having none",
            )
        return _FileScan(source=source, module=module, issue=issue)

    def _schema_sources(self) -> List[SourceFile]:
        sources = []
        for abs_path in self._walker(SCHEMA_EXTENSIONS):
            try:
                text = abs_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable schema file %s: %s", abs_path, exc)
                continue
            sources.append(SourceFile(rel_path(self.root, abs_path), abs_path, text))
        return sources

    def _detectors(self, graph: ModuleGraph, sources: List[SourceFile]) -> Dict[str, Callable[[], List[Issue]]]:
        s = self.settings
        return {
            "import-resolution": lambda: check_import_resolution(graph),
            "export-matching": lambda: check_exports(graph),
            "type-exports": lambda: check_exports(graph, types_only=True),
            "unused-imports": lambda: check_unused_imports(graph),
            "circular": lambda: check_circular(graph),
            "dead-exports": lambda: check_dead_exports(graph, s.entry_points),
            "debug-prints": lambda: check_debug_prints(sources, s.debug_print_calls),
            "env": lambda: check_env(
                sources, self.root, s.env_files, s.env_example_file, s.env_ignore, s.env_ignore_prefixes,
            ),
            "api": lambda: check_api_contracts(sources, s.api_prefix),
            "schema": lambda: check_schema(sources, self._schema_sources(), graph),
        }

    @staticmethod
    def _run_detector(name: str, detector: Callable[[], List[Issue]], stats: ScanStats) -> List[Issue]:
        try:
            return detector()
        except Exception as exc:
            logger.debug("Detector %s failed", name, exc_info=True)
            stats.failed_detectors.append(name)
            return [Issue(
                category=Category.IMPORT,
                severity=Severity.INFO,
                kind=IssueKind.DETECTOR_FAILED,
                file=".",
                message=f"Detector '{name}' could not complete: {exc}",
            )]
