"""Ripple query: which files reference a named entity, ranked by usage density.

The query works on raw text and never builds the module graph, so a
single-entity lookup stays cheap even on large trees.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .cache import TTLCache
from .config import RIPPLE_HIGH_THRESHOLD, RIPPLE_MEDIUM_THRESHOLD
from .config_manager import EngineSettings
from .walker import FileWalker, rel_path

logger = logging.getLogger(__name__)

MAX_EXCERPTS = 5
EXCERPT_WIDTH = 100

CHANGE_TYPES = ("added_field", "removed_field", "renamed", "type_changed", "signature_changed", "other")

GUIDANCE: Dict[str, List[str]] = {
    "added_field": [
        "Adding an optional field does not affect existing references.",
        "If the field is required, every file that constructs this entity must supply it.",
    ],
    "removed_field": [
        "Removing a field breaks every reference that reads it; update each file listed.",
        "Run `npx tsc --noEmit` afterwards to catch remaining references.",
    ],
    "renamed": [
        "Renaming breaks every listed reference; update them all to the new name.",
        "An editor 'Rename Symbol' refactoring is safer than search and replace.",
    ],
    "type_changed": [
        "Review each usage for compatibility with the new type.",
        "Run `npx tsc --noEmit` to surface type errors.",
    ],
    "signature_changed": [
        "Every call site must be updated to the new parameters.",
    ],
}
DEFAULT_GUIDANCE = [
    "Review the high-impact files first.",
    "Run `npx tsc --noEmit` after changing them to catch type errors.",
    "Run the test suite to confirm behavior.",
]

_DECLARATION = (
    r"^\s*(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:type|interface|enum|class|function\*?|const|let|var)\s+{name}\b"
)


@dataclass
class FileImpact:
    path: str
    usage_count: int = 0
    excerpts: List[Tuple[int, str]] = field(default_factory=list)
    import_line: Optional[str] = None
    is_definition: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.path,
            "usages": self.usage_count,
            "excerpts": [{"line": n, "text": t} for n, t in self.excerpts],
            "importLine": self.import_line,
            "isDefinition": self.is_definition,
        }


@dataclass
class RippleReport:
    entity: str
    change_type: Optional[str]
    description: Optional[str]
    definition: Optional[FileImpact]
    high: List[FileImpact]
    medium: List[FileImpact]
    low: List[FileImpact]
    guidance: List[str]

    @property
    def files(self) -> List[FileImpact]:
        head = [self.definition] if self.definition else []
        return head + self.high + self.medium + self.low

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def total_usages(self) -> int:
        return sum(f.usage_count for f in self.files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "changeType": self.change_type,
            "description": self.description,
            "totalFiles": self.total_files,
            "totalUsages": self.total_usages,
            "definition": self.definition.to_dict() if self.definition else None,
            "high": [f.to_dict() for f in self.high],
            "medium": [f.to_dict() for f in self.medium],
            "low": [f.to_dict() for f in self.low],
            "guidance": self.guidance,
        }


class RippleQuery:
    """Full-text impact search for one entity across the walked source tree."""

    def __init__(
        self,
        root: Path,
        settings: Optional[EngineSettings] = None,
        cache: Optional[TTLCache] = None,
    ) -> None:
        self.root = root
        self.settings = settings or EngineSettings()
        self.cache = cache

    def run(
        self,
        entity: str,
        change_type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> RippleReport:
        entity = entity.strip()
        if not entity:
            raise ValueError("Entity name must not be empty")
        if change_type is not None and change_type not in CHANGE_TYPES:
            raise ValueError(f"Unknown change type '{change_type}' (expected one of {', '.join(CHANGE_TYPES)})")

        word = re.compile(r"(?<![\w$])" + re.escape(entity) + r"(?![\w$])")
        declaration = re.compile(_DECLARATION.format(name=re.escape(entity)))
        walker = FileWalker(
            self.root,
            extensions=self.settings.extensions,
            include_dirs=self.settings.include_dirs,
            exclude_dirs=self.settings.exclude_dirs,
            include_dependency_dirs=self.settings.include_dependency_dirs,
        )

        definition: Optional[FileImpact] = None
        impacts: List[FileImpact] = []
        for abs_path in walker:
            text = self._read(abs_path)
            if text is None or entity not in text:
                continue
            impact = self._scan_file(rel_path(self.root, abs_path), text, word, declaration)
            if impact.is_definition and definition is None:
                definition = impact
            elif impact.usage_count:
                impacts.append(impact)

        impacts.sort(key=lambda f: (-f.usage_count, f.path))
        report = RippleReport(
            entity=entity,
            change_type=change_type,
            description=description,
            definition=definition,
            high=[f for f in impacts if f.usage_count >= RIPPLE_HIGH_THRESHOLD],
            medium=[f for f in impacts if RIPPLE_MEDIUM_THRESHOLD <= f.usage_count < RIPPLE_HIGH_THRESHOLD],
            low=[f for f in impacts if f.usage_count < RIPPLE_MEDIUM_THRESHOLD],
            guidance=GUIDANCE.get(change_type or "", DEFAULT_GUIDANCE),
        )
        logger.debug("Ripple for %s: %d files, %d usages", entity, report.total_files, report.total_usages)
        return report

    def _read(self, abs_path: Path) -> Optional[str]:
        try:
            mtime = abs_path.stat().st_mtime_ns
        except OSError as exc:
            logger.debug("Skipping %s: %s", abs_path, exc)
            return None
        key = (str(abs_path), mtime)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        try:
            text = abs_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Skipping %s: %s", abs_path, exc)
            return None
        if self.cache is not None:
            self.cache.set(key, text)
        return text

    @staticmethod
    def _scan_file(path: str, text: str, word: "re.Pattern[str]", declaration: "re.Pattern[str]") -> FileImpact:
        impact = FileImpact(path)
        in_import = False
        for number, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            starts_import = bool(re.match(r"import\b(?!\s*\()", stripped))
            is_import = in_import or starts_import
            if starts_import:
                in_import = not re.search(r"""(?:\bfrom\s*['"][^'"]*['"]|^import\s*['"][^'"]*['"])\s*;?\s*$""", stripped)
            elif in_import and re.search(r"""\bfrom\s*['"][^'"]*['"]\s*;?\s*$""", stripped):
                in_import = False

            if not word.search(line):
                continue
            if is_import:
                impact.import_line = impact.import_line or stripped
                continue
            if declaration.search(line):
                impact.is_definition = True
            impact.usage_count += 1
            if len(impact.excerpts) < MAX_EXCERPTS:
                impact.excerpts.append((number, stripped[:EXCERPT_WIDTH]))
        return impact
