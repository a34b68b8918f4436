"""File walker: enumerates candidate source files under the analyzed roots."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Set

from .config import DEPENDENCY_DIRS, SKIP_DIRS, SOURCE_EXTENSIONS
from .models import Category, Issue, IssueKind, Severity

logger = logging.getLogger(__name__)


def rel_path(root: Path, path: Path) -> str:
    """Root-relative POSIX path, the canonical module identity."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


class FileWalker:
    """Lazy, restartable walk over every matching file below *root*.

    Each iteration starts a fresh walk, so iterating twice reflects the
    current file system both times. Directories that cannot be listed are
    skipped and recorded in :attr:`issues`; the walk itself never aborts.
    """

    def __init__(
        self,
        root: Path,
        extensions: Sequence[str] = SOURCE_EXTENSIONS,
        include_dirs: Optional[Iterable[str]] = None,
        exclude_dirs: Optional[Iterable[str]] = None,
        include_dependency_dirs: bool = False,
    ) -> None:
        self.root = root
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.include_dirs = list(include_dirs or [])
        self.skip_dirs: Set[str] = set(SKIP_DIRS) | set(exclude_dirs or [])
        if not include_dependency_dirs:
            self.skip_dirs |= DEPENDENCY_DIRS
        self.issues: List[Issue] = []

    def __iter__(self) -> Iterator[Path]:
        self.issues = []
        seen: Set[Path] = set()
        for base in self._bases():
            for path in self._walk(base):
                if path not in seen:
                    seen.add(path)
                    yield path

    def _bases(self) -> List[Path]:
        if not self.include_dirs:
            return [self.root]
        bases = []
        for name in self.include_dirs:
            candidate = self.root / name
            if candidate.is_dir():
                bases.append(candidate)
            else:
                logger.debug("Include dir %s does not exist, skipping", candidate)
        return bases

    def _walk(self, directory: Path) -> Iterator[Path]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            logger.warning("Cannot read directory %s: %s", directory, exc)
            self.issues.append(
                Issue(
                    category=Category.IMPORT,
                    severity=Severity.WARNING,
                    kind=IssueKind.FILE_UNREADABLE,
                    file=rel_path(self.root, directory),
                    message=f"Directory could not be read: {exc.strerror or exc}",
                    fix="Check directory permissions",
                )
            )
            return

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name.startswith(".") or entry.name in self.skip_dirs:
                        continue
                    yield from self._walk(Path(entry.path))
                elif entry.is_file() and entry.name.lower().endswith(self.extensions):
                    yield Path(entry.path)
            except OSError as exc:
                logger.warning("Cannot stat %s: %s", entry.path, exc)
