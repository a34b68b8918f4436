"""Auto-heal: conservative single-line fixes for issues marked auto-fixable.

Files are processed one at a time. Each file is opened, locked
exclusively, re-read, edited in memory (highest line first so earlier
edits never shift later targets), written back and unlocked. An edit
that cannot be pinned to exactly one line is reported, never guessed.
"""

from __future__ import annotations

import fcntl
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .detectors import is_sole_statement
from .extractor import mask_literals
from .models import Issue, IssueKind

logger = logging.getLogger(__name__)

FIXABLE_KINDS = (
    IssueKind.UNUSED_IMPORT,
    IssueKind.DEBUG_PRINT,
    IssueKind.DEAD_EXPORT,
    IssueKind.ENV_UNDECLARED,
)

_IMPORT_LINE = re.compile(r"^(?P<head>\s*import\s+(?:type\s+)?)(?P<clause>.+?)(?P<tail>\s+from\s+['\"].*)$")
_EXPORT_DECL = r"^(?P<indent>\s*)export\s+(?=(?:declare\s+)?(?:async\s+)?(?:abstract\s+)?(?:const|let|var|function\*?|class|enum|type|interface)\s+{name}\b)"


@dataclass
class HealResult:
    fixed: List[Issue] = field(default_factory=list)
    skipped: List[Tuple[Issue, str]] = field(default_factory=list)
    files_changed: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "dryRun": self.dry_run,
            "fixed": [i.to_dict() for i in self.fixed],
            "couldNotFix": [{"issue": i.to_dict(), "reason": r} for i, r in self.skipped],
            "filesChanged": self.files_changed,
        }


# ------------------------------------------------------------------
# Line editors: return the replacement line, "" to delete it, or None
# when the line is not a confident target for the issue.
# ------------------------------------------------------------------

def _split_eol(line: str) -> Tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def remove_import_binding(line: str, alias: str) -> Optional[str]:
    """Drop *alias* from a single-line import statement.

    Returns ``""`` when nothing would remain, so the whole line goes.
    """
    body, eol = _split_eol(line)
    m = _IMPORT_LINE.match(body)
    if not m:
        return None
    rest = m.group("clause").strip()

    named: List[str] = []
    brace = re.search(r"\{(?P<inner>[^{}]*)\}", rest)
    if brace:
        named = [part.strip() for part in brace.group("inner").split(",") if part.strip()]
        rest = rest[:brace.start()] + rest[brace.end():]
    namespace = None
    star = re.search(r"\*\s*as\s+(?P<name>[\w$]+)", rest)
    if star:
        namespace = star.group("name")
        rest = rest[:star.start()] + rest[star.end():]
    default = rest.strip().strip(",").strip() or None

    if default == alias:
        default = None
    elif namespace == alias:
        namespace = None
    else:
        for item in named:
            local = re.split(r"\s+as\s+", re.sub(r"^type\s+", "", item))[-1].strip()
            if local == alias:
                named.remove(item)
                break
        else:
            return None

    parts = []
    if default:
        parts.append(default)
    if namespace:
        parts.append(f"* as {namespace}")
    if named:
        parts.append("{ " + ", ".join(named) + " }")
    if not parts:
        return ""
    return m.group("head") + ", ".join(parts) + m.group("tail") + eol


def remove_debug_call(line: str, call: str) -> Optional[str]:
    return "" if is_sole_statement(line, call) else None


def drop_export_keyword(line: str, name: str) -> Optional[str]:
    body, eol = _split_eol(line)
    m = re.match(_EXPORT_DECL.format(name=re.escape(name)), body)
    if not m:
        return None
    return m.group("indent") + body[m.end():] + eol


def _editor_for(issue: Issue) -> Optional[Callable[[str], Optional[str]]]:
    symbol = issue.symbol or ""
    if issue.kind == IssueKind.UNUSED_IMPORT:
        return lambda line: remove_import_binding(line, symbol)
    if issue.kind == IssueKind.DEBUG_PRINT:
        return lambda line: remove_debug_call(line, symbol)
    if issue.kind == IssueKind.DEAD_EXPORT:
        return lambda line: drop_export_keyword(line, symbol)
    return None


# ------------------------------------------------------------------
# Healer
# ------------------------------------------------------------------

class AutoHealer:
    """Apply the fix for every auto-fixable issue, serially, one file at a time."""

    def __init__(self, root: Path, dry_run: bool = False) -> None:
        self.root = root
        self.dry_run = dry_run

    def heal(self, issues: Sequence[Issue]) -> HealResult:
        result = HealResult(dry_run=self.dry_run)
        by_file: Dict[str, List[Issue]] = {}
        for issue in issues:
            if not issue.auto_fixable:
                continue
            if issue.kind not in FIXABLE_KINDS or not issue.symbol:
                result.skipped.append((issue, "No automatic fix exists for this issue"))
                continue
            by_file.setdefault(issue.file, []).append(issue)

        for rel in sorted(by_file):
            path = self.root / rel
            if by_file[rel][0].kind == IssueKind.ENV_UNDECLARED:
                changed = self._append_env(path, by_file[rel], result)
            else:
                changed = self._edit_lines(path, by_file[rel], result)
            if changed:
                result.files_changed.append(rel)
        logger.debug(
            "Heal finished: %d fixed, %d could not be fixed", len(result.fixed), len(result.skipped)
        )
        return result

    def _edit_lines(self, path: Path, issues: List[Issue], result: HealResult) -> bool:
        if not path.is_file():
            result.skipped.extend((i, "File no longer exists") for i in issues)
            return False
        ordered = sorted(issues, key=lambda i: (-(i.line or 0), i.kind.value, i.symbol or ""))
        with open(path, "r+", encoding="utf-8", newline="") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                original = handle.read()
                lines = original.splitlines(keepends=True)
                for issue in ordered:
                    reason = self._apply(lines, issue)
                    if reason is None:
                        result.fixed.append(issue)
                        logger.debug("Fixed %s at %s:%s", issue.kind.value, issue.file, issue.line)
                    else:
                        result.skipped.append((issue, reason))
                        logger.debug("Could not fix %s at %s:%s: %s", issue.kind.value, issue.file, issue.line, reason)
                updated = "".join(lines)
                if updated == original or self.dry_run:
                    return updated != original
                handle.seek(0)
                handle.write(updated)
                handle.truncate()
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        return True

    @staticmethod
    def _apply(lines: List[str], issue: Issue) -> Optional[str]:
        editor = _editor_for(issue)
        if editor is None:
            return "No automatic fix exists for this issue"
        # Lines inside string or template literals are blank here and never match
        code = mask_literals("".join(lines)).splitlines(keepends=True)

        def edit(i: int) -> Optional[str]:
            masked = editor(code[i])
            if not masked:
                return masked
            return editor(lines[i])

        index = (issue.line or 0) - 1
        replacement = edit(index) if 0 <= index < len(lines) else None
        if replacement is None:
            # Content shifted since the scan; accept only an unambiguous match
            candidates = [(i, r) for i, r in ((i, edit(i)) for i in range(len(lines))) if r is not None]
            if len(candidates) != 1:
                return "Target line changed since the scan and could not be located unambiguously"
            index, replacement = candidates[0]
        if replacement:
            lines[index] = replacement
        else:
            del lines[index]
        return None

    def _append_env(self, path: Path, issues: List[Issue], result: HealResult) -> bool:
        if self.dry_run:
            existing = path.read_text(encoding="utf-8") if path.is_file() else ""
            return bool(self._pending_env(existing, issues, result))

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a+", encoding="utf-8", newline="") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                handle.seek(0)
                existing = handle.read()
                additions = self._pending_env(existing, issues, result)
                if not additions:
                    return False
                prefix = "" if not existing or existing.endswith("\n") else "\n"
                handle.write(prefix + "".join(f"{name}=\n" for name in additions))
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        return True

    @staticmethod
    def _pending_env(existing: str, issues: List[Issue], result: HealResult) -> List[str]:
        additions: List[str] = []
        for issue in sorted(issues, key=lambda i: i.symbol or ""):
            name = issue.symbol or ""
            declared = re.search(rf"^[ \t]*(?:export[ \t]+)?{re.escape(name)}[ \t]*=", existing, re.M)
            if declared or name in additions:
                result.skipped.append((issue, f"{name} is already declared"))
                continue
            additions.append(name)
            result.fixed.append(issue)
        return additions
