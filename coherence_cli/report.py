"""Report aggregation, persisted audit state and the no-rescan status query."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import STATE_DIR_NAME, STATE_FILE_NAME
from .models import CATEGORY_ORDER, Category, Focus, Issue, ScanStats, Severity, StateError

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CoherenceReport:
    """Result of one engine run: summary statistics plus the ordered issue list."""

    root: str
    focus: Focus
    stats: ScanStats
    issues: List[Issue]
    timestamp: str = field(default_factory=lambda: _now().isoformat())

    def __post_init__(self) -> None:
        self.issues = sorted(self.issues, key=Issue.sort_key)

    @property
    def by_category(self) -> Dict[Category, List[Issue]]:
        grouped: Dict[Category, List[Issue]] = {}
        for category in CATEGORY_ORDER:
            matching = [i for i in self.issues if i.category == category]
            if matching:
                grouped[category] = matching
        return grouped

    @property
    def severity_counts(self) -> Dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for issue in self.issues:
            counts[issue.severity.value] += 1
        return counts

    @property
    def errors(self) -> int:
        return self.severity_counts[Severity.ERROR.value]

    @property
    def auto_fixable_count(self) -> int:
        return sum(1 for i in self.issues if i.auto_fixable)

    @property
    def health(self) -> int:
        return health_score(self.issues)

    def summary(self) -> Dict[str, Any]:
        return {
            "filesScanned": self.stats.files_scanned,
            "importsChecked": self.stats.imports_checked,
            "exportsFound": self.stats.exports_found,
            "envVarsFound": self.stats.env_vars_found,
            "issues": len(self.issues),
            "errors": self.severity_counts["error"],
            "warnings": self.severity_counts["warning"],
            "info": self.severity_counts["info"],
            "autoFixable": self.auto_fixable_count,
            "unreadableFiles": self.stats.unreadable_files,
            "unreadableDirs": self.stats.unreadable_dirs,
            "failedDetectors": list(self.stats.failed_detectors),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "timestamp": self.timestamp,
            "focus": self.focus.value,
            "summary": self.summary(),
            "stats": self.stats.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "byCategory": {c.value: len(items) for c, items in self.by_category.items()},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def health_score(issues: List[Issue]) -> int:
    """100, minus 20 per error and 5 per other issue, clamped to 0..100."""
    errors = sum(1 for i in issues if i.severity == Severity.ERROR)
    others = len(issues) - errors
    return max(0, min(100, 100 - errors * 20 - others * 5))


# ------------------------------------------------------------------
# Persisted state
# ------------------------------------------------------------------

def state_path(root: Path) -> Path:
    return root / STATE_DIR_NAME / STATE_FILE_NAME


def save_state(root: Path, report: CoherenceReport) -> Path:
    path = state_path(root)
    payload = {
        "lastAudit": report.timestamp,
        "focus": report.focus.value,
        "stats": report.stats.to_dict(),
        "summary": report.summary(),
        "issues": [i.to_dict() for i in report.issues],
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except OSError as exc:
        raise StateError(f"Cannot write audit state to {path}: {exc}") from exc
    logger.debug("Saved audit state to %s", path)
    return path


@dataclass
class AuditState:
    last_audit: datetime
    focus: Focus
    stats: ScanStats
    issues: List[Issue]


def load_state(root: Path) -> AuditState:
    """Read the last audit written by :func:`save_state`.

    Raises:
        StateError: If no audit has been saved or the file cannot be parsed.
    """
    path = state_path(root)
    if not path.is_file():
        raise StateError(f"No audit state found at {path}; run a scan first")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        stats_data = dict(payload.get("stats") or {})
        stats = ScanStats(**{k: v for k, v in stats_data.items() if k in ScanStats.__dataclass_fields__})
        last_audit = datetime.fromisoformat(payload["lastAudit"])
        if last_audit.tzinfo is None:
            last_audit = last_audit.replace(tzinfo=timezone.utc)
        return AuditState(
            last_audit=last_audit,
            focus=Focus(payload.get("focus", Focus.ALL.value)),
            stats=stats,
            issues=[Issue.from_dict(item) for item in payload.get("issues", [])],
        )
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise StateError(f"Audit state at {path} is corrupt: {exc}") from exc


@dataclass
class ProjectStatus:
    last_audit: datetime
    age_seconds: float
    focus: Focus
    health: int
    severity_counts: Dict[str, int]
    auto_fixable: int
    partial: bool
    issues: List[Issue]

    @property
    def age_text(self) -> str:
        minutes = int(self.age_seconds // 60)
        if minutes < 1:
            return "just now"
        if minutes < 60:
            return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
        hours = minutes // 60
        if hours < 24:
            return f"{hours} hour{'s' if hours != 1 else ''} ago"
        days = hours // 24
        return f"{days} day{'s' if days != 1 else ''} ago"


def project_status(root: Path, now: Optional[datetime] = None) -> ProjectStatus:
    """Health summary from the persisted audit, without rescanning."""
    state = load_state(root)
    now = now or _now()
    counts = {severity.value: 0 for severity in Severity}
    for issue in state.issues:
        counts[issue.severity.value] += 1
    return ProjectStatus(
        last_audit=state.last_audit,
        age_seconds=max(0.0, (now - state.last_audit).total_seconds()),
        focus=state.focus,
        health=health_score(state.issues),
        severity_counts=counts,
        auto_fixable=sum(1 for i in state.issues if i.auto_fixable),
        partial=state.stats.partial,
        issues=state.issues,
    )
