"""Core data models shared by extraction, graph building, detectors and reports."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class CoherenceError(Exception):
    """Base error for the coherence engine."""


class ConfigError(CoherenceError):
    """Raised when a project configuration file cannot be used."""


class StateError(CoherenceError):
    """Raised when the persisted audit state is missing or corrupt."""


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Category(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    CIRCULAR = "circular"
    DEAD_CODE = "dead-code"
    ENV = "env"
    API = "api"
    SCHEMA = "schema"


CATEGORY_ORDER: Tuple[Category, ...] = tuple(Category)
SEVERITY_ORDER: Tuple[Severity, ...] = tuple(Severity)


class IssueKind(str, Enum):
    FILE_UNREADABLE = "file-unreadable"
    PARSE_AMBIGUOUS = "parse-ambiguous"
    UNRESOLVED_IMPORT = "unresolved-import"
    MISSING_DEFAULT_EXPORT = "missing-default-export"
    EXPORT_MISMATCH = "export-mismatch"
    CIRCULAR_DEPENDENCY = "circular-dependency"
    DEAD_EXPORT = "dead-export"
    UNUSED_IMPORT = "unused-import"
    DEBUG_PRINT = "debug-print"
    ENV_UNDECLARED = "env-undeclared"
    ENV_UNUSED = "env-unused"
    API_CONTRACT_MISMATCH = "api-contract-mismatch"
    API_METHOD_MISMATCH = "api-method-mismatch"
    SCHEMA_MISMATCH = "schema-mismatch"
    DETECTOR_FAILED = "detector-failed"


class Focus(str, Enum):
    ALL = "all"
    IMPORTS = "imports"
    TYPES = "types"
    SCHEMA = "schema"
    API = "api"
    ENV = "env"
    CIRCULAR = "circular"
    DEAD_CODE = "dead-code"


# Marker names inside ImportedName.name
DEFAULT = "default"
WILDCARD = "*"


@dataclass(frozen=True)
class ImportedName:
    name: str
    alias: str
    type_only: bool = False
    used: bool = True


@dataclass(frozen=True)
class ImportRecord:
    """One import-like statement: ``import``, ``require``, dynamic import or ``export ... from``."""

    source: str
    path: str
    names: Tuple[ImportedName, ...]
    line: int
    end_line: int
    type_only: bool = False
    kind: str = "static"  # static | side-effect | dynamic | require | reexport
    resolved: Optional[str] = None

    @property
    def is_wildcard(self) -> bool:
        return any(n.name == WILDCARD for n in self.names)

    @property
    def is_reexport(self) -> bool:
        return self.kind == "reexport"

    @property
    def single_line(self) -> bool:
        return self.line == self.end_line

    def named(self) -> List[ImportedName]:
        """Imported names other than the default/wildcard markers."""
        return [n for n in self.names if n.name not in (DEFAULT, WILDCARD)]


@dataclass(frozen=True)
class ExportSymbol:
    name: str
    module: str
    kind: str = "value"  # value | type
    line: int = 0
    source_path: Optional[str] = None
    source_name: Optional[str] = None
    isolated: bool = False

    @property
    def is_reexport(self) -> bool:
        return self.source_path is not None

    @property
    def is_star(self) -> bool:
        return self.name == WILDCARD


@dataclass(frozen=True)
class Extraction:
    imports: Tuple[ImportRecord, ...] = ()
    exports: Tuple[ExportSymbol, ...] = ()
    ambiguous: bool = False


@dataclass(frozen=True)
class ModuleNode:
    path: str
    abs_path: Path
    imports: Tuple[ImportRecord, ...]
    exports: Tuple[ExportSymbol, ...]
    line_count: int
    scanned_at: float
    ambiguous: bool = False

    @property
    def export_names(self) -> FrozenSet[str]:
        return frozenset(e.name for e in self.exports if not e.is_star)

    @property
    def value_export_names(self) -> FrozenSet[str]:
        return frozenset(e.name for e in self.exports if not e.is_star and e.kind == "value")

    @property
    def star_sources(self) -> Tuple[str, ...]:
        return tuple(e.source_path for e in self.exports if e.is_star and e.source_path)

    def export(self, name: str) -> Optional[ExportSymbol]:
        for symbol in self.exports:
            if symbol.name == name:
                return symbol
        return None


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    imports: Tuple[ImportRecord, ...]


@dataclass(frozen=True)
class Issue:
    category: Category
    severity: Severity
    kind: IssueKind
    file: str
    message: str
    line: Optional[int] = None
    fix: Optional[str] = None
    auto_fixable: bool = False
    symbol: Optional[str] = None

    def sort_key(self) -> Tuple[int, int, str, int, str]:
        return (
            CATEGORY_ORDER.index(self.category),
            SEVERITY_ORDER.index(self.severity),
            self.file,
            self.line or 0,
            self.message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "kind": self.kind.value,
            "file": self.file,
            "line": self.line,
            "message": self.message,
            "fix": self.fix,
            "autoFixable": self.auto_fixable,
            "symbol": self.symbol,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Issue":
        return cls(
            category=Category(payload["category"]),
            severity=Severity(payload["severity"]),
            kind=IssueKind(payload["kind"]),
            file=payload["file"],
            message=payload["message"],
            line=payload.get("line"),
            fix=payload.get("fix"),
            auto_fixable=bool(payload.get("autoFixable", False)),
            symbol=payload.get("symbol"),
        )


@dataclass
class ScanStats:
    files_scanned: int = 0
    imports_checked: int = 0
    external_imports: int = 0
    exports_found: int = 0
    env_vars_found: int = 0
    unreadable_files: int = 0
    unreadable_dirs: int = 0
    ambiguous_files: int = 0
    failed_detectors: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.unreadable_files or self.unreadable_dirs or self.failed_detectors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SourceFile:
    """Raw text of one scanned file, kept only for the duration of a run."""

    path: str
    abs_path: Path
    text: str
