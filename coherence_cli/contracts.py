"""Tree-level contract checks: environment variables, API routes and schema tables.

These detectors read raw source text instead of the import graph, because
the contracts they verify (an env file, a route handler, a table
definition) are never linked to their consumers through imports.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from .config import API_PREFIX, ENV_EXAMPLE_FILE, ENV_FILES, ENV_IGNORE, ENV_IGNORE_PREFIXES, HTTP_METHODS
from .extractor import strip_comments
from .graph import ModuleGraph
from .models import Category, Issue, IssueKind, Severity, SourceFile

logger = logging.getLogger(__name__)


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


# ===================================================================
# Environment variables
# ===================================================================

_ENV_NAME = r"[A-Za-z_][A-Za-z0-9_]*"
_ENV_READ = re.compile(
    r"process\.env\.(?P<dot>" + _ENV_NAME + r")"
    r"|process\.env\[\s*['\"](?P<index>" + _ENV_NAME + r")['\"]\s*\]"
    r"|import\.meta\.env\.(?P<meta>" + _ENV_NAME + r")"
)
_ENV_DESTRUCTURE = re.compile(r"\{(?P<names>[^}]*)\}\s*=\s*process\.env\b")
_ENV_DECLARATION = re.compile(r"^[ \t]*(?:export[ \t]+)?(?P<name>" + _ENV_NAME + r")[ \t]*=", re.M)
# Provided by Vite for every build
_BUILTIN_META_ENV = {"MODE", "DEV", "PROD", "SSR", "BASE_URL"}


def collect_env_reads(sources: Sequence[SourceFile]) -> Dict[str, List[Tuple[str, int]]]:
    """Map each environment variable read in source code to its read sites."""
    reads: Dict[str, List[Tuple[str, int]]] = {}
    for source in sources:
        text = strip_comments(source.text)
        for m in _ENV_READ.finditer(text):
            if m.group("meta") in _BUILTIN_META_ENV:
                continue
            name = m.group("dot") or m.group("index") or m.group("meta")
            reads.setdefault(name, []).append((source.path, _line_of(text, m.start())))
        for m in _ENV_DESTRUCTURE.finditer(text):
            line = _line_of(text, m.start())
            for part in m.group("names").split(","):
                name = part.split(":")[0].split("=")[0].strip()
                if re.fullmatch(_ENV_NAME, name):
                    reads.setdefault(name, []).append((source.path, line))
    return reads


def read_env_declarations(root: Path, env_files: Sequence[str] = ENV_FILES) -> Dict[str, Tuple[str, int]]:
    """Map each declared variable to the first env file and line declaring it."""
    declared: Dict[str, Tuple[str, int]] = {}
    for name in env_files:
        path = root / name
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read env file %s: %s", path, exc)
            continue
        for m in _ENV_DECLARATION.finditer(content):
            declared.setdefault(m.group("name"), (name, _line_of(content, m.start())))
    return declared


def _env_ignored(name: str, ignore: Sequence[str], prefixes: Sequence[str]) -> bool:
    return name in ignore or any(name.startswith(prefix) for prefix in prefixes)


def check_env(
    sources: Sequence[SourceFile],
    root: Path,
    env_files: Sequence[str] = ENV_FILES,
    example_file: str = ENV_EXAMPLE_FILE,
    ignore: Sequence[str] = ENV_IGNORE,
    ignore_prefixes: Sequence[str] = ENV_IGNORE_PREFIXES,
) -> List[Issue]:
    reads = collect_env_reads(sources)
    declared = read_env_declarations(root, env_files)
    issues: List[Issue] = []

    for name in sorted(reads):
        if name in declared or _env_ignored(name, ignore, ignore_prefixes):
            continue
        first_file, first_line = sorted(reads[name])[0]
        issues.append(Issue(
            category=Category.ENV,
            severity=Severity.WARNING,
            kind=IssueKind.ENV_UNDECLARED,
            file=example_file,
            message=(
                f"Environment variable '{name}' is used but not declared in any env file "
                f"(first read at {first_file}:{first_line})"
            ),
            fix=f"Add {name}= to {example_file}",
            auto_fixable=True,
            symbol=name,
        ))

    for name in sorted(declared):
        if name in reads or _env_ignored(name, ignore, ignore_prefixes):
            continue
        env_file, line = declared[name]
        issues.append(Issue(
            category=Category.ENV,
            severity=Severity.INFO,
            kind=IssueKind.ENV_UNUSED,
            file=env_file,
            line=line,
            message=f"Environment variable '{name}' is declared but never read in source",
            fix="Remove the declaration if nothing outside this codebase consumes it",
            symbol=name,
        ))
    return issues


# ===================================================================
# API contracts
# ===================================================================

_APP_ROUTE = re.compile(r"(?:^|/)app/(?P<route>(?:.+/)?)route\.(?:ts|tsx|js|jsx|mjs)$")
_PAGES_API = re.compile(r"(?:^|/)pages/(?P<route>api(?:/.+)?)\.(?:ts|tsx|js|jsx|mjs)$")
_ROUTE_VERB = re.compile(
    r"export\s+(?:async\s+)?function\s+(?P<fn>[A-Z]+)\b"
    r"|export\s+(?:const|let)\s+(?P<const>[A-Z]+)\b"
    r"|\bas\s+(?P<alias>[A-Z]+)\b"
)
_EXPRESS_ROUTE = re.compile(
    r"\b(?:app|router|server|api)\.(?P<verb>get|post|put|patch|delete|head|options|all)\(\s*"
    r"(?P<q>['\"`])(?P<path>/[^'\"`]*)(?P=q)"
)
_FETCH_CALL = re.compile(r"(?<![\w$.])fetch\(\s*(?P<q>['\"`])(?P<url>[^'\"`]*)(?P=q)")
_AXIOS_CALL = re.compile(
    r"(?<![\w$.])axios(?:\.(?P<verb>get|post|put|patch|delete|head|options))?\(\s*"
    r"(?P<q>['\"`])(?P<url>[^'\"`]*)(?P=q)"
)
_METHOD_OPTION = re.compile(r"\bmethod\s*:\s*(?P<value>['\"](?P<verb>\w+)['\"]|[^,}\s]+)")

LITERAL = "literal"
PARAM = "param"
CATCH_ALL = "catch-all"
OPTIONAL_CATCH_ALL = "optional-catch-all"


@dataclass(frozen=True)
class Endpoint:
    path: str
    file: str
    methods: Optional[FrozenSet[str]] = None  # None: any verb

    @property
    def segments(self) -> List[Tuple[str, str]]:
        return [_classify_route_segment(s) for s in self.path.strip("/").split("/") if s]


@dataclass(frozen=True)
class OutboundCall:
    url: str
    file: str
    line: int
    method: Optional[str] = None


def _classify_route_segment(segment: str) -> Tuple[str, str]:
    if segment.startswith("[[...") and segment.endswith("]]"):
        return OPTIONAL_CATCH_ALL, segment
    if segment.startswith("[...") and segment.endswith("]"):
        return CATCH_ALL, segment
    if (segment.startswith("[") and segment.endswith("]")) or segment.startswith(":"):
        return PARAM, segment
    if segment == "*":
        return CATCH_ALL, segment
    return LITERAL, segment


def _route_from_dirs(route: str) -> str:
    parts = [
        p for p in route.strip("/").split("/")
        if p and not p.startswith("(") and not p.startswith("@")
    ]
    return "/" + "/".join(parts)


def collect_endpoints(sources: Sequence[SourceFile]) -> List[Endpoint]:
    endpoints: List[Endpoint] = []
    for source in sources:
        text = strip_comments(source.text)
        app = _APP_ROUTE.search(source.path)
        if app:
            verbs = set()
            for m in _ROUTE_VERB.finditer(text):
                verb = m.group("fn") or m.group("const") or m.group("alias")
                if verb in HTTP_METHODS:
                    verbs.add(verb)
            endpoints.append(Endpoint(_route_from_dirs(app.group("route")), source.path, frozenset(verbs)))
            continue
        pages = _PAGES_API.search(source.path)
        if pages:
            route = pages.group("route")
            if route.endswith("/index") or route == "index":
                route = route[: -len("index")]
            endpoints.append(Endpoint(_route_from_dirs(route), source.path))
            continue
        for m in _EXPRESS_ROUTE.finditer(text):
            verb = m.group("verb").upper()
            methods = None if verb == "ALL" else frozenset({verb})
            endpoints.append(Endpoint(m.group("path").rstrip("/") or "/", source.path, methods))
    return endpoints


def _call_span(text: str, open_paren: int, limit: int = 800) -> str:
    depth = 0
    end = min(len(text), open_paren + limit)
    for i in range(open_paren, end):
        if text[i] == "(":
            depth += 1
        elif text[i] == ")":
            depth -= 1
            if depth == 0:
                return text[open_paren:i + 1]
    return text[open_paren:end]


def collect_outbound_calls(sources: Sequence[SourceFile], api_prefix: str = API_PREFIX) -> List[OutboundCall]:
    calls: List[OutboundCall] = []
    for source in sources:
        text = strip_comments(source.text)
        for m in _FETCH_CALL.finditer(text):
            url = m.group("url")
            if not url.startswith(api_prefix):
                continue
            method: Optional[str] = "GET"
            option = _METHOD_OPTION.search(_call_span(text, text.index("(", m.start())))
            if option:
                method = option.group("verb").upper() if option.group("verb") else None
            calls.append(OutboundCall(url, source.path, _line_of(text, m.start()), method))
        for m in _AXIOS_CALL.finditer(text):
            url = m.group("url")
            if not url.startswith(api_prefix):
                continue
            verb = m.group("verb")
            calls.append(OutboundCall(
                url, source.path, _line_of(text, m.start()), verb.upper() if verb else None,
            ))
    return calls


def _call_segments(url: str) -> List[Tuple[bool, str]]:
    """Split a request path into ``(is_dynamic, text)`` segments."""
    path = re.split(r"[?#]", url, maxsplit=1)[0]
    return [("${" in s, s) for s in path.strip("/").split("/") if s]


def _segments_match(call: List[Tuple[bool, str]], route: List[Tuple[str, str]]) -> bool:
    if not route:
        return not call
    kind, text = route[0]
    if kind == OPTIONAL_CATCH_ALL:
        return True
    if kind == CATCH_ALL:
        return len(call) >= 1
    if not call:
        return False
    dynamic, value = call[0]
    if kind == LITERAL and not dynamic and value != text:
        return False
    return _segments_match(call[1:], route[1:])


def check_api_contracts(sources: Sequence[SourceFile], api_prefix: str = API_PREFIX) -> List[Issue]:
    endpoints = collect_endpoints(sources)
    if not endpoints:
        logger.debug("No API endpoints declared; skipping contract check")
        return []
    prefix_depth = len([s for s in api_prefix.strip("/").split("/") if s])
    issues: List[Issue] = []

    for call in collect_outbound_calls(sources, api_prefix):
        segments = _call_segments(call.url)
        if all(dynamic for dynamic, _ in segments[prefix_depth:]):
            # Nothing static beyond the prefix to verify
            continue
        matches = [e for e in endpoints if _segments_match(segments, e.segments)]
        if not matches:
            issues.append(Issue(
                category=Category.API,
                severity=Severity.WARNING,
                kind=IssueKind.API_CONTRACT_MISMATCH,
                file=call.file,
                line=call.line,
                message=f"Request to '{call.url}' matches no declared API endpoint",
                fix="Create the route handler or correct the request path",
                symbol=call.url,
            ))
            continue
        if call.method is None or any(e.methods is None or not e.methods for e in matches):
            continue
        allowed: Set[str] = set()
        for endpoint in matches:
            allowed |= endpoint.methods or set()
        if call.method not in allowed:
            issues.append(Issue(
                category=Category.API,
                severity=Severity.WARNING,
                kind=IssueKind.API_METHOD_MISMATCH,
                file=call.file,
                line=call.line,
                message=(
                    f"{call.method} request to '{call.url}' but {matches[0].file} only handles "
                    f"{', '.join(sorted(allowed))}"
                ),
                fix=f"Export a {call.method} handler or change the request method",
                symbol=call.url,
            ))
    return issues


# ===================================================================
# Schema references
# ===================================================================

_DRIZZLE_TABLE = re.compile(
    r"\b(?:const|let|var)\s+(?P<var>[\w$]+)\s*=\s*(?:[\w$]+\.)?"
    r"(?:pgTable|mysqlTable|sqliteTable|pgView|mysqlView|sqliteView|table)\(\s*['\"`](?P<name>[\w.-]+)['\"`]"
)
_PRISMA_MODEL = re.compile(r"^[ \t]*model\s+(?P<name>\w+)\s*\{(?P<body>[^}]*)\}", re.M)
_PRISMA_MAP = re.compile(r"@@map\(\s*(?:name\s*:\s*)?['\"](?P<name>\w+)['\"]")
_SQL_TABLE = re.compile(
    r"\bcreate\s+(?:or\s+replace\s+)?(?:materialized\s+)?(?:table|view)\s+(?:if\s+not\s+exists\s+)?"
    r"(?:[\"`]?\w+[\"`]?\.)?[\"`]?(?P<name>\w+)[\"`]?",
    re.I,
)
_SUPABASE_TYPES_TABLE = re.compile(r"^[ \t]*(?P<name>\w+)\s*:\s*\{\s*Row\s*:", re.M)

_FROM_LITERAL = re.compile(r"(?P<recv>[\w$]+)\s*\)?\s*\.from\(\s*['\"`](?P<name>[\w.-]+)['\"`]\s*\)")
_KNEX_LITERAL = re.compile(r"(?<![\w$.])(?:knex|trx)\(\s*['\"`](?P<name>\w+)['\"`]\s*\)")
_DRIZZLE_WRITE = re.compile(
    r"(?<![\w$.])(?:db|tx|trx|database)\s*\.\s*(?:insert|update|delete)\(\s*"
    r"(?:(?P<ns>[\w$]+)\.)?(?P<ident>[\w$]+)\s*\)"
)
_DRIZZLE_SELECT = re.compile(
    r"\.select(?:Distinct)?\([^)]*\)\s*\.from\(\s*(?:(?P<ns>[\w$]+)\.)?(?P<ident>[\w$]+)\s*\)"
)
_PRISMA_OP = re.compile(
    r"(?<![\w$.])prisma\.(?P<model>\w+)\.(?:findMany|findUnique|findUniqueOrThrow|findFirst|"
    r"findFirstOrThrow|create|createMany|update|updateMany|upsert|delete|deleteMany|count|"
    r"aggregate|groupBy)\("
)
# Receivers whose `.from('x')` is not a table query
_NON_TABLE_RECEIVERS = {
    "Array", "Buffer", "Object", "Set", "Map", "String", "Uint8Array", "Observable",
    "storage", "Promise", "Readable",
}


@dataclass
class SchemaCatalog:
    tables: Set[str]
    table_vars: Set[str]
    models: Set[str]

    @property
    def empty(self) -> bool:
        return not (self.tables or self.table_vars or self.models)


def _lower_camel(name: str) -> str:
    return name[:1].lower() + name[1:]


def collect_schema(sources: Sequence[SourceFile]) -> SchemaCatalog:
    catalog = SchemaCatalog(set(), set(), set())
    for source in sources:
        suffix = PurePosixPath(source.path).suffix
        if suffix == ".prisma":
            for m in _PRISMA_MODEL.finditer(source.text):
                catalog.models.add(_lower_camel(m.group("name")))
                mapped = _PRISMA_MAP.search(m.group("body"))
                catalog.tables.add((mapped.group("name") if mapped else m.group("name")).lower())
            continue
        if suffix == ".sql":
            for m in _SQL_TABLE.finditer(source.text):
                catalog.tables.add(m.group("name").lower())
            continue
        text = strip_comments(source.text)
        for m in _DRIZZLE_TABLE.finditer(text):
            catalog.tables.add(m.group("name").split(".")[-1].lower())
            catalog.table_vars.add(m.group("var"))
        if "Row:" in text and "Tables" in text:
            for m in _SUPABASE_TYPES_TABLE.finditer(text):
                catalog.tables.add(m.group("name").lower())
    return catalog


def _import_bindings(graph: Optional[ModuleGraph], path: str) -> Set[str]:
    if graph is None or path not in graph.modules:
        return set()
    return {n.alias for record in graph.modules[path].imports for n in record.names}


def check_schema(
    sources: Sequence[SourceFile],
    schema_sources: Sequence[SourceFile] = (),
    graph: Optional[ModuleGraph] = None,
) -> List[Issue]:
    catalog = collect_schema(list(sources) + list(schema_sources))
    if catalog.empty:
        logger.debug("No schema declarations found; skipping schema check")
        return []

    issues: List[Issue] = []

    def report(source: SourceFile, text: str, offset: int, name: str) -> None:
        issues.append(Issue(
            category=Category.SCHEMA,
            severity=Severity.ERROR,
            kind=IssueKind.SCHEMA_MISMATCH,
            file=source.path,
            line=_line_of(text, offset),
            message=f"Table '{name}' is not declared in the schema",
            fix="Add the table to the schema or correct the table name",
            symbol=name,
        ))

    for source in sources:
        text = strip_comments(source.text)
        if catalog.tables:
            for m in _FROM_LITERAL.finditer(text):
                if m.group("recv") in _NON_TABLE_RECEIVERS:
                    continue
                name = m.group("name").split(".")[-1]
                if name.lower() not in catalog.tables:
                    report(source, text, m.start("name"), name)
            for m in _KNEX_LITERAL.finditer(text):
                if m.group("name").lower() not in catalog.tables:
                    report(source, text, m.start("name"), m.group("name"))

        if catalog.table_vars:
            bindings = _import_bindings(graph, source.path)
            for pattern in (_DRIZZLE_WRITE, _DRIZZLE_SELECT):
                for m in pattern.finditer(text):
                    ident = m.group("ident")
                    bound = m.group("ns") if m.group("ns") else ident
                    if bound in bindings and ident not in catalog.table_vars:
                        report(source, text, m.start("ident"), ident)

        if catalog.models:
            for m in _PRISMA_OP.finditer(text):
                if m.group("model") not in catalog.models:
                    report(source, text, m.start("model"), m.group("model"))
    return issues
