"""Static defaults for the coherence engine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Set, Tuple

BASE_DIR = Path(os.environ.get("COHERENCE_HOME", str(Path.home() / ".coherence"))).expanduser()
USER_CONFIG_FILE = BASE_DIR / "config.toml"

# Per-project artifacts live under the analyzed root
STATE_DIR_NAME = ".coherence"
STATE_FILE_NAME = "coherence-state.json"
PROJECT_CONFIG_FILE = ".coherence.toml"

SOURCE_EXTENSIONS: Tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")
SCHEMA_EXTENSIONS: Tuple[str, ...] = (".prisma", ".sql")

SKIP_DIRS: Set[str] = {
    "dist", "build", "out", "coverage", ".next", ".nuxt", ".svelte-kit",
    ".turbo", ".vercel", ".output", "storybook-static", "__pycache__",
}
DEPENDENCY_DIRS: Set[str] = {"node_modules", "bower_components", "jspm_packages", "vendor"}

# Tried in order after the bare path
RESOLVE_FALLBACKS: Tuple[str, ...] = (
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    "/index.ts", "/index.tsx", "/index.js", "/index.jsx",
)
# ESM-style TS imports spell the compiled extension: './a.js' -> 'a.ts'
COMPILED_EXTENSION_MAP: Dict[str, Tuple[str, ...]] = {
    ".js": (".ts", ".tsx"),
    ".jsx": (".tsx",),
    ".mjs": (".mts",),
    ".cjs": (".cts",),
}

DEFAULT_ALIASES: Dict[str, str] = {"@/": "src/", "~/": ""}

ENV_FILES: List[str] = [
    ".env", ".env.local", ".env.example", ".env.development", ".env.production", ".env.test",
]
ENV_EXAMPLE_FILE = ".env.example"
ENV_IGNORE: List[str] = ["NODE_ENV", "NEXT_RUNTIME"]
ENV_IGNORE_PREFIXES: List[str] = ["NEXT_", "VERCEL_"]

API_PREFIX = "/api/"
HTTP_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

DEBUG_PRINT_CALLS: List[str] = ["console.log", "console.debug"]

# Framework-reserved basenames (without extension) invoked by the host, never imported.
# App-router names count only under an "app" folder, pages-router names only
# under "pages", and root names only at the project root or directly in src/.
APP_ROUTER_ENTRY_NAMES: Set[str] = {
    "page", "layout", "route", "loading", "error", "global-error", "not-found",
    "template", "default", "head", "opengraph-image", "twitter-image", "icon",
    "apple-icon", "sitemap", "robots", "manifest",
}
PAGES_ROUTER_ENTRY_NAMES: Set[str] = {"_app", "_document", "_error"}
ROOT_ENTRY_NAMES: Set[str] = {"middleware", "instrumentation"}
# fnmatch patterns over root-relative paths ("*" also matches "/")
ENTRY_POINT_PATTERNS: List[str] = [
    "pages/*",
    "*/pages/*",
    "*/app/api/*",
    "app/api/*",
    "*.config.*",
    "*.d.ts",
    "*.test.*",
    "*.spec.*",
    "*__tests__/*",
    "*.stories.*",
    "scripts/*",
    "index.*",
    "src/index.*",
]

RIPPLE_HIGH_THRESHOLD = 5
RIPPLE_MEDIUM_THRESHOLD = 2
