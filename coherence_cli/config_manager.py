"""Engine settings assembled from defaults, TOML files and tsconfig path aliases."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from . import config
from .models import ConfigError
from .text_patch import PatchError, parse_jsonc, set_value

logger = logging.getLogger(__name__)

SECTION = "coherence"
TSCONFIG_FILES = ("tsconfig.json", "jsconfig.json")


@dataclass
class EngineSettings:
    include_dirs: List[str] = field(default_factory=list)
    exclude_dirs: List[str] = field(default_factory=list)
    extensions: List[str] = field(default_factory=lambda: list(config.SOURCE_EXTENSIONS))
    aliases: Dict[str, str] = field(default_factory=lambda: dict(config.DEFAULT_ALIASES))
    entry_points: List[str] = field(default_factory=list)
    env_files: List[str] = field(default_factory=lambda: list(config.ENV_FILES))
    env_example_file: str = config.ENV_EXAMPLE_FILE
    env_ignore: List[str] = field(default_factory=lambda: list(config.ENV_IGNORE))
    env_ignore_prefixes: List[str] = field(default_factory=lambda: list(config.ENV_IGNORE_PREFIXES))
    api_prefix: str = config.API_PREFIX
    include_dependency_dirs: bool = False
    max_workers: Optional[int] = None
    debug_print_calls: List[str] = field(default_factory=lambda: list(config.DEBUG_PRINT_CALLS))

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


_FIELD_TYPES = {f.name: f.type for f in fields(EngineSettings)}


def _check_type(key: str, value: Any, source: Path) -> Any:
    declared = _FIELD_TYPES[key]
    if declared.startswith("List"):
        ok = isinstance(value, list) and all(isinstance(v, str) for v in value)
    elif declared.startswith("Dict"):
        ok = isinstance(value, dict) and all(isinstance(v, str) for v in value.values())
    elif declared == "bool":
        ok = isinstance(value, bool)
    elif declared == "Optional[int]":
        ok = value is None or (isinstance(value, int) and not isinstance(value, bool) and value > 0)
    else:
        ok = isinstance(value, str)
    if not ok:
        raise ConfigError(f"{source}: '{key}' has invalid value {value!r} (expected {declared})")
    return value


def _apply_table(settings: EngineSettings, table: Dict[str, Any], source: Path) -> None:
    for key, value in table.items():
        if key not in _FIELD_TYPES:
            logger.warning("%s: ignoring unknown setting '%s'", source, key)
            continue
        value = _check_type(key, value, source)
        if key == "aliases":
            settings.aliases.update(value)
        else:
            setattr(settings, key, value)


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except toml.TomlDecodeError as exc:
        raise ConfigError(f"{path}: invalid TOML ({exc})") from exc
    except OSError as exc:
        raise ConfigError(f"{path}: cannot read ({exc})") from exc


# ------------------------------------------------------------------
# tsconfig / jsconfig path aliases
# ------------------------------------------------------------------

def _find_tsconfig(root: Path) -> Optional[Path]:
    for name in TSCONFIG_FILES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def _normalize_dir(path: str) -> str:
    normalized = os.path.normpath(path).replace(os.sep, "/")
    if normalized in (".", ""):
        return ""
    return normalized


def read_tsconfig_aliases(root: Path) -> Dict[str, str]:
    """Translate ``compilerOptions.paths`` into alias-prefix -> root-relative directory.

    ``"@/*": ["./src/*"]`` becomes ``{"@/": "src/"}``; an exact key such as
    ``"config": ["src/config.ts"]`` maps to that file path.
    """
    tsconfig = _find_tsconfig(root)
    if tsconfig is None:
        return {}
    try:
        data = parse_jsonc(tsconfig.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, PatchError) as exc:
        logger.warning("Cannot read path aliases from %s: %s", tsconfig, exc)
        return {}

    if not isinstance(data, dict):
        return {}
    options = data.get("compilerOptions") or {}
    paths = options.get("paths") or {}
    if not isinstance(paths, dict):
        return {}
    base_url = options.get("baseUrl") or "."
    aliases: Dict[str, str] = {}
    for key, targets in paths.items():
        if not isinstance(targets, list) or not targets or not isinstance(targets[0], str):
            continue
        target = targets[0]
        if key.endswith("/*") and target.endswith("*"):
            directory = _normalize_dir(os.path.join(base_url, target[:-1]))
            aliases[key[:-1]] = directory + "/" if directory else ""
        elif "*" not in key:
            aliases[key] = _normalize_dir(os.path.join(base_url, target))
    logger.debug("Loaded %d path aliases from %s", len(aliases), tsconfig)
    return aliases


def write_tsconfig_alias(root: Path, prefix: str, directory: str) -> Path:
    """Add or replace one ``compilerOptions.paths`` entry, preserving the rest of the file."""
    if not prefix.endswith("/"):
        raise ConfigError(f"Alias prefix must end with '/': {prefix!r}")
    tsconfig = _find_tsconfig(root) or root / TSCONFIG_FILES[0]
    text = tsconfig.read_text(encoding="utf-8") if tsconfig.exists() else "{}\n"

    try:
        data = parse_jsonc(text)
        if not isinstance(data, dict):
            raise PatchError("document root is not an object")
        base_url = (data.get("compilerOptions") or {}).get("baseUrl") or "."
        target = os.path.relpath(os.path.join(directory or "."), base_url).replace(os.sep, "/")
        target = "./" if target == "." else f"./{target}/"
        updated = set_value(text, ("compilerOptions", "paths", prefix + "*"), [target + "*"])
    except PatchError as exc:
        raise ConfigError(f"{tsconfig}: cannot update paths ({exc})") from exc

    tsconfig.write_text(updated, encoding="utf-8")
    logger.debug("Wrote alias %s -> %s into %s", prefix, directory, tsconfig)
    return tsconfig


# ------------------------------------------------------------------
# Load / save
# ------------------------------------------------------------------

def load_settings(root: Path, user_config: Optional[Path] = None) -> EngineSettings:
    """Build the effective settings for *root*.

    Later sources override earlier ones: built-in defaults, the per-user
    ``config.toml``, tsconfig/jsconfig path aliases, then the project's
    ``.coherence.toml``. Only the ``[coherence]`` table of each TOML file
    is read.

    Raises:
        ConfigError: If a TOML file is malformed or a value has the wrong type.
    """
    settings = EngineSettings()

    user_file = user_config or config.USER_CONFIG_FILE
    if user_file.is_file():
        _apply_table(settings, _read_toml(user_file).get(SECTION, {}), user_file)

    settings.aliases.update(read_tsconfig_aliases(root))

    project_file = root / config.PROJECT_CONFIG_FILE
    if project_file.is_file():
        _apply_table(settings, _read_toml(project_file).get(SECTION, {}), project_file)
    return settings


def save_settings(settings: EngineSettings, target: Path) -> Path:
    """Write *settings* as the ``[coherence]`` table of *target*, keeping other tables intact."""
    document = _read_toml(target) if target.is_file() else {}
    document[SECTION] = settings.to_dict()
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        toml.dump(document, f)
    logger.debug("Saved settings to %s", target)
    return target
