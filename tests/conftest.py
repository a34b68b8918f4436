"""Pytest configuration and fixtures for Coherence CLI tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest


@pytest.fixture(autouse=True)
def _isolated_user_config(tmp_path_factory):
    """Point the per-user config at an empty location in every test.

    Without this, a developer's own ``~/.coherence/config.toml`` would leak
    into settings loaded by the engine and the CLI.
    """
    home = tmp_path_factory.mktemp("coherence_home")
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr("coherence_cli.config.BASE_DIR", home)
        mp.setattr("coherence_cli.config.USER_CONFIG_FILE", home / "config.toml")
        yield


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def make_project(temp_dir: Path) -> Callable[[Dict[str, str]], Path]:
    """Factory writing ``{relative path: content}`` into a fresh project root."""

    def _make(files: Dict[str, str]) -> Path:
        root = temp_dir / "project"
        root.mkdir(exist_ok=True)
        for rel, content in files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return root

    return _make


@pytest.fixture
def sample_app_path() -> Path:
    """Get path to the sample Next.js-style project (read-only)."""
    return Path(__file__).parent / "fixtures" / "sample_app"


@pytest.fixture
def sample_app(temp_dir: Path, sample_app_path: Path) -> Path:
    """Writable copy of the sample project, for tests that scan, heal or save state."""
    target = temp_dir / "sample_app"
    shutil.copytree(sample_app_path, target)
    return target
