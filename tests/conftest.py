"""Shared test fixtures for refile."""

from __future__ import annotations

from pathlib import Path

import pytest

MIB = 1024 * 1024


def make_file(path: Path, size: int, seed: int = 7) -> Path:
    """Write ``size`` deterministic, non-repeating-ish bytes to ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    block = bytes((i * seed + (i >> 8)) % 256 for i in range(4096))
    full, rest = divmod(size, len(block))
    with open(path, "wb") as fh:
        for _ in range(full):
            fh.write(block)
        fh.write(block[:rest])
    return path


@pytest.fixture
def refile_home(tmp_path: Path) -> Path:
    """Temporary refile home directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def files_dir(tmp_path: Path) -> Path:
    """Folder holding the files under test."""
    d = tmp_path / "files"
    d.mkdir()
    return d


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    """Directory used as a local storage backend."""
    d = tmp_path / "store"
    d.mkdir()
    return d


@pytest.fixture
def configured_home(refile_home: Path, store_dir: Path) -> Path:
    """Home with a single local backend ``disk`` as the default."""
    from refile.config import ConfigStore, LocalConfig

    ConfigStore(refile_home).set_backend("disk", LocalConfig(path=str(store_dir)))
    return refile_home


@pytest.fixture
def engine(configured_home: Path):
    """VirtualizationEngine wired to the local ``disk`` backend."""
    from refile.engine import VirtualizationEngine

    return VirtualizationEngine(home=configured_home)
