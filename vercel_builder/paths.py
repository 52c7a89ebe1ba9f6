"""Workspace path resolution.

Pure functions: nothing here touches the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from vercel_builder.errors import InvalidEntrypoint

MODULES_DIR = "node_modules"
CACHE_DIR = ".vercel_cache"
YARN_CACHE_DIR = "yarn"

_ENTRYPOINT_NAMES = {"package.json", "nuxt.config.js", "nuxt.config.ts"}


@dataclass(frozen=True)
class PathSet:
    root: Path
    entry_dir: str
    entry_path: Path
    modules_path: Path
    cache_path: Path
    yarn_cache_path: Path


def validate_entrypoint(entrypoint: str) -> None:
    """Reject entrypoints that are not a Nuxt project marker file."""
    name = PurePosixPath(entrypoint).name
    if name not in _ENTRYPOINT_NAMES:
        raise InvalidEntrypoint(
            'Specified "src" has to be "package.json", "nuxt.config.js" or "nuxt.config.ts", '
            f"got {entrypoint!r}"
        )


def resolve_paths(work_path: Path, entrypoint: str) -> PathSet:
    if not entrypoint or not entrypoint.strip():
        raise InvalidEntrypoint("Entrypoint must not be empty")
    ep = PurePosixPath(entrypoint.replace("\\", "/"))
    if ep.is_absolute():
        raise InvalidEntrypoint(f"Entrypoint must be relative to the workspace: {entrypoint!r}")
    if ".." in ep.parts:
        raise InvalidEntrypoint(f"Entrypoint escapes the workspace: {entrypoint!r}")

    entry_dir = ep.parent.as_posix()
    root = Path(work_path)
    entry_path = root if entry_dir == "." else root / entry_dir
    cache_path = entry_path / CACHE_DIR
    return PathSet(
        root=root,
        entry_dir=entry_dir,
        entry_path=entry_path,
        modules_path=entry_path / MODULES_DIR,
        cache_path=cache_path,
        yarn_cache_path=cache_path / YARN_CACHE_DIR,
    )
