"""File references and file sets.

A `FileSet` maps a POSIX logical path to a `FileRef`. File sets are plain
dicts, but nothing in this package mutates one it did not create: every
helper returns a fresh mapping.

`download` materialises a file set on disk and refuses keys with:
- Absolute paths
- `..` traversal
- Targets resolving outside the destination
"""

from __future__ import annotations

import hashlib
import os
import posixpath
import shutil
import stat
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

DEFAULT_MODE = 0o100644


@dataclass(frozen=True)
class FileRef:
    """Either inline `data` or a file on disk at `fs_path`."""

    data: bytes | None = None
    fs_path: Path | None = None
    mode: int = DEFAULT_MODE

    def __post_init__(self) -> None:
        if (self.data is None) == (self.fs_path is None):
            raise ValueError("FileRef needs exactly one of data or fs_path")

    @classmethod
    def from_text(cls, text: str, mode: int = DEFAULT_MODE) -> FileRef:
        return cls(data=text.encode("utf-8"), mode=mode)

    @classmethod
    def from_path(cls, path: Path) -> FileRef:
        st = path.stat()
        return cls(fs_path=path, mode=stat.S_IFREG | stat.S_IMODE(st.st_mode))

    def read_bytes(self) -> bytes:
        if self.fs_path is None:
            return self.data or b""
        return self.fs_path.read_bytes()

    def digest(self) -> str:
        """Return the hex SHA-256 of the referenced content."""
        h = hashlib.sha256()
        if self.fs_path is None:
            h.update(self.data or b"")
            return h.hexdigest()
        with open(self.fs_path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                h.update(chunk)
        return h.hexdigest()


FileSet = dict[str, FileRef]


def _is_within(base: Path, target: Path) -> bool:
    try:
        target.relative_to(base)
        return True
    except ValueError:
        return False


def normalize_key(*parts: str) -> str:
    """Join logical path parts the way `path.join` would, dropping leading `./`."""
    joined = posixpath.normpath(posixpath.join(*[p for p in parts if p]))
    if joined == ".":
        return ""
    return joined


def _walk_files(base_dir: Path, skip: set[str]) -> Iterable[Path]:
    for dirpath, dirnames, filenames in os.walk(base_dir, followlinks=True):
        here = Path(dirpath)
        real = os.path.realpath(here)
        ancestors = here.relative_to(base_dir).parents
        if any(os.path.realpath(base_dir / a) == real for a in ancestors):
            # symlink loop back into an enclosing directory
            dirnames[:] = []
            continue
        dirnames[:] = [d for d in dirnames if d not in skip]
        for name in filenames:
            yield Path(dirpath, name)


def glob(pattern: str, base_dir: Path, exclude: Iterable[str] = ()) -> FileSet:
    """Match *pattern* under *base_dir* and return files keyed by relative path.

    Dotfiles are included. The full-tree patterns `**` and `**/*` also descend
    into symlinked directories, stopping at links back into an enclosing
    directory; other patterns go through `Path.glob`. Files below a directory
    named in *exclude* are skipped. A missing base directory yields an empty set.
    """
    skip = set(exclude)
    base_dir = Path(base_dir)
    if not base_dir.is_dir():
        return {}
    if pattern in {"**", "**/*"}:
        candidates: Iterable[Path] = _walk_files(base_dir, skip)
    else:
        candidates = base_dir.glob(pattern)
    found: FileSet = {}
    for p in sorted(candidates):
        if not p.is_file():
            continue
        rel = p.relative_to(base_dir)
        if skip and skip.intersection(rel.parts[:-1]):
            continue
        key = rel.as_posix()
        found[key] = FileRef.from_path(p)
    return found


def glob_and_prefix(pattern: str, base_dir: Path, prefix: str) -> FileSet:
    files = glob(pattern, base_dir)
    return {normalize_key(prefix, key): ref for key, ref in files.items()}


def merge(*sets: Mapping[str, FileRef]) -> FileSet:
    """Merge file sets left to right; later entries win on key collisions."""
    merged: FileSet = {}
    for s in sets:
        merged.update(s)
    return merged


def _safe_target(dest: Path, key: str) -> Path:
    rel = PurePosixPath(key)
    if not key or rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"Unsafe logical path: {key!r}")
    target = (dest / rel).resolve()
    if not _is_within(dest.resolve(), target):
        raise ValueError(f"Logical path escapes destination: {key!r}")
    return target


def download(files: Mapping[str, FileRef], dest: Path) -> FileSet:
    """Write *files* below *dest* and return references to the written copies."""
    dest.mkdir(parents=True, exist_ok=True)
    written: FileSet = {}
    for key in sorted(files):
        ref = files[key]
        target = _safe_target(dest, key)
        target.parent.mkdir(parents=True, exist_ok=True)
        if ref.fs_path is not None and ref.fs_path.resolve() == target:
            written[key] = ref
            continue
        if ref.fs_path is None:
            target.write_bytes(ref.read_bytes())
        else:
            shutil.copyfile(ref.fs_path, target)
        os.chmod(target, stat.S_IMODE(ref.mode) & ~stat.S_ISUID & ~stat.S_ISGID)
        written[key] = FileRef(fs_path=target, mode=ref.mode)
    return written
