"""Zip packaging for function packages.

Creates a normalized zip archive of a file set and, when written to disk, a
sibling `.sha256` file with the archive's SHA-256 hex digest.

Design goals:
- Byte-for-byte reproducible: sorted entries, fixed timestamps, fixed
  compression level.
- No directory traversal issues; only relative arcnames.
"""

from __future__ import annotations

import hashlib
import io
import stat
import zipfile
from collections.abc import Mapping
from pathlib import Path, PurePosixPath

from vercel_builder.files import FileRef

# Earliest timestamp a zip entry can carry.
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def _sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _as_rel_arcname(key: str) -> str:
    """Return a safe, relative arcname for a logical path."""
    rel = PurePosixPath(key.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ValueError(f"Unsafe archive member: {key!r}")
    return rel.as_posix()


def make_zip(files: Mapping[str, FileRef]) -> bytes:
    """Return the archive bytes for *files*; equal inputs give equal bytes."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as z:
        for key in sorted(files):
            ref = files[key]
            info = zipfile.ZipInfo(_as_rel_arcname(key), date_time=_FIXED_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.create_system = 3
            info.external_attr = (stat.S_IFREG | stat.S_IMODE(ref.mode)) << 16
            z.writestr(info, ref.read_bytes())
    return buf.getvalue()


def write_zip_bundle(outdir: Path, name: str, files: Mapping[str, FileRef]) -> Path:
    """Write `<name>.zip` plus its `.zip.sha256` sidecar into *outdir*."""
    outdir.mkdir(parents=True, exist_ok=True)
    zip_path = outdir / f"{name}.zip"
    data = make_zip(files)
    zip_path.write_bytes(data)
    zip_path.with_suffix(".zip.sha256").write_text(_sha256_bytes(data), encoding="utf-8")
    return zip_path
