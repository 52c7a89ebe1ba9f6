"""Artifact collection from the framework build output.

Each artifact class lands under its own prefix, so the collected sets never
overlap and can be merged in any order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from vercel_builder.files import FileSet, glob_and_prefix
from vercel_builder.logging import get_logger
from vercel_builder.nuxt import NuxtOptions

log = get_logger(__name__)

SERVER_DIST_PREFIX = ".nuxt/dist/server"
GENERATED_DIR = "dist"
PROD_MODULES_DIR = "node_modules_prod"


def collect_and_prefix(pattern: str, source_dir: Path, dest_prefix: str) -> FileSet:
    """Glob *source_dir* and re-root every match under *dest_prefix*."""
    files = glob_and_prefix(pattern, source_dir, dest_prefix)
    log.info("Collected %d files from %s into /%s", len(files), source_dir, dest_prefix)
    return files


@dataclass
class Artifacts:
    static: FileSet = field(default_factory=dict)
    client_dist: FileSet = field(default_factory=dict)
    server_dist: FileSet = field(default_factory=dict)
    generated: FileSet = field(default_factory=dict)
    node_modules: FileSet = field(default_factory=dict)


def collect_artifacts(entry_path: Path, options: NuxtOptions, *, generated: bool) -> Artifacts:
    build_path = entry_path / options.build_dir
    return Artifacts(
        static=collect_and_prefix("**", entry_path / options.src_dir / options.static_dir, ""),
        client_dist=collect_and_prefix("**", build_path / "dist" / "client", options.public_path),
        server_dist=collect_and_prefix("**", build_path / "dist" / "server", SERVER_DIST_PREFIX),
        generated=(
            collect_and_prefix("**/*.*", entry_path / GENERATED_DIR, "") if generated else {}
        ),
        node_modules=collect_and_prefix("**", entry_path / PROD_MODULES_DIR, "node_modules"),
    )
