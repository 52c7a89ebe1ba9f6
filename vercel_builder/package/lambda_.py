"""Function package assembly.

One package per logical entrypoint: the rendered launcher, the runtime
bridge, the nuxt config, the server bundle, compiled TypeScript, production
node_modules and any extra files the project asks for.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path

from vercel_builder.errors import LauncherTemplateError
from vercel_builder.files import FileRef, FileSet, glob, merge
from vercel_builder.logging import get_logger
from vercel_builder.manifest import MANIFEST_NAME
from vercel_builder.package.zip import make_zip

log = get_logger(__name__)

LAUNCHER_NAME = "vercel__launcher.js"
BRIDGE_NAME = "vercel__bridge.js"
HANDLER = "vercel__launcher.launcher"

SUFFIX_PLACEHOLDER = "__NUXT_SUFFIX__"
CONFIG_PLACEHOLDER = "__NUXT_CONFIG__"
SERVER_PLACEHOLDER = "/* __ENABLE_INTERNAL_SERVER__ */true"


@dataclass(frozen=True)
class FunctionPackage:
    files: Mapping[str, FileRef]
    runtime: str
    handler: str = HANDLER
    environment: Mapping[str, str] = field(default_factory=lambda: {"NODE_ENV": "production"})
    max_duration: int | None = None
    memory: int | None = None

    def to_zip(self) -> bytes:
        return make_zip(self.files)

    def digest(self) -> str:
        return hashlib.sha256(self.to_zip()).hexdigest()

    def describe(self) -> dict:
        """Package metadata without the file contents."""
        meta: dict = {
            "handler": self.handler,
            "runtime": self.runtime,
            "environment": dict(self.environment),
            "files": len(self.files),
        }
        if self.max_duration is not None:
            meta["maxDuration"] = self.max_duration
        if self.memory is not None:
            meta["memory"] = self.memory
        return meta


def load_launcher_template() -> str:
    return (
        resources.files("vercel_builder.templates")
        .joinpath("launcher.js")
        .read_text(encoding="utf-8")
    )


def check_launcher_template(template: str) -> None:
    missing = [
        p for p in (SUFFIX_PLACEHOLDER, CONFIG_PLACEHOLDER, SERVER_PLACEHOLDER) if p not in template
    ]
    if missing:
        raise LauncherTemplateError(f"Launcher template is missing placeholders: {missing}")


def render_launcher(template: str, *, suffix: str, config_name: str, internal_server: bool) -> str:
    """Substitute the launcher placeholders, refusing templates that lack any of them."""
    check_launcher_template(template)
    return (
        template.replace(SUFFIX_PLACEHOLDER, suffix)
        .replace(CONFIG_PLACEHOLDER, f"./{config_name}")
        .replace(SERVER_PLACEHOLDER, "true" if internal_server else "false")
    )


def collect_extra_files(entry_path: Path, patterns: list[str]) -> FileSet:
    """Glob each include pattern plus the manifest; unmatched patterns are only logged."""
    extra: FileSet = {}
    for pattern in [*patterns, MANIFEST_NAME]:
        matched = glob(pattern, entry_path)
        if not matched:
            log.warning("Include pattern %r matched no files", pattern)
        extra = merge(extra, matched)
    return extra


def build_function_package(
    *,
    launcher_src: str,
    bridge_path: Path,
    config_name: str,
    entry_path: Path,
    server_dist: FileSet,
    compiled_typescript: FileSet,
    node_modules: FileSet,
    include_patterns: list[str],
    runtime: str,
    max_duration: int | None = None,
    memory: int | None = None,
) -> FunctionPackage:
    files = merge(
        {
            LAUNCHER_NAME: FileRef.from_text(launcher_src),
            BRIDGE_NAME: FileRef.from_path(bridge_path),
            config_name: FileRef.from_path(entry_path / config_name),
        },
        server_dist,
        compiled_typescript,
        node_modules,
        collect_extra_files(entry_path, include_patterns),
    )
    return FunctionPackage(
        files=files,
        runtime=runtime,
        max_duration=max_duration,
        memory=memory,
    )
