"""Nuxt-specific options and version checks."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import semver
from pydantic import BaseModel

from vercel_builder.errors import FrameworkNotResolvable, UnsupportedFrameworkVersion
from vercel_builder.logging import get_logger
from vercel_builder.manifest import CORE_PACKAGE
from vercel_builder.toolchain import resolve_package_manifest

log = get_logger(__name__)

CONFIG_JS = "nuxt.config.js"
CONFIG_TS = "nuxt.config.ts"

MIN_VERSION = "2.4.0"
TESTED_CEILING = "3.0.0"


class NuxtOptions(BaseModel):
    static_dir: str = "static"
    public_path: str = "_nuxt/"
    build_dir: str = ".nuxt"
    src_dir: str = "."
    lambda_name: str = "index"
    server_middleware: bool = False

    @classmethod
    def from_config(cls, raw: dict[str, Any], entry_path: Path) -> NuxtOptions:
        def rel(value: str | None, default: str) -> str:
            if not value:
                return default
            return Path(os.path.relpath(Path(entry_path, value), entry_path)).as_posix()

        static_dir = (raw.get("dir") or {}).get("static") or "static"
        public_path = (raw.get("build") or {}).get("publicPath") or "/_nuxt/"
        return cls(
            static_dir=static_dir,
            public_path=public_path.lstrip("/"),
            build_dir=rel(raw.get("buildDir"), ".nuxt"),
            src_dir=rel(raw.get("srcDir"), "."),
            lambda_name=raw.get("lambdaName") or "index",
            server_middleware=bool(raw.get("serverMiddleware")),
        )


def config_file_name(entry_path: Path) -> str:
    """Return which nuxt config the project ships, preferring TypeScript."""
    for name in (CONFIG_TS, CONFIG_JS):
        if (entry_path / name).exists():
            return name
    raise FileNotFoundError(f"Can not read nuxt.config from {entry_path}")


def check_framework_version(entry_path: Path, suffix: str, stop_at: Path | None = None) -> str:
    """Validate the installed `@nuxt/core<suffix>` and return its version.

    Raises FrameworkNotResolvable when the package is not installed and
    UnsupportedFrameworkVersion below the minimum. Versions above the tested
    ceiling only log a warning.
    """
    pkg = resolve_package_manifest(entry_path, f"{CORE_PACKAGE}{suffix}", stop_at=stop_at)
    version = str(pkg.get("version", "0.0.0"))
    try:
        parsed = semver.Version.parse(version)
    except ValueError as exc:
        raise FrameworkNotResolvable(f"{CORE_PACKAGE}{suffix} has an invalid version {version!r}") from exc
    if parsed.compare(MIN_VERSION) < 0:
        raise UnsupportedFrameworkVersion(version, MIN_VERSION)
    if parsed.compare(TESTED_CEILING) > 0:
        log.warning("WARNING: nuxt >= %s is not tested against this builder!", TESTED_CEILING)
    log.info("Detected nuxt version %s", version)
    return version
