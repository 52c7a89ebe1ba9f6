"""TypeScript support: environment prep and precompilation of build files.

Projects with `nuxt.config.ts` get the config, plus any local `.ts` server
middleware and modules it references, compiled to JavaScript next to their
sources before `nuxt build` runs.
"""

from __future__ import annotations

import json
import os
import re
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from vercel_builder.files import FileRef, FileSet, glob
from vercel_builder.logging import get_logger
from vercel_builder.manifest import drop_typescript_runtime
from vercel_builder.nuxt import CONFIG_JS, CONFIG_TS
from vercel_builder.toolchain import Toolchain
from vercel_builder.types import Manifest

log = get_logger(__name__)

COMPILED_DIR = "now_compiled"
_RESERVED_OPTIONS = {"rootDirs", "paths", "outDir", "rootDir", "noEmit"}


def prepare_typescript_environment(entry_path: Path, manifest: Manifest) -> Manifest:
    """Keep tsc away from the namespaced module dirs and drop the TS runtime."""
    tsconfig = entry_path / "tsconfig.json"
    if tsconfig.exists():
        try:
            data = json.loads(tsconfig.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise ValueError(f"Can not read tsconfig.json from {entry_path}") from exc
        exclude = list(data.get("exclude") or [])
        for d in ("node_modules_dev", "node_modules_prod"):
            if d not in exclude:
                exclude.append(d)
        data["exclude"] = exclude
        tsconfig.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return drop_typescript_runtime(manifest)


def compiler_options(entry_path: Path, options: Mapping[str, Any] | None = None) -> list[str]:
    args: list[str] = []
    for name, value in (options or {}).items():
        if name in _RESERVED_OPTIONS:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        args += [f"--{name}", str(value)]
    return [*args, "--noEmit", "false", "--rootDir", str(entry_path), "--outDir", COMPILED_DIR]


def _item_path(item: Any) -> str | None:
    if isinstance(item, str):
        return item
    if isinstance(item, list) and item and isinstance(item[0], str):
        return item[0]
    if isinstance(item, dict) and isinstance(item.get("handler"), str):
        return item["handler"]
    return None


def local_typescript_sources(entry_path: Path, config: dict) -> dict[str, Path]:
    """Map config references (e.g. `~/api/index.ts`) to the `.ts` files behind them."""
    src_dir = "."
    if config.get("srcDir"):
        src_dir = os.path.relpath(Path(entry_path, config["srcDir"]), entry_path)
        src_dir = src_dir.replace(COMPILED_DIR, ".")
    middleware = config.get("serverMiddleware") or []
    if isinstance(middleware, dict):
        middleware = list(middleware.values())
    found: dict[str, Path] = {}
    for item in [*middleware, *(config.get("modules") or [])]:
        ref = _item_path(item)
        if not ref or ref == "[Function]":
            continue
        local = re.sub(r"^[@~]/", f"{src_dir}/", ref)
        local = re.sub(r"\.ts$", "", local)
        resolved = (entry_path / local).resolve()
        if resolved.with_name(resolved.name + ".ts").exists():
            found[ref] = resolved
    return found


def _strip_ts_references(config_js: Path, refs: list[str]) -> None:
    text = config_js.read_text(encoding="utf-8")
    for ref in refs:
        if not ref.endswith(".ts"):
            continue
        text = re.sub(rf"(?<=['\"`]){re.escape(ref)}(?=['\"`])", ref[: -len(".ts")], text)
    config_js.write_text(text, encoding="utf-8")


def compile_typescript_build_files(
    toolchain: Toolchain,
    entry_path: Path,
    tsc_options: Mapping[str, Any] | None = None,
) -> FileSet:
    """Compile the TypeScript build files and move the output beside the sources."""
    opts = compiler_options(entry_path, tsc_options)
    out_dir = entry_path / COMPILED_DIR
    out_dir.mkdir(parents=True, exist_ok=True)

    toolchain.tsc(entry_path, [*opts, CONFIG_TS])
    compiled_config = f"{COMPILED_DIR}/{CONFIG_JS}"
    config = toolchain.load_nuxt_config(entry_path, compiled_config)

    sources = local_typescript_sources(entry_path, config)
    if sources:
        _strip_ts_references(entry_path / compiled_config, list(sources))
        for ref, path in sources.items():
            log.info("Compiling %s", ref)
            toolchain.tsc(entry_path, [*opts, f"{path}.ts"])

    compiled: FileSet = {}
    for key, ref in glob("**", out_dir).items():
        target = entry_path / key
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(out_dir / key), target)
        compiled[key] = FileRef(fs_path=target, mode=ref.mode)
    shutil.rmtree(out_dir, ignore_errors=True)
    log.info("Compiled %d TypeScript build files", len(compiled))
    return compiled
