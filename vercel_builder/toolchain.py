"""External tools used by the pipeline: yarn, npx nuxt, tsc and node.

`Toolchain` is the one seam between the pipeline and the outside world.
Tests swap in a subclass that writes the files the real tools would.
"""

from __future__ import annotations

import json
import os
import re
import shutil
from collections.abc import Mapping
from pathlib import Path

from vercel_builder.errors import BuildError, FrameworkNotResolvable
from vercel_builder.logging import get_logger
from vercel_builder.paths import PathSet
from vercel_builder.process import run_command
from vercel_builder.types import Manifest

log = get_logger(__name__)

SUPPORTED_NODE_MAJORS = (12, 14)
DEFAULT_NODE_MAJOR = 14

_SPAWN_ENV = {"MINIMAL": "1", "NODE_OPTIONS": "--max_old_space_size=3000"}

_CONFIG_MARKER = "__VERCEL_BUILDER_NUXT_CONFIG__"

# Evaluates a nuxt config (CommonJS or ESM through `esm` when installed) and
# prints it as JSON after a marker line, so whatever the config itself logs
# is ignored. Functions become a placeholder string so truthiness survives.
_LOAD_CONFIG_JS = r"""
const path = require('path')
const file = path.resolve(process.argv[1])
let load = require
try {
  load = require(require.resolve('esm', { paths: [process.cwd()] }))(module)
} catch (e) {}
Promise.resolve(load(file))
  .then((m) => (m && m.default) || m)
  .then((c) => (typeof c === 'function' ? c() : c))
  .then((c) => {
    const json = JSON.stringify(c || {}, (k, v) => (typeof v === 'function' ? '[Function]' : v))
    process.stdout.write('\n__MARKER__\n' + json)
  })
  .catch((e) => { console.error(e); process.exit(1) })
""".replace("__MARKER__", _CONFIG_MARKER)


def parse_config_output(out: str) -> dict:
    """Return the config JSON printed after the last marker line."""
    _, marker, payload = out.rpartition(f"\n{_CONFIG_MARKER}\n")
    if not marker:
        raise BuildError("nuxt config loader printed no config")
    return json.loads(payload or "{}")


class Toolchain:
    def __init__(self, timeout: float | None = None, bridge_path: Path | None = None) -> None:
        self.timeout = timeout
        self.bridge_path = bridge_path

    # -- installer ----------------------------------------------------------

    def install(self, paths: PathSet, *, production: bool) -> None:
        args = [
            "yarn",
            "install",
            "--prefer-offline",
            "--pure-lockfile" if production else "--frozen-lockfile",
            "--non-interactive",
            f"--production={'true' if production else 'false'}",
            f"--modules-folder={paths.modules_path}",
            f"--cache-folder={paths.yarn_cache_path}",
        ]
        env = {"NPM_ONLY_PRODUCTION": "true"} if production else {"NODE_ENV": "development"}
        run_command(args, cwd=paths.entry_path, env=env, timeout=self.timeout)

    def run_script(self, cwd: Path, script: str) -> None:
        run_command(["yarn", "run", script], cwd=cwd, env=_SPAWN_ENV, timeout=self.timeout)

    # -- framework and compiler --------------------------------------------

    def npx(self, cwd: Path, cmd: str, args: list[str], env: Mapping[str, str] | None = None) -> str:
        return run_command(
            ["npx", cmd, *args],
            cwd=cwd,
            env={**_SPAWN_ENV, **(env or {})},
            timeout=self.timeout,
        )

    def nuxt(self, cwd: Path, args: list[str]) -> None:
        self.npx(cwd, "nuxt", args)

    def tsc(self, cwd: Path, args: list[str]) -> None:
        self.npx(cwd, "tsc", args, env={"NODE_PRESERVE_SYMLINKS": "1"})

    def load_nuxt_config(self, cwd: Path, config_name: str) -> dict:
        out = run_command(
            ["node", "-e", _LOAD_CONFIG_JS, config_name],
            cwd=cwd,
            timeout=self.timeout,
            stdout_only=True,
        )
        return parse_config_output(out)

    def resolve_bridge(self, cwd: Path) -> Path:
        if self.bridge_path is not None:
            return self.bridge_path
        out = run_command(
            ["node", "-p", "require.resolve('@vercel/node-bridge')"],
            cwd=cwd,
            timeout=self.timeout,
            stdout_only=True,
        )
        return Path(out.strip())


# -- workspace helpers -------------------------------------------------------


def prepare_node_modules(entry_path: Path, namespace_dir: str) -> None:
    """Point `node_modules` at *namespace_dir* so dev and prod installs stay apart."""
    modules_path = entry_path / "node_modules"
    namespaced = entry_path / namespace_dir
    if namespaced.exists():
        log.info("Using cached %s", namespace_dir)
    if modules_path.is_symlink() or modules_path.is_file():
        modules_path.unlink()
    elif modules_path.is_dir():
        shutil.rmtree(modules_path)
    namespaced.mkdir(parents=True, exist_ok=True)
    os.symlink(namespace_dir, modules_path, target_is_directory=True)


def resolve_package_manifest(start_dir: Path, package: str, stop_at: Path | None = None) -> dict:
    """Find `<package>/package.json` the way node resolves modules, walking upwards."""
    current = Path(start_dir).resolve()
    stop = stop_at.resolve() if stop_at is not None else None
    while True:
        candidate = current / "node_modules" / package / "package.json"
        if candidate.is_file():
            return json.loads(candidate.read_text(encoding="utf-8"))
        if current == stop or current.parent == current:
            break
        current = current.parent
    raise FrameworkNotResolvable(f"Can not resolve {package}/package.json from {start_dir}")


def resolve_node_runtime(manifest: Manifest) -> str:
    """Map `engines.node` to a platform runtime identifier."""
    wanted = (manifest.engines or {}).get("node")
    if not wanted:
        return f"nodejs{DEFAULT_NODE_MAJOR}.x"
    majors = [int(m) for m in re.findall(r"(?<![\d.])(\d+)(?:\.[\dx*]+)*", wanted)]
    if wanted.strip().startswith(">"):
        # open-ended range: newest supported release satisfies it
        floor = min(majors) if majors else 0
        candidates = [m for m in SUPPORTED_NODE_MAJORS if m >= floor]
    else:
        candidates = [m for m in majors if m in SUPPORTED_NODE_MAJORS]
    if not candidates:
        log.warning(
            "engines.node %r matches no supported runtime, using nodejs%d.x",
            wanted,
            DEFAULT_NODE_MAJOR,
        )
        return f"nodejs{DEFAULT_NODE_MAJOR}.x"
    return f"nodejs{max(candidates)}.x"
