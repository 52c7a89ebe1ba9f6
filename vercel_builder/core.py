"""Build orchestration: prepare → install-dev → pre-build → framework-build →
install-prod → collect-artifacts.

The stages share one `BuildState`. The manifest travels through it as a
value: read in `prepare`, pruned and written in `install-prod`.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from vercel_builder import __version__
from vercel_builder.artifacts import Artifacts, collect_and_prefix, collect_artifacts
from vercel_builder.config import Settings
from vercel_builder.errors import BuildError, ManifestNotFound
from vercel_builder.files import FileRef, FileSet, download
from vercel_builder.logging import get_logger
from vercel_builder.manifest import (
    MANIFEST_NAME,
    prune_manifest,
    read_manifest,
    uses_typescript,
    write_manifest,
)
from vercel_builder.nuxt import (
    CONFIG_JS,
    CONFIG_TS,
    NuxtOptions,
    check_framework_version,
    config_file_name,
)
from vercel_builder.package.lambda_ import (
    FunctionPackage,
    build_function_package,
    check_launcher_template,
    load_launcher_template,
    render_launcher,
)
from vercel_builder.paths import CACHE_DIR, PathSet, resolve_paths, validate_entrypoint
from vercel_builder.routes import synthesize_routes
from vercel_builder.stages import Stage, StageRunner
from vercel_builder.toolchain import Toolchain, prepare_node_modules, resolve_node_runtime
from vercel_builder.types import BuildConfig, Manifest
from vercel_builder.typescript import compile_typescript_build_files, prepare_typescript_environment

log = get_logger(__name__)

PRE_BUILD_SCRIPT = "now-build"
NPMRC = ".npmrc"
YARNCLEAN = ".yarnclean"
CACHE_DIRS = (CACHE_DIR, "node_modules_dev", "node_modules_prod")


@dataclass
class BuildResult:
    output: dict[str, FileRef | FunctionPackage]
    routes: list[dict]
    watch: list[str] | None = None


@dataclass
class BuildState:
    files: Mapping[str, FileRef]
    paths: PathSet
    config: BuildConfig
    meta: Mapping[str, Any]
    toolchain: Toolchain
    settings: Settings
    manifest: Manifest | None = None
    runtime: str = ""
    launcher_template: str = ""
    needs_typescript_build: bool = False
    compiled_typescript: FileSet = field(default_factory=dict)
    options: NuxtOptions = field(default_factory=NuxtOptions)
    internal_server: bool = False
    suffix: str = ""
    framework_version: str = ""
    artifacts: Artifacts | None = None
    result: BuildResult | None = None


# -- stages ------------------------------------------------------------------


def _copy_build_files(root: Path, entry_path: Path, names: list[str]) -> None:
    """Copy each `buildFiles` path from the workspace root into the entry dir."""
    for name in names:
        src, dest = root / name, entry_path / name
        if not src.exists():
            raise BuildError(f"buildFiles entry {name!r} does not exist in {root}")
        if src.resolve() == dest.resolve():
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dest, dirs_exist_ok=True)
        else:
            shutil.copyfile(src, dest)


def _prepare(state: BuildState, cwd: Path) -> None:
    paths = state.paths
    log.info("Current app: %s", state.config.app)
    log.info("Entry point directory: %s", paths.entry_dir)
    log.info("Entry point path: %s", paths.entry_path)
    log.info("Modules path: %s", paths.modules_path)

    if not state.meta.get("isDev"):
        log.info("Downloading %d files...", len(state.files))
        download(state.files, cwd)

    _copy_build_files(cwd, paths.entry_path, state.config.build_files)

    manifest = read_manifest(paths.entry_path)
    state.runtime = resolve_node_runtime(manifest)
    if uses_typescript(manifest):
        log.info("Using Typescript...")
        manifest = prepare_typescript_environment(paths.entry_path, manifest)
    state.manifest = manifest
    state.needs_typescript_build = config_file_name(paths.entry_path) == CONFIG_TS

    state.launcher_template = load_launcher_template()
    check_launcher_template(state.launcher_template)

    if state.settings.npm_auth_token:
        log.info("Found NPM_AUTH_TOKEN in environment, creating %s", NPMRC)
        (paths.entry_path / NPMRC).write_text(
            f"//registry.npmjs.org/:_authToken={state.settings.npm_auth_token}",
            encoding="utf-8",
        )

    if not (paths.entry_path.parent / YARNCLEAN).exists():
        template = resources.files("vercel_builder.templates").joinpath(YARNCLEAN)
        (paths.entry_path / YARNCLEAN).write_bytes(template.read_bytes())

    paths.yarn_cache_path.mkdir(parents=True, exist_ok=True)


def _install_dev(state: BuildState, cwd: Path) -> None:
    prepare_node_modules(cwd, "node_modules_dev")
    state.toolchain.install(state.paths, production=False)


def _pre_build(state: BuildState, cwd: Path) -> None:
    state.toolchain.run_script(cwd, PRE_BUILD_SCRIPT)


def _framework_build(state: BuildState, cwd: Path) -> None:
    if state.needs_typescript_build:
        state.compiled_typescript = compile_typescript_build_files(
            state.toolchain, cwd, state.config.tsc_options
        )

    raw = state.toolchain.load_nuxt_config(cwd, CONFIG_JS)
    state.options = NuxtOptions.from_config(raw, cwd)
    log.info("Nuxt options: %s", state.options.model_dump_json())
    if state.config.internal_server is not None:
        state.internal_server = state.config.internal_server
    else:
        state.internal_server = state.options.server_middleware

    state.toolchain.nuxt(cwd, ["build", "--standalone", "--no-lock", "--config-file", CONFIG_JS])
    if state.config.generate_static_routes:
        state.toolchain.nuxt(
            cwd, ["generate", "--no-build", "--no-lock", "--config-file", CONFIG_JS]
        )


def _install_prod(state: BuildState, cwd: Path) -> None:
    if state.manifest is None:
        raise ManifestNotFound(f"{MANIFEST_NAME} was not read before the production install")
    prepare_node_modules(cwd, "node_modules_prod")

    pruned, state.suffix = prune_manifest(state.manifest)
    write_manifest(cwd, pruned)
    state.manifest = pruned

    state.toolchain.install(state.paths, production=True)
    state.framework_version = check_framework_version(cwd, state.suffix, stop_at=state.paths.root)

    npmrc = cwd / NPMRC
    if state.settings.npm_auth_token and npmrc.exists():
        npmrc.unlink()


def _collect_artifacts(state: BuildState, cwd: Path) -> None:
    opts = state.options
    state.artifacts = art = collect_artifacts(
        cwd, opts, generated=state.config.generate_static_routes
    )

    launcher_src = render_launcher(
        state.launcher_template,
        suffix=state.suffix,
        config_name=CONFIG_JS,
        internal_server=state.internal_server,
    )
    package = build_function_package(
        launcher_src=launcher_src,
        bridge_path=state.toolchain.resolve_bridge(cwd),
        config_name=CONFIG_JS,
        entry_path=cwd,
        server_dist=art.server_dist,
        compiled_typescript=state.compiled_typescript,
        node_modules=art.node_modules,
        include_patterns=[*state.config.include_files, *state.config.server_files],
        runtime=state.runtime,
        max_duration=state.config.max_duration,
        memory=state.config.memory,
    )
    log.info("Function package %s: %s", opts.lambda_name, package.describe())

    output: dict[str, FileRef | FunctionPackage] = {opts.lambda_name: package}
    output.update(art.client_dist)
    output.update(art.static)
    output.update(art.generated)
    state.result = BuildResult(
        output=output,
        routes=synthesize_routes(opts.public_path, art.static, opts.lambda_name),
    )


def _entry(state: BuildState) -> Path:
    return state.paths.entry_path


def _root(state: BuildState) -> Path:
    return state.paths.root


PIPELINE: list[Stage[BuildState]] = [
    Stage("prepare", _prepare, cwd=_root),
    Stage("install-dev", _install_dev, cwd=_entry, requires=("prepare",)),
    Stage(
        "pre-build",
        _pre_build,
        cwd=_entry,
        requires=("install-dev",),
        when=lambda s: s.manifest is not None and s.manifest.has_script(PRE_BUILD_SCRIPT),
    ),
    Stage("framework-build", _framework_build, cwd=_entry, requires=("install-dev",)),
    Stage("install-prod", _install_prod, cwd=_entry, requires=("framework-build",)),
    Stage("collect-artifacts", _collect_artifacts, cwd=_entry, requires=("install-prod",)),
]


# -- public API --------------------------------------------------------------


def build(
    files: Mapping[str, FileRef],
    entrypoint: str,
    work_path: Path,
    config: BuildConfig | Mapping[str, Any] | None = None,
    meta: Mapping[str, Any] | None = None,
    *,
    toolchain: Toolchain | None = None,
    settings: Settings | None = None,
) -> BuildResult:
    """Run the full pipeline and return the output files, packages and routes."""
    log.info("Running vercel-builder version %s", __version__)
    settings = settings or Settings.from_env()
    if not isinstance(config, BuildConfig):
        config = BuildConfig.model_validate(dict(config or {}))

    validate_entrypoint(entrypoint)
    paths = resolve_paths(Path(work_path), entrypoint)
    state = BuildState(
        files=files,
        paths=paths,
        config=config,
        meta=meta or {},
        toolchain=toolchain or Toolchain(timeout=settings.timeout),
        settings=settings,
    )
    try:
        StageRunner(PIPELINE).run(state)
    except BuildError:
        npmrc = paths.entry_path / NPMRC
        if settings.npm_auth_token and npmrc.exists():
            npmrc.unlink()
        raise
    if state.result is None:
        raise BuildError("pipeline finished without producing a result")
    return state.result


def prepare_cache(work_path: Path, entrypoint: str) -> FileSet:
    """Collect the installer cache and both module dirs for the next build."""
    paths = resolve_paths(Path(work_path), entrypoint)
    cache: FileSet = {}
    for name in CACHE_DIRS:
        directory = paths.entry_path / name
        if not directory.exists():
            log.warning("%s does not exist, not caching it", name)
            continue
        prefix = name if paths.entry_dir == "." else f"{paths.entry_dir}/{name}"
        cache.update(collect_and_prefix("**", directory, prefix))
    return cache


def analyze(files: Mapping[str, FileRef], entrypoint: str) -> str:
    """Return a content digest of the entrypoint, used to key build caching."""
    ref = files.get(entrypoint)
    if ref is None:
        raise BuildError(f"Entrypoint {entrypoint!r} is not part of the input files")
    return ref.digest()
