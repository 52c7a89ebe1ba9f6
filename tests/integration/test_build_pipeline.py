from __future__ import annotations

import json
from pathlib import Path

import pytest

from vercel_builder.config import Settings
from vercel_builder.core import BuildState, _install_prod, analyze, build, prepare_cache
from vercel_builder.errors import (
    BuildError,
    CommandError,
    InvalidEntrypoint,
    ManifestNotFound,
    StageFailure,
    UnsupportedFrameworkVersion,
)
from vercel_builder.files import FileRef
from vercel_builder.package.lambda_ import LAUNCHER_NAME, FunctionPackage
from vercel_builder.paths import resolve_paths
from vercel_builder.routes import CACHE_HEADERS
from vercel_builder.types import BuildConfig


def _packages(output: dict) -> dict[str, FunctionPackage]:
    return {k: v for k, v in output.items() if isinstance(v, FunctionPackage)}


@pytest.mark.timeout(30)
def test_default_build(project, make_toolchain, work_path: Path, settings: Settings) -> None:
    toolchain = make_toolchain()
    result = build(
        project(),
        "package.json",
        work_path,
        {"generateStaticRoutes": False},
        toolchain=toolchain,
        settings=settings,
    )

    packages = _packages(result.output)
    assert list(packages) == ["index"]
    assert {"src": "/favicon.ico", "headers": CACHE_HEADERS} in result.routes
    assert "favicon.ico" in result.output
    assert "_nuxt/app.js" in result.output
    assert not any(k.endswith(".html") for k in result.output)
    assert result.routes[-2:] == [{"handle": "filesystem"}, {"src": "/(.*)", "dest": "/index"}]

    pkg = packages["index"]
    assert pkg.runtime == "nodejs14.x"
    assert pkg.environment == {"NODE_ENV": "production"}
    assert {
        LAUNCHER_NAME,
        "vercel__bridge.js",
        "nuxt.config.js",
        ".nuxt/dist/server/server.js",
        "node_modules/@nuxt/core/package.json",
        "package.json",
    } <= set(pkg.files)
    launcher = pkg.files[LAUNCHER_NAME].read_bytes().decode("utf-8")
    assert "require('@nuxt/core')" in launcher
    assert "const requestListener = false" in launcher

    shipped = json.loads(pkg.files["package.json"].read_bytes())
    assert shipped["dependencies"] == {"@nuxt/core": "^2.14.12"}
    assert "devDependencies" not in shipped

    assert [c for c in toolchain.calls if c[0] in {"install", "nuxt", "script"}] == [
        ("install", False),
        ("nuxt", "build"),
        ("install", True),
    ]
    assert (work_path / ".vercel_cache" / "yarn").is_dir()


@pytest.mark.timeout(30)
def test_custom_lambda_name(project, make_toolchain, work_path: Path, settings: Settings) -> None:
    toolchain = make_toolchain(nuxt_config={"lambdaName": "api", "serverMiddleware": ["[Function]"]})
    result = build(project(), "package.json", work_path, {}, toolchain=toolchain, settings=settings)

    assert list(_packages(result.output)) == ["api"]
    assert result.routes[-1] == {"src": "/(.*)", "dest": "/api"}
    launcher = result.output["api"].files[LAUNCHER_NAME].read_bytes().decode("utf-8")
    assert "const requestListener = true" in launcher


@pytest.mark.timeout(30)
def test_internal_server_override(project, make_toolchain, work_path: Path, settings: Settings) -> None:
    toolchain = make_toolchain(nuxt_config={"serverMiddleware": ["[Function]"]})
    result = build(
        project(), "package.json", work_path, {"internalServer": False}, toolchain=toolchain,
        settings=settings,
    )
    launcher = result.output["index"].files[LAUNCHER_NAME].read_bytes().decode("utf-8")
    assert "const requestListener = false" in launcher


@pytest.mark.timeout(30)
def test_include_files(project, make_toolchain, work_path: Path, settings: Settings) -> None:
    files = project(extra={"secrets.json": b'{"k": 1}', "server/data/a.txt": b"a"})
    result = build(
        files,
        "package.json",
        work_path,
        {"includeFiles": ["secrets.json", "missing/*.json"], "serverFiles": ["server/**/*.txt"]},
        toolchain=make_toolchain(),
        settings=settings,
    )
    pkg = result.output["index"]
    assert pkg.files["secrets.json"].read_bytes() == b'{"k": 1}'
    assert "server/data/a.txt" in pkg.files


@pytest.mark.timeout(30)
def test_include_files_as_single_string(project, make_toolchain, work_path: Path, settings) -> None:
    files = project(extra={"secrets.json": b"{}"})
    result = build(
        files, "package.json", work_path, {"includeFiles": "secrets.json"},
        toolchain=make_toolchain(), settings=settings,
    )
    assert "secrets.json" in result.output["index"].files


@pytest.mark.timeout(30)
def test_unsupported_framework_version(project, make_toolchain, work_path: Path, settings) -> None:
    toolchain = make_toolchain(core_version="2.3.0")
    with pytest.raises(UnsupportedFrameworkVersion) as info:
        build(project(), "package.json", work_path, {}, toolchain=toolchain, settings=settings)
    assert info.value.stage == "install-prod"
    assert info.value.version == "2.3.0"


@pytest.mark.timeout(30)
def test_registry_token_lifecycle(project, make_toolchain, work_path: Path) -> None:
    toolchain = make_toolchain()
    settings = Settings(npm_auth_token="s3cret")
    build(project(), "package.json", work_path, {}, toolchain=toolchain, settings=settings)

    assert toolchain.npmrc_during_install == {False: True, True: True}
    assert not (work_path / ".npmrc").exists()


@pytest.mark.timeout(30)
def test_registry_token_removed_on_failure(project, make_toolchain, work_path: Path) -> None:
    toolchain = make_toolchain(fail_on="nuxt")
    settings = Settings(npm_auth_token="s3cret")
    with pytest.raises(StageFailure):
        build(project(), "package.json", work_path, {}, toolchain=toolchain, settings=settings)
    assert not (work_path / ".npmrc").exists()


@pytest.mark.timeout(30)
def test_stage_failure_aborts_pipeline(project, make_toolchain, work_path: Path, settings) -> None:
    toolchain = make_toolchain(fail_on="nuxt")
    with pytest.raises(StageFailure) as info:
        build(project(), "package.json", work_path, {}, toolchain=toolchain, settings=settings)
    err = info.value
    assert err.stage == "framework-build"
    assert isinstance(err.cause, CommandError)
    assert "Module not found" in err.summary
    assert ("install", True) not in toolchain.calls
    # the manifest on disk is untouched until install-prod
    on_disk = json.loads((work_path / "package.json").read_text(encoding="utf-8"))
    assert "nuxt" in on_disk["dependencies"]


@pytest.mark.timeout(30)
def test_pre_build_hook_and_static_generation(project, make_toolchain, work_path, settings) -> None:
    package = {
        "name": "www",
        "scripts": {"now-build": "echo pre"},
        "dependencies": {"nuxt-edge": "2.15.0"},
    }
    toolchain = make_toolchain(core_version="2.15.0")
    result = build(
        project(package=package), "package.json", work_path, {"generateStaticRoutes": True},
        toolchain=toolchain, settings=settings,
    )
    steps = [c for c in toolchain.calls if c[0] in {"install", "nuxt", "script"}]
    assert steps == [
        ("install", False),
        ("script", "now-build"),
        ("nuxt", "build"),
        ("nuxt", "generate"),
        ("install", True),
    ]
    assert "index.html" in result.output
    assert "about/index.html" in result.output
    launcher = result.output["index"].files[LAUNCHER_NAME].read_bytes().decode("utf-8")
    assert "require('@nuxt/core-edge')" in launcher


@pytest.mark.timeout(30)
def test_nested_entrypoint_and_cache(project, make_toolchain, work_path, settings) -> None:
    files = project(prefix="apps/one/")
    result = build(
        files, "apps/one/package.json", work_path, {}, toolchain=make_toolchain(), settings=settings
    )
    assert "favicon.ico" in result.output
    entry = work_path / "apps" / "one"
    assert (entry / "node_modules").is_symlink()

    cache = prepare_cache(work_path, "apps/one/package.json")
    assert "apps/one/node_modules_prod/@nuxt/core/package.json" in cache
    assert "apps/one/node_modules_dev/nuxt/package.json" in cache
    assert all(k.startswith("apps/one/") for k in cache)


@pytest.mark.timeout(30)
def test_typescript_project(project, make_toolchain, work_path, settings) -> None:
    package = {
        "name": "www",
        "dependencies": {"nuxt": "2.14.12", "@nuxt/typescript-runtime": "2.0.0"},
        "devDependencies": {"@nuxt/typescript-build": "2.0.0"},
    }
    files = project(
        package=package,
        config_name="nuxt.config.ts",
        extra={"api/index.ts": b"export default () => {}", "tsconfig.json": b'{"exclude": ["x"]}'},
    )
    toolchain = make_toolchain(compiled_config={"serverMiddleware": ["~/api/index.ts"]})
    result = build(
        files, "package.json", work_path, {"tscOptions": {"strict": False, "outDir": "ignored"}},
        toolchain=toolchain, settings=settings,
    )

    tsc_targets = [c[1] for c in toolchain.calls if c[0] == "tsc"]
    assert tsc_targets[0] == "nuxt.config.ts"
    assert tsc_targets[1].endswith("api/index.ts")

    pkg = result.output["index"]
    assert "api/index.js" in pkg.files
    assert '"~/api/index"' in pkg.files["nuxt.config.js"].read_bytes().decode("utf-8")
    assert not (work_path / "now_compiled").exists()
    tsconfig = json.loads((work_path / "tsconfig.json").read_text(encoding="utf-8"))
    assert tsconfig["exclude"] == ["x", "node_modules_dev", "node_modules_prod"]


def test_invalid_entrypoint(project, make_toolchain, work_path: Path, settings) -> None:
    with pytest.raises(InvalidEntrypoint):
        build(project(), "server/index.js", work_path, {}, toolchain=make_toolchain(), settings=settings)
    with pytest.raises(InvalidEntrypoint):
        build(project(), "/abs/package.json", work_path, {}, toolchain=make_toolchain(), settings=settings)


def test_missing_manifest(project, make_toolchain, work_path: Path, settings) -> None:
    files = project()
    del files["package.json"]
    with pytest.raises(ManifestNotFound) as info:
        build(files, "nuxt.config.js", work_path, {}, toolchain=make_toolchain(), settings=settings)
    assert info.value.stage == "prepare"


def test_analyze_digest(project) -> None:
    files = project()
    assert analyze(files, "package.json") == files["package.json"].digest()
    assert analyze(files, "package.json") != analyze({"package.json": FileRef(data=b"{}")}, "package.json")


@pytest.mark.timeout(30)
def test_build_files_at_root_entrypoint(project, make_toolchain, work_path, settings) -> None:
    files = project(extra={"shared/a.txt": b"a", "version.txt": b"1"})
    result = build(
        files,
        "package.json",
        work_path,
        {"buildFiles": ["shared", "version.txt"]},
        toolchain=make_toolchain(),
        settings=settings,
    )
    assert "index" in result.output
    assert (work_path / "shared" / "a.txt").read_bytes() == b"a"
    assert (work_path / "version.txt").read_bytes() == b"1"


@pytest.mark.timeout(30)
def test_build_files_copied_into_nested_entry(project, make_toolchain, work_path, settings) -> None:
    files = {
        **project(prefix="apps/one/"),
        "shared/a.txt": FileRef(data=b"a"),
        "shared/deep/b.txt": FileRef(data=b"b"),
    }
    build(
        files,
        "apps/one/package.json",
        work_path,
        {"buildFiles": ["shared"]},
        toolchain=make_toolchain(),
        settings=settings,
    )
    entry = work_path / "apps" / "one"
    assert (entry / "shared" / "a.txt").read_bytes() == b"a"
    assert (entry / "shared" / "deep" / "b.txt").read_bytes() == b"b"


def test_missing_build_file_is_reported(project, make_toolchain, work_path, settings) -> None:
    with pytest.raises(BuildError, match="'nope' does not exist") as info:
        build(
            project(),
            "package.json",
            work_path,
            {"buildFiles": ["nope"]},
            toolchain=make_toolchain(),
            settings=settings,
        )
    assert not isinstance(info.value, StageFailure)
    assert info.value.stage == "prepare"


def test_install_prod_requires_a_manifest(make_toolchain, work_path: Path, settings) -> None:
    state = BuildState(
        files={},
        paths=resolve_paths(work_path, "package.json"),
        config=BuildConfig(),
        meta={},
        toolchain=make_toolchain(),
        settings=settings,
    )
    with pytest.raises(ManifestNotFound):
        _install_prod(state, work_path)
    assert not (work_path / "node_modules").exists()
