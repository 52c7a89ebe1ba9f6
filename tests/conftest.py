from __future__ import annotations

import json
from pathlib import Path

import pytest

from vercel_builder.config import Settings
from vercel_builder.errors import CommandError
from vercel_builder.files import FileRef
from vercel_builder.paths import PathSet
from vercel_builder.toolchain import Toolchain


class FakeToolchain(Toolchain):
    """Writes what yarn, nuxt and tsc would leave behind, without running them."""

    def __init__(
        self,
        bridge: Path,
        nuxt_config: dict | None = None,
        compiled_config: dict | None = None,
        core_version: str = "2.14.12",
        fail_on: str | None = None,
    ) -> None:
        super().__init__(bridge_path=bridge)
        self.nuxt_config = nuxt_config or {}
        self.compiled_config = compiled_config or {}
        self.core_version = core_version
        self.fail_on = fail_on
        self.calls: list[tuple] = []
        self.npmrc_during_install: dict[bool, bool] = {}

    def _maybe_fail(self, name: str, argv: list[str]) -> None:
        if self.fail_on == name:
            raise CommandError(argv, 1, "building...\nERROR  Module not found: nuxt-foo\n")

    def install(self, paths: PathSet, *, production: bool) -> None:
        self.calls.append(("install", production))
        self.npmrc_during_install[production] = (paths.entry_path / ".npmrc").exists()
        self._maybe_fail("prod-install" if production else "dev-install", ["yarn", "install"])
        if production:
            manifest = json.loads((paths.entry_path / "package.json").read_text(encoding="utf-8"))
            for name in manifest.get("dependencies", {}):
                pkg_dir = paths.modules_path / name
                pkg_dir.mkdir(parents=True, exist_ok=True)
                (pkg_dir / "package.json").write_text(
                    json.dumps({"name": name, "version": self.core_version}), encoding="utf-8"
                )
        else:
            nuxt_dir = paths.modules_path / "nuxt"
            nuxt_dir.mkdir(parents=True, exist_ok=True)
            (nuxt_dir / "package.json").write_text('{"name": "nuxt"}', encoding="utf-8")

    def run_script(self, cwd: Path, script: str) -> None:
        self.calls.append(("script", script))

    def nuxt(self, cwd: Path, args: list[str]) -> None:
        self.calls.append(("nuxt", args[0]))
        self._maybe_fail("nuxt", ["npx", "nuxt", *args])
        if args[0] == "build":
            build_dir = cwd / self.nuxt_config.get("buildDir", ".nuxt")
            (build_dir / "dist" / "client").mkdir(parents=True, exist_ok=True)
            (build_dir / "dist" / "client" / "app.js").write_text("app", encoding="utf-8")
            (build_dir / "dist" / "server").mkdir(parents=True, exist_ok=True)
            (build_dir / "dist" / "server" / "server.js").write_text("srv", encoding="utf-8")
        elif args[0] == "generate":
            (cwd / "dist" / "about").mkdir(parents=True, exist_ok=True)
            (cwd / "dist" / "index.html").write_text("<html/>", encoding="utf-8")
            (cwd / "dist" / "about" / "index.html").write_text("<html/>", encoding="utf-8")

    def tsc(self, cwd: Path, args: list[str]) -> None:
        self.calls.append(("tsc", args[-1]))
        out = cwd / "now_compiled"
        source = args[-1]
        if source == "nuxt.config.ts":
            body = "module.exports = " + json.dumps(self.compiled_config)
            (out / "nuxt.config.js").write_text(body, encoding="utf-8")
            return
        rel = Path(source).relative_to(cwd.resolve()).with_suffix(".js")
        (out / rel).parent.mkdir(parents=True, exist_ok=True)
        (out / rel).write_text("module.exports = () => {}", encoding="utf-8")

    def load_nuxt_config(self, cwd: Path, config_name: str) -> dict:
        self.calls.append(("load-config", config_name))
        if config_name.startswith("now_compiled/"):
            return dict(self.compiled_config)
        return dict(self.nuxt_config)


def make_project(
    package: dict | None = None,
    prefix: str = "",
    config_name: str = "nuxt.config.js",
    extra: dict[str, bytes] | None = None,
) -> dict[str, FileRef]:
    manifest = package or {
        "name": "www",
        "scripts": {"dev": "nuxt"},
        "dependencies": {"nuxt": "^2.14.12", "axios": "^0.21.1"},
        "devDependencies": {"eslint": "^7.18.0"},
    }
    files = {
        "package.json": FileRef.from_text(json.dumps(manifest)),
        config_name: FileRef.from_text("module.exports = {}"),
        "pages/index.vue": FileRef.from_text("<template><div/></template>"),
        "static/favicon.ico": FileRef(data=b"\x00\x00\x01\x00"),
    }
    for key, data in (extra or {}).items():
        files[key] = FileRef(data=data)
    return {f"{prefix}{k}": v for k, v in files.items()}


@pytest.fixture
def bridge(tmp_path: Path) -> Path:
    path = tmp_path / "bridge.js"
    path.write_text("exports.Bridge = class {}", encoding="utf-8")
    return path


@pytest.fixture
def work_path(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def make_toolchain(bridge: Path):
    def _make(**kwargs) -> FakeToolchain:
        return FakeToolchain(bridge, **kwargs)

    return _make


@pytest.fixture
def project():
    return make_project
