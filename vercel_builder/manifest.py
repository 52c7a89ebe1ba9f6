"""package.json reading, pruning and writing.

The manifest is read once per build and handed from stage to stage as a
value. Only `install-prod` writes it back, after the dev install has already
consumed the original file.
"""

from __future__ import annotations

import json
from pathlib import Path

from jsonschema import ValidationError

from vercel_builder.errors import FrameworkNotResolvable, ManifestNotFound
from vercel_builder.types import Manifest
from vercel_builder.validator import validate_package_json

MANIFEST_NAME = "package.json"
CORE_PACKAGE = "@nuxt/core"
TYPESCRIPT_RUNTIME = "@nuxt/typescript-runtime"

# Probe order matters: the first declared name decides the variant.
_FRAMEWORK_PACKAGES = (
    "nuxt",
    "nuxt-start",
    "nuxt-edge",
    "nuxt-start-edge",
    CORE_PACKAGE,
    f"{CORE_PACKAGE}-edge",
)


def read_manifest(directory: Path) -> Manifest:
    path = Path(directory) / MANIFEST_NAME
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        validate_package_json(data)
    except (OSError, ValueError, ValidationError) as exc:
        raise ManifestNotFound(f"Can not read {MANIFEST_NAME} from {directory}: {exc}") from exc
    return Manifest.model_validate(data)


def write_manifest(directory: Path, manifest: Manifest) -> Path:
    path = Path(directory) / MANIFEST_NAME
    text = json.dumps(manifest.model_dump(exclude_none=True), indent=2) + "\n"
    path.write_text(text, encoding="utf-8")
    return path


def _variant_suffix(package: str) -> str:
    return "-edge" if package.endswith("-edge") else ""


def find_framework(manifest: Manifest) -> tuple[str, str]:
    """Return (package name, version range) of the declared framework package."""
    for section in (manifest.dependencies or {}, manifest.devDependencies or {}):
        for name in _FRAMEWORK_PACKAGES:
            if name in section:
                return name, section[name]
    raise FrameworkNotResolvable(f"No nuxt dependency found in {MANIFEST_NAME}")


def prune_manifest(manifest: Manifest) -> tuple[Manifest, str]:
    """Keep only the core framework dependency and return its variant suffix.

    `nuxt`, `nuxt-start` and their edge builds all collapse to
    `@nuxt/core<suffix>` at the declared version range, which is all the
    launcher needs at runtime.
    """
    name, version = find_framework(manifest)
    suffix = _variant_suffix(name)
    pruned = manifest.model_copy(
        update={"dependencies": {f"{CORE_PACKAGE}{suffix}": version}, "devDependencies": None},
        deep=True,
    )
    return pruned, suffix


def drop_typescript_runtime(manifest: Manifest) -> Manifest:
    deps = dict(manifest.dependencies or {})
    if TYPESCRIPT_RUNTIME not in deps:
        return manifest
    del deps[TYPESCRIPT_RUNTIME]
    return manifest.model_copy(update={"dependencies": deps}, deep=True)


def uses_typescript(manifest: Manifest) -> bool:
    return "@nuxt/typescript-build" in (manifest.devDependencies or {}) or "@nuxt/typescript" in (
        manifest.dependencies or {}
    )
