"""vercel-builder CLI.

Commands:
- build: run the full pipeline on a local source tree and write the output
- prepare-cache: list (or copy out) what would be cached after a build
- analyze: print the entrypoint digest
- version
"""

from __future__ import annotations

import json
import tempfile
from contextlib import ExitStack
from pathlib import Path

import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vercel_builder import __version__
from vercel_builder.config import Settings
from vercel_builder.core import CACHE_DIRS
from vercel_builder.core import analyze as analyze_files
from vercel_builder.core import build as run_build
from vercel_builder.core import prepare_cache as collect_cache
from vercel_builder.errors import BuildError
from vercel_builder.files import FileRef, download, glob
from vercel_builder.logging import set_debug
from vercel_builder.package.lambda_ import FunctionPackage
from vercel_builder.package.zip import write_zip_bundle
from vercel_builder.toolchain import Toolchain

app = typer.Typer(add_completion=False, help="Build Nuxt projects into serverless bundles")
console = Console()

DEFAULT_OUT = "./.vercel_output"
_SOURCE_EXCLUDE = ("node_modules", ".git", ".nuxt", ".vercel_cache", ".vercel_output")


def _source_exclude(source: Path, out: Path) -> tuple[str, ...]:
    """Directory names never read as input, including an output dir inside *source*."""
    try:
        rel = out.resolve().relative_to(source.resolve())
    except ValueError:
        return _SOURCE_EXCLUDE
    if not rel.parts or rel.parts[0] in _SOURCE_EXCLUDE:
        return _SOURCE_EXCLUDE
    return (*_SOURCE_EXCLUDE, rel.parts[0])


def _load_config(config: str | None, config_json: str | None) -> dict:
    if config_json:
        return json.loads(config_json)
    if config:
        return json.loads(Path(config).read_text(encoding="utf-8"))
    return {}


def _write_output(out: Path, output: dict, routes: list[dict]) -> Table:
    table = Table(title="Build Output")
    table.add_column("Path", style="cyan")
    table.add_column("Kind")
    table.add_column("Detail")

    static: dict[str, FileRef] = {}
    for key in sorted(output):
        item = output[key]
        if isinstance(item, FunctionPackage):
            zip_path = write_zip_bundle(out / "functions", key, item.files)
            meta_path = zip_path.with_suffix(".json")
            meta_path.write_text(json.dumps(item.describe(), indent=2), encoding="utf-8")
            table.add_row(key, "function", f"{item.runtime}, {len(item.files)} files")
        else:
            static[key] = item
    download(static, out / "static")
    table.add_row("static/", "files", str(len(static)))

    (out / "routes.json").write_text(json.dumps(routes, indent=2), encoding="utf-8")
    table.add_row("routes.json", "routes", str(len(routes)))
    return table


@app.command()
def build(
    source: str = typer.Argument(".", help="Path to the project source tree"),
    entrypoint: str = typer.Option("package.json", "--entrypoint", "-e", help="Entrypoint file"),
    config: str | None = typer.Option(None, "--config", help="Builder config JSON file"),
    config_json: str | None = typer.Option(None, "--config-json", help="Inline builder config"),
    work_path: str | None = typer.Option(None, "--work-path", help="Build workspace directory"),
    out: str = typer.Option(DEFAULT_OUT, "--out", help="Output directory"),
    bridge: str | None = typer.Option(None, "--bridge", help="Path to the node bridge script"),
    debug: bool = typer.Option(False, "--debug", help="Echo external command output"),
) -> None:
    settings = Settings.from_env()
    set_debug(debug or settings.debug)

    outdir = Path(out)
    files = glob("**", Path(source), exclude=_source_exclude(Path(source), outdir))
    toolchain = Toolchain(timeout=settings.timeout, bridge_path=Path(bridge) if bridge else None)

    with ExitStack() as stack:
        if work_path:
            workdir = Path(work_path)
        else:
            tmp = tempfile.TemporaryDirectory(prefix="vercel-builder-")
            workdir = Path(stack.enter_context(tmp))
        try:
            result = run_build(
                files,
                entrypoint,
                workdir,
                _load_config(config, config_json),
                toolchain=toolchain,
                settings=settings,
            )
        except BuildError as exc:
            rprint(f"[red]Build failed:[/red] {escape(str(exc))}")
            raise typer.Exit(code=1) from exc

        outdir.mkdir(parents=True, exist_ok=True)
        console.print(_write_output(outdir, result.output, result.routes))
    rprint(f"[green]Build written to[/green] {outdir}")


@app.command("prepare-cache")
def prepare_cache(
    work_path: str = typer.Argument(..., help="Build workspace of a finished build"),
    entrypoint: str = typer.Option("package.json", "--entrypoint", "-e", help="Entrypoint file"),
    out: str | None = typer.Option(None, "--out", help="Copy the cache files here"),
) -> None:
    cache = collect_cache(Path(work_path), entrypoint)
    if out:
        download(cache, Path(out))
    table = Table(title="Build Cache")
    table.add_column("Directory", style="cyan")
    table.add_column("Files")
    counts: dict[str, int] = {}
    for key in cache:
        parts = key.split("/")
        top = next((p for p in parts if p in CACHE_DIRS), parts[0])
        counts[top] = counts.get(top, 0) + 1
    for name, n in sorted(counts.items()):
        table.add_row(name, str(n))
    console.print(table)


@app.command()
def analyze(
    source: str = typer.Argument(".", help="Path to the project source tree"),
    entrypoint: str = typer.Option("package.json", "--entrypoint", "-e", help="Entrypoint file"),
) -> None:
    files = glob("**", Path(source), exclude=_SOURCE_EXCLUDE)
    try:
        print(analyze_files(files, entrypoint))
    except BuildError as exc:
        rprint(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc


@app.command()
def version() -> None:
    print(__version__)


if __name__ == "__main__":
    app()
