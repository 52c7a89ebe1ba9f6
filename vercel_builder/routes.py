"""Route table synthesis."""

from __future__ import annotations

from collections.abc import Iterable

from vercel_builder.types import Route
from vercel_builder.validator import validate_routes

CACHE_HEADERS = {"Cache-Control": "max-age=31557600"}


def synthesize_routes(public_path: str, static_files: Iterable[str], lambda_name: str) -> list[dict]:
    """Build the ordered route table.

    Cache rules come first, then the filesystem handler so produced files are
    never shadowed, then the catch-all into the function package.
    """
    routes = [
        Route(src=f"/{public_path}.+", headers=dict(CACHE_HEADERS)),
        *(Route(src=f"/{f}", headers=dict(CACHE_HEADERS)) for f in sorted(static_files)),
        Route(handle="filesystem"),
        Route(src="/(.*)", dest=f"/{lambda_name}"),
    ]
    table = [r.to_dict() for r in routes]
    validate_routes(table)
    return table
