"""Schema validation for the manifest and the synthesised route table."""

from __future__ import annotations

import json
from importlib import resources

from jsonschema import Draft202012Validator

# --- Schema loaders ---------------------------------------------------------


def _load_schema(package: str, resource_name: str) -> dict:
    with resources.files(package).joinpath(resource_name).open("r", encoding="utf-8") as f:
        return json.load(f)


def _routes_schema() -> dict:
    return _load_schema("vercel_builder.schema", "routes.schema.json")


def _package_schema() -> dict:
    return _load_schema("vercel_builder.schema", "package.schema.json")


# --- Public validators ------------------------------------------------------


def validate_routes(data: list[dict]) -> None:
    Draft202012Validator(_routes_schema()).validate(data)


def validate_package_json(data: dict) -> None:
    Draft202012Validator(_package_schema()).validate(data)
