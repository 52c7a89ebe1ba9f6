"""Shared Pydantic models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BuildConfig(BaseModel):
    """Builder options from the platform's build configuration."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    app: str | None = None
    max_duration: int | None = Field(default=None, alias="maxDuration")
    memory: int | None = None
    tsc_options: dict[str, Any] = Field(default_factory=dict, alias="tscOptions")
    generate_static_routes: bool = Field(default=False, alias="generateStaticRoutes")
    include_files: list[str] = Field(default_factory=list, alias="includeFiles")
    server_files: list[str] = Field(default_factory=list, alias="serverFiles")
    internal_server: bool | None = Field(default=None, alias="internalServer")
    build_files: list[str] = Field(default_factory=list, alias="buildFiles")

    @field_validator("include_files", mode="before")
    @classmethod
    def _one_or_many(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class Manifest(BaseModel):
    """`package.json` contents. Unknown keys survive a read/write cycle."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    version: str | None = None
    scripts: dict[str, str] | None = None
    dependencies: dict[str, str] | None = None
    devDependencies: dict[str, str] | None = None
    engines: dict[str, str] | None = None

    def has_script(self, name: str) -> bool:
        return name in (self.scripts or {})

    def declares(self, package: str) -> bool:
        return package in (self.dependencies or {}) or package in (self.devDependencies or {})


class Route(BaseModel):
    src: str | None = None
    dest: str | None = None
    headers: dict[str, str] | None = None
    handle: Literal["filesystem"] | None = None

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)
