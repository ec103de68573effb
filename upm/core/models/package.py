"""
Package models — what Search and Info report about a package.

Names, specs, and versions are opaque strings in the target
ecosystem's syntax. This layer never parses or normalizes them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

PackageName = str
PackageSpec = str       # version constraint or source locator
PackageVersion = str    # resolved version from the lockfile


class PackageInfo(BaseModel):
    """Display metadata for one package.

    Produced only by ``search`` and ``info``; never persisted. An
    entirely empty record means the index does not know the package.

    The embedded index scripts emit camelCase URL keys
    (``homepageURL`` etc.) and ``null`` for missing values; both are
    accepted here.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    description: str = ""
    version: str = ""

    homepage_url: str = Field(default="", alias="homepageURL")
    documentation_url: str = Field(default="", alias="documentationURL")
    source_code_url: str = Field(default="", alias="sourceCodeURL")
    bug_tracker_url: str = Field(default="", alias="bugTrackerURL")

    author: str = ""
    license: str = ""
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def _null_is_zero(cls, value: Any, info: Any) -> Any:
        if value is None:
            return [] if info.field_name == "dependencies" else ""
        return value

    @property
    def is_empty(self) -> bool:
        """Whether every field holds its zero value."""
        return self == PackageInfo()

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()
