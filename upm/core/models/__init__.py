"""
Domain models — Pydantic types shared by every backend.

    from upm.core.models import PackageInfo, UpmConfig
"""

from upm.core.models.config import UpmConfig
from upm.core.models.package import (
    PackageInfo,
    PackageName,
    PackageSpec,
    PackageVersion,
)

__all__ = [
    # package.py
    "PackageInfo",
    "PackageName",
    "PackageSpec",
    "PackageVersion",
    # config.py
    "UpmConfig",
]
