"""Domain layer public exports."""

from .base import DomainModel, MutableDomainModel
from .build import RemoteBuildInfo
from .enums import BuildResult, BuildStatus

__all__ = [
    "BuildResult",
    "BuildStatus",
    "DomainModel",
    "MutableDomainModel",
    "RemoteBuildInfo",
]
