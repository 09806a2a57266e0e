"""Client application metadata."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class ApplicationMetadata:
    """Descriptive record stored against a registered application id.

    package_url points at wherever the workload is distributed from
    (e.g. a container image reference); the ledger never interprets it.
    """
    name: str
    description: str = ""
    logo_url: str = ""
    package_url: str = ""

    @classmethod
    def empty(cls) -> ApplicationMetadata:
        """Zero-valued metadata returned for unknown ids."""
        return cls(name="")

    @property
    def is_empty(self) -> bool:
        return self == ApplicationMetadata.empty()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApplicationMetadata:
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            logo_url=data.get("logo_url", ""),
            package_url=data.get("package_url", ""),
        )
