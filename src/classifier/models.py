"""Data models for the artifact classifier module."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class Channel(Enum):
    """Publish destinations for built artifacts."""

    RELEASES = "releases"
    SNAPSHOTS = "snapshots"


@dataclass(frozen=True)
class ArtifactDescriptor:
    """An artifact produced by the build stage.

    Attributes:
        version: Version string reported by the build tool.
        build_id: Identifier of the pipeline run that produced it.
        content_location: Path or URL of the built artifact.
    """

    version: str
    build_id: str
    content_location: str = ""

    @property
    def channel(self) -> Channel:
        """Destination channel for this artifact."""
        from .classifier import classify

        return classify(self.version)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "version": self.version,
            "build_id": self.build_id,
            "content_location": self.content_location,
        }

    @classmethod
    def from_metadata(
        cls, metadata: Mapping[str, str], build_id: Optional[str] = None
    ) -> "ArtifactDescriptor":
        """Build a descriptor from run metadata.

        Reads the "version", "build_id" and "artifact" keys. An explicit
        build_id argument wins over the metadata value.
        """
        return cls(
            version=metadata.get("version", ""),
            build_id=build_id or metadata.get("build_id", ""),
            content_location=metadata.get("artifact", ""),
        )
