"""Artifact classifier routing versions to publish channels.

Public API:
    - classify: Version string to Channel
    - Channel: releases / snapshots
    - ArtifactDescriptor: Version, build id and location of an artifact
    - ClassificationError: Base classification failure
    - InvalidVersionError: Empty or non-string version
"""

from .classifier import SNAPSHOT_MARKER, classify
from .exceptions import ClassificationError, InvalidVersionError
from .models import ArtifactDescriptor, Channel

__all__ = [
    "classify",
    "SNAPSHOT_MARKER",
    "Channel",
    "ArtifactDescriptor",
    "ClassificationError",
    "InvalidVersionError",
]
