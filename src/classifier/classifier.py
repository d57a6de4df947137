"""Version-based routing of artifacts to publish channels.

The rule is a plain marker check: a version containing the
case-sensitive substring "SNAPSHOT" goes to the snapshots channel and
everything else goes to releases. Versions are not parsed as semver,
so "1.0-snapshot" is a release and "SNAPSHOT-1" is a snapshot.
"""

from .exceptions import InvalidVersionError
from .models import Channel

SNAPSHOT_MARKER = "SNAPSHOT"


def classify(version: str) -> Channel:
    """Return the publish channel for a version string.

    Args:
        version: Artifact version, e.g. "1.2.0" or "1.2.0-SNAPSHOT".

    Returns:
        Channel.SNAPSHOTS if the marker is present, else Channel.RELEASES.

    Raises:
        InvalidVersionError: If version is empty or not a string.
    """
    if not isinstance(version, str) or not version:
        raise InvalidVersionError(version)
    if SNAPSHOT_MARKER in version:
        return Channel.SNAPSHOTS
    return Channel.RELEASES
