"""Exceptions for the artifact classifier module."""


class ClassificationError(Exception):
    """Base exception for artifact classification failures.

    Fatal to the deployment stage that needed a channel, never to the
    whole run by itself.
    """

    pass


class InvalidVersionError(ClassificationError):
    """Raised when a version string cannot be classified."""

    def __init__(self, version: object):
        self.version = version
        super().__init__(f"Cannot classify artifact version {version!r}")
