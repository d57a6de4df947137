"""Exceptions for the environment module."""


class ConfigurationError(Exception):
    """Raised when a tool, credential, or variable binding is missing.

    Always fatal to the stage that asked for the binding, and raised
    before any external process is started.
    """

    def __init__(self, message: str, name: str | None = None, kind: str | None = None):
        self.name = name
        self.kind = kind
        super().__init__(message)


class MissingBindingError(ConfigurationError):
    """Raised when a named binding is not present in the context."""

    def __init__(self, kind: str, name: str, available: list[str] | None = None):
        known = ", ".join(sorted(available)) if available else "none"
        super().__init__(
            f"No {kind} named '{name}' is bound (known: {known})",
            name=name,
            kind=kind,
        )
