"""Data models for the environment module."""

from dataclasses import dataclass, field

REDACTED = "****"


@dataclass(frozen=True)
class SecretHandle:
    """Opaque reference to a credential value.

    The raw value is only available through reveal(); repr and str show
    the credential id so handles can be logged safely.

    Attributes:
        id: Credential identifier used by stage declarations.
        source: Where the value came from (e.g. "env:REGISTRY_TOKEN").
    """

    id: str
    _value: str = field(repr=False)
    source: str = ""

    def reveal(self) -> str:
        """Return the raw secret. Only for child process environments."""
        return self._value

    def __str__(self) -> str:
        return f"<secret {self.id}>"
