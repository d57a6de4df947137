"""EnvironmentContext - immutable tool, credential and variable bindings."""

import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .exceptions import ConfigurationError, MissingBindingError
from .models import REDACTED, SecretHandle

logger = logging.getLogger(__name__)


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class EnvironmentContext:
    """Bundle of bindings available to every stage of a run.

    Built once before the run and never mutated afterwards. The mappings
    are read-only proxies, so the context can be shared freely.

    Example:
        env = EnvironmentContext.build(
            tool_paths={"mvn": "/usr/bin/mvn"},
            credentials={"registry": "s3cr3t"},
            variables={"IMAGE": "shop/api"},
        )
        env.resolve_tool("mvn")  # "/usr/bin/mvn"
    """

    tool_paths: Mapping[str, str] = field(default_factory=lambda: _frozen(None))
    credentials: Mapping[str, SecretHandle] = field(
        default_factory=lambda: _frozen(None), repr=False
    )
    variables: Mapping[str, str] = field(default_factory=lambda: _frozen(None))

    @classmethod
    def build(
        cls,
        tool_paths: Optional[Mapping[str, str]] = None,
        credentials: Optional[Mapping[str, Any]] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> "EnvironmentContext":
        """Create a context from plain mappings.

        Args:
            tool_paths: Tool name to executable path.
            credentials: Credential id to raw value or SecretHandle.
            variables: Variable name to value (stringified).

        Returns:
            A new immutable EnvironmentContext.
        """
        handles = {}
        for cred_id, value in (credentials or {}).items():
            if isinstance(value, SecretHandle):
                handles[cred_id] = value
            else:
                handles[cred_id] = SecretHandle(id=cred_id, _value=str(value))

        return cls(
            tool_paths=_frozen({k: str(v) for k, v in (tool_paths or {}).items()}),
            credentials=_frozen(handles),
            variables=_frozen({k: str(v) for k, v in (variables or {}).items()}),
        )

    @classmethod
    def from_sources(
        cls,
        tool_paths: Optional[Mapping[str, str]] = None,
        credential_sources: Optional[Mapping[str, Any]] = None,
        variables: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "EnvironmentContext":
        """Create a context, reading credential values from the environment.

        Each credential source is either an environment variable name or a
        mapping {"env": NAME}. Unset variables are a configuration error.

        Args:
            tool_paths: Tool name to executable path.
            credential_sources: Credential id to source declaration.
            variables: Variable name to value.
            environ: Environment to read from. Defaults to os.environ.
        """
        environ = os.environ if environ is None else environ
        handles = {}
        for cred_id, source in (credential_sources or {}).items():
            var_name = source.get("env") if isinstance(source, Mapping) else source
            if not var_name:
                raise ConfigurationError(
                    f"Credential '{cred_id}' has no environment source",
                    name=cred_id,
                    kind="credential",
                )
            if var_name not in environ:
                raise ConfigurationError(
                    f"Credential '{cred_id}' expects environment variable "
                    f"{var_name}, which is not set",
                    name=cred_id,
                    kind="credential",
                )
            handles[cred_id] = SecretHandle(
                id=cred_id, _value=environ[var_name], source=f"env:{var_name}"
            )

        logger.debug(
            "Environment bound: %d tools, %d credentials, %d variables",
            len(tool_paths or {}),
            len(handles),
            len(variables or {}),
        )
        return cls.build(tool_paths, handles, variables)

    def resolve_tool(self, name: str) -> str:
        """Return the executable path bound to a tool name."""
        try:
            return self.tool_paths[name]
        except KeyError:
            raise MissingBindingError("tool", name, list(self.tool_paths)) from None

    def resolve_credential(self, cred_id: str) -> SecretHandle:
        """Return the handle for a credential id. Never the raw value."""
        try:
            return self.credentials[cred_id]
        except KeyError:
            raise MissingBindingError(
                "credential", cred_id, list(self.credentials)
            ) from None

    def resolve_variable(self, name: str) -> str:
        """Return the value of a declared variable."""
        try:
            return self.variables[name]
        except KeyError:
            raise MissingBindingError(
                "variable", name, list(self.variables)
            ) from None

    def with_variables(self, overrides: Mapping[str, Any]) -> "EnvironmentContext":
        """Return a new context with some variables replaced."""
        merged = dict(self.variables)
        merged.update({k: str(v) for k, v in overrides.items()})
        return EnvironmentContext(
            tool_paths=self.tool_paths,
            credentials=self.credentials,
            variables=_frozen(merged),
        )

    def redact(self, text: str) -> str:
        """Replace every bound secret value in text with a placeholder."""
        if not text:
            return text
        # Longest first so a secret containing another is fully masked
        secrets = sorted(
            (h.reveal() for h in self.credentials.values() if h.reveal()),
            key=len,
            reverse=True,
        )
        for secret in secrets:
            text = text.replace(secret, REDACTED)
        return text
