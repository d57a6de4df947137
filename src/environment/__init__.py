"""Environment bindings shared by every stage of a pipeline run.

Public API:
    - EnvironmentContext: Immutable tool/credential/variable bindings
    - SecretHandle: Opaque credential reference
    - ConfigurationError: Missing or invalid binding
    - MissingBindingError: A requested name is not bound
"""

from .context import EnvironmentContext
from .exceptions import ConfigurationError, MissingBindingError
from .models import REDACTED, SecretHandle

__all__ = [
    "EnvironmentContext",
    "SecretHandle",
    "REDACTED",
    "ConfigurationError",
    "MissingBindingError",
]
