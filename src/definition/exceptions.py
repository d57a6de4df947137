"""Exceptions for the pipeline definition module."""

from src.environment.exceptions import ConfigurationError


class DefinitionError(ConfigurationError):
    """Raised when a pipeline definition file is malformed."""

    def __init__(self, message: str, stage: str | None = None, path: str | None = None):
        self.stage = stage
        self.path = path
        location = f"{path}: " if path else ""
        where = f"stage '{stage}': " if stage else ""
        super().__init__(f"{location}{where}{message}", name=stage, kind="definition")
