"""Pipeline definition loading from YAML files.

Public API:
    - load_pipeline: Read a definition file
    - parse_definition: Build a definition from parsed data
    - PipelineDefinition: Stages, environment and post-run steps
    - DefinitionError: Malformed definition
"""

from .exceptions import DefinitionError
from .loader import load_pipeline, parse_definition, parse_stage
from .models import PipelineDefinition

__all__ = [
    "load_pipeline",
    "parse_definition",
    "parse_stage",
    "PipelineDefinition",
    "DefinitionError",
]
