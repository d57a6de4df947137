"""Data models for loaded pipeline definitions."""

from dataclasses import dataclass, field

from src.environment import EnvironmentContext
from src.executor import Stage


@dataclass
class PipelineDefinition:
    """A pipeline as declared in a definition file.

    Attributes:
        name: Pipeline name.
        stages: Stages in declared order.
        environment: Bindings built from the environment section.
        post_run: Steps run after every run, in order.
    """

    name: str
    stages: list[Stage] = field(default_factory=list)
    environment: EnvironmentContext = field(default_factory=EnvironmentContext.build)
    post_run: list[Stage] = field(default_factory=list)

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]
