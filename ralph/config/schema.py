"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class WorkConfig(BaseModel):
    """Iteration loop settings."""

    model: Literal["opus", "sonnet", "adaptive"] = Field(
        "opus", description="adaptive picks sonnet or opus per task"
    )
    max_iterations: int = Field(25, gt=0)
    pause_ms: int = Field(2000, ge=0, description="Pause between iterations")
    claude_binary: str = "claude"


class DisplayConfig(BaseModel):
    """Live dashboard and summary settings."""

    tool_window: int = Field(6, ge=1, le=50, description="Tool events kept on screen")
    completion_messages: bool = True
    show_cost: bool = True


class MetricsConfig(BaseModel):
    enabled: bool = True
    dir: str | None = None

    @property
    def path(self) -> Path | None:
        return Path(self.dir).expanduser() if self.dir else None


class PathsConfig(BaseModel):
    """Project files, relative to the working directory."""

    specs: str = "specs"
    plan: str = "IMPLEMENTATION_PLAN.md"
    build_prompt: str = "PROMPT_build.md"
    plan_prompt: str = "PROMPT_plan.md"
    research_prompt: str = "PROMPT_research.md"
    spec_prompt: str = "PROMPT_spec.md"


class Config(BaseModel):
    """Root configuration for ralph."""

    model_config = ConfigDict(extra="ignore")

    work: WorkConfig = Field(default_factory=WorkConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
