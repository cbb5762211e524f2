"""Result types for the staged ingestion pipeline."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class StageSeverity(str, Enum):
    FATAL = "fatal"
    DEGRADED = "degraded"


class Stage(str, Enum):
    EXTRACT = "extract"
    SUMMARIZE = "summarize"
    CATEGORIZE = "categorize"
    RECURRENCE = "recurrence"
    EMBED = "embed"


STAGE_POLICY: dict[Stage, StageSeverity] = {
    Stage.EXTRACT: StageSeverity.FATAL,
    Stage.SUMMARIZE: StageSeverity.FATAL,
    Stage.CATEGORIZE: StageSeverity.DEGRADED,
    Stage.RECURRENCE: StageSeverity.DEGRADED,
    Stage.EMBED: StageSeverity.DEGRADED,
}


@dataclass
class StageResult(Generic[T]):
    """Outcome of a single pipeline stage: either a value or the error that stopped it."""

    stage: Stage
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def severity(self) -> StageSeverity:
        return STAGE_POLICY[self.stage]

    def value_or(self, fallback: T) -> T:
        return self.value if self.ok and self.value is not None else fallback
