"""Typed results for best-effort steps."""

from dataclasses import dataclass
from enum import Enum


class StepStatus(str, Enum):
    OK = "ok"
    SOFT_FAILURE = "soft_failure"
    HARD_FAILURE = "hard_failure"


@dataclass(frozen=True)
class StepOutcome:
    """Result of one best-effort step.

    A soft failure was logged and skipped; the surrounding operation still
    succeeded. A hard failure means the step's own primary action failed.
    """

    step: str
    status: StepStatus
    reason: str | None = None

    @classmethod
    def ok(cls, step: str) -> "StepOutcome":
        return cls(step=step, status=StepStatus.OK)

    @classmethod
    def soft_failure(cls, step: str, reason: str) -> "StepOutcome":
        return cls(step=step, status=StepStatus.SOFT_FAILURE, reason=reason)

    @classmethod
    def hard_failure(cls, step: str, reason: str) -> "StepOutcome":
        return cls(step=step, status=StepStatus.HARD_FAILURE, reason=reason)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.OK

    def to_dict(self) -> dict:
        return {"step": self.step, "status": self.status.value, "reason": self.reason}
