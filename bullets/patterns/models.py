"""Data models for pattern definitions and collision reports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

VISUAL_ID_PREFIX = "better-bullet-"


@dataclass(frozen=True)
class PatternDefinition:
    """One bullet type: the trigger text and the marker it renders as."""

    id: str
    label: str
    pattern: str
    icon: str
    configurable: bool = False

    @property
    def visual_id(self) -> str:
        return f"{VISUAL_ID_PREFIX}{self.id}"


class CollisionIssue(BaseModel):
    """Single trigger collision between two enabled patterns."""

    model_config = ConfigDict(extra="forbid")

    code: Literal["DUPLICATE_TRIGGER", "PREFIX_OVERLAP"]
    severity: Literal["error", "note"]
    message: str
    pattern_ids: list[str]
    triggers: list[str]


class CollisionReport(BaseModel):
    """Collision detector output for one enabled-pattern signature."""

    model_config = ConfigDict(extra="forbid")

    signature: str
    issues: list[CollisionIssue] = Field(default_factory=list)

    @property
    def duplicates(self) -> list[CollisionIssue]:
        return [issue for issue in self.issues if issue.code == "DUPLICATE_TRIGGER"]

    @property
    def overlaps(self) -> list[CollisionIssue]:
        return [issue for issue in self.issues if issue.code == "PREFIX_OVERLAP"]
