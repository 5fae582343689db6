# ABOUTME: Defines canonical data structures shared by the tracers, calibrator, and selector.
# ABOUTME: Centralizes skill, item, attempt, mastery profile, and calibration schema definitions.

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple


class AttemptState(str, Enum):
    """Lifecycle states of one attempt inside the update pipeline."""

    RECEIVED = "received"
    VALIDATED = "validated"
    SCORED = "scored"
    MASTERY_UPDATED = "mastery_updated"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Skill:
    """Atomic competency unit; prerequisites reference other skill ids."""

    skill_id: str
    label: str = ""
    prerequisites: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Item:
    """Assessable question bound to one primary skill."""

    item_id: str
    skill_id: str
    difficulty: float
    discrimination: float = 1.0
    answer_key: Any = None
    content_hash: str = ""
    exposure_count: int = 0
    deprecated: bool = False
    secondary_skills: Mapping[str, float] = field(default_factory=dict)
    calibration_low_confidence: bool = False
    calibrated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Attempt:
    """One graded response; immutable once appended to the attempt log."""

    student_id: str
    item_id: str
    skill_id: str
    correctness: float
    response_time: Optional[float]
    server_timestamp: datetime
    idempotency_key: str
    client_time: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryEntry:
    """One element of a sequence-tracer window."""

    skill_id: str
    correctness: float
    elapsed_time: Optional[float] = None


@dataclass(frozen=True)
class MasteryProfile:
    """Mastery state for one (student, skill) pair."""

    student_id: str
    skill_id: str
    probability_mastery: float
    confidence: float
    last_update: Optional[datetime]
    attempt_count: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.student_id, self.skill_id)


@dataclass(frozen=True)
class AbilityBucket:
    """Responses to one item from respondents whose ability fell in one bucket."""

    ability: float
    responses: int
    correct: float


@dataclass
class CalibrationState:
    """Aggregated responses for one item, rebuilt by the calibration batch job."""

    item_id: str
    buckets: List[AbilityBucket] = field(default_factory=list)

    @property
    def total_responses(self) -> int:
        return sum(bucket.responses for bucket in self.buckets)


@dataclass(frozen=True)
class AttemptResult:
    """Outcome returned to the caller of submit_attempt."""

    idempotency_key: str
    student_id: str
    item_id: str
    skill_id: str
    correctness: float
    updated_mastery: float
    confidence: float
    server_timestamp: datetime
    degraded: bool = False
