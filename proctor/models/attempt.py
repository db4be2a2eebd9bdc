from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal
from uuid import UUID, uuid4

AttemptStatus = Literal["in_progress", "submitted", "in_review", "graded"]
FinishReason = Literal["submitted", "lives_exhausted", "expired"]

# Statuses in which the student's run is over.  in_review sits between
# submitted and graded: a teacher has started scoring but not published.
TERMINAL_STATUSES: frozenset[str] = frozenset({"submitted", "in_review", "graded"})

# Reserved question id for the teacher's overall comment on an attempt.
# Stored as an Answer so it travels with the per-question feedback, but it
# never carries a score.
OVERALL_FEEDBACK_ID = UUID(int=0)


@dataclass(frozen=True, slots=True)
class Attempt:
    id: UUID
    exam_id: UUID
    student_key: str
    student_name: str
    started_at: int
    status: str = "in_progress"  # in_progress|submitted|in_review|graded
    ended_at: int | None = None
    lives_used: int = 0
    extra_time_secs: int = 0
    score: float | None = None
    paused: bool = False
    finish_reason: str | None = None  # submitted|lives_exhausted|expired

    @staticmethod
    def new(
        *, exam_id: UUID, student_key: str, student_name: str, started_at: int
    ) -> Attempt:
        return Attempt(
            id=uuid4(),
            exam_id=exam_id,
            student_key=student_key,
            student_name=student_name,
            started_at=started_at,
        )

    @property
    def is_running(self) -> bool:
        return self.status == "in_progress"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class Answer:
    attempt_id: UUID
    question_id: UUID
    value: Any
    score: float | None = None
    feedback: str | None = None

    @property
    def is_overall_feedback(self) -> bool:
        return self.question_id == OVERALL_FEEDBACK_ID


@dataclass(frozen=True, slots=True)
class PenaltyEvent:
    """Append-only record of one anti-cheat signal."""

    id: UUID
    attempt_id: UUID
    tag: str
    penalized: bool
    occurred_at: int

    @staticmethod
    def new(
        *, attempt_id: UUID, tag: str, penalized: bool, occurred_at: int
    ) -> PenaltyEvent:
        return PenaltyEvent(
            id=uuid4(),
            attempt_id=attempt_id,
            tag=tag,
            penalized=penalized,
            occurred_at=occurred_at,
        )
