from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal
from uuid import UUID, uuid4

GradingMode = Literal["auto", "manual"]
ExamStatus = Literal["draft", "open", "closed"]
WindowState = Literal["not_open_yet", "open", "closed"]
QuestionKind = Literal["multiple_choice", "true_false", "short_text", "fill_in_blank"]

QUESTION_KINDS: tuple[str, ...] = (
    "multiple_choice",
    "true_false",
    "short_text",
    "fill_in_blank",
)


@dataclass(frozen=True, slots=True)
class Exam:
    id: UUID
    owner_id: str
    title: str
    status: str = "draft"  # draft|open|closed
    lives_allowed: int = 3
    duration_minutes: int | None = None  # None or <=0 means untimed
    grading_mode: str = "auto"  # auto|manual
    opens_at: int | None = None
    closes_at: int | None = None
    max_score: int | None = None

    @staticmethod
    def new(
        *,
        owner_id: str,
        title: str,
        status: str = "draft",
        lives_allowed: int = 3,
        duration_minutes: int | None = None,
        grading_mode: str = "auto",
        opens_at: int | None = None,
        closes_at: int | None = None,
        max_score: int | None = None,
    ) -> Exam:
        return Exam(
            id=uuid4(),
            owner_id=owner_id,
            title=title,
            status=status,
            lives_allowed=lives_allowed,
            duration_minutes=duration_minutes,
            grading_mode=grading_mode,
            opens_at=opens_at,
            closes_at=closes_at,
            max_score=max_score,
        )

    @property
    def is_timed(self) -> bool:
        return self.duration_minutes is not None and self.duration_minutes > 0

    def window_state(self, now: int) -> WindowState:
        """Where `now` falls relative to the exam's availability.

        The teacher's status switch wins over the timestamps: a draft exam
        is never open and a closed exam stays closed even inside its window.
        """
        if self.status == "closed":
            return "closed"
        if self.status != "open":
            return "not_open_yet"
        if self.opens_at is not None and now < self.opens_at:
            return "not_open_yet"
        if self.closes_at is not None and now >= self.closes_at:
            return "closed"
        return "open"

    def is_open(self, now: int) -> bool:
        return self.window_state(now) == "open"

    def is_owned_by(self, user_id: str) -> bool:
        return self.owner_id == user_id


@dataclass(frozen=True, slots=True)
class Question:
    id: UUID
    exam_id: UUID
    kind: str  # multiple_choice|true_false|short_text|fill_in_blank
    prompt: str
    expected_answer: Any
    choices: tuple[str, ...] | None = None
    points: int = 1
    position: int = 0

    @staticmethod
    def new(
        *,
        exam_id: UUID,
        kind: str,
        prompt: str,
        expected_answer: Any,
        choices: list[str] | tuple[str, ...] | None = None,
        points: int = 1,
        position: int = 0,
    ) -> Question:
        return Question(
            id=uuid4(),
            exam_id=exam_id,
            kind=kind,
            prompt=prompt,
            expected_answer=expected_answer,
            choices=tuple(choices) if choices is not None else None,
            points=points,
            position=position,
        )
