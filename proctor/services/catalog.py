"""Exam catalog and question bank.

Only what the attempt lifecycle needs: teachers create and list their
exams, tune settings while an exam runs, and maintain its questions.
Students read the paper (questions without expected answers).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any
from uuid import UUID

from proctor.core.errors import (
    ExamNotFound,
    InvalidExamSettings,
    InvalidQuestion,
    QuestionNotFound,
)
from proctor.models.exam import QUESTION_KINDS, Exam, Question
from proctor.repos.attempt_repo import AttemptRepo
from proctor.repos.exam_repo import ExamRepo

logger = logging.getLogger(__name__)

EXAM_STATUSES = ("draft", "open", "closed")
GRADING_MODES = ("auto", "manual")

# Settings a teacher may change after creation.
_MUTABLE_SETTINGS = frozenset(
    {
        "title",
        "status",
        "lives_allowed",
        "duration_minutes",
        "grading_mode",
        "opens_at",
        "closes_at",
        "max_score",
    }
)

_NON_NULL_SETTINGS = frozenset({"title", "status", "lives_allowed", "grading_mode"})

_QUESTION_FIELDS = frozenset(
    {"kind", "prompt", "expected_answer", "choices", "points", "position"}
)


def _validate_exam(exam: Exam) -> None:
    if not exam.title.strip():
        raise InvalidExamSettings("title must be non-empty")
    if exam.status not in EXAM_STATUSES:
        raise InvalidExamSettings(f"status must be draft|open|closed (got {exam.status!r})")
    if exam.grading_mode not in GRADING_MODES:
        raise InvalidExamSettings(
            f"grading_mode must be auto|manual (got {exam.grading_mode!r})"
        )
    if exam.lives_allowed < 0:
        raise InvalidExamSettings("lives_allowed must be >= 0")
    if exam.max_score is not None and exam.max_score < 0:
        raise InvalidExamSettings("max_score must be >= 0")
    if (
        exam.opens_at is not None
        and exam.closes_at is not None
        and exam.closes_at <= exam.opens_at
    ):
        raise InvalidExamSettings("closes_at must be after opens_at")


def _validate_question(question: Question) -> None:
    if question.kind not in QUESTION_KINDS:
        raise InvalidQuestion(f"kind must be one of {', '.join(QUESTION_KINDS)}")
    if question.points < 1:
        raise InvalidQuestion("points must be >= 1")
    if not question.prompt.strip():
        raise InvalidQuestion("prompt must be non-empty")
    if question.kind == "multiple_choice" and not question.choices:
        raise InvalidQuestion("multiple_choice questions need choices")


class ExamCatalog:
    def __init__(self, exams: ExamRepo, attempts: AttemptRepo) -> None:
        self._exams = exams
        self._attempts = attempts

    async def get_exam(self, exam_id: UUID) -> Exam:
        exam = await self._exams.get(exam_id)
        if exam is None:
            raise ExamNotFound(f"exam {exam_id} not found")
        return exam

    async def create_exam(self, *, owner_id: str, title: str, **settings: Any) -> Exam:
        exam = Exam.new(owner_id=owner_id, title=title.strip(), **settings)
        _validate_exam(exam)
        await self._exams.add(exam)
        logger.info(
            "Created exam id=%s owner=%s status=%s mode=%s",
            exam.id,
            owner_id,
            exam.status,
            exam.grading_mode,
            extra={"exam_id": str(exam.id)},
        )
        return exam

    async def list_exams(self, owner_id: str | None) -> list[Exam]:
        """A teacher's own exams; every exam when owner_id is None (admins)."""
        return await self._exams.list_by_owner(owner_id)

    async def update_settings(self, exam_id: UUID, **changes: Any) -> Exam:
        """Apply a partial settings update.

        Changes apply to running attempts from their next operation on:
        a new duration moves every deadline, a lower lives_allowed is
        enforced on the next penalizing event.  lives_allowed can never
        drop below the lives a running attempt has already used.
        """
        unknown = set(changes) - _MUTABLE_SETTINGS
        if unknown:
            raise InvalidExamSettings(f"unknown settings: {', '.join(sorted(unknown))}")
        for name in sorted(_NON_NULL_SETTINGS & set(changes)):
            if changes[name] is None:
                raise InvalidExamSettings(f"{name} cannot be null")

        exam = replace(await self.get_exam(exam_id), **changes)
        _validate_exam(exam)
        if "lives_allowed" in changes:
            await self._check_lives_floor(exam)
        await self._exams.update(exam)
        logger.info(
            "Updated exam id=%s fields=%s",
            exam.id,
            sorted(changes),
            extra={"exam_id": str(exam.id)},
        )
        return exam

    async def _check_lives_floor(self, exam: Exam) -> None:
        used = max(
            (
                a.lives_used
                for a in await self._attempts.list_by_exam(exam.id)
                if a.is_running
            ),
            default=0,
        )
        if exam.lives_allowed < used:
            logger.warning(
                "Rejected lives_allowed=%d for exam=%s: a running attempt used %d",
                exam.lives_allowed,
                exam.id,
                used,
                extra={"exam_id": str(exam.id)},
            )
            raise InvalidExamSettings(
                f"lives_allowed must be >= {used}, the most lives a running "
                "attempt has already used"
            )

    # --- question bank ---------------------------------------------------

    async def add_question(
        self,
        exam_id: UUID,
        *,
        kind: str,
        prompt: str,
        expected_answer: Any,
        choices: list[str] | None = None,
        points: int = 1,
        position: int | None = None,
    ) -> Question:
        exam = await self.get_exam(exam_id)
        if position is None:
            existing = await self._exams.list_questions(exam.id)
            position = max((q.position for q in existing), default=-1) + 1

        question = Question.new(
            exam_id=exam.id,
            kind=kind,
            prompt=prompt,
            expected_answer=expected_answer,
            choices=choices,
            points=points,
            position=position,
        )
        _validate_question(question)
        await self._exams.add_question(question)
        logger.info(
            "Added question id=%s exam=%s kind=%s",
            question.id,
            exam.id,
            kind,
            extra={"exam_id": str(exam.id)},
        )
        return question

    async def get_question(self, exam_id: UUID, question_id: UUID) -> Question:
        exam = await self.get_exam(exam_id)
        question = await self._exams.get_question(question_id)
        if question is None or question.exam_id != exam.id:
            raise QuestionNotFound(f"question {question_id} not found")
        return question

    async def update_question(
        self, exam_id: UUID, question_id: UUID, **changes: Any
    ) -> Question:
        """Partial edit.  Submitted answers keep their stored scores; only
        attempts finalized afterwards are scored against the new key."""
        unknown = set(changes) - _QUESTION_FIELDS
        if unknown:
            raise InvalidQuestion(f"unknown fields: {', '.join(sorted(unknown))}")
        for name in sorted({"kind", "prompt", "points", "position"} & set(changes)):
            if changes[name] is None:
                raise InvalidQuestion(f"{name} cannot be null")
        if changes.get("choices") is not None:
            changes["choices"] = tuple(changes["choices"])

        question = replace(await self.get_question(exam_id, question_id), **changes)
        _validate_question(question)
        await self._exams.update_question(question)
        logger.info(
            "Updated question id=%s exam=%s fields=%s",
            question.id,
            exam_id,
            sorted(changes),
            extra={"exam_id": str(exam_id)},
        )
        return question

    async def delete_question(self, exam_id: UUID, question_id: UUID) -> None:
        question = await self.get_question(exam_id, question_id)
        await self._exams.delete_question(question.id)
        logger.info(
            "Deleted question id=%s exam=%s",
            question.id,
            exam_id,
            extra={"exam_id": str(exam_id)},
        )

    async def list_questions(self, exam_id: UUID) -> list[Question]:
        exam = await self.get_exam(exam_id)
        return await self._exams.list_questions(exam.id)
