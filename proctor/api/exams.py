"""Exam endpoints.

  POST  /v1/exams                         create (teacher, admin)
  GET   /v1/exams                         own exams (teacher), all (admin)
  PATCH /v1/exams/{exam_id}               settings (owner, admin)
  POST  /v1/exams/{exam_id}/questions     add question (owner, admin)
  PUT   /v1/exams/{exam_id}/questions/{question_id}   edit (owner, admin)
  DELETE /v1/exams/{exam_id}/questions/{question_id}  delete (owner, admin)
  GET   /v1/exams/{exam_id}/paper         questions without answers
  POST  /v1/exams/{exam_id}/attempts      start an attempt (student)
  GET   /v1/exams/{exam_id}/attempts      dashboard (owner, admin)
  GET   /v1/exams/{exam_id}/feed          dashboard feed (owner, admin)
"""

from __future__ import annotations

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from proctor.api.attempts import (
    AttemptOut,
    AttemptSummaryOut,
    attempt_out,
    summary_out,
)
from proctor.api.dependencies import (
    Services,
    can_manage,
    ensure_exam_manager,
    require_any_role,
    require_user,
    run_service,
)
from proctor.core.errors import ExamClosed, ExamNotOpenYet
from proctor.models.exam import Exam, Question
from proctor.models.principal import Principal
from proctor.services.exam_feed import exam_feed

router = APIRouter(prefix="/v1/exams", tags=["exams"])


class ExamCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    status: str = "draft"
    lives_allowed: int = 3
    duration_minutes: int | None = None
    grading_mode: str = "auto"
    opens_at: int | None = None
    closes_at: int | None = None
    max_score: int | None = None


class ExamSettingsIn(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    status: str | None = None
    lives_allowed: int | None = None
    duration_minutes: int | None = None
    grading_mode: str | None = None
    opens_at: int | None = None
    closes_at: int | None = None
    max_score: int | None = None


class ExamOut(BaseModel):
    id: UUID
    owner_id: str
    title: str
    status: str
    lives_allowed: int
    duration_minutes: int | None
    grading_mode: str
    opens_at: int | None
    closes_at: int | None
    max_score: int | None


class QuestionIn(BaseModel):
    kind: str
    prompt: str
    expected_answer: Any = None
    choices: list[str] | None = None
    points: int = 1
    position: int | None = None


class QuestionUpdateIn(BaseModel):
    kind: str | None = None
    prompt: str | None = None
    expected_answer: Any = None
    choices: list[str] | None = None
    points: int | None = None
    position: int | None = None


class QuestionOut(BaseModel):
    id: UUID
    kind: str
    prompt: str
    choices: list[str] | None
    points: int
    position: int
    expected_answer: Any


class PaperQuestionOut(BaseModel):
    id: UUID
    kind: str
    prompt: str
    choices: list[str] | None
    points: int


class StartIn(BaseModel):
    student_name: str = Field(default="", max_length=200)


class FeedOut(BaseModel):
    events: list[dict[str, Any]]
    cursor: int


def _exam_out(exam: Exam) -> ExamOut:
    return ExamOut(
        id=exam.id,
        owner_id=exam.owner_id,
        title=exam.title,
        status=exam.status,
        lives_allowed=exam.lives_allowed,
        duration_minutes=exam.duration_minutes,
        grading_mode=exam.grading_mode,
        opens_at=exam.opens_at,
        closes_at=exam.closes_at,
        max_score=exam.max_score,
    )


def _question_out(question: Question) -> QuestionOut:
    return QuestionOut(
        id=question.id,
        kind=question.kind,
        prompt=question.prompt,
        choices=list(question.choices) if question.choices is not None else None,
        points=question.points,
        position=question.position,
        expected_answer=question.expected_answer,
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.post("", response_model=ExamOut, status_code=status.HTTP_201_CREATED)
async def create_exam(
    payload: ExamCreateIn,
    principal: Annotated[Principal, Depends(require_any_role({"teacher", "admin"}))],
) -> ExamOut:
    async def op(s: Services) -> Exam:
        return await s.catalog.create_exam(
            owner_id=principal.user_id, **payload.model_dump()
        )

    return _exam_out(await run_service(op))


@router.get("", response_model=list[ExamOut])
async def list_exams(
    principal: Annotated[Principal, Depends(require_any_role({"teacher", "admin"}))],
) -> list[ExamOut]:
    owner = None if principal.is_platform_admin() else principal.user_id

    async def op(s: Services) -> list[Exam]:
        return await s.catalog.list_exams(owner)

    return [_exam_out(exam) for exam in await run_service(op)]


@router.patch("/{exam_id}", response_model=ExamOut)
async def update_exam(
    exam_id: UUID,
    payload: ExamSettingsIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ExamOut:
    async def op(s: Services) -> Exam:
        ensure_exam_manager(principal, await s.catalog.get_exam(exam_id))
        return await s.catalog.update_settings(
            exam_id, **payload.model_dump(exclude_unset=True)
        )

    return _exam_out(await run_service(op))


@router.post(
    "/{exam_id}/questions",
    response_model=QuestionOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_question(
    exam_id: UUID,
    payload: QuestionIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> QuestionOut:
    async def op(s: Services) -> Question:
        ensure_exam_manager(principal, await s.catalog.get_exam(exam_id))
        return await s.catalog.add_question(exam_id, **payload.model_dump())

    return _question_out(await run_service(op))


@router.put("/{exam_id}/questions/{question_id}", response_model=QuestionOut)
async def update_question(
    exam_id: UUID,
    question_id: UUID,
    payload: QuestionUpdateIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> QuestionOut:
    async def op(s: Services) -> Question:
        ensure_exam_manager(principal, await s.catalog.get_exam(exam_id))
        return await s.catalog.update_question(
            exam_id, question_id, **payload.model_dump(exclude_unset=True)
        )

    return _question_out(await run_service(op))


@router.delete(
    "/{exam_id}/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_question(
    exam_id: UUID,
    question_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> Response:
    async def op(s: Services) -> None:
        ensure_exam_manager(principal, await s.catalog.get_exam(exam_id))
        await s.catalog.delete_question(exam_id, question_id)

    await run_service(op)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{exam_id}/paper", response_model=list[PaperQuestionOut])
async def get_paper(
    exam_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> list[PaperQuestionOut]:
    """The questions a student sees.  Students only while the exam is open."""

    async def op(s: Services) -> list[Question]:
        exam = await s.catalog.get_exam(exam_id)
        if not can_manage(principal, exam):
            window = exam.window_state(s.lifecycle.now())
            if window == "not_open_yet":
                raise ExamNotOpenYet(f"exam {exam.id} is not open yet")
            if window == "closed":
                raise ExamClosed(f"exam {exam.id} is closed")
        return await s.catalog.list_questions(exam_id)

    return [
        PaperQuestionOut(
            id=q.id,
            kind=q.kind,
            prompt=q.prompt,
            choices=list(q.choices) if q.choices is not None else None,
            points=q.points,
        )
        for q in await run_service(op)
    ]


# ---------------------------------------------------------------------------
# Attempts
# ---------------------------------------------------------------------------


@router.post(
    "/{exam_id}/attempts",
    response_model=AttemptOut,
    status_code=status.HTTP_201_CREATED,
)
async def start_attempt(
    exam_id: UUID,
    payload: StartIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    async def op(s: Services):
        return await s.lifecycle.start(
            exam_id, principal.student_key, payload.student_name
        )

    return attempt_out(await run_service(op))


@router.get("/{exam_id}/attempts", response_model=list[AttemptSummaryOut])
async def list_attempts(
    exam_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> list[AttemptSummaryOut]:
    async def op(s: Services):
        ensure_exam_manager(principal, await s.catalog.get_exam(exam_id))
        return await s.lifecycle.list_exam_attempts(exam_id)

    return [summary_out(summary) for summary in await run_service(op)]


@router.get("/{exam_id}/feed", response_model=FeedOut)
async def get_feed(
    exam_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    since: Annotated[int, Query(ge=0)] = 0,
) -> FeedOut:
    async def op(s: Services) -> Exam:
        exam = await s.catalog.get_exam(exam_id)
        ensure_exam_manager(principal, exam)
        return exam

    exam = await run_service(op)
    events = await exam_feed.since(exam.id, since)
    cursor = events[-1]["ts_ms"] if events else since
    return FeedOut(events=events, cursor=cursor)
