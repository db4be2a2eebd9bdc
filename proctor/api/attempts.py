"""Attempt endpoints: what students do during an exam and what teachers
do to a running or finished attempt.

Students (the attempt's own subject):
  GET  /v1/attempts/{id}                         status view
  POST /v1/attempts/{id}/events                  anti-cheat signal
  PUT  /v1/attempts/{id}/answers/{question_id}   draft save
  POST /v1/attempts/{id}/submit                  final submit

Teachers (exam owner or platform admin):
  POST /v1/attempts/{id}/grade | lives | extra-time | pause | resume

Both:
  GET  /v1/attempts/{id}/events                  violation history
  GET  /v1/attempts/{id}/review                  per-question review
"""

from __future__ import annotations

from typing import Annotated, Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from proctor.api.dependencies import (
    Services,
    can_manage,
    ensure_attempt_owner,
    ensure_attempt_viewer,
    ensure_exam_manager,
    require_user,
    run_service,
)
from proctor.models.attempt import Answer, Attempt, PenaltyEvent
from proctor.models.principal import Principal
from proctor.services.lifecycle import AttemptSummary, GradeEntry

router = APIRouter(prefix="/v1/attempts", tags=["attempts"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class AttemptOut(BaseModel):
    id: UUID
    exam_id: UUID
    student_key: str
    student_name: str
    status: str
    started_at: int
    ended_at: int | None
    lives_used: int
    extra_time_secs: int
    score: float | None
    paused: bool
    finish_reason: str | None


class AttemptSummaryOut(AttemptOut):
    exam_title: str
    lives_allowed: int
    lives_remaining: int
    seconds_left: int | None
    violations: int


class PenaltyIn(BaseModel):
    type: str = Field(max_length=256)


class PenaltyOut(BaseModel):
    tag: str
    penalized: bool
    ignored: bool
    status: str
    lives_used: int
    lives_remaining: int
    terminal: bool


class PenaltyEventOut(BaseModel):
    id: UUID
    tag: str
    penalized: bool
    occurred_at: int


class DraftIn(BaseModel):
    value: Any = None


class AnswerOut(BaseModel):
    question_id: UUID
    value: Any
    score: float | None
    feedback: str | None


class SubmittedAnswerIn(BaseModel):
    question_id: UUID
    value: Any = None


class SubmitIn(BaseModel):
    answers: list[SubmittedAnswerIn]


class SubmitOut(BaseModel):
    attempt: AttemptOut
    grading_mode: str
    score: float | None
    max_score: int


class GradeItemIn(BaseModel):
    question_id: UUID
    score: float
    feedback: str | None = None


class GradeIn(BaseModel):
    grades: list[GradeItemIn] = []
    finalize: bool = False
    overall_feedback: str | None = None


class LivesIn(BaseModel):
    op: Literal["forgive", "penalize"]


class ExtraTimeIn(BaseModel):
    seconds: int


class ReviewItemOut(BaseModel):
    question_id: UUID
    kind: str
    prompt: str
    choices: list[str] | None
    points: int
    expected_answer: Any
    given: Any
    score: float | None
    feedback: str | None


class ReviewOut(BaseModel):
    attempt: AttemptOut
    exam_title: str
    max_score: int
    overall_feedback: str | None
    items: list[ReviewItemOut]


def attempt_out(attempt: Attempt) -> AttemptOut:
    return AttemptOut(
        id=attempt.id,
        exam_id=attempt.exam_id,
        student_key=attempt.student_key,
        student_name=attempt.student_name,
        status=attempt.status,
        started_at=attempt.started_at,
        ended_at=attempt.ended_at,
        lives_used=attempt.lives_used,
        extra_time_secs=attempt.extra_time_secs,
        score=attempt.score,
        paused=attempt.paused,
        finish_reason=attempt.finish_reason,
    )


def summary_out(summary: AttemptSummary) -> AttemptSummaryOut:
    return AttemptSummaryOut(
        **attempt_out(summary.attempt).model_dump(),
        exam_title=summary.exam.title,
        lives_allowed=summary.exam.lives_allowed,
        lives_remaining=summary.lives_remaining,
        seconds_left=summary.seconds_left,
        violations=summary.violations,
    )


def _answer_out(answer: Answer) -> AnswerOut:
    return AnswerOut(
        question_id=answer.question_id,
        value=answer.value,
        score=answer.score,
        feedback=answer.feedback,
    )


def _event_out(event: PenaltyEvent) -> PenaltyEventOut:
    return PenaltyEventOut(
        id=event.id,
        tag=event.tag,
        penalized=event.penalized,
        occurred_at=event.occurred_at,
    )


# ---------------------------------------------------------------------------
# Student endpoints
# ---------------------------------------------------------------------------


@router.get("/{attempt_id}", response_model=AttemptSummaryOut)
async def get_attempt(
    attempt_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptSummaryOut:
    async def op(s: Services) -> AttemptSummary:
        attempt, exam = await s.lifecycle.get_attempt(attempt_id)
        ensure_attempt_viewer(principal, attempt, exam)
        return await s.lifecycle.get_summary(attempt_id)

    return summary_out(await run_service(op))


@router.post("/{attempt_id}/events", response_model=PenaltyOut)
async def record_event(
    attempt_id: UUID,
    payload: PenaltyIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> PenaltyOut:
    async def op(s: Services):
        attempt, _exam = await s.lifecycle.get_attempt(attempt_id)
        ensure_attempt_owner(principal, attempt)
        return await s.lifecycle.record_penalty(attempt_id, payload.type)

    outcome = await run_service(op)
    return PenaltyOut(
        tag=outcome.tag,
        penalized=outcome.penalized,
        ignored=outcome.ignored,
        status=outcome.attempt.status,
        lives_used=outcome.attempt.lives_used,
        lives_remaining=outcome.lives_remaining,
        terminal=outcome.terminal,
    )


@router.get("/{attempt_id}/events", response_model=list[PenaltyEventOut])
async def list_events(
    attempt_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> list[PenaltyEventOut]:
    async def op(s: Services) -> list[PenaltyEvent]:
        attempt, exam = await s.lifecycle.get_attempt(attempt_id)
        ensure_attempt_viewer(principal, attempt, exam)
        return await s.lifecycle.list_penalty_events(attempt_id)

    return [_event_out(e) for e in await run_service(op)]


@router.put("/{attempt_id}/answers/{question_id}", response_model=AnswerOut)
async def save_draft(
    attempt_id: UUID,
    question_id: UUID,
    payload: DraftIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AnswerOut:
    async def op(s: Services) -> Answer:
        attempt, _exam = await s.lifecycle.get_attempt(attempt_id)
        ensure_attempt_owner(principal, attempt)
        return await s.lifecycle.save_draft_answer(attempt_id, question_id, payload.value)

    return _answer_out(await run_service(op))


@router.post("/{attempt_id}/submit", response_model=SubmitOut)
async def submit(
    attempt_id: UUID,
    payload: SubmitIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> SubmitOut:
    async def op(s: Services):
        attempt, _exam = await s.lifecycle.get_attempt(attempt_id)
        ensure_attempt_owner(principal, attempt)
        return await s.lifecycle.submit(
            attempt_id, [(a.question_id, a.value) for a in payload.answers]
        )

    result = await run_service(op)
    return SubmitOut(
        attempt=attempt_out(result.attempt),
        grading_mode=result.grading_mode,
        score=result.score,
        max_score=result.max_score,
    )


# ---------------------------------------------------------------------------
# Teacher endpoints
# ---------------------------------------------------------------------------


async def _as_manager(
    s: Services, principal: Principal, attempt_id: UUID
) -> None:
    _attempt, exam = await s.lifecycle.get_attempt(attempt_id)
    ensure_exam_manager(principal, exam)


@router.post("/{attempt_id}/grade", response_model=AttemptOut)
async def grade(
    attempt_id: UUID,
    payload: GradeIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    async def op(s: Services) -> Attempt:
        await _as_manager(s, principal, attempt_id)
        return await s.lifecycle.grade(
            attempt_id,
            [GradeEntry(g.question_id, g.score, g.feedback) for g in payload.grades],
            finalize=payload.finalize,
            overall_feedback=payload.overall_feedback,
        )

    return attempt_out(await run_service(op))


@router.post("/{attempt_id}/lives", response_model=AttemptOut)
async def adjust_lives(
    attempt_id: UUID,
    payload: LivesIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    async def op(s: Services) -> Attempt:
        await _as_manager(s, principal, attempt_id)
        return await s.lifecycle.adjust_lives(attempt_id, payload.op)

    return attempt_out(await run_service(op))


@router.post("/{attempt_id}/extra-time", response_model=AttemptOut)
async def grant_extra_time(
    attempt_id: UUID,
    payload: ExtraTimeIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    async def op(s: Services) -> Attempt:
        await _as_manager(s, principal, attempt_id)
        return await s.lifecycle.grant_extra_time(attempt_id, payload.seconds)

    return attempt_out(await run_service(op))


@router.post("/{attempt_id}/pause", response_model=AttemptOut)
async def pause(
    attempt_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    async def op(s: Services) -> Attempt:
        await _as_manager(s, principal, attempt_id)
        return await s.lifecycle.set_paused(attempt_id, True)

    return attempt_out(await run_service(op))


@router.post("/{attempt_id}/resume", response_model=AttemptOut)
async def resume(
    attempt_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    async def op(s: Services) -> Attempt:
        await _as_manager(s, principal, attempt_id)
        return await s.lifecycle.set_paused(attempt_id, False)

    return attempt_out(await run_service(op))


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


@router.get("/{attempt_id}/review", response_model=ReviewOut)
async def review(
    attempt_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ReviewOut:
    async def op(s: Services):
        attempt, exam = await s.lifecycle.get_attempt(attempt_id)
        ensure_attempt_viewer(principal, attempt, exam)
        return await s.lifecycle.get_review(
            attempt_id, as_manager=can_manage(principal, exam)
        )

    result = await run_service(op)
    return ReviewOut(
        attempt=attempt_out(result.attempt),
        exam_title=result.exam.title,
        max_score=result.max_score,
        overall_feedback=result.overall_feedback,
        items=[
            ReviewItemOut(
                question_id=item.question.id,
                kind=item.question.kind,
                prompt=item.question.prompt,
                choices=list(item.question.choices) if item.question.choices else None,
                points=item.question.points,
                expected_answer=item.question.expected_answer,
                given=item.answer.value if item.answer else None,
                score=item.answer.score if item.answer else None,
                feedback=item.answer.feedback if item.answer else None,
            )
            for item in result.items
        ],
    )
