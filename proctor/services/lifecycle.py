"""Attempt lifecycle and penalty engine.

One state machine, called from every HTTP adapter:

    start ──> in_progress ──┬─ submit ──────────────┐
                            ├─ last life lost ──────┼─> submitted ─> in_review ─> graded
                            └─ deadline passed ─────┘

All three ways out of in_progress share one finalization path, so an
attempt that runs out of lives or time is scored exactly like one the
student submitted.

EXPIRY IS ENFORCED AT OBSERVATION TIME
---------------------------------------
There is no timer.  Every operation that looks at an attempt (summary,
dashboard listing, penalty, draft save, submit, teacher actions) first
compares the clock with the deadline and finalizes the attempt if it has
passed.  An expired attempt nobody looks at stays nominally in_progress
until the next request touches it, which is fine here: a teacher's
dashboard poll is enough to close every overdue attempt of an exam.

ONE WRITER PER ATTEMPT
-----------------------
Penalty events arrive in bursts (a blur and a visibility change fire
together when a student switches tabs) and can race a submit.  Every
mutating operation holds a per-attempt asyncio.Lock for its whole
read-modify-write, and loads the attempt with for_update=True so the
PostgreSQL repo also takes a row lock that spans API instances until the
request transaction commits.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
import math
import weakref
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any
from uuid import UUID

from proctor.core.errors import (
    AttemptAlreadyGraded,
    AttemptClosed,
    AttemptNotFound,
    AttemptNotSubmitted,
    DuplicateAttempt,
    ExamClosed,
    ExamNotFound,
    ExamNotOpenYet,
    InvalidExtraTime,
    InvalidScore,
    NoAnswers,
    PayloadTooLarge,
    QuestionNotFound,
    ReviewNotAvailable,
    ValidationError,
)
from proctor.core.metrics import (
    ATTEMPT_FINALIZATIONS,
    ATTEMPTS_STARTED,
    PENALTY_EVENTS,
)
from proctor.models.attempt import (
    OVERALL_FEEDBACK_ID,
    Answer,
    Attempt,
    PenaltyEvent,
)
from proctor.models.exam import Exam, Question
from proctor.repos.attempt_repo import AttemptRepo
from proctor.repos.exam_repo import ExamRepo
from proctor.services.exam_feed import ExamFeed
from proctor.services.grading import score_answer
from proctor.services.violations import is_penalizing, normalize_violation

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExpiryCheck:
    attempt: Attempt
    deadline: int | None
    seconds_left: int | None
    expired_now: bool = False


@dataclass(frozen=True, slots=True)
class PenaltyOutcome:
    attempt: Attempt
    lives_allowed: int
    tag: str
    penalized: bool
    ignored: bool

    @property
    def lives_remaining(self) -> int:
        return max(0, self.lives_allowed - self.attempt.lives_used)

    @property
    def terminal(self) -> bool:
        return self.attempt.is_terminal


@dataclass(frozen=True, slots=True)
class SubmitResult:
    attempt: Attempt
    grading_mode: str
    score: float | None
    max_score: int


@dataclass(frozen=True, slots=True)
class GradeEntry:
    question_id: UUID
    score: float
    feedback: str | None = None


@dataclass(frozen=True, slots=True)
class AttemptSummary:
    attempt: Attempt
    exam: Exam
    seconds_left: int | None
    violations: int

    @property
    def lives_remaining(self) -> int:
        return max(0, self.exam.lives_allowed - self.attempt.lives_used)


@dataclass(frozen=True, slots=True)
class ReviewItem:
    question: Question
    answer: Answer | None


@dataclass(frozen=True, slots=True)
class Review:
    exam: Exam
    attempt: Attempt
    items: list[ReviewItem]
    max_score: int
    overall_feedback: str | None


def max_score_for(exam: Exam, questions: Iterable[Question]) -> int:
    """The exam's configured max_score, else the sum of question points."""
    if exam.max_score is not None:
        return exam.max_score
    return sum(q.points for q in questions)


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


def compute_deadline(attempt: Attempt, exam: Exam) -> int | None:
    """started_at + duration + granted extra time, or None when untimed."""
    if exam.duration_minutes is None or not exam.is_timed:
        return None
    return attempt.started_at + exam.duration_minutes * 60 + attempt.extra_time_secs


def _evaluate_deadline(attempt: Attempt, exam: Exam, now: int) -> ExpiryCheck:
    deadline = compute_deadline(attempt, exam)
    if attempt.ended_at is not None or deadline is None:
        return ExpiryCheck(attempt=attempt, deadline=deadline, seconds_left=None)
    return ExpiryCheck(
        attempt=attempt, deadline=deadline, seconds_left=max(0, deadline - now)
    )


def _is_due(check: ExpiryCheck, now: int) -> bool:
    return (
        check.attempt.ended_at is None
        and check.deadline is not None
        and now >= check.deadline
    )


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------


class AttemptLocks:
    """asyncio.Lock per attempt id.

    Weak values: a lock lives as long as some coroutine holds or waits on
    it, so finished attempts do not accumulate locks in a long-running
    process.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def for_attempt(self, attempt_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(attempt_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[attempt_id] = lock
        return lock


# Shared by every AttemptLifecycle in the process; the PostgreSQL wiring
# builds one engine per request.
attempt_locks = AttemptLocks()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AttemptLifecycle:
    def __init__(
        self,
        exams: ExamRepo,
        attempts: AttemptRepo,
        feed: ExamFeed,
        *,
        clock: Clock = utc_now,
        answer_max_bytes: int = 16_384,
        locks: AttemptLocks = attempt_locks,
    ) -> None:
        self._exams = exams
        self._attempts = attempts
        self._feed = feed
        self._clock = clock
        self._answer_max_bytes = answer_max_bytes
        self._locks = locks

    def now(self) -> int:
        return self._clock()

    # --- loading ---------------------------------------------------------

    async def get_attempt(
        self, attempt_id: UUID, *, for_update: bool = False
    ) -> tuple[Attempt, Exam]:
        attempt = await self._attempts.get(attempt_id, for_update=for_update)
        if attempt is None:
            raise AttemptNotFound(f"attempt {attempt_id} not found")
        exam = await self._exams.get(attempt.exam_id)
        if exam is None:
            raise ExamNotFound(f"exam {attempt.exam_id} not found")
        return attempt, exam

    async def _get_exam(self, exam_id: UUID) -> Exam:
        exam = await self._exams.get(exam_id)
        if exam is None:
            raise ExamNotFound(f"exam {exam_id} not found")
        return exam

    async def _questions_by_id(self, exam_id: UUID) -> dict[UUID, Question]:
        return {q.id: q for q in await self._exams.list_questions(exam_id)}

    def _check_payload(self, value: Any) -> None:
        size = len(json.dumps(value, default=str).encode("utf-8"))
        if size > self._answer_max_bytes:
            raise PayloadTooLarge(
                f"answer is {size} bytes, limit is {self._answer_max_bytes}"
            )

    # --- start -----------------------------------------------------------

    async def start(
        self, exam_id: UUID, student_key: str, student_name: str = ""
    ) -> Attempt:
        key = student_key.strip().lower()
        if not key:
            raise ValidationError("student key must be non-empty")

        exam = await self._get_exam(exam_id)

        if await self._attempts.find_by_student(exam.id, key) is not None:
            logger.warning("Rejected duplicate attempt exam=%s student=%s", exam.id, key)
            raise DuplicateAttempt(f"{key} already has an attempt on this exam")

        now = self._clock()
        window = exam.window_state(now)
        if window == "not_open_yet":
            raise ExamNotOpenYet(f"exam {exam.id} is not open yet")
        if window == "closed":
            raise ExamClosed(f"exam {exam.id} is closed")

        attempt = Attempt.new(
            exam_id=exam.id,
            student_key=key,
            student_name=student_name.strip() or key,
            started_at=now,
        )
        try:
            await self._attempts.add(attempt)
        except ValueError:
            # Lost a race with a concurrent start for the same student.
            raise DuplicateAttempt(
                f"{key} already has an attempt on this exam"
            ) from None

        ATTEMPTS_STARTED.inc()
        logger.info(
            "Attempt started attempt=%s exam=%s student=%s",
            attempt.id,
            exam.id,
            key,
            extra={"attempt_id": str(attempt.id), "exam_id": str(exam.id)},
        )
        await self._publish(exam.id, "attempt_started", attempt)
        return attempt

    # --- expiry ----------------------------------------------------------

    async def check_expiry(self, attempt: Attempt, exam: Exam) -> ExpiryCheck:
        """Finalize `attempt` if its deadline has passed.

        Cheap when nothing is due: the lock is only taken, and the attempt
        only reloaded, once the deadline has actually passed.
        """
        now = self._clock()
        check = _evaluate_deadline(attempt, exam, now)
        if not _is_due(check, now):
            return check

        async with self._locks.for_attempt(attempt.id):
            current, exam = await self.get_attempt(attempt.id, for_update=True)
            return await self._expire_if_due(current, exam, now)

    async def _expire_if_due(self, attempt: Attempt, exam: Exam, now: int) -> ExpiryCheck:
        # Caller holds the attempt lock.
        check = _evaluate_deadline(attempt, exam, now)
        if not _is_due(check, now):
            return check
        finished = await self._finalize(attempt, exam, "expired", now)
        return ExpiryCheck(
            attempt=finished, deadline=check.deadline, seconds_left=0, expired_now=True
        )

    # --- penalties -------------------------------------------------------

    async def record_penalty(
        self, attempt_id: UUID, violation_type: str
    ) -> PenaltyOutcome:
        tag = normalize_violation(violation_type)

        async with self._locks.for_attempt(attempt_id):
            attempt, exam = await self.get_attempt(attempt_id, for_update=True)
            now = self._clock()
            attempt = (await self._expire_if_due(attempt, exam, now)).attempt

            if not attempt.is_running or not exam.is_open(now):
                logger.info(
                    "Ignored violation attempt=%s tag=%s status=%s exam_open=%s",
                    attempt.id,
                    tag,
                    attempt.status,
                    exam.is_open(now),
                    extra={"attempt_id": str(attempt.id), "exam_id": str(exam.id)},
                )
                return PenaltyOutcome(
                    attempt=attempt,
                    lives_allowed=exam.lives_allowed,
                    tag=tag,
                    penalized=False,
                    ignored=True,
                )

            penalized = is_penalizing(tag)
            await self._attempts.append_penalty_event(
                PenaltyEvent.new(
                    attempt_id=attempt.id, tag=tag, penalized=penalized, occurred_at=now
                )
            )
            PENALTY_EVENTS.labels(
                tag=tag if penalized else "other",
                penalized="true" if penalized else "false",
            ).inc()

            if not penalized:
                return PenaltyOutcome(
                    attempt=attempt,
                    lives_allowed=exam.lives_allowed,
                    tag=tag,
                    penalized=False,
                    ignored=False,
                )

            attempt = replace(
                attempt, lives_used=min(attempt.lives_used + 1, exam.lives_allowed)
            )
            logger.info(
                "Life lost attempt=%s tag=%s lives_used=%d/%d",
                attempt.id,
                tag,
                attempt.lives_used,
                exam.lives_allowed,
                extra={"attempt_id": str(attempt.id), "exam_id": str(exam.id)},
            )
            await self._publish(exam.id, "life_lost", attempt, reason=tag)

            if attempt.lives_used >= exam.lives_allowed:
                attempt = await self._finalize(attempt, exam, "lives_exhausted", now)
            else:
                await self._attempts.save(attempt)

            return PenaltyOutcome(
                attempt=attempt,
                lives_allowed=exam.lives_allowed,
                tag=tag,
                penalized=True,
                ignored=False,
            )

    # --- answers ---------------------------------------------------------

    async def save_draft_answer(
        self, attempt_id: UUID, question_id: UUID, value: Any
    ) -> Answer:
        self._check_payload(value)

        async with self._locks.for_attempt(attempt_id):
            attempt, exam = await self.get_attempt(attempt_id, for_update=True)
            attempt = (await self._expire_if_due(attempt, exam, self._clock())).attempt
            if not attempt.is_running:
                raise AttemptClosed(f"attempt {attempt.id} is {attempt.status}")

            question = await self._exams.get_question(question_id)
            if question is None or question.exam_id != exam.id:
                raise QuestionNotFound(f"question {question_id} not found")

            answer = Answer(attempt_id=attempt.id, question_id=question.id, value=value)
            await self._attempts.upsert_answer(answer)
            return answer

    async def submit(
        self, attempt_id: UUID, answers: Sequence[tuple[UUID, Any]]
    ) -> SubmitResult:
        async with self._locks.for_attempt(attempt_id):
            attempt, exam = await self.get_attempt(attempt_id, for_update=True)
            if not answers:
                raise NoAnswers("at least one answer is required")
            for _question_id, value in answers:
                self._check_payload(value)

            now = self._clock()
            attempt = (await self._expire_if_due(attempt, exam, now)).attempt
            if not attempt.is_running:
                logger.warning(
                    "Rejected submit attempt=%s status=%s", attempt.id, attempt.status
                )
                raise AttemptClosed(f"attempt {attempt.id} is {attempt.status}")

            questions = await self._questions_by_id(exam.id)
            for question_id, _value in answers:
                if question_id not in questions:
                    raise QuestionNotFound(f"question {question_id} not found")

            for question_id, value in answers:
                await self._attempts.upsert_answer(
                    Answer(attempt_id=attempt.id, question_id=question_id, value=value)
                )

            finished = await self._finalize(attempt, exam, "submitted", now)
            return SubmitResult(
                attempt=finished,
                grading_mode=exam.grading_mode,
                score=finished.score,
                max_score=max_score_for(exam, questions.values()),
            )

    # --- finalization ----------------------------------------------------

    async def _finalize(
        self, attempt: Attempt, exam: Exam, reason: str, now: int
    ) -> Attempt:
        score: float | None = None
        if exam.grading_mode == "auto":
            questions = await self._questions_by_id(exam.id)
            score = 0.0
            for answer in await self._attempts.list_answers(attempt.id):
                if answer.is_overall_feedback:
                    continue
                question = questions.get(answer.question_id)
                partial = score_answer(question, answer.value) if question else 0
                await self._attempts.upsert_answer(replace(answer, score=partial))
                score += partial

        finished = replace(
            attempt,
            status="submitted",
            ended_at=attempt.ended_at if attempt.ended_at is not None else now,
            score=score,
            finish_reason=reason,
            paused=False,
        )
        await self._attempts.save(finished)

        ATTEMPT_FINALIZATIONS.labels(reason=reason).inc()
        logger.info(
            "Attempt finalized attempt=%s reason=%s mode=%s score=%s",
            finished.id,
            reason,
            exam.grading_mode,
            score,
            extra={"attempt_id": str(finished.id), "exam_id": str(exam.id)},
        )
        await self._publish(
            exam.id,
            "submitted" if reason == "submitted" else "auto_submitted",
            finished,
            reason=reason,
        )
        return finished

    # --- grading ---------------------------------------------------------

    async def grade(
        self,
        attempt_id: UUID,
        grades: Sequence[GradeEntry],
        *,
        finalize: bool = False,
        overall_feedback: str | None = None,
    ) -> Attempt:
        for entry in grades:
            if not math.isfinite(entry.score) or entry.score < 0:
                raise InvalidScore(
                    f"score for question {entry.question_id} must be >= 0"
                )

        async with self._locks.for_attempt(attempt_id):
            attempt, exam = await self.get_attempt(attempt_id, for_update=True)
            attempt = (await self._expire_if_due(attempt, exam, self._clock())).attempt
            if attempt.is_running:
                raise AttemptNotSubmitted(f"attempt {attempt.id} is still running")
            if attempt.status == "graded":
                raise AttemptAlreadyGraded(f"attempt {attempt.id} is already graded")

            questions = await self._questions_by_id(exam.id)
            for entry in grades:
                if entry.question_id not in questions:
                    raise QuestionNotFound(f"question {entry.question_id} not found")

            for entry in grades:
                existing = await self._attempts.get_answer(attempt.id, entry.question_id)
                await self._attempts.upsert_answer(
                    Answer(
                        attempt_id=attempt.id,
                        question_id=entry.question_id,
                        value=existing.value if existing else None,
                        score=entry.score,
                        feedback=(
                            entry.feedback
                            if entry.feedback is not None
                            else existing.feedback if existing else None
                        ),
                    )
                )

            if overall_feedback is not None:
                await self._attempts.upsert_answer(
                    Answer(
                        attempt_id=attempt.id,
                        question_id=OVERALL_FEEDBACK_ID,
                        value=None,
                        feedback=overall_feedback,
                    )
                )

            total = sum(
                a.score
                for a in await self._attempts.list_answers(attempt.id)
                if a.score is not None and not a.is_overall_feedback
            )
            graded = replace(
                attempt, score=total, status="graded" if finalize else "in_review"
            )
            await self._attempts.save(graded)

            logger.info(
                "Attempt graded attempt=%s total=%s final=%s",
                graded.id,
                total,
                finalize,
                extra={"attempt_id": str(graded.id), "exam_id": str(exam.id)},
            )
            if finalize:
                await self._publish(exam.id, "graded", graded, score=total)
            return graded

    # --- teacher interventions ------------------------------------------

    async def _load_running(self, attempt_id: UUID) -> tuple[Attempt, Exam, int]:
        # Caller holds the attempt lock.
        attempt, exam = await self.get_attempt(attempt_id, for_update=True)
        now = self._clock()
        attempt = (await self._expire_if_due(attempt, exam, now)).attempt
        if not attempt.is_running:
            raise AttemptClosed(f"attempt {attempt.id} is {attempt.status}")
        return attempt, exam, now

    async def adjust_lives(self, attempt_id: UUID, op: str) -> Attempt:
        if op not in ("forgive", "penalize"):
            raise ValidationError(f"op must be forgive|penalize (got {op!r})")

        async with self._locks.for_attempt(attempt_id):
            attempt, exam, now = await self._load_running(attempt_id)

            if op == "forgive":
                attempt = replace(attempt, lives_used=max(0, attempt.lives_used - 1))
                await self._attempts.save(attempt)
                await self._publish(exam.id, "life_forgiven", attempt, reason="teacher")
                return attempt

            attempt = replace(
                attempt, lives_used=min(exam.lives_allowed, attempt.lives_used + 1)
            )
            await self._publish(exam.id, "life_lost", attempt, reason="teacher")
            if attempt.lives_used >= exam.lives_allowed:
                return await self._finalize(attempt, exam, "lives_exhausted", now)
            await self._attempts.save(attempt)
            return attempt

    async def grant_extra_time(self, attempt_id: UUID, seconds: int) -> Attempt:
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds <= 0:
            raise InvalidExtraTime("extra time must be a positive number of seconds")

        async with self._locks.for_attempt(attempt_id):
            attempt, exam, _now = await self._load_running(attempt_id)
            attempt = replace(attempt, extra_time_secs=attempt.extra_time_secs + seconds)
            await self._attempts.save(attempt)
            await self._publish(exam.id, "extra_time", attempt, seconds=seconds)
            return attempt

    async def set_paused(self, attempt_id: UUID, paused: bool) -> Attempt:
        async with self._locks.for_attempt(attempt_id):
            attempt, exam, _now = await self._load_running(attempt_id)
            if attempt.paused == paused:
                return attempt
            attempt = replace(attempt, paused=paused)
            await self._attempts.save(attempt)
            await self._publish(exam.id, "paused" if paused else "resumed", attempt)
            return attempt

    # --- reads -----------------------------------------------------------

    async def get_summary(self, attempt_id: UUID) -> AttemptSummary:
        attempt, exam = await self.get_attempt(attempt_id)
        return await self._summarize(attempt, exam)

    async def _summarize(self, attempt: Attempt, exam: Exam) -> AttemptSummary:
        check = await self.check_expiry(attempt, exam)
        events = await self._attempts.list_penalty_events(attempt.id)
        return AttemptSummary(
            attempt=check.attempt,
            exam=exam,
            seconds_left=check.seconds_left,
            violations=len(events),
        )

    async def list_exam_attempts(self, exam_id: UUID) -> list[AttemptSummary]:
        exam = await self._get_exam(exam_id)
        return [
            await self._summarize(attempt, exam)
            for attempt in await self._attempts.list_by_exam(exam.id)
        ]

    async def list_penalty_events(self, attempt_id: UUID) -> list[PenaltyEvent]:
        attempt, _exam = await self.get_attempt(attempt_id)
        return await self._attempts.list_penalty_events(attempt.id)

    async def get_review(
        self, attempt_id: UUID, *, as_manager: bool = False
    ) -> Review:
        """Per-question review of a finished attempt.

        Students see a manual exam only once its grade is final.  The exam's
        manager (as_manager) reads it as soon as it is submitted, to grade it.
        """
        attempt, exam = await self.get_attempt(attempt_id)
        attempt = (await self.check_expiry(attempt, exam)).attempt

        if not attempt.is_terminal:
            raise ReviewNotAvailable("attempt is still running")
        if (
            exam.grading_mode == "manual"
            and attempt.status != "graded"
            and not as_manager
        ):
            raise ReviewNotAvailable("attempt has not been graded yet")

        answers = {a.question_id: a for a in await self._attempts.list_answers(attempt.id)}
        questions = await self._exams.list_questions(exam.id)
        overall = answers.get(OVERALL_FEEDBACK_ID)
        return Review(
            exam=exam,
            attempt=attempt,
            items=[ReviewItem(question=q, answer=answers.get(q.id)) for q in questions],
            max_score=max_score_for(exam, questions),
            overall_feedback=overall.feedback if overall else None,
        )

    # --- feed ------------------------------------------------------------

    async def _publish(
        self, exam_id: UUID, event_type: str, attempt: Attempt, **fields: Any
    ) -> None:
        await self._feed.publish(
            exam_id,
            {
                "type": event_type,
                "attempt_id": str(attempt.id),
                "student_name": attempt.student_name,
                "lives_used": attempt.lives_used,
                **fields,
            },
        )
