"""PostgreSQL implementation of AttemptRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.db.tables import AnswerRow, AttemptRow, PenaltyEventRow
from proctor.models.attempt import Answer, Attempt, PenaltyEvent


class PgAttemptRepo:
    """Satisfies the AttemptRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(
        self, attempt_id: UUID, *, for_update: bool = False
    ) -> Attempt | None:
        stmt = (
            select(AttemptRow)
            .where(AttemptRow.id == attempt_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            # Row lock held until the request transaction commits, so two
            # API instances cannot interleave read-modify-write on lives.
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_attempt(row)

    async def find_by_student(
        self, exam_id: UUID, student_key: str
    ) -> Attempt | None:
        stmt = (
            select(AttemptRow)
            .where(
                AttemptRow.exam_id == exam_id,
                AttemptRow.student_key == student_key,
            )
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_attempt(row)

    async def add(self, attempt: Attempt) -> None:
        row = AttemptRow(
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
        # Savepoint so a lost race on the unique (exam, student) constraint
        # does not poison the surrounding transaction.
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError as e:
            raise ValueError("attempt already exists") from e

    async def save(self, attempt: Attempt) -> None:
        stmt = (
            update(AttemptRow)
            .where(AttemptRow.id == attempt.id)
            .values(
                status=attempt.status,
                ended_at=attempt.ended_at,
                lives_used=attempt.lives_used,
                extra_time_secs=attempt.extra_time_secs,
                score=attempt.score,
                paused=attempt.paused,
                finish_reason=attempt.finish_reason,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("attempt not found")

    async def list_by_exam(self, exam_id: UUID) -> list[Attempt]:
        stmt = (
            select(AttemptRow)
            .where(AttemptRow.exam_id == exam_id)
            .order_by(AttemptRow.started_at.desc())
            .execution_options(populate_existing=True)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_attempt(r) for r in rows]

    async def upsert_answer(self, answer: Answer) -> None:
        stmt = insert(AnswerRow).values(
            attempt_id=answer.attempt_id,
            question_id=answer.question_id,
            value=answer.value,
            score=answer.score,
            feedback=answer.feedback,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AnswerRow.attempt_id, AnswerRow.question_id],
            set_={
                "value": stmt.excluded.value,
                "score": stmt.excluded.score,
                "feedback": stmt.excluded.feedback,
            },
        )
        await self._session.execute(stmt)

    async def get_answer(self, attempt_id: UUID, question_id: UUID) -> Answer | None:
        stmt = (
            select(AnswerRow)
            .where(
                AnswerRow.attempt_id == attempt_id,
                AnswerRow.question_id == question_id,
            )
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_answer(row)

    async def list_answers(self, attempt_id: UUID) -> list[Answer]:
        stmt = (
            select(AnswerRow)
            .where(AnswerRow.attempt_id == attempt_id)
            .execution_options(populate_existing=True)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_answer(r) for r in rows]

    async def append_penalty_event(self, event: PenaltyEvent) -> None:
        self._session.add(
            PenaltyEventRow(
                id=event.id,
                attempt_id=event.attempt_id,
                tag=event.tag,
                penalized=event.penalized,
                occurred_at=event.occurred_at,
            )
        )
        await self._session.flush()

    async def list_penalty_events(self, attempt_id: UUID) -> list[PenaltyEvent]:
        stmt = (
            select(PenaltyEventRow)
            .where(PenaltyEventRow.attempt_id == attempt_id)
            .order_by(PenaltyEventRow.occurred_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            PenaltyEvent(
                id=r.id,
                attempt_id=r.attempt_id,
                tag=r.tag,
                penalized=r.penalized,
                occurred_at=r.occurred_at,
            )
            for r in rows
        ]


def _row_to_attempt(row: AttemptRow) -> Attempt:
    return Attempt(
        id=row.id,
        exam_id=row.exam_id,
        student_key=row.student_key,
        student_name=row.student_name or "",
        started_at=row.started_at,
        status=row.status,
        ended_at=row.ended_at,
        lives_used=row.lives_used,
        extra_time_secs=row.extra_time_secs,
        score=row.score,
        paused=row.paused,
        finish_reason=row.finish_reason,
    )


def _row_to_answer(row: AnswerRow) -> Answer:
    return Answer(
        attempt_id=row.attempt_id,
        question_id=row.question_id,
        value=row.value,
        score=row.score,
        feedback=row.feedback,
    )
