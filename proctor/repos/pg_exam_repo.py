"""PostgreSQL implementation of ExamRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.db.tables import ExamRow, QuestionRow
from proctor.models.exam import Exam, Question


class PgExamRepo:
    """Satisfies the ExamRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, exam_id: UUID) -> Exam | None:
        stmt = (
            select(ExamRow)
            .where(ExamRow.id == exam_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_exam(row)

    async def add(self, exam: Exam) -> None:
        self._session.add(
            ExamRow(
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
        )
        await self._session.flush()

    async def update(self, exam: Exam) -> None:
        stmt = (
            update(ExamRow)
            .where(ExamRow.id == exam.id)
            .values(
                title=exam.title,
                status=exam.status,
                lives_allowed=exam.lives_allowed,
                duration_minutes=exam.duration_minutes,
                grading_mode=exam.grading_mode,
                opens_at=exam.opens_at,
                closes_at=exam.closes_at,
                max_score=exam.max_score,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("exam not found")

    async def add_question(self, question: Question) -> None:
        self._session.add(
            QuestionRow(
                id=question.id,
                exam_id=question.exam_id,
                kind=question.kind,
                prompt=question.prompt,
                choices=list(question.choices) if question.choices is not None else None,
                expected_answer=question.expected_answer,
                points=question.points,
                position=question.position,
            )
        )
        await self._session.flush()

    async def get_question(self, question_id: UUID) -> Question | None:
        stmt = (
            select(QuestionRow)
            .where(QuestionRow.id == question_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_question(row)

    async def list_questions(self, exam_id: UUID) -> list[Question]:
        # id only breaks ties so the order is stable across queries
        stmt = (
            select(QuestionRow)
            .where(QuestionRow.exam_id == exam_id)
            .order_by(QuestionRow.position, QuestionRow.id)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_question(r) for r in rows]

    async def update_question(self, question: Question) -> None:
        stmt = (
            update(QuestionRow)
            .where(QuestionRow.id == question.id)
            .values(
                kind=question.kind,
                prompt=question.prompt,
                choices=list(question.choices) if question.choices is not None else None,
                expected_answer=question.expected_answer,
                points=question.points,
                position=question.position,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("question not found")

    async def delete_question(self, question_id: UUID) -> None:
        result = await self._session.execute(
            delete(QuestionRow).where(QuestionRow.id == question_id)
        )
        if result.rowcount == 0:
            raise KeyError("question not found")

    async def list_by_owner(self, owner_id: str | None) -> list[Exam]:
        stmt = select(ExamRow).order_by(ExamRow.title, ExamRow.id)
        if owner_id is not None:
            stmt = stmt.where(ExamRow.owner_id == owner_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_exam(r) for r in rows]


def _row_to_exam(row: ExamRow) -> Exam:
    return Exam(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        status=row.status,
        lives_allowed=row.lives_allowed,
        duration_minutes=row.duration_minutes,
        grading_mode=row.grading_mode,
        opens_at=row.opens_at,
        closes_at=row.closes_at,
        max_score=row.max_score,
    )


def _row_to_question(row: QuestionRow) -> Question:
    return Question(
        id=row.id,
        exam_id=row.exam_id,
        kind=row.kind,
        prompt=row.prompt,
        expected_answer=row.expected_answer,
        choices=tuple(row.choices) if row.choices is not None else None,
        points=row.points,
        position=row.position,
    )
