from __future__ import annotations

from typing import Protocol
from uuid import UUID

from proctor.models.exam import Exam, Question


class ExamRepo(Protocol):
    """Exam catalog and question bank."""

    async def get(self, exam_id: UUID) -> Exam | None: ...
    async def add(self, exam: Exam) -> None: ...
    async def update(self, exam: Exam) -> None: ...
    async def add_question(self, question: Question) -> None: ...
    async def get_question(self, question_id: UUID) -> Question | None: ...
    async def list_questions(self, exam_id: UUID) -> list[Question]: ...
    async def update_question(self, question: Question) -> None: ...
    async def delete_question(self, question_id: UUID) -> None: ...
    async def list_by_owner(self, owner_id: str | None) -> list[Exam]: ...


class InMemoryExamRepo:
    def __init__(self) -> None:
        self._exams: dict[UUID, Exam] = {}
        self._questions: dict[UUID, Question] = {}

    async def get(self, exam_id: UUID) -> Exam | None:
        return self._exams.get(exam_id)

    async def add(self, exam: Exam) -> None:
        if exam.id in self._exams:
            raise ValueError("exam already exists")
        self._exams[exam.id] = exam

    async def update(self, exam: Exam) -> None:
        if exam.id not in self._exams:
            raise KeyError("exam not found")
        self._exams[exam.id] = exam

    async def add_question(self, question: Question) -> None:
        if question.exam_id not in self._exams:
            raise KeyError("exam not found")
        self._questions[question.id] = question

    async def get_question(self, question_id: UUID) -> Question | None:
        return self._questions.get(question_id)

    async def list_questions(self, exam_id: UUID) -> list[Question]:
        # dicts keep insertion order, so position ties fall back to it
        questions = [q for q in self._questions.values() if q.exam_id == exam_id]
        return sorted(questions, key=lambda q: q.position)

    async def update_question(self, question: Question) -> None:
        if question.id not in self._questions:
            raise KeyError("question not found")
        self._questions[question.id] = question

    async def delete_question(self, question_id: UUID) -> None:
        if self._questions.pop(question_id, None) is None:
            raise KeyError("question not found")

    async def list_by_owner(self, owner_id: str | None) -> list[Exam]:
        """Exams owned by owner_id, or every exam when owner_id is None."""
        exams = [
            e for e in self._exams.values() if owner_id is None or e.owner_id == owner_id
        ]
        return sorted(exams, key=lambda e: (e.title, str(e.id)))
