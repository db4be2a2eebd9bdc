from __future__ import annotations

from typing import Protocol
from uuid import UUID

from proctor.models.attempt import Answer, Attempt, PenaltyEvent


class AttemptRepo(Protocol):
    """Attempts, their answers and their penalty history."""

    async def get(
        self, attempt_id: UUID, *, for_update: bool = False
    ) -> Attempt | None: ...
    async def find_by_student(
        self, exam_id: UUID, student_key: str
    ) -> Attempt | None: ...
    async def add(self, attempt: Attempt) -> None: ...
    async def save(self, attempt: Attempt) -> None: ...
    async def list_by_exam(self, exam_id: UUID) -> list[Attempt]: ...
    async def upsert_answer(self, answer: Answer) -> None: ...
    async def get_answer(self, attempt_id: UUID, question_id: UUID) -> Answer | None: ...
    async def list_answers(self, attempt_id: UUID) -> list[Answer]: ...
    async def append_penalty_event(self, event: PenaltyEvent) -> None: ...
    async def list_penalty_events(self, attempt_id: UUID) -> list[PenaltyEvent]: ...


class InMemoryAttemptRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Attempt] = {}
        self._by_student: dict[tuple[UUID, str], UUID] = {}
        self._answers: dict[tuple[UUID, UUID], Answer] = {}
        self._events: list[PenaltyEvent] = []

    async def get(
        self, attempt_id: UUID, *, for_update: bool = False
    ) -> Attempt | None:
        # Row locking is the lifecycle lock's job in memory.
        return self._by_id.get(attempt_id)

    async def find_by_student(
        self, exam_id: UUID, student_key: str
    ) -> Attempt | None:
        attempt_id = self._by_student.get((exam_id, student_key))
        if attempt_id is None:
            return None
        return self._by_id[attempt_id]

    async def add(self, attempt: Attempt) -> None:
        key = (attempt.exam_id, attempt.student_key)
        if key in self._by_student:
            raise ValueError("attempt already exists")
        self._by_student[key] = attempt.id
        self._by_id[attempt.id] = attempt

    async def save(self, attempt: Attempt) -> None:
        if attempt.id not in self._by_id:
            raise KeyError("attempt not found")
        self._by_id[attempt.id] = attempt

    async def list_by_exam(self, exam_id: UUID) -> list[Attempt]:
        attempts = [a for a in self._by_id.values() if a.exam_id == exam_id]
        return sorted(attempts, key=lambda a: a.started_at, reverse=True)

    async def upsert_answer(self, answer: Answer) -> None:
        self._answers[(answer.attempt_id, answer.question_id)] = answer

    async def get_answer(self, attempt_id: UUID, question_id: UUID) -> Answer | None:
        return self._answers.get((attempt_id, question_id))

    async def list_answers(self, attempt_id: UUID) -> list[Answer]:
        return [a for (aid, _qid), a in self._answers.items() if aid == attempt_id]

    async def append_penalty_event(self, event: PenaltyEvent) -> None:
        self._events.append(event)

    async def list_penalty_events(self, attempt_id: UUID) -> list[PenaltyEvent]:
        return [e for e in self._events if e.attempt_id == attempt_id]
