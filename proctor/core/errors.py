"""Error taxonomy for the attempt lifecycle.

Every failure the engine reports carries a ``kind`` the HTTP layer can map
to a status code, and a stable ``code`` clients can switch on.  The engine
never retries; anything that is not a LifecycleError (database down, Redis
timeout) propagates untouched.
"""

from __future__ import annotations

from typing import ClassVar, Literal

ErrorKind = Literal["not_found", "conflict", "forbidden", "validation"]


class LifecycleError(Exception):
    kind: ClassVar[ErrorKind]
    code: ClassVar[str]

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.lower().replace("_", " "))

    @property
    def message(self) -> str:
        return str(self)


# --- NotFound ---


class NotFoundError(LifecycleError):
    kind = "not_found"
    code = "NOT_FOUND"


class ExamNotFound(NotFoundError):
    code = "EXAM_NOT_FOUND"


class AttemptNotFound(NotFoundError):
    code = "ATTEMPT_NOT_FOUND"


class QuestionNotFound(NotFoundError):
    code = "QUESTION_NOT_FOUND"


# --- Conflict ---


class ConflictError(LifecycleError):
    kind = "conflict"
    code = "CONFLICT"


class DuplicateAttempt(ConflictError):
    code = "DUPLICATE_ATTEMPT"


class AttemptClosed(ConflictError):
    code = "ATTEMPT_CLOSED"


class AttemptNotSubmitted(ConflictError):
    code = "ATTEMPT_NOT_SUBMITTED"


class AttemptAlreadyGraded(ConflictError):
    code = "ATTEMPT_ALREADY_GRADED"


# --- Forbidden ---


class ForbiddenError(LifecycleError):
    kind = "forbidden"
    code = "FORBIDDEN"


class ExamNotOpenYet(ForbiddenError):
    code = "EXAM_NOT_OPEN_YET"


class ExamClosed(ForbiddenError):
    code = "EXAM_CLOSED"


class ReviewNotAvailable(ForbiddenError):
    code = "REVIEW_NOT_AVAILABLE"


# --- Validation ---


class ValidationError(LifecycleError):
    kind = "validation"
    code = "VALIDATION_ERROR"


class InvalidScore(ValidationError):
    code = "INVALID_SCORE"


class PayloadTooLarge(ValidationError):
    code = "PAYLOAD_TOO_LARGE"


class NoAnswers(ValidationError):
    code = "NO_ANSWERS"


class InvalidViolation(ValidationError):
    code = "INVALID_VIOLATION"


class InvalidExtraTime(ValidationError):
    code = "INVALID_EXTRA_TIME"


class InvalidExamSettings(ValidationError):
    code = "INVALID_EXAM_SETTINGS"


class InvalidQuestion(ValidationError):
    code = "INVALID_QUESTION"
