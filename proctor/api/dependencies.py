from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, TypeVar

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from proctor.api.errors import http_error
from proctor.core.config import SETTINGS
from proctor.core.errors import LifecycleError
from proctor.db.engine import async_session_factory, transaction
from proctor.models.attempt import Attempt
from proctor.models.exam import Exam
from proctor.models.principal import Principal
from proctor.repos.attempt_repo import AttemptRepo, InMemoryAttemptRepo
from proctor.repos.exam_repo import ExamRepo, InMemoryExamRepo
from proctor.repos.pg_attempt_repo import PgAttemptRepo
from proctor.repos.pg_exam_repo import PgExamRepo
from proctor.services import token_service
from proctor.services.catalog import ExamCatalog
from proctor.services.exam_feed import exam_feed
from proctor.services.lifecycle import AttemptLifecycle, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Tokens are minted by the platform's identity provider; tokenUrl only
# feeds the OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal.

    Used as a FastAPI dependency on any protected endpoint.
    """
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
    )
    return principal


def require_any_role(roles: set[str]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role({"teacher", "admin"}))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s",
                principal.user_id,
                roles,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Exam and attempt access guards
# ---------------------------------------------------------------------------


def can_manage(principal: Principal, exam: Exam) -> bool:
    return principal.is_platform_admin() or exam.is_owned_by(principal.user_id)


def ensure_exam_manager(principal: Principal, exam: Exam) -> None:
    """Teacher interventions: the exam's owner or a platform admin."""
    if can_manage(principal, exam):
        return
    logger.warning(
        "Access denied: user=%s does not manage exam=%s",
        principal.user_id,
        exam.id,
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not the owner of this exam",
    )


def ensure_attempt_owner(principal: Principal, attempt: Attempt) -> None:
    """Student actions: only the student the attempt belongs to."""
    if attempt.student_key == principal.student_key:
        return
    logger.warning(
        "Access denied: user=%s does not own attempt=%s",
        principal.user_id,
        attempt.id,
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not your attempt",
    )


def ensure_attempt_viewer(principal: Principal, attempt: Attempt, exam: Exam) -> None:
    """Read-only views: the attempt's student or whoever manages the exam."""
    if attempt.student_key == principal.student_key or can_manage(principal, exam):
        return
    ensure_attempt_owner(principal, attempt)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------
# Without DATABASE_URL the services run on process-local in-memory repos
# (dev, tests).  With it, every request gets PostgreSQL repos bound to one
# session and one transaction.

exam_repo = InMemoryExamRepo()
attempt_repo = InMemoryAttemptRepo()

# Tests swap this for a controllable clock.
clock = utc_now


@dataclass(frozen=True, slots=True)
class Services:
    catalog: ExamCatalog
    lifecycle: AttemptLifecycle


def _build(exams: ExamRepo, attempts: AttemptRepo) -> Services:
    return Services(
        catalog=ExamCatalog(exams, attempts),
        lifecycle=AttemptLifecycle(
            exams,
            attempts,
            exam_feed,
            clock=clock,
            answer_max_bytes=SETTINGS.answer_max_bytes,
        ),
    )


@asynccontextmanager
async def service_scope() -> AsyncGenerator[Services, None]:
    if async_session_factory is None:
        yield _build(exam_repo, attempt_repo)
        return
    async with transaction() as session:
        yield _build(PgExamRepo(session), PgAttemptRepo(session))


async def run_service(op: Callable[[Services], Awaitable[T]]) -> T:
    """Run one request's worth of service calls in one scope.

    A LifecycleError is a business rejection, not a failure: the scope
    still commits (so a lazy expiry noticed on the way stays recorded) and
    the error becomes an HTTP response afterwards.  Anything else,
    including HTTPExceptions raised by access guards, rolls back.
    """
    async with service_scope() as services:
        try:
            return await op(services)
        except LifecycleError as exc:
            error = exc
    raise http_error(error)
