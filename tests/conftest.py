from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from proctor.api import dependencies
from proctor.main import app
from proctor.services import token_service
from proctor.services.exam_feed import exam_feed

# Ensure repo root is on sys.path so `import proctor` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# A fixed "now" well inside int range and far from any real exam.
T0 = 1_800_000_000


class FakeClock:
    """Epoch-seconds clock the tests move by hand."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Clear the in-memory exam and attempt repos between tests."""
    dependencies.exam_repo._exams.clear()
    dependencies.exam_repo._questions.clear()
    dependencies.attempt_repo._by_id.clear()
    dependencies.attempt_repo._by_student.clear()
    dependencies.attempt_repo._answers.clear()
    dependencies.attempt_repo._events.clear()


@pytest.fixture(autouse=True)
def reset_exam_feed() -> None:
    """Clear dashboard feeds between tests."""
    if hasattr(exam_feed, "_feeds"):
        exam_feed._feeds.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Every request in a test sees the same controllable clock."""
    fake = FakeClock()
    monkeypatch.setattr(dependencies, "clock", fake)
    return fake


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str | None) -> dict[str, str]:
    if token is None:
        return {}
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def teacher_token() -> str:
    return mint_token(username="teacher@example.com", roles=["teacher"])


@pytest.fixture
def student_token() -> str:
    return mint_token(username="ana@example.com", roles=["student"])


@pytest.fixture
def admin_token() -> str:
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Exam test helpers
# ---------------------------------------------------------------------------


def create_test_exam(
    client: TestClient, token: str, **settings: Any
) -> dict[str, Any]:
    """Create an exam through the API.  Open and untimed unless overridden."""
    body = {"title": "Unit 3 quiz", "status": "open", **settings}
    resp = client.post("/v1/exams", json=body, headers=auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


def add_test_question(
    client: TestClient, token: str, exam_id: str, **fields: Any
) -> dict[str, Any]:
    """Add a question through the API.  A 1-point true/false by default."""
    body = {
        "kind": "true_false",
        "prompt": "The sky is blue.",
        "expected_answer": "true",
        **fields,
    }
    resp = client.post(
        f"/v1/exams/{exam_id}/questions", json=body, headers=auth(token)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def start_test_attempt(
    client: TestClient, token: str, exam_id: str, name: str = "Ana"
) -> dict[str, Any]:
    resp = client.post(
        f"/v1/exams/{exam_id}/attempts",
        json={"student_name": name},
        headers=auth(token),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
