"""Auto-grading rules, one per question kind.

All rules are all-or-nothing except fill-in-blank, which gives
proportional credit per blank.  Comparisons never raise: a malformed
expected answer or a response of the wrong shape scores 0.
"""

from __future__ import annotations

import json
import math
from typing import Any

from proctor.models.exam import Question


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _norm(value: Any) -> str:
    return _text(value).strip().lower()


def _as_index(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_list(value: Any) -> list[Any] | None:
    # Expected answers may arrive JSON-encoded from older question editors.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if isinstance(value, (list, tuple)):
        return list(value)
    return None


def grade_multiple_choice(expected: Any, given: Any, points: int) -> float:
    expected_index = _as_index(expected)
    given_index = _as_index(given)
    if expected_index is None or given_index is None:
        return 0
    return points if given_index == expected_index else 0


def grade_true_false(expected: Any, given: Any, points: int) -> float:
    return points if _norm(given) == _norm(expected) and _norm(expected) else 0


def grade_short_text(expected: Any, given: Any, points: int) -> float:
    correct = _norm(expected)
    answer = _norm(given)
    return points if correct and answer and correct == answer else 0


def grade_fill_in_blank(expected: Any, given: Any, points: int) -> float:
    blanks = _as_list(expected)
    if not blanks:
        return 0
    responses = _as_list(given) or []
    matches = sum(
        1
        for i, blank in enumerate(blanks)
        if i < len(responses) and _norm(responses[i]) == _norm(blank)
    )
    return points * matches / len(blanks)


_RULES = {
    "multiple_choice": grade_multiple_choice,
    "true_false": grade_true_false,
    "short_text": grade_short_text,
    "fill_in_blank": grade_fill_in_blank,
}


def score_answer(question: Question, value: Any) -> float:
    """Score one response.  Unknown question kinds score 0."""
    rule = _RULES.get(question.kind)
    if rule is None:
        return 0
    return rule(question.expected_answer, value, question.points)
