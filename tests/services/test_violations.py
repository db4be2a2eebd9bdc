from __future__ import annotations

import pytest

from proctor.core.errors import InvalidViolation
from proctor.services.violations import (
    MAX_TAG_LENGTH,
    PENALIZING_TAGS,
    is_penalizing,
    normalize_violation,
)


@pytest.mark.parametrize(
    ("raw", "tag"),
    [
        ("blur", "blur"),
        ("BLUR", "blur"),
        ("  Blur  ", "blur"),
        ("visibility hidden", "visibility_hidden"),
        ("visibilityHidden", "visibility_hidden"),
        ("visibility--hidden!!", "visibility_hidden"),
        ("Copy", "copy"),
        ("PrintScreen", "print_screen"),
        ("printscreen", "print_screen"),
        ("PrtSc", "print_screen"),
        ("mouse.leave", "mouse_leave"),
    ],
)
def test_normalize(raw: str, tag: str) -> None:
    assert normalize_violation(raw) == tag


@pytest.mark.parametrize(
    "raw",
    [
        "fullscreen_exit",
        "exitFullscreen",
        "FULL_SCREEN_EXIT",
        "fullscreen-exited",
        "leave fullscreen",
        "fullscreenchange",
        "FullscreenOff",
        "left-full-screen",
    ],
)
def test_fullscreen_spellings_merge(raw: str) -> None:
    assert normalize_violation(raw) == "fullscreen_exit"


def test_fullscreen_enter_is_not_an_exit() -> None:
    assert normalize_violation("fullscreen_enter") == "fullscreen_enter"


@pytest.mark.parametrize("raw", ["", "   ", "___", "!?", "x" * (MAX_TAG_LENGTH + 1)])
def test_unusable_tags_rejected(raw: str) -> None:
    with pytest.raises(InvalidViolation):
        normalize_violation(raw)


def test_longest_allowed_tag() -> None:
    assert normalize_violation("x" * MAX_TAG_LENGTH) == "x" * MAX_TAG_LENGTH


def test_penalizing_allow_list() -> None:
    assert PENALIZING_TAGS == {
        "blur",
        "visibility_hidden",
        "copy",
        "cut",
        "paste",
        "print",
        "print_screen",
        "fullscreen_exit",
    }
    assert is_penalizing("blur")
    assert not is_penalizing("mouse_leave")
    assert not is_penalizing("Blur")  # callers normalize first
