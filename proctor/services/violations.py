"""Anti-cheat violation tags.

Browsers report the same signal under many spellings ("BLUR",
"visibilityHidden", "exitFullscreen", "fullscreen exit", "FULL_SCREEN_EXIT").
Everything is folded into one lower-case snake_case tag before it is
counted or stored, so the teacher dashboard sees one bucket per signal.
"""

from __future__ import annotations

import re

from proctor.core.errors import InvalidViolation

MAX_TAG_LENGTH = 64

FULLSCREEN_EXIT = "fullscreen_exit"

# Tags that consume a life.  Anything else is history only.
PENALIZING_TAGS: frozenset[str] = frozenset(
    {
        "blur",
        "visibility_hidden",
        "copy",
        "cut",
        "paste",
        "print",
        "print_screen",
        FULLSCREEN_EXIT,
    }
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

# "fullscreen" spelled with or without a separator, next to a verb for
# leaving it, in either order.
_FULLSCREEN_EXIT_RE = re.compile(
    r"(^|_)(full_?screen)_?(exit|exited|exiting|leave|left|off|change)(_|$)"
    r"|(^|_)(exit|exited|leave|left)_?(full_?screen)(_|$)"
)

_ALIASES = {
    "printscreen": "print_screen",
    "prtsc": "print_screen",
    "prt_sc": "print_screen",
}


def normalize_violation(raw: str) -> str:
    """Return the canonical tag for a raw violation type.

    Raises InvalidViolation when nothing usable is left after
    normalization or the result is longer than MAX_TAG_LENGTH.
    """
    text = _CAMEL_BOUNDARY.sub("_", str(raw).strip())
    tag = _NON_ALNUM.sub("_", text.lower()).strip("_")

    if not tag:
        raise InvalidViolation("violation type must be non-empty")
    if len(tag) > MAX_TAG_LENGTH:
        raise InvalidViolation(
            f"violation type longer than {MAX_TAG_LENGTH} characters"
        )

    if _FULLSCREEN_EXIT_RE.search(tag):
        return FULLSCREEN_EXIT
    return _ALIASES.get(tag, tag)


def is_penalizing(tag: str) -> bool:
    return tag in PENALIZING_TAGS
