"""Exam feed: recent lifecycle events per exam for the teacher dashboard.

A teacher watching a live exam wants to see "Ana lost a life (blur)",
"Luis ran out of lives", "Marta submitted" within a second or two,
without reloading the whole attempt list.  The dashboard polls:

  GET /v1/exams/{exam_id}/feed?since=<last seen ts_ms>

and gets back only what happened after its cursor.

BOUNDED AND TIME-WINDOWED
--------------------------
The feed is a notification channel, not a history.  Durable facts
(penalty events, scores) live in the attempt repo.  Each exam keeps at
most MAX_EVENTS_PER_EXAM events and nothing older than the retention
window (FEED_RETENTION_SECONDS), so a dashboard that was closed for an
hour simply reloads the attempt list instead of replaying the feed.

TWO IMPLEMENTATIONS
--------------------
  InMemoryExamFeed: a deque per exam.  Correct for a single API
    process, which is what dev and tests run.

  RedisExamFeed: a sorted set per exam, scored by timestamp.  Every
    API instance publishes into and reads from the same set, so a
    teacher sees events no matter which instance served the student.
      ZADD                  publish
      ZREMRANGEBYSCORE      drop events older than the window
      ZREMRANGEBYRANK       enforce the per-exam cap
      ZRANGEBYSCORE (since  read strictly after the cursor
      EXPIRE                idle exams disappear on their own
"""

from __future__ import annotations

import json
import time
from collections import deque
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from proctor.core.config import SETTINGS
from proctor.core.metrics import FEED_EVENTS_PUBLISHED
from proctor.db.redis import redis_pool

MAX_EVENTS_PER_EXAM = 500


def _now_ms() -> int:
    return int(time.time() * 1000)


@runtime_checkable
class ExamFeed(Protocol):
    async def publish(self, exam_id: UUID, event: dict[str, Any]) -> dict[str, Any]:
        """Stamp `event` with ts_ms and append it to the exam's feed."""
        ...

    async def since(self, exam_id: UUID, since_ms: int) -> list[dict[str, Any]]:
        """Events with ts_ms strictly greater than since_ms, oldest first."""
        ...


class InMemoryExamFeed:
    def __init__(
        self,
        retention_seconds: int = 60,
        max_events: int = MAX_EVENTS_PER_EXAM,
        clock_ms=_now_ms,
    ) -> None:
        self._retention_ms = retention_seconds * 1000
        self._max_events = max_events
        self._clock_ms = clock_ms
        self._feeds: dict[UUID, deque[dict[str, Any]]] = {}

    def _trim(self, feed: deque[dict[str, Any]], now_ms: int) -> None:
        cutoff = now_ms - self._retention_ms
        while feed and feed[0]["ts_ms"] < cutoff:
            feed.popleft()

    async def publish(self, exam_id: UUID, event: dict[str, Any]) -> dict[str, Any]:
        now_ms = self._clock_ms()
        stamped = {**event, "ts_ms": now_ms}
        feed = self._feeds.setdefault(exam_id, deque(maxlen=self._max_events))
        feed.append(stamped)
        self._trim(feed, now_ms)
        FEED_EVENTS_PUBLISHED.labels(type=event.get("type", "unknown")).inc()
        return stamped

    async def since(self, exam_id: UUID, since_ms: int) -> list[dict[str, Any]]:
        feed = self._feeds.get(exam_id)
        if feed is None:
            return []
        self._trim(feed, self._clock_ms())
        if not feed:
            # Quiet exams leave nothing behind.
            del self._feeds[exam_id]
            return []
        return [e for e in feed if e["ts_ms"] > since_ms]


class RedisExamFeed:
    """Redis-backed feed: shared across all API instances."""

    _PREFIX = "feed:"

    def __init__(
        self,
        redis_client,
        retention_seconds: int = 60,
        max_events: int = MAX_EVENTS_PER_EXAM,
    ) -> None:
        self._redis = redis_client
        self._retention_seconds = retention_seconds
        self._max_events = max_events

    def _key(self, exam_id: UUID) -> str:
        return f"{self._PREFIX}{exam_id}"

    async def publish(self, exam_id: UUID, event: dict[str, Any]) -> dict[str, Any]:
        now_ms = _now_ms()
        stamped = {**event, "ts_ms": now_ms}
        key = self._key(exam_id)
        cutoff = now_ms - self._retention_seconds * 1000

        pipe = self._redis.pipeline(transaction=True)
        pipe.zadd(key, {json.dumps(stamped, sort_keys=True, default=str): now_ms})
        pipe.zremrangebyscore(key, "-inf", cutoff - 1)
        # Keep only the newest max_events members.
        pipe.zremrangebyrank(key, 0, -self._max_events - 1)
        pipe.expire(key, self._retention_seconds)
        await pipe.execute()

        FEED_EVENTS_PUBLISHED.labels(type=event.get("type", "unknown")).inc()
        return stamped

    async def since(self, exam_id: UUID, since_ms: int) -> list[dict[str, Any]]:
        raw = await self._redis.zrangebyscore(
            self._key(exam_id), f"({since_ms}", "+inf"
        )
        return [json.loads(member) for member in raw]


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    exam_feed: ExamFeed = RedisExamFeed(
        redis_pool, retention_seconds=SETTINGS.feed_retention_seconds
    )
else:
    exam_feed = InMemoryExamFeed(retention_seconds=SETTINGS.feed_retention_seconds)
