"""Level-based spaced repetition scheduling.

Items move through mastery levels 1-9. Each level has a fixed review delay;
an item is due once that delay has elapsed since its last level change.
Level 0 means the item has not entered the review cycle yet.

Everything here is pure: callers pass ``now`` explicitly and nothing reads
the system clock.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Tuple

from aws_lambda_powertools import Logger

from ..models.srs import MAX_LEVEL, Outcome, SrsRecord

logger = Logger()

MIN_REVIEW_LEVEL = 1

DEFAULT_INTERVALS: Tuple[timedelta, ...] = (
    timedelta(minutes=10),  # level 1
    timedelta(days=1),
    timedelta(days=3),
    timedelta(days=7),
    timedelta(days=14),
    timedelta(days=30),
    timedelta(days=60),
    timedelta(days=120),
    timedelta(days=180),  # level 9
)


@dataclass(frozen=True)
class IntervalTable:
    """Review delay per level. Immutable so it can be shared across threads."""

    intervals: Tuple[timedelta, ...] = DEFAULT_INTERVALS

    def __post_init__(self):
        if len(self.intervals) != MAX_LEVEL:
            raise ValueError(f"Interval table needs {MAX_LEVEL} entries, got {len(self.intervals)}")
        for shorter, longer in zip(self.intervals, self.intervals[1:]):
            if not shorter < longer:
                raise ValueError("Intervals must be strictly increasing")
        if self.intervals[0] < timedelta(0):
            raise ValueError("Intervals must not be negative")

    def interval(self, level) -> timedelta:
        """Return the review delay for a level.

        Levels outside 1-9 (including 0 and non-integers) get the level 1
        delay rather than an error, so a malformed level never blocks a
        due/not-due decision.
        """
        if isinstance(level, bool) or not isinstance(level, int):
            return self.intervals[0]
        if MIN_REVIEW_LEVEL <= level <= MAX_LEVEL:
            return self.intervals[level - 1]
        return self.intervals[0]

    @classmethod
    def from_minutes(cls, minutes: Sequence[int]) -> "IntervalTable":
        """Build a table from per-level delays in minutes."""
        return cls(intervals=tuple(timedelta(minutes=int(m)) for m in minutes))

    @classmethod
    def from_env(cls) -> "IntervalTable":
        """Build a table from SRS_INTERVAL_MINUTES, or the default table.

        The variable holds nine comma-separated minute values. A malformed
        value is logged and the default table is used instead.
        """
        raw = os.environ.get("SRS_INTERVAL_MINUTES")
        if not raw:
            return DEFAULT_INTERVAL_TABLE
        try:
            return cls.from_minutes([part.strip() for part in raw.split(",")])
        except ValueError as e:
            logger.warning(f"Invalid SRS_INTERVAL_MINUTES '{raw}', using defaults: {e}")
            return DEFAULT_INTERVAL_TABLE


DEFAULT_INTERVAL_TABLE = IntervalTable()


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_review_level(level) -> bool:
    return (
        isinstance(level, int)
        and not isinstance(level, bool)
        and MIN_REVIEW_LEVEL <= level <= MAX_LEVEL
    )


def is_due(
    record: Optional[SrsRecord],
    now: datetime,
    table: IntervalTable = DEFAULT_INTERVAL_TABLE,
) -> bool:
    """Decide whether a record is due for review at ``now``.

    Absent records, missing fields, levels outside 1-9 and timestamps in the
    future are never due.

    Args:
        record: The item's SRS record, or None if it has none.
        now: Current time.
        table: Interval table to use.

    Returns:
        True if at least interval(level) has elapsed since time_created.
    """
    if record is None or record.level is None or record.time_created is None:
        return False

    if not _is_review_level(record.level):
        return False

    time_created = _as_utc(record.time_created)
    now = _as_utc(now)

    if time_created > now:
        return False

    return now - time_created >= table.interval(record.level)


def next_due_at(
    record: Optional[SrsRecord],
    table: IntervalTable = DEFAULT_INTERVAL_TABLE,
) -> Optional[datetime]:
    """Return when a record becomes due, or None if it is not in the cycle."""
    if record is None or record.time_created is None or not _is_review_level(record.level):
        return None
    return _as_utc(record.time_created) + table.interval(record.level)


def next_level(current: int, outcome: Outcome) -> int:
    """Compute the level after a review.

    Correct answers move up one level, capped at 9. Incorrect answers move
    down one level, floored at 1: a reviewed item never returns to level 0.

    Raises:
        ValueError: If outcome is not a known Outcome.
    """
    outcome = Outcome(outcome)
    current = min(max(int(current), 0), MAX_LEVEL)

    if outcome == Outcome.correct:
        return min(current + 1, MAX_LEVEL)
    return max(current - 1, MIN_REVIEW_LEVEL)


def retract_level(original_level: int) -> int:
    """Level to apply when an incorrect answer is retracted as correct.

    The incorrect transition is discarded and the correct one is applied
    to the level the item had before the answer.
    """
    return next_level(original_level, Outcome.correct)
