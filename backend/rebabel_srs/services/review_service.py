"""Review service for applying review outcomes to SRS records."""

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from ..models.review import ReviewResponse
from ..models.srs import DEFAULT_SCOPE, MAX_LEVEL, MIN_LEVEL, Outcome, SrsRecord
from .srs import IntervalTable, next_due_at, next_level
from .srs_repository import SrsRepository

logger = Logger()


class ReviewServiceError(Exception):
    """Base exception for review service errors."""

    pass


class InvalidLevelError(ReviewServiceError):
    """Raised when an explicit level is out of range or not allowed."""

    pass


@dataclass
class ReviewResult:
    """Level change produced by one review."""

    item_id: str
    scope: str
    previous_level: int
    new_level: int
    next_due_at: Optional[datetime]
    reviewed_at: datetime
    record: SrsRecord

    def to_response(self) -> ReviewResponse:
        """Convert to API response model."""
        return ReviewResponse(
            item_id=self.item_id,
            scope=self.scope,
            previous_level=self.previous_level,
            new_level=self.new_level,
            next_due_at=self.next_due_at,
            reviewed_at=self.reviewed_at,
        )


class ReviewService:
    """Persists level transitions. One writer per item; last write wins."""

    def __init__(
        self,
        repository: Optional[SrsRepository] = None,
        reviews_table_name: Optional[str] = None,
        interval_table: Optional[IntervalTable] = None,
    ):
        """Initialize ReviewService.

        Args:
            repository: SrsRepository instance.
            reviews_table_name: DynamoDB reviews table name. Defaults to REVIEWS_TABLE env var.
            interval_table: Interval table. Defaults to SRS_INTERVAL_MINUTES or the default table.
        """
        self.repository = repository or SrsRepository()
        self.reviews_table_name = reviews_table_name or os.environ.get(
            "REVIEWS_TABLE", "rebabel-reviews-dev"
        )
        self.reviews_table = self.repository.dynamodb.Table(self.reviews_table_name)
        self.interval_table = interval_table or IntervalTable.from_env()

    def apply_review(
        self,
        owner_id: str,
        item_id: str,
        outcome: Outcome,
        now: datetime,
        scope: str = DEFAULT_SCOPE,
    ) -> ReviewResult:
        """Apply a review outcome to an item and persist the new level.

        Every call applies a transition, so callers must submit each answered
        question at most once. The record's clock restarts at now in both
        directions.

        Args:
            owner_id: The learner's ID.
            item_id: The item's ID.
            outcome: Review outcome.
            now: Review time.
            scope: Review scope.

        Returns:
            ReviewResult with previous and new level.

        Raises:
            SrsRepositoryError: If the record cannot be read or written.
        """
        outcome = Outcome(outcome)
        record = self.repository.get_record(owner_id, item_id, scope)

        previous_level = record.effective_level if record is not None else 0

        new_level = next_level(previous_level, outcome)
        return self._write_level(
            owner_id=owner_id,
            item_id=item_id,
            scope=scope,
            record=record,
            previous_level=previous_level,
            new_level=new_level,
            now=now,
            outcome=outcome.value,
        )

    def set_level(
        self,
        owner_id: str,
        item_id: str,
        level: int,
        now: datetime,
        scope: str = DEFAULT_SCOPE,
    ) -> ReviewResult:
        """Write an explicit level, e.g. when an item is first entered into the cycle.

        Raises:
            InvalidLevelError: If level is outside 0-9, or is 0 for an item
                that has already entered the cycle.
        """
        if isinstance(level, bool) or not isinstance(level, int) or not MIN_LEVEL <= level <= MAX_LEVEL:
            raise InvalidLevelError(f"srs_level must be between {MIN_LEVEL} and {MAX_LEVEL}, got {level!r}")

        record = self.repository.get_record(owner_id, item_id, scope)
        previous_level = record.effective_level if record is not None else 0

        if level == 0 and previous_level != 0:
            # Returning to unseen is not a defined transition
            raise InvalidLevelError(f"Item {item_id} has already entered the review cycle")

        return self._write_level(
            owner_id=owner_id,
            item_id=item_id,
            scope=scope,
            record=record,
            previous_level=previous_level,
            new_level=level,
            now=now,
            outcome="set_level",
        )

    def restore_level(
        self,
        owner_id: str,
        item_id: str,
        previous_level: int,
        new_level: int,
        reviewed_at: datetime,
        scope: str = DEFAULT_SCOPE,
    ) -> ReviewResult:
        """Overwrite the level written by a review that is being retracted.

        previous_level is the level the item had before the retracted answer,
        so first-entry bookkeeping is the same as for the original review.
        """
        record = self.repository.get_record(owner_id, item_id, scope)
        return self._write_level(
            owner_id=owner_id,
            item_id=item_id,
            scope=scope,
            record=record,
            previous_level=previous_level,
            new_level=new_level,
            now=reviewed_at,
            outcome="retracted",
        )

    def _write_level(
        self,
        owner_id: str,
        item_id: str,
        scope: str,
        record: Optional[SrsRecord],
        previous_level: int,
        new_level: int,
        now: datetime,
        outcome: str,
    ) -> ReviewResult:
        entered_at = record.entered_at if record is not None else None
        if new_level >= 1 and previous_level == 0 and entered_at is None:
            entered_at = now

        updated = SrsRecord(
            item_id=item_id,
            scope=scope,
            owner_id=owner_id,
            level=new_level,
            time_created=now,
            entered_at=entered_at,
        )
        self.repository.put_record(updated)

        self._record_review(
            owner_id=owner_id,
            item_id=item_id,
            scope=scope,
            outcome=outcome,
            reviewed_at=now,
            level_before=previous_level,
            level_after=new_level,
        )

        logger.info(f"SRS level update for item {item_id} ({scope}): {previous_level} -> {new_level}")

        return ReviewResult(
            item_id=item_id,
            scope=scope,
            previous_level=previous_level,
            new_level=new_level,
            next_due_at=next_due_at(updated, self.interval_table),
            reviewed_at=now,
            record=updated,
        )

    def _record_review(
        self,
        owner_id: str,
        item_id: str,
        scope: str,
        outcome: str,
        reviewed_at: datetime,
        level_before: int,
        level_after: int,
    ) -> None:
        """Record review in reviews table.

        The reviews table is for analytics; a failed write is logged and the
        review still counts.
        """
        try:
            self.reviews_table.put_item(
                Item={
                    "owner_id": owner_id,
                    "reviewed_at": reviewed_at.isoformat(),
                    "item_id": item_id,
                    "scope": scope,
                    "outcome": outcome,
                    "level_before": level_before,
                    "level_after": level_after,
                }
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Failed to record review for item {item_id}: {e}")
