"""Review session driver.

A session walks a queue of items. The first answer for an item is a real
review and goes through ReviewService; an item answered incorrectly (or
still due after its review) comes back at the end of the queue as a retry.
Retries are practice and never write a level.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional

from aws_lambda_powertools import Logger

from ..models.srs import DEFAULT_SCOPE, Outcome
from ..models.study_set import LearnableItem
from .review_service import ReviewService
from .srs import DEFAULT_INTERVAL_TABLE, IntervalTable, is_due, retract_level

logger = Logger()


class ReviewSessionError(Exception):
    """Base exception for review session errors."""

    pass


class SessionFinishedError(ReviewSessionError):
    """Raised when answering after the queue is empty."""

    pass


class RetractionError(ReviewSessionError):
    """Raised when there is no incorrect answer to retract."""

    pass


@dataclass
class SessionQuestion:
    """One entry of the session queue."""

    item: LearnableItem
    is_retry: bool = False

    @property
    def item_id(self) -> str:
        return self.item.item_id


@dataclass
class SessionAnswer:
    item_id: str
    outcome: Outcome
    answered_at: datetime
    is_retry: bool
    previous_level: int
    new_level: int


@dataclass
class LevelChange:
    item_id: str
    previous_level: int
    new_level: int


@dataclass
class SessionSummary:
    """Result of a session. Only first answers count towards accuracy."""

    correct: int = 0
    incorrect: int = 0
    retries: int = 0
    level_changes: List[LevelChange] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.correct + self.incorrect

    @property
    def accuracy(self) -> float:
        if self.total == 0:
            return 0.0
        return self.correct / self.total


class ReviewSession:
    """Drives one review or learn-new session for a learner."""

    def __init__(
        self,
        items: Iterable[LearnableItem],
        review_service: ReviewService,
        owner_id: str,
        scope: str = DEFAULT_SCOPE,
        interval_table: Optional[IntervalTable] = None,
    ):
        self.review_service = review_service
        self.owner_id = owner_id
        self.scope = scope
        self.interval_table = interval_table or DEFAULT_INTERVAL_TABLE

        self._queue: Deque[SessionQuestion] = deque(SessionQuestion(item=item) for item in items)
        self._answers: List[SessionAnswer] = []
        self._first_answers: Dict[str, SessionAnswer] = {}

    @classmethod
    def for_due_items(
        cls,
        items: Iterable[LearnableItem],
        now: datetime,
        review_service: ReviewService,
        owner_id: str,
        scope: str = DEFAULT_SCOPE,
        interval_table: Optional[IntervalTable] = None,
    ) -> "ReviewSession":
        """Start a review session over the items that are due at now."""
        table = interval_table or DEFAULT_INTERVAL_TABLE
        due = [item for item in items if is_due(item.srs, now, table)]
        return cls(due, review_service, owner_id, scope, table)

    @classmethod
    def for_new_items(
        cls,
        items: Iterable[LearnableItem],
        review_service: ReviewService,
        owner_id: str,
        scope: str = DEFAULT_SCOPE,
        interval_table: Optional[IntervalTable] = None,
    ) -> "ReviewSession":
        """Start a learn-new session over items that have not entered the cycle."""
        unseen = [item for item in items if item.is_unseen]
        return cls(unseen, review_service, owner_id, scope, interval_table)

    @property
    def current(self) -> Optional[SessionQuestion]:
        """The question to show next, or None when the session is finished."""
        return self._queue[0] if self._queue else None

    @property
    def is_finished(self) -> bool:
        return not self._queue

    @property
    def remaining(self) -> int:
        return len(self._queue)

    def answer(self, outcome: Outcome, now: datetime) -> SessionAnswer:
        """Answer the current question.

        Raises:
            SessionFinishedError: If nothing is left to answer.
            ReviewServiceError, SrsRepositoryError: If the review cannot be saved.
        """
        question = self.current
        if question is None:
            raise SessionFinishedError("No question left in this session")

        outcome = Outcome(outcome)
        item = question.item
        already_answered = item.item_id in self._first_answers

        if already_answered:
            level = item.srs_level
            answer = SessionAnswer(
                item_id=item.item_id,
                outcome=outcome,
                answered_at=now,
                is_retry=True,
                previous_level=level,
                new_level=level,
            )
            requeue = outcome == Outcome.incorrect
        else:
            result = self.review_service.apply_review(
                self.owner_id, item.item_id, outcome, now, scope=self.scope
            )
            item.srs = result.record
            answer = SessionAnswer(
                item_id=item.item_id,
                outcome=outcome,
                answered_at=now,
                is_retry=False,
                previous_level=result.previous_level,
                new_level=result.new_level,
            )
            self._first_answers[item.item_id] = answer
            requeue = outcome == Outcome.incorrect or is_due(result.record, now, self.interval_table)

        self._queue.popleft()
        if requeue:
            self._queue.append(SessionQuestion(item=item, is_retry=True))

        self._answers.append(answer)
        return answer

    def retract(self, now: datetime) -> SessionAnswer:
        """Treat the most recent answer as correct ("I was actually correct").

        Only an incorrect most-recent answer can be retracted. For a first
        answer the level is recomputed from the level the item had before
        it and saved with the original answer time.

        Raises:
            RetractionError: If the most recent answer was correct, already
                retracted, or there is none.
        """
        if not self._answers:
            raise RetractionError("Nothing to retract")
        last = self._answers[-1]
        if last.outcome != Outcome.incorrect:
            raise RetractionError(f"Most recent answer for item {last.item_id} was not incorrect")

        item = self._drop_retry(last.item_id)
        keep_retry = False

        if not last.is_retry:
            result = self.review_service.restore_level(
                self.owner_id,
                last.item_id,
                previous_level=last.previous_level,
                new_level=retract_level(last.previous_level),
                reviewed_at=last.answered_at,
                scope=self.scope,
            )
            if item is not None:
                item.srs = result.record
            last.new_level = result.new_level
            keep_retry = is_due(result.record, now, self.interval_table)
            logger.info(
                f"Retracted incorrect answer for item {last.item_id}: "
                f"{last.previous_level} -> {result.new_level}"
            )

        if keep_retry and item is not None:
            self._queue.append(SessionQuestion(item=item, is_retry=True))

        last.outcome = Outcome.correct
        return last

    def _drop_retry(self, item_id: str) -> Optional[LearnableItem]:
        # The retry added by the last answer is the last queue entry for the item
        for index in range(len(self._queue) - 1, -1, -1):
            question = self._queue[index]
            if question.item_id == item_id and question.is_retry:
                del self._queue[index]
                return question.item
        return None

    def summary(self) -> SessionSummary:
        """Count first answers and report the level change of each reviewed item."""
        summary = SessionSummary()
        for answer in self._answers:
            if answer.is_retry:
                summary.retries += 1
                continue
            if answer.outcome == Outcome.correct:
                summary.correct += 1
            else:
                summary.incorrect += 1
            summary.level_changes.append(
                LevelChange(
                    item_id=answer.item_id,
                    previous_level=answer.previous_level,
                    new_level=answer.new_level,
                )
            )
        return summary
