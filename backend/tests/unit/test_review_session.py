"""Unit tests for the review session driver."""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from rebabel_srs.models.srs import ItemKind, Outcome, SrsRecord
from rebabel_srs.models.study_set import LearnableItem
from rebabel_srs.services.review_service import ReviewResult
from rebabel_srs.services.review_session import (
    RetractionError,
    ReviewSession,
    SessionFinishedError,
)
from rebabel_srs.services.srs import next_level

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _item(item_id, level=None, age=timedelta(days=30)):
    srs = None
    if level is not None:
        srs = SrsRecord(item_id=item_id, owner_id="user-1", level=level, time_created=NOW - age)
    return LearnableItem(item_id=item_id, type=ItemKind.vocabulary, srs=srs)


def _result(item_id, previous_level, new_level, at):
    record = SrsRecord(item_id=item_id, owner_id="user-1", level=new_level, time_created=at)
    return ReviewResult(
        item_id=item_id,
        scope="set_srs",
        previous_level=previous_level,
        new_level=new_level,
        next_due_at=None,
        reviewed_at=at,
        record=record,
    )


@pytest.fixture
def review_service():
    """ReviewService stand-in that applies the real transition function."""
    service = MagicMock()
    levels = {}

    def apply_review(owner_id, item_id, outcome, now, scope="set_srs"):
        previous = levels.get(item_id, 0)
        levels[item_id] = next_level(previous, outcome)
        return _result(item_id, previous, levels[item_id], now)

    def restore_level(owner_id, item_id, previous_level, new_level, reviewed_at, scope="set_srs"):
        levels[item_id] = new_level
        return _result(item_id, previous_level, new_level, reviewed_at)

    service.levels = levels
    service.apply_review.side_effect = apply_review
    service.restore_level.side_effect = restore_level
    return service


def _seed(review_service, items):
    for item in items:
        review_service.levels[item.item_id] = item.srs_level


class TestSessionQueue:
    """Tests for building and walking the queue."""

    def test_for_due_items_filters(self, review_service):
        items = [_item("due", 3), _item("fresh", 3, age=timedelta(hours=1)), _item("new")]
        session = ReviewSession.for_due_items(items, NOW, review_service, "user-1")

        assert session.current.item_id == "due"
        assert session.remaining == 1

    def test_for_new_items_filters(self, review_service):
        items = [_item("a"), _item("b", 2), _item("c", 0)]
        session = ReviewSession.for_new_items(items, review_service, "user-1")

        assert [session.current.item_id] == ["a"]
        assert session.remaining == 2

    def test_correct_answer_advances(self, review_service):
        items = [_item("a", 3), _item("b", 5)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")

        answer = session.answer(Outcome.correct, NOW)

        assert answer.previous_level == 3
        assert answer.new_level == 4
        assert session.current.item_id == "b"
        review_service.apply_review.assert_called_once_with("user-1", "a", Outcome.correct, NOW, scope="set_srs")

    def test_incorrect_answer_is_requeued_as_retry(self, review_service):
        items = [_item("a", 3), _item("b", 5)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")

        session.answer(Outcome.incorrect, NOW)

        assert session.current.item_id == "b"
        session.answer(Outcome.correct, NOW)
        assert session.current.item_id == "a"
        assert session.current.is_retry is True

    def test_retry_does_not_persist(self, review_service):
        items = [_item("a", 3)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")

        session.answer(Outcome.incorrect, NOW)
        session.answer(Outcome.incorrect, NOW)
        session.answer(Outcome.correct, NOW)

        assert review_service.apply_review.call_count == 1
        assert review_service.levels["a"] == 2
        assert session.is_finished

    def test_answer_after_finish(self, review_service):
        session = ReviewSession([], review_service, "user-1")

        assert session.current is None
        with pytest.raises(SessionFinishedError):
            session.answer(Outcome.correct, NOW)


class TestRetract:
    """Tests for "I was actually correct"."""

    def test_retract_incorrect_answer(self, review_service):
        items = [_item("a", 4), _item("b", 2)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")
        answered_at = NOW
        session.answer(Outcome.incorrect, answered_at)

        retracted = session.retract(NOW + timedelta(seconds=5))

        assert retracted.outcome == Outcome.correct
        assert retracted.new_level == 5
        assert review_service.levels["a"] == 5
        review_service.restore_level.assert_called_once_with(
            "user-1", "a", previous_level=4, new_level=5, reviewed_at=answered_at, scope="set_srs"
        )
        # The retry for "a" is gone
        assert session.current.item_id == "b"
        session.answer(Outcome.correct, NOW)
        assert session.is_finished

    def test_retract_from_level_one(self, review_service):
        """Incorrect at level 1 stays at 1; retracting moves it to 2."""
        items = [_item("a", 1, age=timedelta(hours=1))]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")
        session.answer(Outcome.incorrect, NOW)

        session.retract(NOW)

        assert review_service.levels["a"] == 2

    def test_retract_correct_answer_rejected(self, review_service):
        items = [_item("a", 4)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")
        session.answer(Outcome.correct, NOW)

        with pytest.raises(RetractionError):
            session.retract(NOW)

    def test_retract_twice_rejected(self, review_service):
        items = [_item("a", 4)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")
        session.answer(Outcome.incorrect, NOW)
        session.retract(NOW)

        with pytest.raises(RetractionError):
            session.retract(NOW)

    def test_only_most_recent_answer(self, review_service):
        items = [_item("a", 4), _item("b", 4)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")
        session.answer(Outcome.incorrect, NOW)
        session.answer(Outcome.correct, NOW)

        with pytest.raises(RetractionError):
            session.retract(NOW)
        assert review_service.levels["a"] == 3

    def test_nothing_to_retract(self, review_service):
        session = ReviewSession([_item("a", 4)], review_service, "user-1")

        with pytest.raises(RetractionError):
            session.retract(NOW)

    def test_retract_retry_answer_does_not_persist(self, review_service):
        items = [_item("a", 4)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")
        session.answer(Outcome.incorrect, NOW)
        session.answer(Outcome.incorrect, NOW)

        session.retract(NOW)

        review_service.restore_level.assert_not_called()
        assert session.is_finished


class TestSummary:
    """Tests for the session summary."""

    def test_summary(self, review_service):
        items = [_item("a", 3), _item("b", 5), _item("c", 1, age=timedelta(hours=1))]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")

        session.answer(Outcome.correct, NOW)
        session.answer(Outcome.incorrect, NOW)
        session.answer(Outcome.correct, NOW)
        session.answer(Outcome.correct, NOW)  # retry of "b"

        summary = session.summary()

        assert summary.correct == 2
        assert summary.incorrect == 1
        assert summary.retries == 1
        assert summary.accuracy == pytest.approx(2 / 3)
        assert [(c.item_id, c.previous_level, c.new_level) for c in summary.level_changes] == [
            ("a", 3, 4),
            ("b", 5, 4),
            ("c", 1, 2),
        ]

    def test_summary_reflects_retraction(self, review_service):
        items = [_item("a", 3)]
        _seed(review_service, items)
        session = ReviewSession(items, review_service, "user-1")
        session.answer(Outcome.incorrect, NOW)
        session.retract(NOW)

        summary = session.summary()

        assert summary.correct == 1
        assert summary.incorrect == 0
        assert summary.level_changes[0].new_level == 4

    def test_empty_summary(self, review_service):
        summary = ReviewSession([], review_service, "user-1").summary()
        assert summary.accuracy == 0.0
        assert summary.total == 0
