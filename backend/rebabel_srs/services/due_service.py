"""Due aggregation across a learner's SRS-enabled sets."""

import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from aws_lambda_powertools import Logger

from ..models.review import (
    DueForOwnerResponse,
    DueItemInfo,
    ScheduledItemInfo,
    SetDueBreakdown,
    SetItemInfo,
    SetItemsResponse,
    SetScheduleResponse,
)
from ..models.srs import DEFAULT_SCOPE, MAX_LEVEL, SrsRecord
from ..models.study_set import LearnableItem, StudySet
from .srs import IntervalTable, is_due, next_due_at
from .srs_repository import SrsRepository

logger = Logger()

DEFAULT_MAX_WORKERS = 8
DEFAULT_FETCH_TIMEOUT_SECONDS = 5.0


class DueServiceError(Exception):
    """Base exception for due service errors."""

    pass


class InvalidLimitError(DueServiceError):
    """Raised when a candidate limit is not a positive integer."""

    pass


def _is_malformed(record: Optional[SrsRecord]) -> bool:
    if record is None or record.level == 0:
        return False
    return record.level is None or record.time_created is None or not 0 <= record.level <= MAX_LEVEL


@dataclass
class SetDueResult:
    """Due items found in one set."""

    study_set: StudySet
    due_items: List[LearnableItem] = field(default_factory=list)


@dataclass
class DueCollection:
    """Outcome of one aggregation pass, before it is shaped into a response."""

    results: List[SetDueResult] = field(default_factory=list)
    failed_set_ids: List[str] = field(default_factory=list)

    @property
    def total_due(self) -> int:
        return sum(len(r.due_items) for r in self.results)


class DueAggregationService:
    """Finds due items for a learner across sets, or within one set."""

    def __init__(
        self,
        repository: Optional[SrsRepository] = None,
        interval_table: Optional[IntervalTable] = None,
        max_workers: Optional[int] = None,
        fetch_timeout_seconds: Optional[float] = None,
    ):
        """Initialize DueAggregationService.

        Args:
            repository: SrsRepository instance.
            interval_table: Interval table. Defaults to SRS_INTERVAL_MINUTES or the default table.
            max_workers: Concurrent set fetches. Defaults to DUE_MAX_WORKERS env var.
            fetch_timeout_seconds: Budget for one aggregation pass. Defaults to
                DUE_FETCH_TIMEOUT_SECONDS env var.
        """
        self.repository = repository or SrsRepository()
        self.interval_table = interval_table or IntervalTable.from_env()
        self.max_workers = max_workers or int(os.environ.get("DUE_MAX_WORKERS", DEFAULT_MAX_WORKERS))
        self.fetch_timeout_seconds = fetch_timeout_seconds or float(
            os.environ.get("DUE_FETCH_TIMEOUT_SECONDS", DEFAULT_FETCH_TIMEOUT_SECONDS)
        )

    def filter_due(self, items: List[LearnableItem], now: datetime) -> List[LearnableItem]:
        """Keep the items whose record is due at now."""
        due = []
        for item in items:
            if is_due(item.srs, now, self.interval_table):
                due.append(item)
            elif _is_malformed(item.srs):
                logger.debug(f"Skipping item {item.item_id} with malformed SRS record: {item.srs}")
        return due

    def _set_items_response(self, study_set: StudySet, items: List[LearnableItem]) -> SetItemsResponse:
        return SetItemsResponse(
            set=study_set.to_response(),
            items=[SetItemInfo.from_item(item, next_due_at(item.srs, self.interval_table)) for item in items],
        )

    def _fetch_set_due(self, study_set: StudySet, owner_id: str, now: datetime, scope: str) -> SetDueResult:
        items = self.repository.get_set_items(study_set.set_id, owner_id, scope)
        return SetDueResult(study_set=study_set, due_items=self.filter_due(items, now))

    def collect_due(self, owner_id: str, now: datetime, scope: str = DEFAULT_SCOPE) -> DueCollection:
        """Run the due filter over every SRS-enabled set the owner has.

        Set fetches run in parallel with bounded concurrency. A set whose fetch
        raises or does not finish within the pass budget contributes nothing and
        is reported in failed_set_ids.

        Raises:
            SrsRepositoryError: If the owner's sets cannot be listed.
        """
        sets = self.repository.list_srs_enabled_sets(owner_id)
        collection = DueCollection()
        if not sets:
            return collection

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(sets)))
        futures: Dict[Future, StudySet] = {
            executor.submit(self._fetch_set_due, study_set, owner_id, now, scope): study_set for study_set in sets
        }
        finished: Dict[str, SetDueResult] = {}
        deadline = time.monotonic() + self.fetch_timeout_seconds

        try:
            pending = set(futures)
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                for future in done:
                    study_set = futures[future]
                    try:
                        finished[study_set.set_id] = future.result()
                    except Exception as e:
                        logger.warning(f"Failed to fetch due items for set {study_set.set_id}: {e}")

            for future in pending:
                future.cancel()
                logger.warning(
                    f"Timed out fetching due items for set {futures[future].set_id} "
                    f"after {self.fetch_timeout_seconds}s"
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        # Keep set enumeration order regardless of completion order
        for study_set in sets:
            result = finished.get(study_set.set_id)
            if result is None:
                collection.failed_set_ids.append(study_set.set_id)
            else:
                collection.results.append(result)

        return collection

    def due_for_owner(
        self,
        owner_id: str,
        now: datetime,
        count_only: bool = False,
        scope: str = DEFAULT_SCOPE,
    ) -> DueForOwnerResponse:
        """Get due items across all of an owner's SRS-enabled sets.

        Args:
            owner_id: The learner's ID.
            now: Current time.
            count_only: Omit the item payload and return only counts.
            scope: Review scope.

        Returns:
            DueForOwnerResponse with items, per-set breakdown and total.
        """
        collection = self.collect_due(owner_id, now, scope)

        by_set = [
            SetDueBreakdown(
                set_id=r.study_set.set_id,
                set_title=r.study_set.title,
                due_count=len(r.due_items),
            )
            for r in collection.results
            if r.due_items
        ]

        items: Optional[List[DueItemInfo]] = None
        if not count_only:
            items = []
            for r in collection.results:
                items.extend(
                    DueItemInfo.from_item(item, r.study_set, next_due_at(item.srs, self.interval_table))
                    for item in r.due_items
                )

        logger.info(
            f"Due aggregation for owner {owner_id}: total_due={collection.total_due}, "
            f"sets={len(collection.results)}, failed={len(collection.failed_set_ids)}"
        )

        return DueForOwnerResponse(
            items=items,
            total_due=collection.total_due,
            by_set=by_set,
            failed_set_ids=collection.failed_set_ids,
        )

    def due_for_set(
        self,
        owner_id: str,
        set_id: str,
        now: datetime,
        scope: str = DEFAULT_SCOPE,
    ) -> SetItemsResponse:
        """Get the due items of one set.

        Raises:
            SetNotFoundError: If the set does not exist or belongs to another owner.
        """
        study_set = self.repository.get_owned_set(owner_id, set_id)
        items = self.repository.get_set_items(set_id, owner_id, scope)
        due = self.filter_due(items, now)
        return self._set_items_response(study_set, due)

    def learn_new_candidates(
        self,
        owner_id: str,
        set_id: str,
        limit: int,
        scope: str = DEFAULT_SCOPE,
    ) -> SetItemsResponse:
        """Get items that have not entered the cycle, in set order.

        Raises:
            InvalidLimitError: If limit is not positive.
            SetNotFoundError: If the set does not exist or belongs to another owner.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidLimitError("Invalid limit parameter - must be a positive integer")

        study_set = self.repository.get_owned_set(owner_id, set_id)
        items = self.repository.get_set_items(set_id, owner_id, scope)
        unseen = [item for item in items if item.is_unseen][:limit]
        return self._set_items_response(study_set, unseen)

    def schedule_for_set(
        self,
        owner_id: str,
        set_id: str,
        now: datetime,
        scope: str = DEFAULT_SCOPE,
    ) -> SetScheduleResponse:
        """List in-cycle items of a set by when they next become due."""
        self.repository.get_owned_set(owner_id, set_id)
        items = self.repository.get_set_items(set_id, owner_id, scope)

        scheduled = []
        for item in items:
            due_at = next_due_at(item.srs, self.interval_table)
            if due_at is None:
                continue
            scheduled.append(
                ScheduledItemInfo(
                    id=item.item_id,
                    type=item.type,
                    srs_level=item.srs_level,
                    next_due_at=due_at,
                    is_due=is_due(item.srs, now, self.interval_table),
                )
            )
        scheduled.sort(key=lambda s: s.next_due_at)
        return SetScheduleResponse(set_id=set_id, items=scheduled)
