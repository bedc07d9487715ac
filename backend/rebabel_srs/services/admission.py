"""Daily learn-new admission control."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from aws_lambda_powertools import Logger

from ..models.srs import DEFAULT_SCOPE, ItemKind
from ..models.study_set import LearnableItem
from .srs_repository import SrsRepository

logger = Logger()

DEFAULT_DAILY_LIMIT = 10


class AdmissionError(Exception):
    """Base exception for admission request errors."""

    pass


class InvalidCapError(AdmissionError):
    """Raised when the daily cap is not a positive integer."""

    pass


class InvalidKindError(AdmissionError):
    """Raised when the item kind is unknown."""

    pass


class InvalidTimezoneError(AdmissionError):
    """Raised when the timezone is not a known IANA name."""

    pass


class InvalidRequestError(AdmissionError):
    """Raised when the requested count is negative."""

    pass


@dataclass
class AdmissionResult:
    """How many unseen items may still be introduced today."""

    learned_today: int
    remaining: int
    admitted: int
    daily_limit: int

    @property
    def limit_reached(self) -> bool:
        return self.learned_today >= self.daily_limit


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Load an IANA timezone.

    Raises:
        InvalidTimezoneError: If the name is empty or unknown.
    """
    if not name:
        raise InvalidTimezoneError("timezone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezoneError(f"Unknown timezone: {name}") from e


def local_day_bounds(as_of: Union[datetime, date], tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Return [start, end) of the learner's local calendar day, in UTC.

    A datetime is converted to tz to find its local date (naive datetimes are
    read as UTC). A plain date is taken to already be the local date.
    Days that cross a DST change are 23 or 25 hours long.
    """
    if isinstance(as_of, datetime):
        if as_of.tzinfo is None:
            as_of = as_of.replace(tzinfo=timezone.utc)
        local_date = as_of.astimezone(tz).date()
    else:
        local_date = as_of

    start = datetime.combine(local_date, time.min, tzinfo=tz)
    end = datetime.combine(local_date + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def count_learned_in_window(
    items: Iterable[LearnableItem],
    kind: ItemKind,
    start: datetime,
    end: datetime,
) -> int:
    """Count items of kind that first entered the review cycle in [start, end)."""
    count = 0
    for item in items:
        if item.type != kind or item.srs is None or item.srs.entered_at is None:
            continue
        entered_at = item.srs.entered_at
        if entered_at.tzinfo is None:
            entered_at = entered_at.replace(tzinfo=timezone.utc)
        if start <= entered_at < end:
            count += 1
    return count


def compute_admission(learned_today: int, cap: int, requested_count: int) -> AdmissionResult:
    """Apply the daily cap to a learn-new request."""
    remaining = max(0, cap - learned_today)
    return AdmissionResult(
        learned_today=learned_today,
        remaining=remaining,
        admitted=min(requested_count, remaining),
        daily_limit=cap,
    )


class AdmissionController:
    """Caps how many unseen items per set and kind enter the cycle each local day."""

    def __init__(self, repository: Optional[SrsRepository] = None):
        self.repository = repository or SrsRepository()

    @staticmethod
    def validate(cap, requested_count, kind) -> ItemKind:
        """Check request parameters.

        Returns:
            The parsed item kind.

        Raises:
            InvalidCapError, InvalidRequestError, InvalidKindError
        """
        if isinstance(cap, bool) or not isinstance(cap, int) or cap <= 0:
            raise InvalidCapError(f"Daily cap must be a positive integer, got {cap!r}")
        if isinstance(requested_count, bool) or not isinstance(requested_count, int) or requested_count < 0:
            raise InvalidRequestError(
                f"Requested count must be a non-negative integer, got {requested_count!r}"
            )
        try:
            return ItemKind.parse(kind.value if isinstance(kind, ItemKind) else kind)
        except ValueError:
            raise InvalidKindError(f"Unknown item kind: {kind!r}")

    def admit(
        self,
        owner_id: str,
        set_id: str,
        requested_count: int,
        cap: int,
        as_of: Union[datetime, date],
        timezone_name: str,
        kind: Union[ItemKind, str] = ItemKind.vocabulary,
        scope: str = DEFAULT_SCOPE,
    ) -> AdmissionResult:
        """Compute the learn-new quota for a set on the learner's local day.

        Only reads: asking with requested_count=0 is a pure quota query.

        Args:
            owner_id: The learner whose first entries are counted.
            set_id: The set's ID.
            requested_count: How many unseen items the caller wants to introduce.
            cap: Daily cap of first entries for this set and kind.
            as_of: Moment (or local date) that determines "today".
            timezone_name: Learner's IANA timezone.
            kind: Item kind; vocabulary and grammar have separate quotas.
            scope: Review scope whose records are counted.

        Returns:
            AdmissionResult with learned_today, remaining and admitted.

        Raises:
            AdmissionError: If any parameter is invalid.
            SrsRepositoryError: If the set's items cannot be read.
        """
        item_kind = self.validate(cap, requested_count, kind)
        tz = resolve_timezone(timezone_name)
        start, end = local_day_bounds(as_of, tz)

        items = self.repository.get_set_items(set_id, owner_id, scope)
        learned_today = count_learned_in_window(items, item_kind, start, end)
        result = compute_admission(learned_today, cap, requested_count)

        logger.debug(
            f"Admission for set {set_id} ({item_kind.value}): learned_today={learned_today}, "
            f"cap={cap}, requested={requested_count}, admitted={result.admitted}"
        )
        return result
