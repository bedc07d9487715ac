"""SRS record models for the Rebabel scheduling engine."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Scope written by set review sessions when no scope is given
DEFAULT_SCOPE = "set_srs"

MIN_LEVEL = 0
MAX_LEVEL = 9


class Outcome(str, Enum):
    """Verdict produced by answer grading for one question."""

    correct = "correct"
    incorrect = "incorrect"


class ItemKind(str, Enum):
    """Kind of learnable item. Each kind has its own learn-new quota."""

    vocabulary = "vocabulary"
    grammar = "grammar"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ItemKind":
        """Parse a stored or requested kind. "vocab" is read as vocabulary.

        Raises:
            ValueError: If the value is not a known kind.
        """
        if value == "vocab":
            return cls.vocabulary
        return cls(value)


def _parse_level(value) -> Optional[int]:
    """Read a stored level, returning None for anything that is not an integer."""
    if value is None or isinstance(value, bool):
        return None
    try:
        level = int(value)
    except (TypeError, ValueError):
        return None
    # Decimal("2.5") would otherwise truncate silently
    if level != value:
        return None
    return level


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    # fromisoformat only accepts a trailing Z from Python 3.11
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def record_key(item_id: str, scope: str) -> str:
    """Sort key of a record in the SRS table, which is partitioned by owner."""
    return f"{scope}#{item_id}"


class SrsRecord(BaseModel):
    """Persisted SRS state for one (item, owner, scope) triple.

    level and time_created are optional because stored data may be missing or
    malformed; the due calculator treats such records as never due.
    """

    item_id: str
    scope: str = DEFAULT_SCOPE
    owner_id: Optional[str] = None
    level: Optional[int] = None
    time_created: Optional[datetime] = None
    entered_at: Optional[datetime] = None  # First time the record left level 0

    @property
    def effective_level(self) -> int:
        """Level used for transitions. Missing or out-of-range levels read as 0."""
        if self.level is None or not MIN_LEVEL <= self.level <= MAX_LEVEL:
            return 0
        return self.level

    def to_dynamodb_item(self) -> dict:
        """Convert to DynamoDB item."""
        item = {
            "owner_id": self.owner_id,
            "record_key": record_key(self.item_id, self.scope),
            "item_id": self.item_id,
            "scope": self.scope,
        }
        if self.level is not None:
            item["level"] = self.level
        if self.time_created:
            item["time_created"] = self.time_created.isoformat()
        if self.entered_at:
            item["entered_at"] = self.entered_at.isoformat()
        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict) -> "SrsRecord":
        """Create SrsRecord from DynamoDB item, tolerating malformed values."""
        return cls(
            item_id=item["item_id"],
            scope=item.get("scope", DEFAULT_SCOPE),
            owner_id=item.get("owner_id"),
            level=_parse_level(item.get("level")),
            time_created=_parse_timestamp(item.get("time_created")),
            entered_at=_parse_timestamp(item.get("entered_at")),
        )


class SrsRecordResponse(BaseModel):
    """Response model for an SRS record attached to an item."""

    scope: str
    srs_level: Optional[int] = None
    time_created: Optional[datetime] = None
    next_due_at: Optional[datetime] = None


class SetLevelRequest(BaseModel):
    """Request model for explicitly entering an item into the cycle."""

    level: int = Field(..., ge=MIN_LEVEL, le=MAX_LEVEL, description="SRS level (0-9)")
    scope: str = Field(DEFAULT_SCOPE, min_length=1, max_length=100)

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        """Reject blank scopes."""
        if not v.strip():
            raise ValueError("scope cannot be empty")
        return v.strip()
