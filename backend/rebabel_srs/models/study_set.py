"""Study set and learnable item models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, StrictBool

from .srs import ItemKind, SrsRecord

DEFAULT_SET_TITLE = "Untitled Set"

# Attributes the scheduler reads; everything else on a set item is content
_ITEM_KEY_ATTRIBUTES = {"set_id", "item_id", "type", "position"}


def _parse_bool(value) -> bool:
    """Read a stored flag. Older sets store "true"/"false" strings."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class StudySet(BaseModel):
    """A learner's set. Only srs_enabled and daily_new_limit matter to the scheduler."""

    set_id: str
    owner_id: str
    title: str = DEFAULT_SET_TITLE
    srs_enabled: bool = False
    daily_new_limit: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_response(self) -> dict:
        """Convert to API response payload."""
        return {
            "set_id": self.set_id,
            "title": self.title,
            "srs_enabled": self.srs_enabled,
            "daily_new_limit": self.daily_new_limit,
            **self.metadata,
        }

    def to_dynamodb_item(self) -> dict:
        """Convert to DynamoDB item."""
        item = {
            **self.metadata,
            "set_id": self.set_id,
            "owner_id": self.owner_id,
            "title": self.title,
            "srs_enabled": self.srs_enabled,
        }
        if self.daily_new_limit is not None:
            item["daily_new_limit"] = self.daily_new_limit
        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict) -> "StudySet":
        """Create StudySet from DynamoDB item."""
        known = {"set_id", "owner_id", "title", "srs_enabled", "daily_new_limit"}
        limit = item.get("daily_new_limit")
        return cls(
            set_id=item["set_id"],
            owner_id=item["owner_id"],
            title=item.get("title") or DEFAULT_SET_TITLE,
            srs_enabled=_parse_bool(item.get("srs_enabled", False)),
            daily_new_limit=int(limit) if limit is not None else None,
            metadata={k: v for k, v in item.items() if k not in known},
        )


class LearnableItem(BaseModel):
    """A vocabulary or grammar item in a set, with its SRS record for one scope."""

    item_id: str
    type: ItemKind
    content: Dict[str, Any] = Field(default_factory=dict)
    srs: Optional[SrsRecord] = None

    @property
    def srs_level(self) -> int:
        """Current level, 0 when the item has not entered the cycle."""
        if self.srs is None:
            return 0
        return self.srs.effective_level

    @property
    def is_unseen(self) -> bool:
        """True when the item has no usable level.

        A record whose level is missing or out of range is never due, so it is
        offered as new again rather than hidden.
        """
        return self.srs_level == 0

    def to_dynamodb_item(self, set_id: str) -> dict:
        """Convert to a set item row."""
        return {
            **self.content,
            "set_id": set_id,
            "item_id": self.item_id,
            "type": self.type.value,
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict, srs: Optional[SrsRecord] = None) -> "LearnableItem":
        """Create LearnableItem from a set item row."""
        return cls(
            item_id=item["item_id"],
            type=ItemKind.parse(item.get("type")),
            content={k: v for k, v in item.items() if k not in _ITEM_KEY_ATTRIBUTES},
            srs=srs,
        )


class SrsToggleRequest(BaseModel):
    """Request model for turning SRS on or off for a set."""

    srs_enabled: StrictBool = Field(..., description="Whether the set takes part in SRS")


class SrsEnabledCountResponse(BaseModel):
    """Response model for the number of SRS-enabled sets."""

    count: int
