"""Review and due-query models for the Rebabel SRS API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .srs import DEFAULT_SCOPE, ItemKind, Outcome, SrsRecordResponse
from .study_set import LearnableItem, StudySet


class ReviewRequest(BaseModel):
    """Request model for applying a review outcome to an item."""

    outcome: Outcome = Field(..., description="correct or incorrect")
    scope: str = Field(DEFAULT_SCOPE, min_length=1, max_length=100)

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        """Reject blank scopes."""
        if not v.strip():
            raise ValueError("scope cannot be empty")
        return v.strip()


class ReviewResponse(BaseModel):
    """Response model for an applied review."""

    item_id: str
    scope: str
    previous_level: int
    new_level: int
    next_due_at: Optional[datetime] = None
    reviewed_at: datetime


class SetItemInfo(BaseModel):
    """An item of a set with its SRS state."""

    id: str
    type: ItemKind
    content: Dict[str, Any] = Field(default_factory=dict)
    srs: Optional[SrsRecordResponse] = None

    @classmethod
    def from_item(cls, item: LearnableItem, next_due: Optional[datetime]) -> "SetItemInfo":
        srs = None
        if item.srs is not None:
            srs = SrsRecordResponse(
                scope=item.srs.scope,
                srs_level=item.srs.level,
                time_created=item.srs.time_created,
                next_due_at=next_due,
            )
        return cls(id=item.item_id, type=item.type, content=item.content, srs=srs)


class SetItemsResponse(BaseModel):
    """Response model for due-for-set and learn-new candidate queries."""

    set: Dict[str, Any]
    items: List[SetItemInfo]


class DueItemInfo(BaseModel):
    """A due item with the set it came from, so a session can be routed back to it."""

    id: str
    type: ItemKind
    set_id: str
    set_title: str
    srs_level: int
    next_due_at: Optional[datetime] = None
    content: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_item(cls, item: LearnableItem, study_set: StudySet, next_due: Optional[datetime]) -> "DueItemInfo":
        return cls(
            id=item.item_id,
            type=item.type,
            set_id=study_set.set_id,
            set_title=study_set.title,
            srs_level=item.srs_level,
            next_due_at=next_due,
            content=item.content,
        )


class SetDueBreakdown(BaseModel):
    """Due count for one set."""

    set_id: str
    set_title: str
    due_count: int


class DueForOwnerResponse(BaseModel):
    """Response model for due items across all of a learner's sets."""

    items: Optional[List[DueItemInfo]] = None  # Omitted in count-only mode
    total_due: int = 0
    by_set: List[SetDueBreakdown] = Field(default_factory=list)
    failed_set_ids: List[str] = Field(default_factory=list)


class ScheduledItemInfo(BaseModel):
    """When an in-cycle item next becomes due."""

    id: str
    type: ItemKind
    srs_level: int
    next_due_at: datetime
    is_due: bool


class SetScheduleResponse(BaseModel):
    """Response model for a set's review schedule."""

    set_id: str
    items: List[ScheduledItemInfo]


class LearnNewQuotaResponse(BaseModel):
    """Response model for the daily learn-new quota."""

    learned_today: int
    remaining: int
    admitted: int
    daily_limit: int
    limit_reached: bool
