from enum import Enum
from pydantic import BaseModel, field_validator
from typing import Optional, List
import datetime as dt


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    INTERESTED = "interested"
    WORKSHOP_BOOKED = "workshop_booked"
    CONVERTED = "converted"
    CLOSED = "closed"


FUNNEL_ORDER = [
    LeadStatus.NEW,
    LeadStatus.CONTACTED,
    LeadStatus.INTERESTED,
    LeadStatus.WORKSHOP_BOOKED,
    LeadStatus.CONVERTED,
    LeadStatus.CLOSED,
]

EARLY_FUNNEL = frozenset({LeadStatus.NEW, LeadStatus.CONTACTED, LeadStatus.INTERESTED})


def funnel_rank(status: LeadStatus) -> int:
    return FUNNEL_ORDER.index(status)


class TimelineEntry(BaseModel):
    date: str
    type: str = "note"  # note, call, workshop, conversion
    details: str
    author: str = "System"
    booking_id: Optional[str] = None


class LeadCreate(BaseModel):
    name: str
    parent_name: Optional[str] = None
    phone: str
    email: Optional[str] = None
    source: str = "workshop"
    status: LeadStatus = LeadStatus.NEW
    interests: List[str] = []
    tags: List[str] = []
    timeline: List[TimelineEntry] = []
    notes: Optional[str] = None


class LeadResponse(BaseModel):
    id: str
    name: str
    parent_name: Optional[str] = None
    phone: str
    email: Optional[str] = None
    source: Optional[str] = None
    status: LeadStatus = LeadStatus.NEW
    interests: List[str] = []
    tags: List[str] = []
    timeline: List[TimelineEntry] = []
    notes: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @field_validator("interests", "tags", "timeline", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return v or []

    class Config:
        from_attributes = True


class SyncResult(BaseModel):
    promoted: int = 0
    retried: int = 0
    deferred: int = 0
