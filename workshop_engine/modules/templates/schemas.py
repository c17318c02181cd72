import re
from enum import Enum
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
import datetime as dt

TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class RecurrenceType(str, Enum):
    ONE_TIME = "one-time"
    WEEKLY = "weekly"


class RecurrencePattern(BaseModel):
    days: Optional[List[int]] = None  # weekly only; 0=Sunday .. 6=Saturday
    time: str = "10:00"
    date: Optional[dt.date] = None  # one-time only


class RecurrenceRule(BaseModel):
    """The scheduling part of a template, validated as one unit on create and update."""
    recurrence_type: RecurrenceType
    recurrence_pattern: RecurrencePattern
    duration: int = Field(gt=0)
    capacity_per_slot: int = Field(ge=1)

    @model_validator(mode="after")
    def check_pattern_for_type(self):
        pattern = self.recurrence_pattern
        if not TIME_OF_DAY.match(pattern.time or ""):
            raise ValueError("recurrence_pattern.time must be HH:MM between 00:00 and 23:59")
        # Only the branch selected by recurrence_type is looked at
        if self.recurrence_type == RecurrenceType.WEEKLY:
            if not pattern.days:
                raise ValueError("recurrence_pattern.days must not be empty for weekly workshops")
            if any(d < 0 or d > 6 for d in pattern.days):
                raise ValueError("recurrence_pattern.days must be weekday indices 0-6")
            pattern.days = sorted(set(pattern.days))
        elif pattern.date is None:
            raise ValueError("recurrence_pattern.date is required for one-time workshops")
        return self


class WorkshopTemplateCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    duration: int = 60
    recurrence_type: RecurrenceType = RecurrenceType.ONE_TIME
    recurrence_pattern: RecurrencePattern
    capacity_per_slot: int = 10
    is_active: bool = True
    target_audience: Optional[str] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v


class WorkshopTemplateUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[int] = None
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    capacity_per_slot: Optional[int] = None
    is_active: Optional[bool] = None
    target_audience: Optional[str] = None


class WorkshopTemplateResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    duration: int
    recurrence_type: RecurrenceType
    recurrence_pattern: RecurrencePattern
    capacity_per_slot: int
    is_active: bool = True
    target_audience: Optional[str] = None
    shareable_slug: str
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class ShareLinkResponse(BaseModel):
    template_id: str
    slug: str
    url: str
