from enum import Enum
from pydantic import BaseModel, Field, computed_field
from typing import Optional
import datetime as dt


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    CANCELLED = "cancelled"


class WorkshopSlotCreate(BaseModel):
    """Explicit materialization by staff, e.g. to pre-set capacity or cancel one date"""
    workshop_template_id: str
    date: dt.date
    start_time: Optional[str] = None  # defaults to the template's time
    capacity: Optional[int] = Field(default=None, ge=1)
    status: SlotStatus = SlotStatus.AVAILABLE


class WorkshopSlotUpdate(BaseModel):
    capacity: Optional[int] = Field(default=None, ge=1)
    status: Optional[SlotStatus] = None


class WorkshopSlotResponse(BaseModel):
    id: str
    workshop_template_id: str
    date: dt.date
    start_time: str
    end_time: str
    capacity: int
    booked_count: int = 0
    status: SlotStatus = SlotStatus.AVAILABLE
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class VirtualSlot(BaseModel):
    """Computed calendar instance; slot_id is set only when a persisted slot backs it."""
    template_id: str
    template_title: str
    date_str: str
    start_time: str
    end_time: str
    capacity: int
    booked_count: int = 0
    slot_id: Optional[str] = None

    @computed_field
    @property
    def remaining_seats(self) -> int:
        return max(0, self.capacity - self.booked_count)

    @computed_field
    @property
    def is_full(self) -> bool:
        return self.booked_count >= self.capacity


class CalendarSummary(BaseModel):
    from_date: dt.date
    window_days: int
    total_events: int
    booked_spots: int
    total_capacity: int
