from enum import Enum
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
import datetime as dt

from workshop_engine.core.phone import normalize_phone


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    REMINDER_SENT = "reminder_sent"
    ATTENDED = "attended"
    FEEDBACK_REQUESTED = "feedback_requested"
    CONVERTED = "converted"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class BookingEvent(str, Enum):
    SEND_REMINDER = "send_reminder"
    RECONFIRM = "reconfirm"
    CANCEL = "cancel"
    MARK_ATTENDED = "mark_attended"
    MARK_NO_SHOW = "mark_no_show"
    REQUEST_FEEDBACK = "request_feedback"
    CONVERT = "convert"


class BookingSource(str, Enum):
    PUBLIC = "public"
    STAFF = "staff"
    CRM = "crm"


class SlotQuery(BaseModel):
    """Either a persisted slot id, or the identity of a (possibly virtual) occurrence."""
    slot_id: Optional[str] = None
    workshop_template_id: Optional[str] = None
    date: Optional[dt.date] = None
    start_time: Optional[str] = None

    @model_validator(mode="after")
    def require_slot_or_occurrence(self):
        occurrence = (self.workshop_template_id, self.date)
        if self.slot_id and any(occurrence):
            raise ValueError("Cannot set both slot_id and workshop_template_id/date")
        if not self.slot_id and not all(occurrence):
            raise ValueError("Either slot_id or workshop_template_id and date must be set")
        return self


class AttendeeInfo(BaseModel):
    attendee_name: str = Field(min_length=1)
    guardian_name: Optional[str] = None
    phone_number: str
    email: Optional[EmailStr] = None
    attendee_age: Optional[int] = Field(default=None, ge=0, le=120)
    interests: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("phone_number")
    @classmethod
    def phone_has_digits(cls, v: str) -> str:
        if len(normalize_phone(v)) < 6:
            raise ValueError("phone_number must contain at least 6 digits")
        return v.strip()


class ReserveSeatRequest(BaseModel):
    slot: SlotQuery
    attendee: AttendeeInfo
    lead_id: Optional[str] = None  # staff booking from a CRM lead profile


class PublicReserveRequest(BaseModel):
    """Public booking page payload; the template is implied by the slug."""
    date: dt.date
    start_time: Optional[str] = None
    attendee: AttendeeInfo


class ConvertPayload(BaseModel):
    program: Optional[str] = None
    interests: List[str] = []
    tags: List[str] = []
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    event: BookingEvent
    payload: Optional[Dict[str, Any]] = None


class BookingResponse(BaseModel):
    id: str
    workshop_slot_id: str
    workshop_template_id: Optional[str] = None
    attendee_name: str
    guardian_name: Optional[str] = None
    phone_number: str
    email: Optional[str] = None
    attendee_age: Optional[int] = None
    interests: Optional[str] = None
    status: BookingStatus
    booked_at: Optional[dt.datetime] = None
    notes: Optional[str] = None
    payment_status: str = "pending"
    source: BookingSource = BookingSource.PUBLIC
    lead_id: Optional[str] = None
    conversion_payload: Optional[Dict[str, Any]] = None
    lead_synced_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class ActionItem(BaseModel):
    booking: BookingResponse
    date: dt.date
    start_time: str
    allowed_events: List[BookingEvent]


class ActionCenterResponse(BaseModel):
    """Staff work queues: reminders due today or tomorrow, reminders awaiting a reply, attendees to follow up."""
    needs_reminder: List[ActionItem] = []
    awaiting_reconfirm: List[ActionItem] = []
    needs_follow_up: List[ActionItem] = []
