from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel
from supabase import Client
from typing import Dict, List
import logging

from workshop_engine.config.settings import settings
from workshop_engine.core.clock import academy_datetime, academy_now, academy_today
from workshop_engine.core.dependencies import get_current_user_id, staff_display_name
from workshop_engine.core.errors import ValidationError
from workshop_engine.core.rate_limit import limiter
from workshop_engine.database.supabase_client import get_service_supabase, get_supabase
from workshop_engine.modules.bookings.schemas import (
    ActionCenterResponse, BookingResponse, BookingSource, PublicReserveRequest, ReserveSeatRequest, SlotQuery, TransitionRequest
)
from workshop_engine.modules.bookings.service import BookingService
from workshop_engine.modules.slots.recurrence import describe_rule
from workshop_engine.modules.slots.schemas import VirtualSlot
from workshop_engine.modules.slots.service import SlotService
from workshop_engine.modules.templates.schemas import WorkshopTemplateResponse
from workshop_engine.modules.templates.service import TemplateService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])
public_router = APIRouter(prefix="/public/workshops", tags=["public"])


def get_booking_service(supabase: Client = Depends(get_supabase)) -> BookingService:
    return BookingService(supabase)


class PublicWorkshopResponse(BaseModel):
    template: WorkshopTemplateResponse
    schedule: str  # e.g. "Every Tue, Thu at 16:00"
    slots: List[VirtualSlot]


@router.post("", response_model=BookingResponse, status_code=201)
def reserve_seat(
    booking_request: ReserveSeatRequest,
    background_tasks: BackgroundTasks,
    user_data: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service)
):
    """Staff booking on a slot id or a (possibly virtual) occurrence"""
    source = BookingSource.CRM if booking_request.lead_id else BookingSource.STAFF
    return service.reserve_seat(
        booking_request,
        source=source,
        author=staff_display_name(user_data),
        defer=background_tasks.add_task,
    )


@router.get("", response_model=List[BookingResponse])
def list_bookings_for_phone(
    phone: str,
    user_data: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service)
):
    """Booking history for a contact (CRM lead profile)"""
    return service.list_bookings_for_phone(phone)


@router.get("/action-center", response_model=ActionCenterResponse)
def get_action_center(
    user_data: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service)
):
    """Reminders to send today or tomorrow, reminders awaiting a reply, attendees to follow up"""
    return service.action_center()


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service)
):
    return service.get_booking(booking_id)


@router.post("/{booking_id}/transitions", response_model=BookingResponse)
def transition_booking(
    booking_id: str,
    transition: TransitionRequest,
    background_tasks: BackgroundTasks,
    user_data: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service)
):
    """
    Apply a lifecycle event (send_reminder, reconfirm, cancel, mark_attended,
    mark_no_show, request_feedback, convert). Messages and CRM sync run after the response.
    """
    return service.transition_booking(
        booking_id,
        transition.event,
        transition.payload,
        author=staff_display_name(user_data),
        defer=background_tasks.add_task,
    )


@public_router.get("/{slug}", response_model=PublicWorkshopResponse)
def get_public_workshop(
    slug: str,
    supabase: Client = Depends(get_service_supabase)
):
    """Booking page data: the workshop and its upcoming sessions"""
    template = TemplateService(supabase).get_template_by_slug(slug)
    slots = SlotService(supabase).list_virtual_slots(
        academy_today(),
        settings.public_window_days,
        template_ids=[template.id],
        future_only=True,
    )
    return PublicWorkshopResponse(template=template, schedule=describe_rule(template), slots=slots)


@public_router.post("/{slug}/bookings", response_model=BookingResponse, status_code=201)
@limiter.limit(settings.public_booking_rate_limit)
def create_public_booking(
    request: Request,
    slug: str,
    booking_request: PublicReserveRequest,
    background_tasks: BackgroundTasks,
    supabase: Client = Depends(get_service_supabase)
):
    """Reserve a seat from the public booking page"""
    template = TemplateService(supabase).get_template_by_slug(slug)
    start_time = booking_request.start_time or template.recurrence_pattern.time
    try:
        starts_at = academy_datetime(booking_request.date, start_time)
    except ValueError:
        raise ValidationError(f"Invalid start time: {start_time}", field="start_time")
    if starts_at <= academy_now():
        raise ValidationError("This session has already started", field="date")
    reserve_request = ReserveSeatRequest(
        slot=SlotQuery(
            workshop_template_id=template.id,
            date=booking_request.date,
            start_time=booking_request.start_time,
        ),
        attendee=booking_request.attendee,
    )
    return BookingService(supabase).reserve_seat(
        reserve_request,
        source=BookingSource.PUBLIC,
        defer=background_tasks.add_task,
    )
