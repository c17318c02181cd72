from fastapi import APIRouter, Depends
from supabase import Client
from typing import Dict, List, Optional
import datetime as dt

from workshop_engine.config.settings import settings
from workshop_engine.core.clock import academy_today
from workshop_engine.core.dependencies import get_current_user_id
from workshop_engine.database.supabase_client import get_supabase
from workshop_engine.modules.bookings.schemas import BookingResponse
from workshop_engine.modules.bookings.service import BookingService
from workshop_engine.modules.slots.schemas import (
    CalendarSummary, VirtualSlot, WorkshopSlotCreate, WorkshopSlotUpdate, WorkshopSlotResponse
)
from workshop_engine.modules.slots.service import SlotService

router = APIRouter(prefix="/workshop-slots", tags=["workshop-slots"])


def get_slot_service(supabase: Client = Depends(get_supabase)) -> SlotService:
    return SlotService(supabase)


def get_booking_service(supabase: Client = Depends(get_supabase)) -> BookingService:
    return BookingService(supabase)


@router.get("/virtual", response_model=List[VirtualSlot])
def list_virtual_slots(
    from_date: Optional[dt.date] = None,
    window_days: Optional[int] = None,
    user_data: Dict = Depends(get_current_user_id),
    service: SlotService = Depends(get_slot_service)
):
    """Staff calendar: every session in the window, persisted or not, ordered by date and time"""
    return service.list_virtual_slots(
        from_date or academy_today(),
        window_days if window_days is not None else settings.default_window_days,
    )


@router.get("/summary", response_model=CalendarSummary)
def get_summary(
    from_date: Optional[dt.date] = None,
    window_days: Optional[int] = None,
    user_data: Dict = Depends(get_current_user_id),
    service: SlotService = Depends(get_slot_service)
):
    """Dashboard totals over the calendar window"""
    return service.summarize(
        from_date or academy_today(),
        window_days if window_days is not None else settings.default_window_days,
    )


@router.post("", response_model=WorkshopSlotResponse, status_code=201)
def create_slot(
    slot_data: WorkshopSlotCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: SlotService = Depends(get_slot_service)
):
    """Materialize one session, e.g. to override its capacity or cancel it"""
    return service.create_slot(slot_data)


@router.get("/{slot_id}", response_model=WorkshopSlotResponse)
def get_slot(
    slot_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: SlotService = Depends(get_slot_service)
):
    return service.get_slot_by_id(slot_id)


@router.patch("/{slot_id}", response_model=WorkshopSlotResponse)
def update_slot(
    slot_id: str,
    slot_data: WorkshopSlotUpdate,
    user_data: Dict = Depends(get_current_user_id),
    service: SlotService = Depends(get_slot_service)
):
    return service.update_slot(slot_id, slot_data)


@router.get("/{slot_id}/bookings", response_model=List[BookingResponse])
def list_slot_bookings(
    slot_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service)
):
    """Roster for one session"""
    return service.list_bookings_for_slot(slot_id)
