from datetime import date, datetime, timedelta
from supabase import Client
from typing import List, Optional
from fastapi import HTTPException
import logging

from workshop_engine.core.clock import academy_today
from workshop_engine.core.errors import NotFound, ValidationError
from workshop_engine.modules.bookings.ledger import CapacityLedger
from workshop_engine.modules.bookings.schemas import SlotQuery
from workshop_engine.modules.slots.recurrence import end_time_for, is_occurrence, merge_virtual_slots
from workshop_engine.modules.slots.schemas import (
    CalendarSummary, SlotStatus, VirtualSlot,
    WorkshopSlotCreate, WorkshopSlotUpdate, WorkshopSlotResponse
)
from workshop_engine.modules.templates.schemas import WorkshopTemplateResponse
from workshop_engine.modules.templates.service import TemplateService

logger = logging.getLogger(__name__)


class SlotService:
    def __init__(
        self,
        supabase: Client,
        template_service: Optional[TemplateService] = None,
        ledger: Optional[CapacityLedger] = None
    ):
        self.supabase = supabase
        self.template_service = template_service or TemplateService(supabase)
        self.ledger = ledger or CapacityLedger(supabase)

    def get_slot_by_id(self, slot_id: str) -> WorkshopSlotResponse:
        try:
            result = self.supabase.table("workshop_slots")\
                .select("*")\
                .eq("id", slot_id)\
                .maybe_single()\
                .execute()

            if not result or not result.data:
                raise NotFound("Workshop slot", slot_id)

            return WorkshopSlotResponse(**result.data)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def find_slot(self, template_id: str, on_date: date, start_time: str) -> Optional[WorkshopSlotResponse]:
        """Persisted slot for (template, date, start_time), or None if the occurrence is still virtual."""
        try:
            result = self.supabase.table("workshop_slots")\
                .select("*")\
                .eq("workshop_template_id", template_id)\
                .eq("date", on_date.isoformat())\
                .eq("start_time", start_time)\
                .limit(1)\
                .execute()
            if not result.data:
                return None
            return WorkshopSlotResponse(**result.data[0])
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_slots(self, template_ids: List[str], from_date: date, until: date) -> List[WorkshopSlotResponse]:
        """Persisted slots of the given templates with from_date <= date < until"""
        if not template_ids:
            return []
        try:
            result = self.supabase.table("workshop_slots")\
                .select("*")\
                .in_("workshop_template_id", template_ids)\
                .gte("date", from_date.isoformat())\
                .lt("date", until.isoformat())\
                .execute()
            return [WorkshopSlotResponse(**s) for s in (result.data or [])]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_virtual_slots(
        self,
        from_date: date,
        window_days: int,
        template_ids: Optional[List[str]] = None,
        future_only: bool = False
    ) -> List[VirtualSlot]:
        """Calendar view: every occurrence of active templates in the window, merged with persisted slots"""
        if window_days < 1:
            raise ValidationError("window_days must be at least 1", field="window_days")
        templates = self.template_service.list_templates(active_only=True, template_ids=template_ids)
        slots = self.list_slots([t.id for t in templates], from_date, from_date + timedelta(days=window_days))
        live_ids = [s.id for s in slots if s.status != SlotStatus.CANCELLED]
        occupancy = self.ledger.occupancy_for_slots(live_ids)
        return merge_virtual_slots(
            templates,
            slots,
            occupancy,
            from_date,
            window_days,
            today=academy_today(),
            future_only=future_only,
        )

    def summarize(self, from_date: date, window_days: int) -> CalendarSummary:
        virtual_slots = self.list_virtual_slots(from_date, window_days)
        return CalendarSummary(
            from_date=from_date,
            window_days=window_days,
            total_events=len(virtual_slots),
            booked_spots=sum(s.booked_count for s in virtual_slots),
            total_capacity=sum(s.capacity for s in virtual_slots),
        )

    def _check_occurrence(self, template: WorkshopTemplateResponse, on_date: date, start_time: str) -> None:
        if not is_occurrence(template, on_date, start_time):
            raise ValidationError(
                f"{template.title} is not scheduled on {on_date.isoformat()} at {start_time}",
                field="date",
            )

    def get_or_create_slot(
        self,
        template_id: str,
        on_date: date,
        start_time: Optional[str] = None
    ) -> WorkshopSlotResponse:
        """
        Materialize a virtual occurrence with template defaults, or return the existing slot.
        Safe under concurrent calls: the unique (template, date, start_time) key makes the insert a no-op for losers.
        """
        template = self.template_service.get_template_by_id(template_id)
        start_time = start_time or template.recurrence_pattern.time
        existing = self.find_slot(template.id, on_date, start_time)
        if existing:
            return existing
        if not template.is_active:
            raise ValidationError(f"{template.title} is no longer open for booking", field="workshop_template_id")
        self._check_occurrence(template, on_date, start_time)
        try:
            self.supabase.table("workshop_slots").upsert(
                {
                    "workshop_template_id": template.id,
                    "date": on_date.isoformat(),
                    "start_time": start_time,
                    "end_time": end_time_for(start_time, template.duration),
                    "capacity": template.capacity_per_slot,
                    "booked_count": 0,
                    "status": SlotStatus.AVAILABLE.value,
                },
                on_conflict="workshop_template_id,date,start_time",
                ignore_duplicates=True,
            ).execute()
        except Exception as e:
            logger.error(f"Error materializing slot {template.id} {on_date} {start_time}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

        slot = self.find_slot(template.id, on_date, start_time)
        if slot is None:
            raise HTTPException(status_code=500, detail="Failed to materialize workshop slot")
        logger.info(f"Materialized slot {slot.id} for template {template.id} on {on_date} {start_time}")
        return slot

    def resolve_slot(self, query: SlotQuery) -> WorkshopSlotResponse:
        if query.slot_id:
            return self.get_slot_by_id(query.slot_id)
        return self.get_or_create_slot(query.workshop_template_id, query.date, query.start_time)

    def create_slot(self, slot_data: WorkshopSlotCreate) -> WorkshopSlotResponse:
        """Staff materialization, optionally with a capacity override or already cancelled"""
        slot = self.get_or_create_slot(slot_data.workshop_template_id, slot_data.date, slot_data.start_time)
        overrides = WorkshopSlotUpdate(
            capacity=slot_data.capacity if slot_data.capacity is not None and slot_data.capacity != slot.capacity else None,
            status=slot_data.status if slot_data.status != slot.status else None,
        )
        if overrides.capacity is None and overrides.status is None:
            return slot
        return self.update_slot(slot.id, overrides)

    def update_slot(self, slot_id: str, slot_data: WorkshopSlotUpdate) -> WorkshopSlotResponse:
        """Staff edit of one instance. Capacity never drops below seats already taken."""
        slot = self.get_slot_by_id(slot_id)
        update_data = {}
        if slot_data.status is not None and slot_data.status != slot.status:
            if slot_data.status == SlotStatus.CANCELLED and self.ledger.occupancy(slot.id) > 0:
                raise ValidationError("Cancel the session's bookings before cancelling it", field="status")
            update_data["status"] = slot_data.status.value
        if slot_data.capacity is not None and slot_data.capacity != slot.capacity:
            update_data["capacity"] = slot_data.capacity
        if not update_data:
            return slot
        update_data["updated_at"] = datetime.utcnow().isoformat()

        try:
            query = self.supabase.table("workshop_slots").update(update_data).eq("id", slot_id)
            if "capacity" in update_data:
                # Conditional on the seat counter so a concurrent booking cannot end up over capacity
                query = query.lte("booked_count", update_data["capacity"])
            if update_data.get("status") == SlotStatus.CANCELLED.value:
                # A seat claimed since the occupancy check blocks the cancellation
                query = query.eq("booked_count", 0)
            result = query.execute()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

        if not result.data:
            current = self.get_slot_by_id(slot_id)
            if update_data.get("status") == SlotStatus.CANCELLED.value and current.booked_count > 0:
                raise ValidationError("Cancel the session's bookings before cancelling it", field="status")
            raise ValidationError(
                f"Capacity cannot be lower than the {current.booked_count} seat(s) already booked",
                field="capacity",
            )
        logger.info(f"Updated slot {slot_id}: {update_data}")
        return WorkshopSlotResponse(**result.data[0])
