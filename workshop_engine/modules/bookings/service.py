from datetime import datetime, timedelta
from supabase import Client
from pydantic import ValidationError as PydanticValidationError
from typing import Callable, List, Optional, Tuple
from fastapi import HTTPException
import logging

from workshop_engine.config.settings import settings
from workshop_engine.core.clock import academy_datetime, academy_now, academy_today
from workshop_engine.core.errors import InvalidTransition, NotFound, SyncDeferred, ValidationError
from workshop_engine.core.phone import normalize_phone
from workshop_engine.modules.bookings.ledger import CapacityLedger
from workshop_engine.modules.bookings.lifecycle import allowed_events, is_noop, next_status
from workshop_engine.modules.bookings.schemas import (
    ActionCenterResponse, ActionItem, BookingEvent, BookingResponse, BookingSource, BookingStatus,
    ConvertPayload, ReserveSeatRequest
)
from workshop_engine.modules.outreach.service import OutreachService, feedback_text, reminder_text
from workshop_engine.modules.pipeline.schemas import LeadResponse
from workshop_engine.modules.pipeline.service import PipelineSynchronizer
from workshop_engine.modules.slots.schemas import SlotStatus, WorkshopSlotResponse
from workshop_engine.modules.slots.service import SlotService

logger = logging.getLogger(__name__)

# defer(fn, *args) schedules fn after the response (FastAPI BackgroundTasks.add_task); None runs inline
Deferrer = Optional[Callable[..., None]]


class BookingService:
    def __init__(
        self,
        supabase: Client,
        slot_service: Optional[SlotService] = None,
        ledger: Optional[CapacityLedger] = None,
        outreach: Optional[OutreachService] = None,
        pipeline: Optional[PipelineSynchronizer] = None
    ):
        self.supabase = supabase
        self.ledger = ledger or CapacityLedger(supabase)
        self.slot_service = slot_service or SlotService(supabase, ledger=self.ledger)
        self.outreach = outreach or OutreachService(supabase)
        self.pipeline = pipeline or PipelineSynchronizer(supabase)

    # ---- Queries ------------------------------------------------

    def get_booking(self, booking_id: str) -> BookingResponse:
        try:
            result = self.supabase.table("bookings")\
                .select("*")\
                .eq("id", booking_id)\
                .maybe_single()\
                .execute()

            if not result or not result.data:
                raise NotFound("Booking", booking_id)

            return BookingResponse(**result.data)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_bookings_for_slot(self, slot_id: str) -> List[BookingResponse]:
        self.slot_service.get_slot_by_id(slot_id)
        try:
            result = self.supabase.table("bookings")\
                .select("*")\
                .eq("workshop_slot_id", slot_id)\
                .order("booked_at")\
                .execute()
            return [BookingResponse(**b) for b in (result.data or [])]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_bookings_for_phone(self, phone: str) -> List[BookingResponse]:
        """Booking history for a contact, newest first (exact digit match)"""
        digits = normalize_phone(phone)
        if not digits:
            raise ValidationError("phone must contain digits", field="phone")
        try:
            result = self.supabase.table("bookings")\
                .select("*")\
                .eq("phone_normalized", digits)\
                .order("booked_at", desc=True)\
                .execute()
            return [BookingResponse(**b) for b in (result.data or [])]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    # ---- Reservation --------------------------------------------

    def reserve_seat(
        self,
        request: ReserveSeatRequest,
        source: BookingSource = BookingSource.PUBLIC,
        author: str = "System",
        defer: Deferrer = None
    ) -> BookingResponse:
        """
        Materialize the slot if it is still virtual, take a seat atomically, then write the booking.
        Raises CapacityExceeded without writing anything when the slot is full.
        """
        slot = self.slot_service.resolve_slot(request.slot)
        if slot.status == SlotStatus.CANCELLED:
            raise ValidationError("This session has been cancelled", field="slot")

        self.ledger.admit(slot)

        attendee = request.attendee
        notes = attendee.notes
        if request.lead_id and not notes:
            notes = "Booked via CRM lead profile"
        try:
            result = self.supabase.table("bookings").insert({
                "workshop_slot_id": slot.id,
                "workshop_template_id": slot.workshop_template_id,
                "attendee_name": attendee.attendee_name,
                "guardian_name": attendee.guardian_name,
                "phone_number": attendee.phone_number,
                "email": attendee.email,
                "attendee_age": attendee.attendee_age,
                "interests": attendee.interests,
                "status": BookingStatus.CONFIRMED.value,
                "booked_at": datetime.utcnow().isoformat(),
                "notes": notes,
                "payment_status": "pending",
                "source": source.value,
                "lead_id": request.lead_id,
            }).execute()
            if not result.data:
                raise RuntimeError("Booking insert returned no row")
        except Exception as e:
            logger.error(f"Booking write failed after admission on slot {slot.id}; releasing seat: {str(e)}")
            self.ledger.release(slot.id)
            raise HTTPException(status_code=500, detail="Failed to create booking")

        booking = BookingResponse(**result.data[0])
        logger.info(f"Booking {booking.id} confirmed on slot {slot.id} ({source.value})")
        self._dispatch(defer, self.sync_booking_to_pipeline, booking, slot, author, request.lead_id)
        return booking

    def sync_booking_to_pipeline(
        self,
        booking: BookingResponse,
        slot: WorkshopSlotResponse,
        author: str = "System",
        lead_id: Optional[str] = None
    ) -> Optional[LeadResponse]:
        """Best-effort lead promotion after a booking; failures are logged, never raised."""
        try:
            template = self.slot_service.template_service.get_template_by_id(slot.workshop_template_id)
            details = f"Booked workshop: {template.title} ({slot.date.isoformat()})"
            return self.pipeline.promote_for_booking(booking, details=details, author=author, lead_id=lead_id)
        except Exception as e:
            logger.warning(str(SyncDeferred("promote_lead", booking.id, str(e))))
            return None

    # ---- Lifecycle ----------------------------------------------

    def _commit_transition(
        self,
        booking_id: str,
        event: BookingEvent,
        extra: Optional[dict] = None
    ) -> Tuple[BookingResponse, bool]:
        """
        Read status, validate, compare-and-set. Returns (booking, changed).
        A lost race is re-evaluated against the fresh status.
        """
        booking = self.get_booking(booking_id)
        target = next_status(booking.id, booking.status, event)
        if target == booking.status:
            return booking, False

        update_data = {"status": target.value, "updated_at": datetime.utcnow().isoformat()}
        update_data.update(extra or {})
        try:
            result = self.supabase.table("bookings")\
                .update(update_data)\
                .eq("id", booking_id)\
                .eq("status", booking.status.value)\
                .execute()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

        if not result.data:
            fresh = self.get_booking(booking_id)
            if is_noop(fresh.status, event):
                return fresh, False
            logger.info(f"Booking {booking_id} changed from {booking.status.value} to {fresh.status.value} during {event.value}")
            raise InvalidTransition(fresh.id, fresh.status.value, event.value)

        updated = BookingResponse(**result.data[0])
        logger.info(f"Booking {booking_id}: {booking.status.value} -> {target.value} ({event.value})")
        if target == BookingStatus.CANCELLED:
            try:
                self.ledger.release_cancelled(updated.id)
            except SyncDeferred as e:
                # Occupancy already dropped; the seat counter catches up in release_pending_seats
                logger.warning(str(e))
        return updated, True

    def transition_booking(
        self,
        booking_id: str,
        event: BookingEvent,
        payload: Optional[dict] = None,
        author: str = "System",
        defer: Deferrer = None
    ) -> BookingResponse:
        """
        Apply a lifecycle event. The status change is the durable fact; outbound
        messages and the CRM sync run afterwards and never undo it.
        """
        extra = None
        if event == BookingEvent.CONVERT:
            try:
                convert_payload = ConvertPayload(**(payload or {}))
            except PydanticValidationError as e:
                error = e.errors()[0]
                raise ValidationError(error.get("msg", "Invalid payload"), field="payload." + ".".join(str(p) for p in error.get("loc", ())))
            extra = {"conversion_payload": convert_payload.model_dump()}

        booking, changed = self._commit_transition(booking_id, event, extra)

        if changed:
            self._dispatch(defer, self.run_side_effects, booking, event, author)
        elif event == BookingEvent.CONVERT and booking.lead_synced_at is None:
            # Converted earlier but the CRM never acknowledged it; replaying is idempotent
            self._dispatch(defer, self.run_side_effects, booking, event, author)
        return booking

    def run_side_effects(self, booking: BookingResponse, event: BookingEvent, author: str = "System") -> None:
        """Fire-and-forget effects of a committed transition. SyncDeferred is logged for later retry."""
        try:
            if event == BookingEvent.SEND_REMINDER:
                slot = self.slot_service.get_slot_by_id(booking.workshop_slot_id)
                template = self.slot_service.template_service.get_template_by_id(slot.workshop_template_id)
                self.outreach.deliver_once(
                    f"{booking.id}:reminder",
                    booking.phone_number,
                    reminder_text(booking.attendee_name, template.title, slot.date.isoformat(), slot.start_time),
                    kind="reminder",
                    booking_id=booking.id,
                )
            elif event == BookingEvent.REQUEST_FEEDBACK:
                slot = self.slot_service.get_slot_by_id(booking.workshop_slot_id)
                template = self.slot_service.template_service.get_template_by_id(slot.workshop_template_id)
                self.outreach.deliver_once(
                    f"{booking.id}:feedback",
                    booking.phone_number,
                    feedback_text(booking.attendee_name, template.title),
                    kind="feedback",
                    booking_id=booking.id,
                )
            elif event == BookingEvent.CONVERT:
                self.sync_conversion(booking, author)
        except SyncDeferred as e:
            logger.warning(str(e))
        except Exception as e:
            logger.warning(str(SyncDeferred(event.value, booking.id, str(e))))

    def _claim_conversion_sync(self, booking_id: str) -> bool:
        """Take the right to push this booking to the CRM. False when another run holds it or it already synced."""
        try:
            result = self.supabase.table("bookings")\
                .update({"lead_sync_claimed_at": datetime.utcnow().isoformat()})\
                .eq("id", booking_id)\
                .eq("status", BookingStatus.CONVERTED.value)\
                .is_("lead_synced_at", "null")\
                .is_("lead_sync_claimed_at", "null")\
                .execute()
        except Exception as e:
            raise SyncDeferred("convert", booking_id, f"could not claim CRM sync: {str(e)}")
        return bool(result.data)

    def _finish_conversion_sync(self, booking_id: str, fields: dict) -> None:
        fields["lead_sync_claimed_at"] = None
        try:
            self.supabase.table("bookings")\
                .update(fields)\
                .eq("id", booking_id)\
                .execute()
        except Exception as e:
            raise SyncDeferred("convert", booking_id, f"could not record CRM sync: {str(e)}")

    def sync_conversion(self, booking: BookingResponse, author: str = "System") -> Optional[LeadResponse]:
        """
        Push a converted booking to the CRM and record the link. Raises SyncDeferred on failure.
        Returns None without calling the CRM when another run owns the sync or it is already done.
        """
        if not self._claim_conversion_sync(booking.id):
            logger.info(f"CRM sync for booking {booking.id} already done or in progress; skipping")
            return None
        payload = ConvertPayload(**(booking.conversion_payload or {}))
        try:
            lead = self.pipeline.sync_conversion(booking, payload, author=author)
        except Exception:
            self._finish_conversion_sync(booking.id, {})
            raise
        self._finish_conversion_sync(booking.id, {"lead_id": lead.id, "lead_synced_at": datetime.utcnow().isoformat()})
        logger.info(f"Booking {booking.id} synced to lead {lead.id}")
        return lead

    def _expire_stale_sync_claims(self) -> None:
        """Drop claims left by a run that died between claiming and finishing."""
        cutoff = datetime.utcnow() - timedelta(seconds=settings.crm_sync_claim_timeout_sec)
        result = self.supabase.table("bookings")\
            .update({"lead_sync_claimed_at": None})\
            .eq("status", BookingStatus.CONVERTED.value)\
            .is_("lead_synced_at", "null")\
            .lt("lead_sync_claimed_at", cutoff.isoformat())\
            .execute()
        if result.data:
            logger.warning(f"Expired {len(result.data)} stale CRM sync claim(s)")

    def retry_deferred_conversions(self) -> Tuple[int, int]:
        """Replay CRM sync for converted bookings that were never acknowledged. Returns (synced, still_deferred)."""
        self._expire_stale_sync_claims()
        result = self.supabase.table("bookings")\
            .select("*")\
            .eq("status", BookingStatus.CONVERTED.value)\
            .is_("lead_synced_at", "null")\
            .is_("lead_sync_claimed_at", "null")\
            .execute()
        synced = deferred = 0
        for row in result.data or []:
            booking = BookingResponse(**row)
            try:
                if self.sync_conversion(booking):
                    synced += 1
            except SyncDeferred as e:
                logger.warning(str(e))
                deferred += 1
        return synced, deferred

    # ---- Reminders ----------------------------------------------

    def list_bookings_due_for_reminder(self, lead_hours: int, now: Optional[datetime] = None) -> List[BookingResponse]:
        """Confirmed bookings on live slots starting within the next lead_hours"""
        now = now or academy_now()
        horizon = now + timedelta(hours=lead_hours)
        result = self.supabase.table("workshop_slots")\
            .select("*")\
            .gte("date", now.date().isoformat())\
            .lte("date", horizon.date().isoformat())\
            .eq("status", SlotStatus.AVAILABLE.value)\
            .execute()
        due_slot_ids = []
        for row in result.data or []:
            slot = WorkshopSlotResponse(**row)
            starts_at = academy_datetime(slot.date, slot.start_time)
            if now < starts_at <= horizon:
                due_slot_ids.append(slot.id)
        if not due_slot_ids:
            return []
        bookings = self.supabase.table("bookings")\
            .select("*")\
            .in_("workshop_slot_id", due_slot_ids)\
            .eq("status", BookingStatus.CONFIRMED.value)\
            .execute()
        return [BookingResponse(**b) for b in (bookings.data or [])]

    # ---- Action center ------------------------------------------

    def action_center(self, today=None) -> ActionCenterResponse:
        """Bookings that need a staff action, each with the events that apply to it"""
        today = today or academy_today()
        tomorrow = today + timedelta(days=1)
        queues = {
            BookingStatus.CONFIRMED: "needs_reminder",
            BookingStatus.REMINDER_SENT: "awaiting_reconfirm",
            BookingStatus.ATTENDED: "needs_follow_up",
            BookingStatus.FEEDBACK_REQUESTED: "needs_follow_up",
        }
        try:
            result = self.supabase.table("bookings")\
                .select("*")\
                .in_("status", [s.value for s in queues])\
                .execute()
            bookings = [BookingResponse(**b) for b in (result.data or [])]
            slots = {}
            slot_ids = list({b.workshop_slot_id for b in bookings})
            if slot_ids:
                slot_rows = self.supabase.table("workshop_slots")\
                    .select("*")\
                    .in_("id", slot_ids)\
                    .execute()
                slots = {row["id"]: WorkshopSlotResponse(**row) for row in (slot_rows.data or [])}
        except Exception as e:
            logger.error(f"Error loading action center: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

        response = ActionCenterResponse()
        for booking in bookings:
            slot = slots.get(booking.workshop_slot_id)
            if slot is None:
                continue
            if booking.status == BookingStatus.CONFIRMED and slot.date not in (today, tomorrow):
                continue
            getattr(response, queues[booking.status]).append(ActionItem(
                booking=booking,
                date=slot.date,
                start_time=slot.start_time,
                allowed_events=allowed_events(booking.status),
            ))
        for items in (response.needs_reminder, response.awaiting_reconfirm, response.needs_follow_up):
            items.sort(key=lambda item: (item.date, item.start_time))
        return response

    @staticmethod
    def _dispatch(defer: Deferrer, fn: Callable[..., None], *args) -> None:
        if defer is not None:
            defer(fn, *args)
        else:
            fn(*args)
