"""
Capacity ledger: live occupancy per slot and the admission check.

Occupancy is the number of bookings on the slot whose status is not
cancelled; a no-show keeps its seat. Admission itself never reads-then-writes:
it calls the claim_seat function, a conditional increment of the slot's seat
counter that succeeds only while booked_count < capacity, so concurrent
requests for the last seat are decided by the database.
"""

from supabase import Client
from typing import Dict, Iterable
from fastapi import HTTPException
import logging

from workshop_engine.config.settings import settings
from workshop_engine.core.errors import CapacityExceeded, SyncDeferred
from workshop_engine.core.retry import retry_call
from workshop_engine.modules.bookings.schemas import BookingStatus
from workshop_engine.modules.slots.schemas import WorkshopSlotResponse

logger = logging.getLogger(__name__)


class CapacityLedger:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def occupancy(self, slot_id: str) -> int:
        return self.occupancy_for_slots([slot_id]).get(slot_id, 0)

    def occupancy_for_slots(self, slot_ids: Iterable[str]) -> Dict[str, int]:
        slot_ids = list(slot_ids)
        counts = {slot_id: 0 for slot_id in slot_ids}
        if not slot_ids:
            return counts
        try:
            result = self.supabase.table("bookings")\
                .select("workshop_slot_id")\
                .in_("workshop_slot_id", slot_ids)\
                .neq("status", BookingStatus.CANCELLED.value)\
                .execute()
            for row in result.data or []:
                counts[row["workshop_slot_id"]] = counts.get(row["workshop_slot_id"], 0) + 1
            return counts
        except Exception as e:
            logger.error(f"Error computing occupancy: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def admit(self, slot: WorkshopSlotResponse) -> None:
        """Take one seat on the slot or raise CapacityExceeded. Atomic per slot id."""
        try:
            result = self.supabase.rpc("claim_seat", {"p_slot_id": slot.id}).execute()
        except Exception as e:
            logger.error(f"claim_seat failed for slot {slot.id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data:
            booked = self.occupancy(slot.id)
            logger.info(f"Admission denied for slot {slot.id}: {booked}/{slot.capacity} taken")
            raise CapacityExceeded(slot.id, slot.capacity, booked)

    def release(self, slot_id: str) -> None:
        """Give back a seat whose booking was never written (the insert failed after admission)."""
        try:
            result = retry_call(
                lambda: self.supabase.rpc("release_seat", {"p_slot_id": slot_id}).execute(),
                attempts=settings.seat_release_max_attempts,
                backoff_sec=settings.seat_release_retry_backoff_sec,
                label=f"release_seat {slot_id}",
            )
        except Exception as e:
            logger.error(f"release_seat failed for slot {slot_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data:
            logger.warning(f"release_seat found no seat to release on slot {slot_id}")

    def release_cancelled(self, booking_id: str) -> bool:
        """
        Give back the seat of a cancelled booking. The booking's seat_released flag
        flips in the same statement as the decrement, so a seat is returned at most once.
        Raises SyncDeferred when the store could not be reached; release_pending_seats picks it up.
        """
        try:
            result = retry_call(
                lambda: self.supabase.rpc("release_booking_seat", {"p_booking_id": booking_id}).execute(),
                attempts=settings.seat_release_max_attempts,
                backoff_sec=settings.seat_release_retry_backoff_sec,
                label=f"release seat of booking {booking_id}",
            )
        except Exception as e:
            raise SyncDeferred("release_seat", booking_id, str(e))
        return bool(result.data)

    def release_pending_seats(self) -> int:
        """Release seats of cancelled bookings whose release did not go through. Returns how many were freed."""
        result = self.supabase.table("bookings")\
            .select("id")\
            .eq("status", BookingStatus.CANCELLED.value)\
            .eq("seat_released", False)\
            .execute()
        released = 0
        for row in result.data or []:
            try:
                if self.release_cancelled(row["id"]):
                    released += 1
            except SyncDeferred as e:
                logger.warning(str(e))
        if released:
            logger.info(f"Released {released} seat(s) left over from cancellations")
        return released
