"""
Pipeline synchronizer: keeps CRM leads loosely in step with workshop bookings.

Bookings and leads are correlated by normalized phone digits only. A phone
that matches several leads is treated as ambiguous and never merged; the
synchronizer skips it (promotion) or defers it (conversion) for staff to
resolve.
"""

from datetime import datetime
from supabase import Client
from typing import Dict, List, Optional
import logging

from workshop_engine.config.settings import settings
from workshop_engine.core.errors import SyncDeferred
from workshop_engine.core.phone import normalize_phone
from workshop_engine.core.retry import retry_call
from workshop_engine.modules.bookings.schemas import BookingResponse, BookingStatus, ConvertPayload
from workshop_engine.modules.pipeline.schemas import (
    EARLY_FUNNEL, LeadCreate, LeadResponse, LeadStatus, TimelineEntry, funnel_rank
)

logger = logging.getLogger(__name__)


class AmbiguousContact(Exception):
    def __init__(self, phone: str, lead_ids: List[str]):
        self.phone = phone
        self.lead_ids = lead_ids
        super().__init__(f"Phone {phone} matches {len(lead_ids)} leads: {', '.join(lead_ids)}")


class LeadStore:
    """Lead records in the CRM's Supabase table."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def find_leads_by_phone(self, phone: str) -> List[LeadResponse]:
        digits = normalize_phone(phone)
        if not digits:
            return []
        result = self.supabase.table("leads")\
            .select("*")\
            .eq("phone_normalized", digits)\
            .execute()
        return [LeadResponse(**lead) for lead in (result.data or [])]

    def find_lead_by_phone(self, phone: str) -> Optional[LeadResponse]:
        leads = self.find_leads_by_phone(phone)
        if len(leads) > 1:
            raise AmbiguousContact(phone, [lead.id for lead in leads])
        return leads[0] if leads else None

    def get_lead(self, lead_id: str) -> Optional[LeadResponse]:
        result = self.supabase.table("leads")\
            .select("*")\
            .eq("id", lead_id)\
            .maybe_single()\
            .execute()
        if not result or not result.data:
            return None
        return LeadResponse(**result.data)

    def list_leads(self, statuses: List[LeadStatus]) -> List[LeadResponse]:
        result = self.supabase.table("leads")\
            .select("*")\
            .in_("status", [s.value for s in statuses])\
            .execute()
        return [LeadResponse(**lead) for lead in (result.data or [])]

    def create_lead(self, lead_data: LeadCreate) -> LeadResponse:
        result = self.supabase.table("leads").insert(lead_data.model_dump(mode="json")).execute()
        if not result.data:
            raise RuntimeError("Lead insert returned no row")
        return LeadResponse(**result.data[0])

    def update_lead(self, lead_id: str, fields: Dict) -> LeadResponse:
        fields = dict(fields, updated_at=datetime.utcnow().isoformat())
        result = self.supabase.table("leads")\
            .update(fields)\
            .eq("id", lead_id)\
            .execute()
        if not result.data:
            raise RuntimeError(f"Lead {lead_id} not found for update")
        return LeadResponse(**result.data[0])

    def promote_lead_status(self, lead_id: str, new_status: LeadStatus, entry: Optional[TimelineEntry] = None) -> Optional[LeadResponse]:
        """
        Move a lead forward in the funnel. No-op (returns None) when it is already at or past new_status.
        Compare-and-set on the observed status so a concurrent CRM edit is never overwritten backwards.
        """
        for _ in range(3):
            lead = self.get_lead(lead_id)
            if lead is None or funnel_rank(lead.status) >= funnel_rank(new_status):
                return None
            fields = {"status": new_status.value, "updated_at": datetime.utcnow().isoformat()}
            if entry is not None and not _has_entry(lead, entry.booking_id, entry.type):
                fields["timeline"] = [e.model_dump() for e in lead.timeline] + [entry.model_dump()]
            result = self.supabase.table("leads")\
                .update(fields)\
                .eq("id", lead_id)\
                .eq("status", lead.status.value)\
                .execute()
            if result.data:
                return LeadResponse(**result.data[0])
        logger.warning(f"Lead {lead_id} kept changing while promoting to {new_status.value}; giving up")
        return None


def _has_entry(lead: LeadResponse, booking_id: Optional[str], entry_type: str) -> bool:
    return booking_id is not None and any(
        e.booking_id == booking_id and e.type == entry_type for e in lead.timeline
    )


def _union(existing: List[str], extra: List[str]) -> List[str]:
    merged = list(existing)
    for item in extra:
        if item and item not in merged:
            merged.append(item)
    return merged


class PipelineSynchronizer:
    def __init__(self, supabase: Client, lead_store: Optional[LeadStore] = None):
        self.supabase = supabase
        self.lead_store = lead_store or LeadStore(supabase)

    def promote_for_booking(
        self,
        booking: BookingResponse,
        details: Optional[str] = None,
        author: str = "System",
        lead_id: Optional[str] = None
    ) -> Optional[LeadResponse]:
        """
        Advance the booking's lead to workshop_booked if it is still early in the funnel.
        lead_id pins the lead when staff booked from a lead profile; otherwise the phone decides.
        """
        entry = TimelineEntry(
            date=datetime.utcnow().isoformat(),
            type="workshop",
            details=details or f"Booked workshop for {booking.attendee_name}",
            author=author,
            booking_id=booking.id,
        )
        if lead_id:
            return self.lead_store.promote_lead_status(lead_id, LeadStatus.WORKSHOP_BOOKED, entry)

        leads = self.lead_store.find_leads_by_phone(booking.phone_number)
        if len(leads) > 1:
            logger.warning(f"Booking {booking.id}: phone matches {len(leads)} leads; not promoting any")
            return None
        if not leads or leads[0].status not in EARLY_FUNNEL:
            return None
        promoted = self.lead_store.promote_lead_status(leads[0].id, LeadStatus.WORKSHOP_BOOKED, entry)
        if promoted:
            logger.info(f"Lead {promoted.id} promoted to workshop_booked by booking {booking.id}")
        return promoted

    def sweep(self) -> int:
        """Promote every early-funnel lead that has a live booking for the same phone. Returns the count."""
        leads = self.lead_store.list_leads(sorted(EARLY_FUNNEL, key=funnel_rank))
        by_phone: Dict[str, List[LeadResponse]] = {}
        for lead in leads:
            digits = normalize_phone(lead.phone)
            if digits:
                by_phone.setdefault(digits, []).append(lead)
        if not by_phone:
            return 0

        result = self.supabase.table("bookings")\
            .select("id, phone_normalized")\
            .in_("phone_normalized", list(by_phone.keys()))\
            .neq("status", BookingStatus.CANCELLED.value)\
            .execute()
        booked_phones = {}
        for row in result.data or []:
            booked_phones.setdefault(row["phone_normalized"], row["id"])

        promoted = 0
        for digits, booking_id in booked_phones.items():
            matches = by_phone.get(digits, [])
            if len(matches) != 1:
                continue
            entry = TimelineEntry(
                date=datetime.utcnow().isoformat(),
                type="workshop",
                details="Workshop booking found for this contact",
                booking_id=booking_id,
            )
            if self.lead_store.promote_lead_status(matches[0].id, LeadStatus.WORKSHOP_BOOKED, entry):
                promoted += 1
        logger.info(f"Pipeline sweep promoted {promoted} lead(s)")
        return promoted

    def _apply_conversion(self, booking: BookingResponse, payload: ConvertPayload, author: str) -> LeadResponse:
        interests = _union(payload.interests, [payload.program] if payload.program else [])
        tags = _union(payload.tags, ["workshop"])
        entry = TimelineEntry(
            date=datetime.utcnow().isoformat(),
            type="conversion",
            details=f"Converted after workshop{': ' + payload.program if payload.program else ''}",
            author=author,
            booking_id=booking.id,
        )
        try:
            lead = self.lead_store.find_lead_by_phone(booking.phone_number)
        except AmbiguousContact as e:
            raise SyncDeferred("convert", booking.id, str(e))

        if lead is None:
            return self.lead_store.create_lead(LeadCreate(
                name=booking.attendee_name,
                parent_name=booking.guardian_name,
                phone=booking.phone_number,
                email=booking.email,
                source="workshop",
                status=LeadStatus.CONVERTED,
                interests=interests,
                tags=tags,
                timeline=[entry],
                notes=payload.notes,
            ))

        merged_interests = _union(lead.interests, interests)
        merged_tags = _union(lead.tags, tags)
        already_logged = _has_entry(lead, booking.id, "conversion")
        at_or_past = funnel_rank(lead.status) >= funnel_rank(LeadStatus.CONVERTED)
        if already_logged and at_or_past and merged_interests == lead.interests and merged_tags == lead.tags:
            return lead

        fields = {"interests": merged_interests, "tags": merged_tags}
        if not at_or_past:
            fields["status"] = LeadStatus.CONVERTED.value
        if not already_logged:
            fields["timeline"] = [e.model_dump() for e in lead.timeline] + [entry.model_dump()]
        return self.lead_store.update_lead(lead.id, fields)

    def sync_conversion(self, booking: BookingResponse, payload: ConvertPayload, author: str = "System") -> LeadResponse:
        """
        Create or update the lead for a converted booking, with bounded retries.
        Safe to replay: a booking's conversion is logged once on the lead and unions are idempotent.
        """
        try:
            return retry_call(
                self._apply_conversion,
                booking,
                payload,
                author,
                attempts=settings.crm_sync_max_attempts,
                backoff_sec=settings.crm_sync_retry_backoff_sec,
                retry_on=(Exception,),
                give_up_on=(SyncDeferred,),
                label=f"CRM sync for booking {booking.id}",
            )
        except SyncDeferred:
            raise
        except Exception as e:
            raise SyncDeferred("convert", booking.id, str(e))
