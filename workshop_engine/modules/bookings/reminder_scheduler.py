import asyncio
import logging
from typing import Optional
from supabase import Client

from workshop_engine.config.settings import settings
from workshop_engine.core.errors import InvalidTransition
from workshop_engine.database.supabase_client import SupabaseClient
from workshop_engine.modules.bookings.ledger import CapacityLedger
from workshop_engine.modules.bookings.schemas import BookingEvent
from workshop_engine.modules.bookings.service import BookingService
from workshop_engine.modules.outreach.service import OutreachService

logger = logging.getLogger(__name__)


def send_due_reminders(supabase: Optional[Client] = None) -> int:
    """Move confirmed bookings starting soon to reminder_sent and message them. Returns how many moved."""
    supabase = supabase or SupabaseClient.get_service_client()
    booking_service = BookingService(supabase)
    due_bookings = booking_service.list_bookings_due_for_reminder(settings.reminder_lead_hours)
    if not due_bookings:
        logger.debug("No bookings due for a reminder")
        return 0
    logger.info(f"Found {len(due_bookings)} booking(s) due for a reminder")
    sent = 0
    for booking in due_bookings:
        try:
            booking_service.transition_booking(booking.id, BookingEvent.SEND_REMINDER)
            sent += 1
        except InvalidTransition as e:
            # Cancelled or marked by staff since the scan
            logger.info(f"Skipping reminder for booking {booking.id}: {e.detail}")
        except Exception as e:
            logger.error(f"Error sending reminder for booking {booking.id}: {str(e)}")
    return sent


def retry_deferred_syncs(supabase: Optional[Client] = None) -> int:
    """Replay CRM sync for conversions the CRM has not acknowledged yet. Returns how many synced."""
    supabase = supabase or SupabaseClient.get_service_client()
    synced, deferred = BookingService(supabase).retry_deferred_conversions()
    if synced or deferred:
        logger.info(f"Deferred CRM sync: {synced} synced, {deferred} still deferred")
    return synced


def retry_failed_messages(supabase: Optional[Client] = None) -> int:
    """Send again reminders and feedback requests that never went out. Returns how many were sent."""
    supabase = supabase or SupabaseClient.get_service_client()
    sent, failed = OutreachService(supabase).retry_undelivered()
    if sent or failed:
        logger.info(f"Outbound retry: {sent} sent, {failed} still failing")
    return sent


def release_pending_seats(supabase: Optional[Client] = None) -> int:
    """Return seats of cancelled bookings whose release did not go through"""
    supabase = supabase or SupabaseClient.get_service_client()
    return CapacityLedger(supabase).release_pending_seats()


async def reminder_scheduler_loop():
    """Background task that periodically sends workshop reminders and replays side effects that failed"""
    while True:
        for job in (send_due_reminders, retry_deferred_syncs, retry_failed_messages, release_pending_seats):
            try:
                await asyncio.to_thread(job)
            except Exception as e:
                logger.error(f"Error in reminder scheduler loop ({job.__name__}): {str(e)}")

        await asyncio.sleep(settings.reminder_scan_interval_sec)
