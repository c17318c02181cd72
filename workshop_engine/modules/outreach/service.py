"""
Contact/outreach channel: WhatsApp messages through the Twilio REST API.

Delivery is fire-and-forget from the booking lifecycle's point of view. Each
message carries an idempotency key; a key that was already sent (or is being
sent) is never sent again, so repeating a reminder cannot double-message a
family.
"""

from datetime import datetime, timedelta
from supabase import Client
from typing import Optional, Tuple
import logging
import requests

from workshop_engine.config.settings import settings
from workshop_engine.core.errors import SyncDeferred
from workshop_engine.core.phone import normalize_phone, whatsapp_link
from workshop_engine.core.retry import retry_call

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"

CLAIMABLE_STATUSES = ["pending", "failed"]


def reminder_text(attendee_name: str, workshop_title: str, on_date: str, start_time: str) -> str:
    return (
        f"Hi! This is a reminder from {settings.academy_name}: {attendee_name} is booked for "
        f"{workshop_title} on {on_date} at {start_time}. Reply to this message if you can't make it."
    )


def feedback_text(attendee_name: str, workshop_title: str) -> str:
    return (
        f"Thanks for joining {workshop_title}! How did {attendee_name} enjoy it? "
        f"We'd love to hear your feedback. - {settings.academy_name}"
    )


class OutreachService:
    def __init__(self, supabase: Client, http: Optional[requests.Session] = None):
        self.supabase = supabase
        self.http = http or requests.Session()

    def send_message(self, phone_number: str, text: str) -> str:
        """Single delivery attempt. Returns the provider message id; raises on failure."""
        url = TWILIO_MESSAGES_URL.format(account_sid=settings.twilio_account_sid)
        payload = {
            "To": f"whatsapp:+{normalize_phone(phone_number)}",
            "From": f"whatsapp:{settings.twilio_whatsapp_from}",
            "Body": text,
        }
        resp = self.http.post(
            url,
            data=payload,
            auth=(settings.twilio_account_sid, settings.twilio_auth_token),
            timeout=settings.outbound_timeout_sec,
        )
        resp.raise_for_status()
        return resp.json().get("sid", "")

    def _claim(self, idempotency_key: str, booking_id: Optional[str], kind: str, phone_number: str, text: str) -> Optional[dict]:
        """Register the key and take the right to send it. None when it was already sent or is in flight."""
        self.supabase.table("outbound_messages").upsert(
            {
                "idempotency_key": idempotency_key,
                "booking_id": booking_id,
                "kind": kind,
                "phone_number": phone_number,
                "body": text,
                "status": "pending",
                "attempts": 0,
            },
            on_conflict="idempotency_key",
            ignore_duplicates=True,
        ).execute()
        result = self.supabase.table("outbound_messages")\
            .update({"status": "sending", "updated_at": datetime.utcnow().isoformat()})\
            .eq("idempotency_key", idempotency_key)\
            .in_("status", CLAIMABLE_STATUSES)\
            .execute()
        return result.data[0] if result.data else None

    def _finish(self, idempotency_key: str, **fields) -> None:
        fields["updated_at"] = datetime.utcnow().isoformat()
        self.supabase.table("outbound_messages")\
            .update(fields)\
            .eq("idempotency_key", idempotency_key)\
            .execute()

    def deliver_once(self, idempotency_key: str, phone_number: str, text: str, kind: str, booking_id: Optional[str] = None) -> bool:
        """
        Send text at most once per idempotency_key, with bounded retries.
        Returns True if a message went out now, False if it was a duplicate or the channel is off.
        Raises SyncDeferred when every attempt failed (the key stays retryable).
        """
        claimed = self._claim(idempotency_key, booking_id, kind, phone_number, text)
        if claimed is None:
            logger.info(f"Message {idempotency_key} already sent or in flight; skipping")
            return False

        if not settings.outreach_enabled:
            link = whatsapp_link(phone_number, text)
            self._finish(idempotency_key, status="skipped", whatsapp_link=link)
            logger.warning(f"Outreach channel not configured; message {idempotency_key} left for manual send: {link}")
            return False

        attempts = max(1, settings.outbound_max_attempts)
        try:
            sid = retry_call(
                self.send_message,
                phone_number,
                text,
                attempts=attempts,
                backoff_sec=settings.outbound_retry_backoff_sec,
                retry_on=(requests.RequestException,),
                label=f"send {kind} {idempotency_key}",
            )
        except requests.RequestException as e:
            self._finish(idempotency_key, status="failed", attempts=claimed.get("attempts", 0) + attempts, error_message=str(e))
            raise SyncDeferred(f"send_{kind}", booking_id, str(e))

        self._finish(idempotency_key, status="sent", attempts=claimed.get("attempts", 0) + 1, provider_message_id=sid)
        logger.info(f"Sent {kind} message {idempotency_key} ({sid})")
        return True

    def retry_undelivered(self) -> Tuple[int, int]:
        """
        Send again messages that failed every inline attempt, and sends that never finished.
        Returns (sent, still_failed). A message past outbound_retry_limit attempts is left for staff.
        """
        cutoff = datetime.utcnow() - timedelta(seconds=settings.outbound_sending_timeout_sec)
        stale = self.supabase.table("outbound_messages")\
            .update({"status": "failed", "error_message": "send interrupted", "updated_at": datetime.utcnow().isoformat()})\
            .eq("status", "sending")\
            .lt("updated_at", cutoff.isoformat())\
            .execute()
        if stale.data:
            logger.warning(f"Reset {len(stale.data)} message(s) stuck in sending")

        result = self.supabase.table("outbound_messages")\
            .select("*")\
            .eq("status", "failed")\
            .lt("attempts", settings.outbound_retry_limit)\
            .execute()
        sent = failed = 0
        for row in result.data or []:
            try:
                if self.deliver_once(row["idempotency_key"], row["phone_number"], row["body"], kind=row["kind"], booking_id=row.get("booking_id")):
                    sent += 1
            except SyncDeferred as e:
                logger.warning(str(e))
                failed += 1
        return sent, failed
