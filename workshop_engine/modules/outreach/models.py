# Supabase table: outbound_messages
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- idempotency_key: text (unique, not null) - "<booking_id>:<kind>", one delivery per key
- booking_id: uuid (foreign key to bookings.id, nullable)
- kind: text (not null) - values: reminder, feedback
- phone_number: text (not null)
- body: text (not null)
- status: text (not null, default: 'pending') - values: pending, sending, sent, failed, skipped
- attempts: integer (not null, default: 0)
- provider_message_id: text (nullable) - Twilio message SID
- whatsapp_link: text (nullable) - wa.me fallback for manual sending
- error_message: text (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)
"""
