# Supabase table: bookings
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py
# Rows are never deleted; cancellation is a status.

"""
Expected Supabase table structure:
- id: uuid (primary key)
- workshop_slot_id: uuid (foreign key to workshop_slots.id, not null)
- workshop_template_id: uuid (foreign key to workshop_templates.id) - denormalized for querying
- attendee_name: text (not null)
- guardian_name: text (nullable)
- phone_number: text (not null)
- phone_normalized: text (generated: regexp_replace(phone_number, '\\D', '', 'g'), indexed)
- email: text (nullable)
- attendee_age: integer (nullable)
- interests: text (nullable)
- status: text (not null, default: 'confirmed') - values: confirmed, reminder_sent, attended,
  feedback_requested, converted, cancelled, no-show
- booked_at: timestamp (default: now())
- notes: text (nullable)
- payment_status: text (default: 'pending') - owned by finance, opaque here
- source: text (default: 'public') - values: public, staff, crm
- lead_id: uuid (nullable) - CRM lead linked at booking or conversion time
- conversion_payload: jsonb (nullable) - fields passed to convert, kept for deferred CRM sync
- lead_synced_at: timestamp (nullable) - null on a converted booking means the CRM sync is still pending
- lead_sync_claimed_at: timestamp (nullable) - set while one run pushes the conversion to the CRM
- seat_released: boolean (default: false) - true once a cancelled booking's seat was returned to the slot
- updated_at: timestamp (nullable)
"""
