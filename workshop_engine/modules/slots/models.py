# Supabase table: workshop_slots
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py
# Seat admission goes through the claim_seat / release_seat functions in sql/booking_engine.sql

"""
Expected Supabase table structure:
- id: uuid (primary key)
- workshop_template_id: uuid (foreign key to workshop_templates.id, not null)
- date: date (not null) - YYYY-MM-DD
- start_time: text (not null) - HH:MM
- end_time: text (not null) - HH:MM, start_time + template.duration at creation, never recomputed
- capacity: integer (not null, >= 1) - template.capacity_per_slot unless overridden by staff
- booked_count: integer (not null, default: 0) - seat counter, changed only by claim_seat / release_seat
- status: text (not null, default: 'available') - values: available, cancelled
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

Constraints:
- unique (workshop_template_id, date, start_time)
- check (booked_count >= 0 and booked_count <= capacity)
"""
