# Supabase table: leads (owned by the marketing CRM; this service only promotes, creates on conversion, and appends timeline entries)
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- name: text (not null) - prospective student
- parent_name: text (nullable)
- phone: text (not null)
- phone_normalized: text (generated: regexp_replace(phone, '\\D', '', 'g'), indexed)
- email: text (nullable)
- source: text (nullable) - e.g. Facebook, Walk-in, workshop
- status: text (not null, default: 'new') - funnel: new < contacted < interested < workshop_booked < converted < closed
- interests: text[] (default: [])
- tags: text[] (default: [])
- timeline: jsonb (default: []) - [{"date", "type", "details", "author", "booking_id"}]
- notes: text (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)
"""
