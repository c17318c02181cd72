# Supabase table: workshop_templates
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- title: text (not null)
- description: text (nullable)
- duration: integer (not null) - minutes, > 0
- recurrence_type: text (not null) - values: one-time, weekly
- recurrence_pattern: jsonb (not null)
    weekly:   {"days": [2, 4], "time": "16:00"}   - days 0=Sunday .. 6=Saturday
    one-time: {"date": "2026-11-03", "time": "10:00"}
- capacity_per_slot: integer (not null, >= 1)
- is_active: boolean (not null, default: true)
- target_audience: text (nullable) - e.g. Kids, Teens, Professional
- shareable_slug: text (unique, not null)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)
"""
