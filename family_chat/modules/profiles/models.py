# Supabase table: profiles
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in repository.py

"""
Expected Supabase table structure:

profiles:
- id: uuid (primary key, references auth.users.id)
- name: text (not null)
- avatar_url: text (nullable) - object storage reference
- family_id: uuid (foreign key to families.id, nullable until the user creates or joins a family)
- email: text (nullable)
- is_admin: boolean (default: false)

Only id, name, avatar_url and family_id are read by the chat core.
"""
