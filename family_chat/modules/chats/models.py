# Supabase table: chats
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in repository.py

"""
Expected Supabase table structure:

chats:
- id: uuid (primary key)
- type: text (not null) - values: group, private
- family_id: uuid (foreign key to families.id, not null) - tenant key
- members: uuid[] (not null) - user ids; exactly 2 for private chats
- created_at: timestamp (default: now())

Row-level security restricts select to rows whose members contain auth.uid().
Chats are never deleted in the normal flow; group chat membership only grows.
"""
