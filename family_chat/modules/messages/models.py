# Supabase table: messages
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in repository.py

"""
Expected Supabase table structure:

messages:
- id: uuid (primary key)
- chat_id: uuid (foreign key to chats.id, not null)
- sender_id: uuid (foreign key to profiles.id, not null)
- content: text (not null, non-empty)
- timestamp: timestamp (default: now()) - assigned on insert

Rows are immutable: there is no update or delete path. The table is part of
the supabase_realtime publication so INSERTs are pushed to channels filtered
with chat_id=eq.<chat id>.
"""
