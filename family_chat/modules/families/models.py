# Supabase table: families
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in repository.py

"""
Expected Supabase table structure:

families:
- id: uuid (primary key)
- name: text (not null)
- invite_code: text (unique, not null) - 6 upper-case characters
- created_by: uuid (foreign key to profiles.id, not null)
- created_at: timestamp (default: now())

Every family owns exactly one group chat, created together with the family.

Database functions (security definer, each runs in one transaction):

create_family_with_owner(family_name text, user_id uuid) returns families
- generates a unique invite code, inserts the family, sets
  profiles.family_id of user_id and inserts the group chat with
  members = {user_id}; returns the new families row.

join_family_by_invite(invite_code text, user_id uuid) returns jsonb
- looks up the family by invite_code; on a miss returns
  {"success": false, "message": "..."}.
- otherwise sets profiles.family_id and appends user_id to the members of
  every group chat of the family that does not contain it yet
  (update ... set members = array_append(members, user_id)
   where not user_id = any(members)), then returns
  {"success": true, "family_id": ...}.
"""
