import asyncio
import unittest
from types import SimpleNamespace

from family_chat.core.exceptions import AuthRequired, BackendError, NotFoundError, ValidationError
from family_chat.core.notifications import Notifier
from family_chat.modules.chats.schemas import ChatKind
from family_chat.modules.chats.service import ChatDirectory
from family_chat.modules.families.repository import FamilyRepository
from family_chat.modules.families.service import FamilyService, normalize_invite_code
from family_chat.modules.profiles.service import ProfileCache

from tests.fakes import InMemoryBackend


class InviteCodeTests(unittest.TestCase):
    def test_codes_are_normalized_before_lookup(self):
        self.assertEqual(normalize_invite_code("  ab12cd "), "AB12CD")

    def test_codes_of_the_wrong_length_are_rejected(self):
        for code in [None, "", "ABC", "ABCDEFG"]:
            with self.assertRaises(ValidationError):
                normalize_invite_code(code)


class FamilyServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.backend = InMemoryBackend()
        self.service = FamilyService(self.backend)
        self.backend.add_profile("u1", "Ana")
        self.backend.add_profile("u2", "Ben")
        self.backend.add_profile("u3", "Cleo")

    def group_chats(self):
        return [c for c in self.backend.chats.values() if c.kind == ChatKind.GROUP]

    async def test_create_family_makes_group_chat_with_creator(self):
        family = await self.service.create_family("u1", "  The Smiths ")

        self.assertEqual(family.name, "The Smiths")
        self.assertEqual(len(family.invite_code), 6)
        self.assertEqual(self.backend.profiles["u1"].family_id, family.id)
        chats = self.group_chats()
        self.assertEqual(len(chats), 1)
        self.assertEqual(chats[0].members, ["u1"])
        self.assertEqual(chats[0].family_id, family.id)

    async def test_failed_create_leaves_nothing_behind(self):
        self.backend.failures["create_family_with_owner"] = BackendError("transaction rolled back")

        with self.assertRaises(BackendError):
            await self.service.create_family("u1", "Smiths")

        self.assertEqual(self.backend.families, {})
        self.assertIsNone(self.backend.profiles["u1"].family_id)
        self.assertEqual(self.backend.chats, {})

    async def test_members_who_joined_see_the_group_chat(self):
        family = await self.service.create_family("u1", "Smiths")

        await self.service.join_family("u2", family.invite_code.lower())
        await self.service.join_family("u3", family.invite_code)
        await self.service.join_family("u2", family.invite_code)

        group = self.group_chats()[0]
        self.assertEqual(group.members, ["u1", "u2", "u3"])
        directory = ChatDirectory(self.backend, ProfileCache(self.backend), Notifier())
        for user_id in ["u2", "u3"]:
            chats = await directory.list_chats(user_id)
            self.assertEqual([c.id for c in chats], [group.id])
            self.assertIn(user_id, chats[0].members)

    async def test_concurrent_joins_keep_every_member(self):
        family = await self.service.create_family("u1", "Smiths")

        await asyncio.gather(
            self.service.join_family("u2", family.invite_code),
            self.service.join_family("u3", family.invite_code),
        )

        self.assertEqual(sorted(self.group_chats()[0].members), ["u1", "u2", "u3"])

    async def test_unknown_invite_code(self):
        with self.assertRaises(NotFoundError):
            await self.service.join_family("u2", "ZZZZZZ")
        self.assertIsNone(self.backend.profiles["u2"].family_id)

    async def test_family_requires_user_and_name(self):
        with self.assertRaises(AuthRequired):
            await self.service.create_family(None, "Smiths")
        with self.assertRaises(ValidationError):
            await self.service.create_family("u1", "   ")
        self.assertEqual(self.backend.families, {})


class RpcStub:
    def __init__(self, data):
        self.data = data
        self.calls = []

    def rpc(self, name, params):
        self.calls.append((name, params))
        return self

    async def execute(self):
        return SimpleNamespace(data=self.data)


class FamilyRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def test_join_calls_the_database_function(self):
        stub = RpcStub({"success": True, "family_id": "f1"})

        family_id = await FamilyRepository(stub).join_family_by_invite("ABC123", "u2")

        self.assertEqual(family_id, "f1")
        self.assertEqual(stub.calls, [("join_family_by_invite", {"invite_code": "ABC123", "user_id": "u2"})])

    async def test_unsuccessful_join_is_not_found(self):
        stub = RpcStub({"success": False, "message": "Invalid invite code"})

        with self.assertRaises(NotFoundError) as ctx:
            await FamilyRepository(stub).join_family_by_invite("ABC123", "u2")
        self.assertEqual(ctx.exception.detail, "Invalid invite code")

    async def test_create_returns_the_family_row(self):
        stub = RpcStub({"id": "f1", "name": "Smiths", "invite_code": "ABC123", "created_by": "u1"})

        family = await FamilyRepository(stub).create_family_with_owner("Smiths", "u1")

        self.assertEqual(family.invite_code, "ABC123")
        self.assertEqual(stub.calls, [("create_family_with_owner", {"family_name": "Smiths", "user_id": "u1"})])
