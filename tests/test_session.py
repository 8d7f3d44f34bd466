import asyncio
import unittest

from family_chat.core.exceptions import AuthRequired, BackendError, PermissionDeniedError
from family_chat.core.notifications import NotificationLevel, Notifier
from family_chat.modules.chats.schemas import ChatKind
from family_chat.modules.chats.service import ChatDirectory
from family_chat.modules.messages.store import MessageStore
from family_chat.modules.profiles.service import ProfileCache
from family_chat.modules.realtime.manager import SubscriptionManager
from family_chat.modules.realtime.schemas import ConnectionState, RetryPolicy, View
from family_chat.modules.sessions.schemas import Pane, SessionEventType
from family_chat.modules.sessions.service import ChatSession

from tests.fakes import FakeChangeFeed, InMemoryBackend, make_message, settle


class SessionTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.feed = FakeChangeFeed()
        self.backend = InMemoryBackend(self.feed)
        self.notifier = Notifier()
        self.profiles = ProfileCache(self.backend)
        self.subscriptions = SubscriptionManager(self.feed, RetryPolicy(max_retries=2, base_delay=0, max_delay=0))
        self.session = ChatSession(
            user_id="u1",
            family_id="f1",
            directory=ChatDirectory(self.backend, self.profiles, self.notifier),
            store=MessageStore(self.backend),
            subscriptions=self.subscriptions,
            profiles=self.profiles,
            notifier=self.notifier,
        )
        self.events = []
        self.session.add_listener(self.events.append)

        for user_id, name in [("u1", "Ana"), ("u2", "Ben"), ("u3", "Cleo")]:
            self.backend.add_profile(user_id, name, family_id="f1")
        self.chat_a = self.backend.add_chat("A", ChatKind.GROUP, ["u1", "u2", "u3"])
        self.chat_b = self.backend.add_chat("B", ChatKind.PRIVATE, ["u1", "u2"])
        self.chat_c = self.backend.add_chat("C", ChatKind.PRIVATE, ["u2", "u3"])
        self.backend.add_message(make_message("a1", "A", sender_id="u2", seconds=1))
        self.backend.add_message(make_message("a2", "A", sender_id="u1", seconds=2))
        self.backend.add_message(make_message("b1", "B", sender_id="u2", seconds=3))

    async def asyncTearDown(self):
        await self.session.close()

    def events_of(self, event_type: SessionEventType):
        return [e.data for e in self.events if e.type == event_type]

    def pane_channels(self):
        return [c for c in self.feed.open_channels if c.topic.startswith(View.PANE.value)]


class SelectChatTests(SessionTestCase):
    async def test_select_loads_log_and_subscribes_pane(self):
        await self.session.select_chat(self.chat_a)

        self.assertEqual(self.session.visible_pane, Pane.CONVERSATION)
        self.assertEqual([m.id for m in self.session.messages], ["a1", "a2"])
        self.assertEqual(self.session.pane_handle.state, ConnectionState.SUBSCRIBED)
        self.assertEqual([c.chat_id for c in self.pane_channels()], ["A"])
        self.assertEqual([e.type for e in self.events][:1], [SessionEventType.CHAT_SELECTED])
        loaded = self.events_of(SessionEventType.MESSAGES_LOADED)
        self.assertEqual([m["id"] for m in loaded[0]["messages"]], ["a1", "a2"])
        self.assertIn("u2", self.profiles)

    async def test_switching_chats_closes_previous_pane_channel(self):
        await self.session.select_chat(self.chat_a)
        first = self.session.pane_handle

        await self.session.select_chat(self.chat_b)

        self.assertTrue(first.closed)
        self.assertEqual([c.chat_id for c in self.pane_channels()], ["B"])
        self.assertEqual([m.id for m in self.session.messages], ["b1"])

    async def test_reselecting_reloads_from_backend(self):
        await self.session.select_chat(self.chat_a)
        await self.session.select_chat(self.chat_b)
        self.backend.add_message(make_message("a3", "A", seconds=4))

        await self.session.select_chat(self.chat_a)

        self.assertEqual(self.backend.calls["list_messages"], 3)
        self.assertEqual([m.id for m in self.session.messages], ["a1", "a2", "a3"])

    async def test_selecting_a_chat_the_user_is_not_in(self):
        with self.assertRaises(PermissionDeniedError):
            await self.session.select_chat(self.chat_c)

        self.assertIsNone(await self.session.select_chat_by_id("C"))
        self.assertEqual(self.notifier.history[-1].level, NotificationLevel.ERROR)
        self.assertEqual(self.feed.channels, [])

    async def test_slow_load_of_previous_selection_is_discarded(self):
        self.backend.gates["A"] = asyncio.Event()
        first = asyncio.ensure_future(self.session.select_chat(self.chat_a))
        await settle()

        await self.session.select_chat(self.chat_b)
        self.backend.gates["A"].set()
        await first

        self.assertEqual(self.session.active_chat.id, "B")
        self.assertEqual([m.id for m in self.session.messages], ["b1"])
        self.assertEqual([c.chat_id for c in self.pane_channels()], ["B"])
        self.assertEqual([e["chat_id"] for e in self.events_of(SessionEventType.MESSAGES_LOADED)], ["B"])

    async def test_load_failure_is_notified_and_channel_kept(self):
        self.backend.failures["list_messages"] = BackendError("db down")

        await self.session.select_chat(self.chat_a)

        self.assertEqual(self.notifier.history[-1].description, "Failed to load messages")
        self.assertEqual(self.events_of(SessionEventType.MESSAGES_LOADED), [])
        self.assertEqual(self.session.messages, [])
        self.assertEqual(len(self.pane_channels()), 1)
        self.assertEqual(len(self.events_of(SessionEventType.NOTIFICATION)), 1)

    async def test_deselect_returns_to_list(self):
        await self.session.select_chat(self.chat_a)
        self.session.draft = "half typed"

        await self.session.deselect_chat()

        self.assertEqual(self.session.visible_pane, Pane.LIST)
        self.assertEqual(self.session.draft, "")
        self.assertIsNone(self.session.pane_handle)
        self.assertEqual(self.pane_channels(), [])
        self.assertEqual(len(self.events_of(SessionEventType.CHAT_DESELECTED)), 1)

    async def test_session_requires_user(self):
        with self.assertRaises(AuthRequired):
            ChatSession("", None, None, None, self.subscriptions, self.profiles, self.notifier)


class SendTests(SessionTestCase):
    async def test_sent_message_arrives_once_through_the_channel(self):
        await self.session.select_chat(self.chat_a)

        self.assertTrue(await self.session.send("hello"))
        self.assertEqual(self.session.draft, "")
        self.assertEqual([m.id for m in self.session.messages], ["a1", "a2"])
        await settle()

        self.assertEqual([m.content for m in self.session.messages][-1], "hello")
        self.assertEqual(len(self.session.messages), 3)
        created = self.events_of(SessionEventType.MESSAGE_CREATED)
        self.assertEqual([e["message"]["content"] for e in created], ["hello"])

    async def test_failed_send_keeps_draft(self):
        await self.session.select_chat(self.chat_a)
        self.backend.failures["insert_message"] = BackendError("insert failed")

        self.assertFalse(await self.session.send("try again"))

        self.assertEqual(self.session.draft, "try again")
        self.assertEqual(self.notifier.history[-1].description, "Failed to send message")

    async def test_send_without_active_chat(self):
        self.assertFalse(await self.session.send("hello"))
        self.assertEqual(self.backend.calls["insert_message"], 0)

    async def test_blank_message_is_not_sent(self):
        await self.session.select_chat(self.chat_a)

        self.assertFalse(await self.session.send("   "))

        self.assertEqual(self.backend.calls["insert_message"], 0)
        self.assertEqual(self.notifier.history[-1].level, NotificationLevel.WARNING)


class LiveUpdateTests(SessionTestCase):
    async def test_unknown_sender_profile_is_fetched(self):
        self.backend.add_profile("u4", "Dee", family_id="f1")
        await self.session.select_chat(self.chat_a)

        self.feed.publish("messages", make_message("a9", "A", sender_id="u4", seconds=9).model_dump(mode="json"))
        await settle()

        profiles = self.events_of(SessionEventType.PROFILE_UPDATED)
        self.assertEqual([p["profile"]["name"] for p in profiles], ["Dee"])
        self.assertIn("u4", self.profiles)

    async def test_previews_follow_inserts_in_other_chats(self):
        previews = await self.session.watch_previews()
        self.assertEqual(set(previews), {"A", "B"})
        await self.session.select_chat(self.chat_a)

        self.feed.publish("messages", make_message("b2", "B", content="see you", seconds=10).model_dump(mode="json"))
        self.feed.publish("messages", make_message("a3", "A", seconds=11).model_dump(mode="json"))

        updated = self.events_of(SessionEventType.PREVIEW_UPDATED)
        self.assertEqual([u["preview"]["message"]["id"] for u in updated], ["b2", "a3"])
        created = self.events_of(SessionEventType.MESSAGE_CREATED)
        self.assertEqual([c["message"]["id"] for c in created], ["a3"])
        self.assertEqual([m.id for m in self.session.messages], ["a1", "a2", "a3"])

    async def test_unwatch_previews_closes_list_channels(self):
        await self.session.watch_previews()
        await self.session.select_chat(self.chat_a)

        await self.session.unwatch_previews()

        self.assertEqual([c.chat_id for c in self.feed.open_channels], ["A"])

    async def test_lost_pane_connection_is_reported(self):
        await self.session.select_chat(self.chat_a)
        self.feed.fail_next = 10

        self.feed.drop("A")
        await settle(50)

        self.assertEqual(self.session.pane_handle.state, ConnectionState.FAILED)
        self.assertEqual(self.notifier.history[-1].title, "Connection lost")
        states = [e["state"] for e in self.events_of(SessionEventType.CONNECTION_STATE)]
        self.assertEqual(states[-2:], ["reconnecting", "failed"])

    async def test_messages_inserted_while_reconnecting_are_backfilled(self):
        await self.session.select_chat(self.chat_a)

        self.feed.drop("A")
        self.backend.add_message(make_message("gap", "A", sender_id="u3", seconds=5))
        await settle(50)

        self.assertEqual(self.session.pane_handle.state, ConnectionState.SUBSCRIBED)
        self.assertEqual([m.id for m in self.session.messages], ["a1", "a2", "gap"])
        loaded = self.events_of(SessionEventType.MESSAGES_LOADED)
        self.assertEqual(len(loaded), 2)
        self.assertEqual([m["id"] for m in loaded[-1]["messages"]], ["a1", "a2", "gap"])

    async def test_failed_backfill_keeps_the_log(self):
        await self.session.select_chat(self.chat_a)

        self.feed.drop("A")
        self.backend.failures["list_messages"] = BackendError("still flaky")
        await settle(50)

        self.assertEqual(self.session.pane_handle.state, ConnectionState.SUBSCRIBED)
        self.assertEqual([m.id for m in self.session.messages], ["a1", "a2"])
        self.assertEqual(len(self.events_of(SessionEventType.MESSAGES_LOADED)), 1)

    async def test_preview_is_refreshed_after_list_channel_reconnects(self):
        await self.session.watch_previews()

        self.feed.drop("B")
        self.backend.add_message(make_message("b2", "B", seconds=6))
        await settle(50)

        updated = self.events_of(SessionEventType.PREVIEW_UPDATED)
        self.assertEqual([u["preview"]["message"]["id"] for u in updated], ["b2"])

    async def test_close_releases_every_channel(self):
        await self.session.watch_previews()
        await self.session.select_chat(self.chat_a)

        await self.session.close()

        self.assertEqual(self.feed.open_channels, [])
        self.assertEqual(self.subscriptions.handles, [])
        self.assertIsNone(self.session.active_chat)
