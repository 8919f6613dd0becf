import unittest
from types import SimpleNamespace
from unittest.mock import patch

from amelie import telegram_bot
from amelie.router import InboundEvent


class ParseAllowedIdsTests(unittest.TestCase):
    def test_splits_on_commas_and_semicolons(self):
        self.assertEqual(telegram_bot._parse_allowed_ids("1, 2;3,,"), {"1", "2", "3"})

    def test_missing_value(self):
        self.assertEqual(telegram_bot._parse_allowed_ids(None), set())
        self.assertEqual(telegram_bot._parse_allowed_ids(""), set())


class DummyJob:
    def __init__(self):
        self.removed = False

    def schedule_removal(self):
        self.removed = True


class DummyJobQueue:
    def __init__(self, existing=None):
        self.existing = existing or {}
        self.called_with = None

    def get_jobs_by_name(self, name):
        return self.existing.get(name, ())

    def run_once(self, cb, when, data=None, name=None):
        self.called_with = (cb, when, data, name)


class ScheduleInactivityTests(unittest.TestCase):
    def test_skips_when_job_queue_missing(self):
        app = type("DummyApp", (), {"job_queue": None})()
        with self.assertLogs(telegram_bot.logger.name, level="WARNING") as cm:
            scheduled = telegram_bot._schedule_inactivity_reset(app, "42")
        self.assertFalse(scheduled)
        self.assertIn("Job queue unavailable", "\n".join(cm.output))

    def test_replaces_pending_job_for_same_chat(self):
        old = DummyJob()
        jq = DummyJobQueue(existing={"inactivity:42": [old]})
        app = type("DummyApp", (), {"job_queue": jq})()

        scheduled = telegram_bot._schedule_inactivity_reset(app, "42", delay=60)

        self.assertTrue(scheduled)
        self.assertTrue(old.removed)
        self.assertEqual(jq.called_with, (telegram_bot.inactivity_job, 60, "42", "inactivity:42"))


class InactivityJobTests(unittest.IsolatedAsyncioTestCase):
    async def test_logs_without_clearing_by_default(self):
        context = SimpleNamespace(job=SimpleNamespace(data="42"))
        with patch.object(telegram_bot, "INACTIVITY_RESET_HISTORY", False), \
                patch.object(telegram_bot, "_reset_history_sync") as reset:
            with self.assertLogs(telegram_bot.logger.name, level="INFO") as cm:
                await telegram_bot.inactivity_job(context)
        reset.assert_not_called()
        self.assertIn("42", "\n".join(cm.output))


class DummyEntity:
    def __init__(self, type, user=None):
        self.type = type
        self.user = user


def _dummy_message(text=None, *, user_id=7, reply_to=None, entities=None, sent=None):
    async def reply_text(body, **kwargs):
        sent.append(body)

    return SimpleNamespace(
        text=text,
        caption=None,
        from_user=SimpleNamespace(id=user_id, full_name="Alice Smith", username="alice"),
        reply_to_message=reply_to,
        entities=entities,
        caption_entities=None,
        parse_entities=lambda kinds: {e: t for e, t in (entities or [])},
        parse_caption_entities=lambda kinds: {},
        photo=[],
        voice=None,
        audio=None,
        document=None,
        video=None,
        video_note=None,
        sticker=None,
        animation=None,
        reply_text=reply_text,
    )


class EventFromUpdateTests(unittest.IsolatedAsyncioTestCase):
    async def test_group_reply_to_bot(self):
        bot = SimpleNamespace(id=99, username="amelie_bot")
        quoted = SimpleNamespace(from_user=SimpleNamespace(id=99))
        message = _dummy_message("why?", reply_to=quoted, sent=[])
        update = SimpleNamespace(effective_message=message, effective_chat=SimpleNamespace(id=-100, type="supergroup"))

        event = await telegram_bot.event_from_update(update, SimpleNamespace(bot=bot))

        self.assertEqual(event.chat_id, "-100")
        self.assertEqual(event.sender, "Alice Smith")
        self.assertEqual(event.body, "why?")
        self.assertTrue(event.is_group)
        self.assertTrue(event.quoted_from_me)
        self.assertFalse(event.from_me)
        self.assertFalse(event.has_media)

    async def test_mentions_are_normalized(self):
        bot = SimpleNamespace(id=99, username="amelie_bot")
        mention = DummyEntity("mention")
        message = _dummy_message("@Amelie_Bot hi", entities=[(mention, "@Amelie_Bot")], sent=[])
        update = SimpleNamespace(effective_message=message, effective_chat=SimpleNamespace(id=5, type="group"))

        event = await telegram_bot.event_from_update(update, SimpleNamespace(bot=bot))

        self.assertEqual(event.mentions, ["amelie_bot"])
        self.assertIn("amelie_bot", telegram_bot._bot_handles(bot))


class HandleMessageTests(unittest.IsolatedAsyncioTestCase):
    async def test_runs_pipeline_in_executor_and_replies(self):
        sent = []
        message = _dummy_message("hello", sent=sent)
        jq = DummyJobQueue()
        update = SimpleNamespace(
            effective_message=message,
            effective_chat=SimpleNamespace(id=42, type="private"),
            effective_user=message.from_user,
        )
        context = SimpleNamespace(
            bot=SimpleNamespace(id=99, username="amelie_bot"),
            application=SimpleNamespace(bot_data={}, job_queue=jq),
        )

        called = {}

        async def fake_run_in_executor(executor, fn, *args):
            called["executor"] = executor
            called["fn"] = fn
            called["args"] = args
            return "hi\r\n\r\n\r\nthere "

        fake_loop = SimpleNamespace(run_in_executor=fake_run_in_executor)

        with patch("asyncio.get_running_loop", return_value=fake_loop):
            await telegram_bot.handle_message(update, context)

        self.assertIs(called["fn"], telegram_bot.handle_user_event)
        event, handles = called["args"]
        self.assertIsInstance(event, InboundEvent)
        self.assertEqual((event.chat_id, event.body, event.is_group), ("42", "hello", False))
        self.assertEqual(handles, {"99", "amelie_bot"})
        self.assertEqual(sent, ["hi\n\nthere"])
        self.assertEqual(jq.called_with[2:], ("42", "inactivity:42"))

    async def test_silent_result_sends_nothing(self):
        sent = []
        message = _dummy_message("chatter", sent=sent)
        update = SimpleNamespace(
            effective_message=message,
            effective_chat=SimpleNamespace(id=-1, type="group"),
            effective_user=message.from_user,
        )
        context = SimpleNamespace(
            bot=SimpleNamespace(id=99, username="amelie_bot"),
            application=SimpleNamespace(bot_data={}, job_queue=DummyJobQueue()),
        )

        async def fake_run_in_executor(executor, fn, *args):
            return None

        with patch("asyncio.get_running_loop", return_value=SimpleNamespace(run_in_executor=fake_run_in_executor)):
            await telegram_bot.handle_message(update, context)

        self.assertEqual(sent, [])

    async def test_rejects_users_outside_allowlist(self):
        sent = []
        message = _dummy_message("hello", sent=sent)
        update = SimpleNamespace(
            effective_message=message,
            effective_chat=SimpleNamespace(id=42, type="private"),
            effective_user=message.from_user,
        )
        context = SimpleNamespace(
            bot=SimpleNamespace(id=99, username="amelie_bot"),
            application=SimpleNamespace(bot_data={"allowed_ids": {"1"}}, job_queue=None),
        )

        await telegram_bot.handle_message(update, context)

        self.assertEqual(len(sent), 1)
        self.assertIn("Access denied", sent[0])


class DummyPhoto:
    def __init__(self):
        self.fetched = 0

    async def get_file(self):
        photo = self

        class _File:
            async def download_as_bytearray(self):
                photo.fetched += 1
                return bytearray(b"jpeg")

        return _File()


class MediaDownloadTests(unittest.IsolatedAsyncioTestCase):
    async def _run(self, chat_type, gate_result):
        photo = DummyPhoto()
        message = _dummy_message(None, sent=[])
        message.photo = [photo]
        update = SimpleNamespace(
            effective_message=message,
            effective_chat=SimpleNamespace(id=-7, type=chat_type),
            effective_user=message.from_user,
        )
        context = SimpleNamespace(
            bot=SimpleNamespace(id=99, username="amelie_bot"),
            application=SimpleNamespace(bot_data={}, job_queue=DummyJobQueue()),
        )
        seen = {}

        async def fake_run_in_executor(executor, fn, *args):
            seen.setdefault("fns", []).append(fn)
            if fn is telegram_bot.event_wants_reply:
                return gate_result
            seen["event"] = args[0]
            return None

        with patch("asyncio.get_running_loop", return_value=SimpleNamespace(run_in_executor=fake_run_in_executor)):
            await telegram_bot.handle_message(update, context)
        return photo, seen

    async def test_silent_group_photo_is_not_downloaded(self):
        photo, seen = await self._run("group", False)

        self.assertEqual(photo.fetched, 0)
        self.assertEqual(seen["fns"], [telegram_bot.event_wants_reply, telegram_bot.handle_user_event])
        self.assertEqual(seen["event"].media.kind, "image")
        self.assertEqual(seen["event"].media.data, b"")

    async def test_addressed_group_photo_is_downloaded(self):
        photo, seen = await self._run("group", True)

        self.assertEqual(photo.fetched, 1)
        self.assertEqual(seen["event"].media.data, b"jpeg")

    async def test_direct_photo_skips_gate(self):
        photo, seen = await self._run("private", False)

        self.assertEqual(photo.fetched, 1)
        self.assertEqual(seen["fns"], [telegram_bot.handle_user_event])


if __name__ == "__main__":
    unittest.main()
