"""Tests for notifications.telegram: Bot API client, notifier and progress reporter."""

import asyncio
import json

import httpx

from notifications import NullNotifier, ProgressReporter, TelegramApi, TelegramNotifier, build_notifier
from notifications.telegram import ProgressState


class FakeApi:
    """Records Bot API calls; sendMessage can be held open with `gate`."""

    def __init__(self, message_id=42):
        self.calls = []
        self.message_id = message_id
        self.gate = None

    async def call(self, method, params):
        self.calls.append((method, params))
        if method == "sendMessage" and self.gate is not None:
            await self.gate.wait()
        return {"ok": True, "result": {"message_id": self.message_id}}

    def methods(self):
        return [method for method, _ in self.calls]


def make_reporter(api, interval=0.05):
    now = [100.0]
    reporter = ProgressReporter(api, "chat", min_interval=interval, clock=lambda: now[0])
    return reporter, now


# ---------------------------------------------------------------------------
# Progress reporter
# ---------------------------------------------------------------------------

def test_first_tool_sends_message():
    api = FakeApi()

    async def scenario():
        reporter, _ = make_reporter(api)
        reporter.report("Bash")
        await asyncio.sleep(0.01)
        return reporter

    reporter = asyncio.run(scenario())
    assert api.methods() == ["sendMessage"]
    assert api.calls[0][1]["text"] == "⏳ Running command..."
    assert api.calls[0][1]["disable_notification"] is True
    assert reporter.state is ProgressState.SENT
    assert reporter.message_id == 42


def test_updates_inside_window_are_coalesced():
    api = FakeApi()

    async def scenario():
        reporter, _ = make_reporter(api)
        reporter.report("Bash")
        await asyncio.sleep(0.01)
        reporter.report("Read")
        reporter.report("Grep")
        pending = reporter._deferred is not None
        await asyncio.sleep(0.1)
        return pending

    assert asyncio.run(scenario())
    assert api.methods() == ["sendMessage", "editMessageText"]
    edit = api.calls[1][1]
    assert edit["message_id"] == 42
    assert edit["text"] == "⏳ Running command...\n     Reading file...\n     Searching content..."


def test_update_after_window_edits_immediately():
    api = FakeApi()

    async def scenario():
        reporter, now = make_reporter(api, interval=3.0)
        reporter.report("Bash")
        await asyncio.sleep(0.01)
        now[0] += 5
        reporter.report("Write")
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert api.methods() == ["sendMessage", "editMessageText"]


def test_labels_dedupe_and_cap():
    reporter, _ = make_reporter(FakeApi())
    reporter._deferred = object()  # keep report() from scheduling anything
    for name in ["Bash", "Bash", "Read", "Bash", "T1", "T2", "T3", "T4"]:
        reporter.report(name)
    assert reporter.labels == ["Reading file", "Running command", "T1", "T2", "T3", "T4"]
    assert reporter.build_text().startswith("⏳ Reading file...")


def test_empty_progress_text():
    reporter, _ = make_reporter(FakeApi())
    assert reporter.build_text() == "⏳ Working..."


def test_cleanup_deletes_and_cancels_pending_edit():
    api = FakeApi()

    async def scenario():
        reporter, _ = make_reporter(api)
        reporter.report("Bash")
        await asyncio.sleep(0.01)
        reporter.report("Read")
        reporter.cleanup()
        reporter.cleanup()
        reporter.report("Write")
        await asyncio.sleep(0.1)
        return reporter

    reporter = asyncio.run(scenario())
    assert api.methods() == ["sendMessage", "deleteMessage"]
    assert reporter.state is ProgressState.DELETED


def test_cleanup_without_message_sends_nothing():
    api = FakeApi()
    reporter, _ = make_reporter(api)
    reporter.cleanup()
    assert api.calls == []


def test_cleanup_during_send_deletes_after_send():
    api = FakeApi()

    async def scenario():
        api.gate = asyncio.Event()
        reporter, _ = make_reporter(api)
        reporter.report("Bash")
        await asyncio.sleep(0.01)
        reporter.cleanup()
        api.gate.set()
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert api.methods() == ["sendMessage", "deleteMessage"]


# ---------------------------------------------------------------------------
# Notifiers and Bot API client
# ---------------------------------------------------------------------------

def test_telegram_notifier_sends_in_background():
    api = FakeApi()

    async def scenario():
        notifier = TelegramNotifier(api, "chat")
        notifier.notify("primary busy")
        await asyncio.sleep(0.01)
        return notifier.progress_reporter()

    reporter = asyncio.run(scenario())
    assert api.calls == [("sendMessage", {"chat_id": "chat", "text": "primary busy"})]
    assert isinstance(reporter, ProgressReporter)


def test_null_notifier():
    notifier = NullNotifier()
    notifier.notify("ignored")
    assert notifier.progress_reporter() is None


def test_build_notifier_without_credentials(monkeypatch):
    from notifications import telegram
    monkeypatch.setattr(telegram, "TELEGRAM_BOT_TOKEN", None)
    assert isinstance(build_notifier(), NullNotifier)


def test_api_posts_json_to_bot_url():
    seen = []

    def handler(request):
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 7}})

    async def scenario():
        api = TelegramApi("TOKEN", "https://tg.example/", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        reply = await api.call("sendMessage", {"chat_id": "1", "text": "hi"})
        await api.aclose()
        return reply

    assert asyncio.run(scenario())["result"]["message_id"] == 7
    assert seen == [("https://tg.example/botTOKEN/sendMessage", {"chat_id": "1", "text": "hi"})]


def test_api_errors_are_swallowed(caplog):
    def handler(request):
        raise httpx.ConnectError("unreachable")

    async def scenario():
        api = TelegramApi("TOKEN", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        return await api.call("sendMessage", {"chat_id": "1", "text": "hi"})

    assert asyncio.run(scenario()) is None
    assert "Telegram sendMessage error" in caplog.text
