import asyncio

from telegram.error import NetworkError

from utils.notify import TelegramNotifier


class _Bot:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def send_message(self, **kwargs):
        if self.fail:
            raise NetworkError("telegram down")
        self.calls.append(kwargs)


def test_sends_html_message():
    bot = _Bot()
    ok = asyncio.run(TelegramNotifier(bot, dry_run=False).notify("42", "<b>hi</b>"))
    assert ok is True
    assert bot.calls[0]["chat_id"] == 42
    assert bot.calls[0]["parse_mode"] == "HTML"


def test_send_failure_is_swallowed():
    ok = asyncio.run(TelegramNotifier(_Bot(fail=True), dry_run=False).notify(42, "x"))
    assert ok is False


def test_dry_run_does_not_send():
    bot = _Bot()
    assert asyncio.run(TelegramNotifier(bot, dry_run=True).notify(42, "x")) is False
    assert bot.calls == []
