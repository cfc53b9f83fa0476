import asyncio
from types import SimpleNamespace

import pytest
from telegram.error import TelegramError

from models.token import TokenPair
from services.scoring_service import EntryScore, ScanResult
from services.telegram_bot import TelegramBot, format_scan, looks_like_address
from utils.config import TradingConfig

from conftest import TOKEN_A


class FakeMessage:
    def __init__(self, text=""):
        self.text = text
        self.replies = []
        self.chat_id = 77
        self.message_id = 500

    async def reply_text(self, text, **kwargs):
        self.replies.append(text)
        return SimpleNamespace(chat_id=self.chat_id, message_id=self.message_id + len(self.replies))


class FakeJobQueue:
    def __init__(self):
        self.jobs = []

    def run_once(self, callback, when, data=None):
        self.jobs.append((callback, when, data))


class FakeBotApi:
    def __init__(self, fail_delete=False):
        self.fail_delete = fail_delete
        self.deleted = []
        self.sent = []

    async def delete_message(self, chat_id, message_id):
        if self.fail_delete:
            raise TelegramError("message can't be deleted")
        self.deleted.append((chat_id, message_id))

    async def send_message(self, chat_id, text):
        self.sent.append((chat_id, text))


class RoutingWallets:
    """Solo lo que on_text consulta; ningún flujo pendiente salvo el indicado."""

    def __init__(self, pending=None, export_result=None):
        self.pending = pending
        self.export_result = export_result
        self.user = SimpleNamespace(id=1, telegram_id="1")

    def has_pending_withdrawal(self, telegram_id):
        return self.pending == "withdrawal"

    def awaiting_export_pin(self, telegram_id):
        return self.pending == "export"

    def has_pending_removal(self, telegram_id):
        return self.pending == "removal"

    def get_user(self, telegram_id):
        return self.user

    def confirm_export(self, user, text):
        return self.export_result

    def confirm_removal(self, user, text):
        return {"ok": True, "status": "removed"}


class FixedScoring:
    def __init__(self, result=None):
        self.result = result
        self.scanned = []

    def scan(self, token_address):
        self.scanned.append(token_address)
        return self.result


def _update(text):
    return SimpleNamespace(effective_user=SimpleNamespace(id=1), message=FakeMessage(text))


def _scan_result(**score):
    pair = TokenPair(pair_address="p", token_address=TOKEN_A, symbol="TRENCH", name="Trench",
                     price_usd=0.0012, market_cap=120_000, liquidity_usd=25_000, volume_h24=90_000)
    return ScanResult(pair=pair, score=EntryScore(**score))


@pytest.fixture
def make_bot(monkeypatch):
    monkeypatch.setenv("STATE_PURGE_INTERVAL", "0")

    def _make(wallets=None, scoring=None):
        return TelegramBot(wallets, None, None, None, None, None, scoring,
                           config=TradingConfig(export_message_ttl_s=30), token="123:ABC")
    return _make


def test_updates_are_processed_concurrently(make_bot):
    bot = make_bot()
    # un /buy esperando confirmación no puede bloquear al resto de usuarios
    assert bot.application.concurrent_updates > 1


def test_looks_like_address():
    assert looks_like_address(TOKEN_A)
    assert looks_like_address(f"  {TOKEN_A}\n")
    assert not looks_like_address("1234")
    assert not looks_like_address(f"buy {TOKEN_A}")
    assert not looks_like_address("")


def test_format_scan():
    text = format_scan(_scan_result(score=75, signals=["Low MC (<$150k): +15"],
                                    warnings=["Holder data unavailable"]))
    assert "SCAN: TRENCH" in text
    assert "MC: $120.00K" in text
    assert "ENTRY SCORE: 75/100" in text
    assert "Low MC (<$150k): +15" in text
    assert "Holder data unavailable" in text
    assert text.endswith("Strong setup.")


def test_format_scan_high_gamble():
    text = format_scan(_scan_result(score=10, is_high_gamble=True))
    assert "HIGH GAMBLE" in text
    assert text.endswith("Size accordingly or sit out.")


def test_pasted_address_is_scanned(make_bot):
    scoring = FixedScoring(_scan_result(score=40))
    bot = make_bot(RoutingWallets(), scoring)
    update = _update(f" {TOKEN_A} ")
    asyncio.run(bot.on_text(update, SimpleNamespace(job_queue=None)))
    assert scoring.scanned == [TOKEN_A]
    assert update.message.replies[0] == "Scanning..."
    assert "ENTRY SCORE: 40/100" in update.message.replies[-1]


def test_unknown_token_scan_reply(make_bot):
    bot = make_bot(RoutingWallets(), FixedScoring(None))
    update = _update(TOKEN_A)
    asyncio.run(bot.on_text(update, SimpleNamespace(job_queue=None)))
    assert update.message.replies[-1].startswith("Token not found on DEX.")


def test_plain_text_is_ignored(make_bot):
    scoring = FixedScoring(_scan_result())
    bot = make_bot(RoutingWallets(), scoring)
    update = _update("gm")
    asyncio.run(bot.on_text(update, SimpleNamespace(job_queue=None)))
    assert scoring.scanned == []
    assert update.message.replies == []


def test_pending_removal_takes_the_text_before_scan(make_bot):
    scoring = FixedScoring(_scan_result())
    bot = make_bot(RoutingWallets(pending="removal"), scoring)
    update = _update("confirm")
    asyncio.run(bot.on_text(update, SimpleNamespace(job_queue=None)))
    assert update.message.replies == ["Wallet removed successfully."]
    assert scoring.scanned == []


def test_exported_key_message_is_scheduled_for_deletion(make_bot):
    wallets = RoutingWallets(pending="export", export_result={
        "ok": True, "status": "exported", "private_key": "5KeyBase58", "wallet_address": TOKEN_A})
    bot = make_bot(wallets, FixedScoring())
    update = _update("1234")
    jobs = FakeJobQueue()
    asyncio.run(bot.on_text(update, SimpleNamespace(job_queue=jobs)))

    assert "5KeyBase58" in update.message.replies[-1]
    [(callback, when, data)] = jobs.jobs
    assert when == 30
    assert data == (77, 501)

    api = FakeBotApi()
    asyncio.run(callback(SimpleNamespace(job=SimpleNamespace(data=data), bot=api)))
    assert api.deleted == [(77, 501)]
    assert api.sent == [(77, "Private key message auto-deleted for security.")]


def test_failed_auto_delete_asks_user_to_delete(make_bot):
    bot = make_bot(RoutingWallets(), FixedScoring())
    api = FakeBotApi(fail_delete=True)
    asyncio.run(bot._delete_key_message(SimpleNamespace(job=SimpleNamespace(data=(77, 501)), bot=api)))
    assert api.deleted == []
    assert "delete the key message manually" in api.sent[0][1]


def test_wrong_export_pin_sends_no_key(make_bot):
    wallets = RoutingWallets(pending="export", export_result={
        "ok": False, "status": "invalid_pin", "reason": "Incorrect PIN. Export cancelled."})
    bot = make_bot(wallets, FixedScoring())
    update = _update("0000")
    jobs = FakeJobQueue()
    asyncio.run(bot.on_text(update, SimpleNamespace(job_queue=jobs)))
    assert update.message.replies == ["Incorrect PIN. Export cancelled."]
    assert jobs.jobs == []
