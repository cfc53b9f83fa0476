import requests

from services.telegram_service import TelegramService


class FakeResponse:
    def raise_for_status(self):
        return None


class FakeSession:
    def __init__(self, fail=False):
        self.fail = fail
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        if self.fail:
            raise requests.ConnectionError("Forbidden: bot was blocked by the user")
        return FakeResponse()


def test_notify_resolves_chat_id(users, user):
    session = FakeSession()
    svc = TelegramService(users, token="T", session=session)

    svc.notify(user.id, "TP HIT")

    assert session.posts == [("https://api.telegram.org/botT/sendMessage", {"chat_id": "1001", "text": "TP HIT"})]


def test_notify_swallows_delivery_errors(users, user):
    session = FakeSession(fail=True)
    svc = TelegramService(users, token="T", session=session)

    svc.notify(user.id, "SL HIT")
    assert len(session.posts) == 1


def test_notify_unknown_user_sends_nothing(users):
    session = FakeSession()
    TelegramService(users, token="T", session=session).notify(12345, "hi")
    assert session.posts == []
