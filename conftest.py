import pytest

import utils.db as db


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, user_id, message, parse_mode="HTML"):
        self.sent.append((str(user_id), message))
        return True


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "users.db"))
    db.init_db()
    return db


@pytest.fixture
def notifier():
    return RecordingNotifier()
