from utils.db import count_alerts_since, db_all, db_get, db_push, db_set, list_user_ids, log_alert


def test_get_missing_returns_default(temp_db):
    assert db_get("user_1.watchlist.tokens", []) == []
    assert db_get("user_1") is None
    assert db_get("not_a_user_path", "x") == "x"


def test_set_creates_intermediate_keys(temp_db):
    db_set("user_7.ai.enabled", True)
    assert db_get("user_7.ai.enabled") is True
    assert db_get("user_7") == {"ai": {"enabled": True}}


def test_bare_user_path_merges(temp_db):
    db_set("user_7.blacklist", ["SCAM"])
    db_set("user_7", {"ai": {"enabled": False}})
    assert db_get("user_7.blacklist") == ["SCAM"]
    assert db_get("user_7.ai.enabled") is False


def test_push_keeps_newest(temp_db):
    for i in range(5):
        db_push("user_3.ai.history", {"n": i}, max_len=3)
    assert [h["n"] for h in db_get("user_3.ai.history")] == [2, 3, 4]


def test_all_and_user_ids(temp_db):
    db_set("user_1.ai.enabled", True)
    db_set("user_2.ai.enabled", False)
    assert sorted(list_user_ids()) == ["1", "2"]
    assert {item["id"] for item in db_all()} == {"user_1", "user_2"}


def test_alert_log_counts_per_user(temp_db):
    log_alert(1, "PEPE", "0xabc", "OVERSOLD_HUNTER", 0.1)
    log_alert(1, "PEPE", "0xabc", "PRICE_ABOVE", 0.2)
    log_alert(2, "DOGE", "0xdef", "MACD_BULLISH", 1.0)
    assert count_alerts_since(1) == 2
    assert count_alerts_since(2) == 1
    assert count_alerts_since(3) == 0
