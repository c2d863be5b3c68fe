import asyncio
import time

import pytest

import alerts.scanner as scanner
from data.predictor import fallback_prediction
from utils.db import count_alerts_since, db_get, db_set

OVERSOLD = {
    "rsi": "25.0",
    "macd": "0.001000",
    "macd_signal": "0.002000",
    "macd_cross": "bearish",
    "ema9": "1.000000",
    "ema21": "1.100000",
}
VOLUME_SPIKE = {"price_5m": 2.0, "volume": 350.0, "dump": False, "recovery": False}


def _token(address, symbol):
    return {"address": address, "symbol": symbol, "pairAddress": f"pair-{symbol}", "chain": "base", "source": "dex"}


@pytest.fixture
def market(monkeypatch):
    """Deterministic market data; records which pairs were fetched."""
    state = {"fetched": [], "indicator_calls": 0, "broken": set(), "price": 0.1, "delay": 0}

    def fake_candles(pair_address, chain=None):
        state["fetched"].append(pair_address)
        time.sleep(state["delay"])
        if pair_address in state["broken"]:
            raise RuntimeError("boom")
        return {
            "candles": [(0, 1, 1, 1, 1, 1)] * 100,
            "current_price": state["price"],
            "pair": {},
            "price_change": dict(VOLUME_SPIKE),
        }

    def fake_indicators(candles):
        state["indicator_calls"] += 1
        return dict(OVERSOLD)

    monkeypatch.setattr(scanner, "fetch_dex_candles", fake_candles)
    monkeypatch.setattr(scanner, "fetch_indicators", fake_indicators)
    return state


def _run(coro):
    return asyncio.run(coro)


def test_ai_disabled_with_ai_preset_sends_nothing(temp_db, market, notifier, monkeypatch):
    async def no_ai(*a, **kw):
        raise AssertionError("AI must not be called")

    monkeypatch.setattr(scanner, "predict_ai", no_ai)
    db_set("user_1", {
        "ai": {"enabled": False},
        "alerts": {"AI_HIGH_CONFIDENCE": {"enabled": True}},
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
    })

    stats = _run(scanner.scan_and_alert(1, notifier))
    assert notifier.sent == []
    assert stats["alerts_sent"] == 0


def test_oversold_preset_notifies_with_fallback(temp_db, market, notifier):
    db_set("user_1", {
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
    })

    stats = _run(scanner.scan_and_alert(1, notifier))

    assert stats["alerts_sent"] == 1
    user_id, message = notifier.sent[0]
    assert user_id == "1"
    assert "OVERSOLD HUNTER" in message
    assert "PEPE" in message
    assert count_alerts_since(1) == 1


def test_failing_token_does_not_stop_the_rest(temp_db, market, notifier):
    market["broken"].add("pair-BAD")
    db_set("user_1", {
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
        "watchlist": {"tokens": [_token("0xB", "BAD"), _token("0xG", "GOOD")]},
    })

    stats = _run(scanner.scan_and_alert(1, notifier))

    assert stats["errors"] == 1
    assert len(notifier.sent) == 1
    assert "GOOD" in notifier.sent[0][1]


def test_blacklisted_token_not_fetched(temp_db, market, notifier):
    db_set("user_1", {
        "blacklist": ["pepe"],
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
    })
    _run(scanner.scan_and_alert(1, notifier))
    assert market["fetched"] == []


def test_token_without_presets_or_alerts_is_skipped(temp_db, market, notifier):
    db_set("user_1", {"watchlist": {"tokens": [_token("0xA", "PEPE")]}})
    _run(scanner.scan_and_alert(1, notifier))
    assert market["fetched"] == []


def test_range_alert_only_skips_indicators(temp_db, market, notifier):
    db_set("user_1", {
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
        "priceAlerts": {"0xa": [{"type": "above", "price": 0.05, "triggered": False}]},
    })

    _run(scanner.scan_and_alert(1, notifier))
    _run(scanner.scan_and_alert(1, notifier))

    assert market["indicator_calls"] == 0
    assert len(notifier.sent) == 1
    assert "Above Target" in notifier.sent[0][1]
    assert db_get("user_1.priceAlerts.0xa")[0]["triggered"] is True


def test_legacy_watchlist_scanned(temp_db, market, notifier):
    db_set("user_1", {
        "watchlists": {
            "old": {
                "tokens": [_token("0xL", "WIF")],
                "alerts": [{"preset": "OVERSOLD_HUNTER", "active": True}],
            }
        },
    })
    _run(scanner.scan_and_alert(1, notifier))
    assert len(notifier.sent) == 1
    assert "WIF" in notifier.sent[0][1]


def test_same_token_in_both_shapes_notifies_once(temp_db, market, notifier):
    db_set("user_1", {
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
        "watchlists": {
            "old": {
                "tokens": [_token("0xa", "PEPE")],
                "alerts": [{"preset": "OVERSOLD_HUNTER", "active": True}],
            }
        },
    })
    stats = _run(scanner.scan_and_alert(1, notifier))
    assert stats["alerts_sent"] == 1


def test_ai_auto_trigger_for_model_prediction(temp_db, market, notifier, monkeypatch):
    async def model(indicators, price, user_id):
        return {**fallback_prediction(price), "prob1": 90, "source": "model"}

    monkeypatch.setattr(scanner, "predict_ai", model)
    db_set("user_1", {"ai": {"enabled": True}, "watchlist": {"tokens": [_token("0xA", "PEPE")]}})

    _run(scanner.scan_and_alert(1, notifier))

    assert len(notifier.sent) == 1
    assert "AI HIGH CONFIDENCE" in notifier.sent[0][1]


def test_ai_auto_trigger_skips_fallback(temp_db, market, notifier, monkeypatch):
    async def fallback(indicators, price, user_id):
        return fallback_prediction(price)

    monkeypatch.setattr(scanner, "predict_ai", fallback)
    db_set("user_1", {"ai": {"enabled": True}, "watchlist": {"tokens": [_token("0xA", "PEPE")]}})

    _run(scanner.scan_and_alert(1, notifier))
    assert notifier.sent == []


def test_enabled_ai_preset_not_repeated_by_auto_trigger(temp_db, market, notifier, monkeypatch):
    async def model(indicators, price, user_id):
        return {**fallback_prediction(price), "prob1": 90, "source": "model"}

    monkeypatch.setattr(scanner, "predict_ai", model)
    db_set("user_1", {
        "ai": {"enabled": True},
        "alerts": {"AI_HIGH_CONFIDENCE": {"enabled": True}},
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
    })

    stats = _run(scanner.scan_and_alert(1, notifier))
    assert stats["alerts_sent"] == 1


def test_scan_all_users(temp_db, market, notifier):
    for uid in (1, 2):
        db_set(f"user_{uid}", {
            "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
            "watchlist": {"tokens": [_token(f"0x{uid}", f"T{uid}")]},
        })
    totals = _run(scanner.scan_all_users(notifier))
    assert totals["users"] == 2
    assert sorted(uid for uid, _ in notifier.sent) == ["1", "2"]


def test_scan_all_users_survives_enumeration_failure(notifier, monkeypatch):
    def fail():
        raise RuntimeError("db gone")

    monkeypatch.setattr(scanner, "list_user_ids", fail)
    totals = _run(scanner.scan_all_users(notifier))
    assert totals["users"] == 0
    assert notifier.sent == []


def test_oversold_fires_but_pump_does_not(temp_db, market, notifier):
    market["price"] = 0.0001
    db_set("user_1", {
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}, "PUMP_DETECTOR": {"enabled": True}},
        "watchlist": {"tokens": [{"address": "0xAAA", "pairAddress": "pairX", "symbol": "AAA"}]},
    })

    _run(scanner.scan_and_alert(1, notifier))

    assert market["fetched"] == ["pairX"]
    assert len(notifier.sent) == 1
    assert "OVERSOLD HUNTER" in notifier.sent[0][1]


class FailingNotifier:
    def __init__(self):
        self.attempts = 0

    async def notify(self, user_id, message, parse_mode="HTML"):
        self.attempts += 1
        return False


def test_overlapping_scans_fire_range_alert_once(temp_db, market, notifier):
    market["delay"] = 0.05
    db_set("user_1", {
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
        "priceAlerts": {"0xa": [{"type": "range", "minPrice": 0.08, "maxPrice": 0.12, "triggered": False}]},
    })

    async def both():
        return await asyncio.gather(scanner.scan_all_users(notifier), scanner.scan_and_alert(1, notifier))

    _run(both())

    assert market["fetched"] == ["pair-PEPE", "pair-PEPE"]
    assert len([m for _, m in notifier.sent if "In Range" in m]) == 1
    assert count_alerts_since(1) == 1


def test_undelivered_alerts_not_counted_or_logged(temp_db, market):
    failing = FailingNotifier()
    db_set("user_1", {
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
        "watchlist": {"tokens": [_token("0xA", "PEPE")]},
        "priceAlerts": {"0xa": [{"type": "above", "price": 0.05, "triggered": False}]},
    })

    stats = _run(scanner.scan_and_alert(1, failing))

    assert failing.attempts == 2
    assert stats["alerts_sent"] == 0
    assert count_alerts_since(1) == 0


def test_token_without_pair_resolves_one(temp_db, market, notifier, monkeypatch):
    lookups = []

    def detect(address):
        lookups.append(address)
        return [
            {"chain": "solana", "pair_address": "sol-pair"},
            {"chain": "base", "pair_address": "base-pair"},
        ]

    monkeypatch.setattr(scanner, "detect_chain_from_address", detect)
    db_set("user_1", {
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
        "watchlist": {"tokens": [{"address": "0xA", "symbol": "PEPE", "chain": "base"}]},
    })

    stats = _run(scanner.scan_and_alert(1, notifier))

    assert lookups == ["0xA"]
    assert market["fetched"] == ["base-pair"]
    assert stats["alerts_sent"] == 1


def test_token_without_any_pair_is_skipped(temp_db, market, notifier, monkeypatch, caplog):
    monkeypatch.setattr(scanner, "detect_chain_from_address", lambda address: None)
    db_set("user_1", {
        "alerts": {"OVERSOLD_HUNTER": {"enabled": True}},
        "watchlist": {"tokens": [{"address": "0xA", "symbol": "PEPE"}]},
    })

    with caplog.at_level("WARNING"):
        stats = _run(scanner.scan_and_alert(1, notifier))

    assert market["fetched"] == []
    assert stats == {"tokens_scanned": 0, "alerts_sent": 0, "errors": 0}
    assert "No pair found for PEPE" in caplog.text
