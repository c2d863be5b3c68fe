import asyncio

import pytest

import utils.portfolio as portfolio
from alerts.summary import send_daily_summaries
from utils.db import db_set, log_alert
from utils.portfolio import get_portfolio_value, set_holding

PRICES = {"pair-A": 2.0, "pair-B": None}


@pytest.fixture
def priced(monkeypatch):
    def snapshot(pair_address, chain=None):
        price = PRICES.get(pair_address)
        return None if price is None else {"current_price": price, "pair": {}}

    monkeypatch.setattr(portfolio, "fetch_pair_snapshot", snapshot)


def _watch(user_id):
    db_set(f"user_{user_id}.watchlist.tokens", [
        {"address": "0xA", "symbol": "AAA", "pairAddress": "pair-A"},
        {"address": "0xB", "symbol": "BBB", "pairAddress": "pair-B"},
    ])


def test_value_and_pnl(temp_db, priced):
    _watch(1)
    set_holding(1, "0xA", "AAA", 10, 1.5)
    set_holding(1, "0xB", "BBB", 5, 1.0)

    out = get_portfolio_value(1)

    assert [h["symbol"] for h in out["holdings"]] == ["AAA"]
    assert out["totalValue"] == pytest.approx(20.0)
    assert out["totalPnl"] == pytest.approx(5.0)
    assert out["totalPnlPercent"] == pytest.approx(5.0 / 15.0 * 100)


def test_empty_portfolio(temp_db, priced):
    out = get_portfolio_value(1)
    assert out["holdings"] == []
    assert out["totalPnlPercent"] == 0.0


def test_bad_holding_rejected(temp_db):
    with pytest.raises(ValueError):
        set_holding(1, "0xA", "AAA", "lots", 1)
    with pytest.raises(ValueError):
        set_holding(1, "0xA", "AAA", 0, 1)


def test_daily_summary_per_user(temp_db, priced, notifier):
    _watch(1)
    set_holding(1, "0xA", "AAA", 10, 1.5)
    db_set("user_2.ai.enabled", False)
    log_alert(1, "AAA", "0xA", "MACD_BULLISH", 2.0)

    sent = asyncio.run(send_daily_summaries(notifier))

    assert sent == 2
    messages = dict(notifier.sent)
    assert "Alerts sent (24h): <b>1</b>" in messages["1"]
    assert "Portfolio value" in messages["1"]
    assert "Portfolio value" not in messages["2"]
