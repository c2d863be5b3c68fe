"""
Synthetic OHLCV history anchored to the latest DexScreener price.

DexScreener exposes no candle history, so a plausible 5-minute series is
random-walked from the current price over the last 100 intervals. Only
length, spacing and the OHLC envelope are fixed.
"""
import random
import time

from config import CANDLE_COUNT, CANDLE_INTERVAL_SECONDS
from data.dexscreener import fetch_pair_snapshot
from utils.metrics import price_change_snapshot


def synthesize_candles(current_price, now_ms=None, count=CANDLE_COUNT, rng=None):
    """
    Returns ``count`` tuples (timestamp_ms, open, high, low, close, volume),
    oldest first, the last one stamped ``now_ms``.
    """
    rng = rng or random
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    step_ms = CANDLE_INTERVAL_SECONDS * 1000

    candles = []
    price = float(current_price)
    for i in range(count - 1, -1, -1):
        ts = now_ms - i * step_ms
        variation = 0.95 + rng.random() * 0.1
        open_ = price
        close = price * variation
        high = max(open_, close) * 1.01
        low = min(open_, close) * 0.99
        volume = rng.random() * 100000
        candles.append((ts, open_, high, low, close, volume))
        price = close
    return candles


def fetch_dex_candles(pair_address, chain=None, rng=None):
    snapshot = fetch_pair_snapshot(pair_address, chain)
    if not snapshot:
        return None
    current_price = float(snapshot.get("current_price") or 0)
    if current_price <= 0:
        return None

    pair = snapshot.get("pair") or {}
    return {
        "candles": synthesize_candles(current_price, rng=rng),
        "current_price": current_price,
        "pair": pair,
        "price_change": price_change_snapshot(pair),
    }
