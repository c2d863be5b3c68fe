import logging
import math

import requests

from config import (
    REQUEST_TIMEOUT_SECONDS,
    TAAPI_API_URL,
    TAAPI_COOLDOWN_SECONDS,
    TAAPI_MAX_CALLS,
    TAAPI_MIN_CANDLES,
    TAAPI_SECRET,
)
from utils.rate_limit import FixedWindowRateLimiter

UNAVAILABLE = "N/A"

# One budget for the whole process, shared across users.
_limiter = FixedWindowRateLimiter(TAAPI_MAX_CALLS, TAAPI_COOLDOWN_SECONDS)

_BACKFILL_INDICATORS = [
    {"indicator": "rsi", "params": {"period": 14}},
    {"indicator": "macd", "params": {"fastPeriod": 12, "slowPeriod": 26, "signalPeriod": 9}},
    {"indicator": "ema", "params": {"period": 9}},
    {"indicator": "ema", "params": {"period": 21}},
]


def get_limiter() -> FixedWindowRateLimiter:
    return _limiter


def unavailable_snapshot():
    return {
        "rsi": UNAVAILABLE,
        "macd": UNAVAILABLE,
        "macd_signal": UNAVAILABLE,
        "macd_cross": UNAVAILABLE,
        "ema9": UNAVAILABLE,
        "ema21": UNAVAILABLE,
    }


def _number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _fmt(value, decimals):
    num = _number(value)
    if num is None:
        return UNAVAILABLE
    return f"{num:.{decimals}f}"


def build_backfill_payload(candles, secret=None):
    return {
        "secret": TAAPI_SECRET if secret is None else secret,
        "candles": [
            {
                "time": int(c[0] // 1000),
                "open": c[1],
                "high": c[2],
                "low": c[3],
                "close": c[4],
                "volume": c[5],
            }
            for c in candles
        ],
        "backfill": _BACKFILL_INDICATORS,
    }


def parse_backfill_result(result):
    if not isinstance(result, dict):
        return unavailable_snapshot()

    rsi = result.get("rsi") if isinstance(result.get("rsi"), dict) else {}
    macd = result.get("macd") if isinstance(result.get("macd"), dict) else {}
    emas = result.get("ema") if isinstance(result.get("ema"), list) else []
    ema9 = emas[0] if len(emas) > 0 and isinstance(emas[0], dict) else {}
    ema21 = emas[1] if len(emas) > 1 and isinstance(emas[1], dict) else {}

    macd_value = _number(macd.get("valueMACD"))
    signal_value = _number(macd.get("valueSignal"))
    if macd_value is None or signal_value is None:
        macd_cross = UNAVAILABLE
    else:
        macd_cross = "bullish" if macd_value > signal_value else "bearish"

    return {
        "rsi": _fmt(rsi.get("value"), 1),
        "macd": _fmt(macd.get("valueMACD"), 6),
        "macd_signal": _fmt(macd.get("valueSignal"), 6),
        "macd_cross": macd_cross,
        "ema9": _fmt(ema9.get("value"), 6),
        "ema21": _fmt(ema21.get("value"), 6),
    }


def fetch_indicators(candles, limiter=None, secret=None):
    """
    RSI(14), MACD(12,26,9), EMA(9) and EMA(21) for a candle series.
    Never raises: short input or any upstream failure gives the N/A snapshot.
    """
    if not candles or len(candles) < TAAPI_MIN_CANDLES:
        return unavailable_snapshot()

    (limiter or _limiter).acquire()
    endpoint = f"{TAAPI_API_URL.rstrip('/')}/backfill"
    try:
        response = requests.post(
            endpoint,
            json=build_backfill_payload(candles, secret),
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        result = response.json()
    except requests.exceptions.RequestException as exc:
        logging.warning("taapi backfill failed: %s", exc)
        return unavailable_snapshot()
    except ValueError:
        logging.warning("taapi backfill returned non-JSON")
        return unavailable_snapshot()

    return parse_backfill_result(result)
