"""
Alert preset catalog.

Each preset is a pure predicate over the indicator snapshot, the
price-change snapshot and an optional AI prediction. Inputs that are
missing, "N/A" or otherwise non-numeric make a predicate false; evaluation
never raises.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class PresetKey(str, Enum):
    OVERSOLD_HUNTER = "OVERSOLD_HUNTER"
    PUMP_DETECTOR = "PUMP_DETECTOR"
    DUMP_RECOVERY = "DUMP_RECOVERY"
    OVERBOUGHT_EXIT = "OVERBOUGHT_EXIT"
    EMA_GOLDEN_CROSS = "EMA_GOLDEN_CROSS"
    MACD_BULLISH = "MACD_BULLISH"
    VOLUME_EXPLOSION = "VOLUME_EXPLOSION"
    AI_HIGH_CONFIDENCE = "AI_HIGH_CONFIDENCE"
    AI_QUICK_FLIP = "AI_QUICK_FLIP"


def _num(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _field(source, key):
    if not isinstance(source, dict):
        return None
    return source.get(key)


def _oversold_hunter(ind, pc, pred):
    rsi = _num(_field(ind, "rsi"))
    volume = _num(_field(pc, "volume"))
    return rsi is not None and volume is not None and rsi <= 30 and volume >= 300


def _pump_detector(ind, pc, pred):
    price_5m = _num(_field(pc, "price_5m"))
    rsi = _num(_field(ind, "rsi"))
    return price_5m is not None and rsi is not None and price_5m >= 15 and rsi < 50


def _dump_recovery(ind, pc, pred):
    return _field(pc, "dump") is True and _field(pc, "recovery") is True


def _overbought_exit(ind, pc, pred):
    rsi = _num(_field(ind, "rsi"))
    volume = _num(_field(pc, "volume"))
    return rsi is not None and volume is not None and rsi >= 70 and volume >= 200


def _ema_golden_cross(ind, pc, pred):
    ema9 = _num(_field(ind, "ema9"))
    ema21 = _num(_field(ind, "ema21"))
    return ema9 is not None and ema21 is not None and ema9 > ema21


def _macd_bullish(ind, pc, pred):
    return _field(ind, "macd_cross") == "bullish"


def _volume_explosion(ind, pc, pred):
    volume = _num(_field(pc, "volume"))
    return volume is not None and volume >= 500


def _ai_high_confidence(ind, pc, pred):
    if not pred:
        return False
    prob1 = _num(_field(pred, "prob1"))
    return prob1 is not None and prob1 >= 80


def _ai_quick_flip(ind, pc, pred):
    if not pred:
        return False
    entry = _num(_field(pred, "entry"))
    tp1 = _num(_field(pred, "tp1"))
    time1 = _field(pred, "time1")
    if entry is None or tp1 is None or entry == 0 or not isinstance(time1, str):
        return False
    gain_pct = (tp1 - entry) / entry * 100
    return gain_pct >= 15 and ("15" in time1 or "30" in time1)


@dataclass(frozen=True)
class AlertPreset:
    key: PresetKey
    name: str
    description: str
    predicate: Callable[[dict, dict, Optional[dict]], bool]

    def evaluate(self, indicators, price_change, prediction=None) -> bool:
        return bool(self.predicate(indicators, price_change, prediction))


ALERT_PRESETS: dict[str, AlertPreset] = {
    p.key.value: p
    for p in (
        AlertPreset(PresetKey.OVERSOLD_HUNTER, "🟢 OVERSOLD HUNTER", "RSI ≤30 + Volume +300%", _oversold_hunter),
        AlertPreset(PresetKey.PUMP_DETECTOR, "🚀 PUMP DETECTOR", "Price +15% in 5m + RSI <50", _pump_detector),
        AlertPreset(PresetKey.DUMP_RECOVERY, "📉📈 DUMP & RECOVERY", "Price -20% then +10% in 15m", _dump_recovery),
        AlertPreset(PresetKey.OVERBOUGHT_EXIT, "🔴 OVERBOUGHT EXIT", "RSI ≥70 + Volume spike (sell)", _overbought_exit),
        AlertPreset(PresetKey.EMA_GOLDEN_CROSS, "✨ EMA GOLDEN CROSS", "EMA 9 > EMA 21", _ema_golden_cross),
        AlertPreset(PresetKey.MACD_BULLISH, "📊 MACD BULLISH CROSS", "MACD crosses signal upward", _macd_bullish),
        AlertPreset(PresetKey.VOLUME_EXPLOSION, "💥 VOLUME EXPLOSION", "Volume +500% in 5m", _volume_explosion),
        AlertPreset(PresetKey.AI_HIGH_CONFIDENCE, "🤖 AI HIGH CONFIDENCE", "AI TP1 probability ≥80%", _ai_high_confidence),
        AlertPreset(PresetKey.AI_QUICK_FLIP, "⚡ AI QUICK FLIP", "AI TP1 ≥15% + time <30min", _ai_quick_flip),
    )
}

# Checked in this order when AI is enabled; the first match is pushed.
AI_AUTO_TRIGGERS = (PresetKey.AI_HIGH_CONFIDENCE.value, PresetKey.AI_QUICK_FLIP.value)


def get_preset(key) -> Optional[AlertPreset]:
    if isinstance(key, PresetKey):
        key = key.value
    return ALERT_PRESETS.get(str(key or ""))


def evaluate_preset(key, indicators, price_change, prediction=None) -> bool:
    preset = get_preset(key)
    return preset is not None and preset.evaluate(indicators, price_change, prediction)


def matching_presets(keys, indicators, price_change, prediction=None) -> list[str]:
    """Every key in ``keys`` whose predicate holds, in the given order. Unknown keys are ignored."""
    return [k for k in keys if evaluate_preset(k, indicators, price_change, prediction)]


def enabled_preset_keys(alert_settings) -> list[str]:
    """
    Keys switched on in a user's ``alerts`` map, in catalog order.
    Older toggles stored ``active`` instead of ``enabled``; both count.
    """
    if not isinstance(alert_settings, dict):
        return []
    out = []
    for key in ALERT_PRESETS:
        entry = alert_settings.get(key)
        if isinstance(entry, dict) and (entry.get("enabled") is True or entry.get("active") is True):
            out.append(key)
    return out
