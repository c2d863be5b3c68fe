"""
AI entry/exit prediction for a watched token.

The model is asked for a JSON object with entry, stop loss, two take-profit
levels and their odds. Anything that goes wrong (network, non-JSON, missing
fields) yields the fixed-ratio fallback instead, so callers always receive a
fully populated prediction.

Accuracy is never taken from the model: it is the share of "win" outcomes
in the user's stored history. Nothing resolves a history entry out of
"pending" yet, so the figure stays at the 50% default or 0 once entries
exist.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone

import httpx

from config import (
    AI_API_KEY,
    AI_API_URL,
    AI_HISTORY_CONTEXT,
    AI_HISTORY_MAX,
    AI_MAX_TOKENS,
    AI_MODEL,
    AI_TEMPERATURE,
    AI_TIMEOUT_SECONDS,
)
from utils.db import db_get, db_push

log = logging.getLogger("predictor")

_NUMERIC_FIELDS = ("entry", "sl", "tp1", "tp2", "prob1", "prob2")
_TEXT_FIELDS = ("time1", "time2", "duration")


class PredictionParseError(ValueError):
    pass


def fallback_prediction(price: float) -> dict:
    price = float(price)
    return {
        "entry": price,
        "sl": price * 0.89,
        "tp1": price * 1.2,
        "tp2": price * 1.4,
        "prob1": 70,
        "prob2": 50,
        "time1": "15-30 min",
        "time2": "30-60 min",
        "duration": "1-2 hours",
        "accuracy": 60,
        "source": "fallback",
    }


def history_accuracy(history: list) -> float:
    if not history:
        return 50
    wins = sum(1 for h in history if isinstance(h, dict) and h.get("outcome") == "win")
    return wins / len(history) * 100


def build_prompt(indicators: dict, price: float, history: list) -> str:
    return (
        f"Analyze memecoin with RSI {indicators.get('rsi', 'N/A')}, "
        f"MACD {indicators.get('macd', 'N/A')} ({indicators.get('macd_cross', 'N/A')}), "
        f"EMA9 {indicators.get('ema9', 'N/A')}, EMA21 {indicators.get('ema21', 'N/A')}, "
        f"price {price}. Predict TP/SL. History: {json.dumps(history, separators=(',', ':'))}. "
        "Reply with only a JSON object: "
        '{"entry": number, "sl": number, "tp1": number, "tp2": number, '
        '"prob1": number, "prob2": number, "time1": string, "time2": string, "duration": string}'
    )


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        text = text[3:-3].strip()
        if text[:4].lower() == "json":
            text = text[4:]
    return text.strip()


def parse_prediction(content) -> dict:
    if not isinstance(content, str):
        raise PredictionParseError("completion content is not text")
    try:
        raw = json.loads(_strip_code_fence(content))
    except ValueError as exc:
        raise PredictionParseError(f"completion is not JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise PredictionParseError("completion JSON is not an object")

    out = {}
    for field in _NUMERIC_FIELDS:
        value = raw.get(field)
        if isinstance(value, bool) or value is None:
            raise PredictionParseError(f"missing numeric field {field}")
        try:
            out[field] = float(value)
        except (TypeError, ValueError) as exc:
            raise PredictionParseError(f"field {field} is not numeric") from exc
    for field in _TEXT_FIELDS:
        value = raw.get(field)
        if not isinstance(value, str) or not value.strip():
            raise PredictionParseError(f"missing text field {field}")
        out[field] = value.strip()
    if out["entry"] <= 0:
        raise PredictionParseError("entry must be positive")
    return out


async def _request_completion(prompt: str, client: httpx.AsyncClient | None = None) -> str:
    headers = {"Content-Type": "application/json"}
    if AI_API_KEY:
        headers["Authorization"] = f"Bearer {AI_API_KEY}"
    payload = {
        "model": AI_MODEL,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": AI_TEMPERATURE,
        "max_tokens": AI_MAX_TOKENS,
    }

    async def _post(c: httpx.AsyncClient) -> str:
        r = await c.post(AI_API_URL, headers=headers, json=payload)
        r.raise_for_status()
        data = r.json()
        return data["choices"][0]["message"]["content"]

    if client is not None:
        return await _post(client)
    async with httpx.AsyncClient(timeout=AI_TIMEOUT_SECONDS) as c:
        return await _post(c)


async def predict_ai(indicators: dict, price: float, user_id, client: httpx.AsyncClient | None = None) -> dict:
    history = await asyncio.to_thread(db_get, f"user_{user_id}.ai.history", [])
    if not isinstance(history, list):
        history = []
    prompt = build_prompt(indicators, price, history[-AI_HISTORY_CONTEXT:])

    try:
        content = await _request_completion(prompt, client)
        result = parse_prediction(content)
    except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
        log.warning("AI prediction unavailable for user %s, using fallback: %s", user_id, exc)
        return fallback_prediction(price)

    result["accuracy"] = history_accuracy(history)
    result["source"] = "model"
    await asyncio.to_thread(
        db_push,
        f"user_{user_id}.ai.history",
        {
            "indicators": dict(indicators),
            "outcome": "pending",
            "createdAt": int(datetime.now(timezone.utc).timestamp() * 1000),
        },
        AI_HISTORY_MAX,
    )
    return result
