"""
One-shot price alerts per token.

Alerts live under ``priceAlerts.<lowercase address>`` in the user document:

    {"type": "above", "price": 0.12, "triggered": False, "createdAt": ...}
    {"type": "range", "minPrice": 0.08, "maxPrice": 0.12, "triggered": False, ...}

Once an alert triggers it keeps ``triggered``/``triggeredAt``/``triggeredPrice``
and is never evaluated again; only ``clear_triggered_alerts`` removes it.
"""
import time

from utils.db import db_get, db_update

ALERT_TYPES = ("above", "below", "range")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_float(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def alert_condition_met(alert: dict, price: float) -> bool:
    kind = alert.get("type")
    if kind == "above":
        target = _as_float(alert.get("price"))
        return target is not None and price >= target
    if kind == "below":
        target = _as_float(alert.get("price"))
        return target is not None and price <= target
    if kind == "range":
        low = _as_float(alert.get("minPrice"))
        high = _as_float(alert.get("maxPrice"))
        return low is not None and high is not None and low <= price <= high
    return False


def evaluate_range_alerts(alerts: list, price: float, now_ms: int | None = None) -> list:
    """
    Mark untriggered alerts satisfied at ``price`` as triggered, in place.
    Returns only the alerts that triggered on this call.
    """
    stamp = _now_ms() if now_ms is None else now_ms
    fired = []
    for alert in alerts or []:
        if not isinstance(alert, dict) or alert.get("triggered"):
            continue
        if alert_condition_met(alert, price):
            alert["triggered"] = True
            alert["triggeredAt"] = stamp
            alert["triggeredPrice"] = price
            fired.append(alert)
    return fired


def _alerts_path(user_id, token_key: str) -> str:
    return f"user_{user_id}.priceAlerts.{token_key}"


def check_price_range_alerts(user_id, token: dict, current_price: float, now_ms: int | None = None) -> list:
    token_key = str(token.get("address") or "").lower()
    if not token_key:
        return []

    def _evaluate(alerts):
        if not isinstance(alerts, list) or not alerts:
            return None, []
        fired = evaluate_range_alerts(alerts, current_price, now_ms)
        return (alerts if fired else None), fired

    # Read, mark and write back under one lock.
    return db_update(_alerts_path(user_id, token_key), _evaluate)


def has_pending_alerts(user_id, address: str) -> bool:
    alerts = db_get(_alerts_path(user_id, str(address or "").lower()), [])
    return isinstance(alerts, list) and any(
        isinstance(a, dict) and not a.get("triggered") for a in alerts
    )


def parse_alert_value(alert_type: str, raw) -> dict:
    """Turn ``"0.12"`` or ``"0.08-0.12"`` into the stored threshold fields."""
    if alert_type not in ALERT_TYPES:
        raise ValueError("Invalid type. Use: above, below, or range")
    if alert_type == "range":
        parts = str(raw or "").split("-")
        low = _as_float(parts[0]) if len(parts) == 2 else None
        high = _as_float(parts[1]) if len(parts) == 2 else None
        if not low or not high or low <= 0 or high < low:
            raise ValueError("Invalid range format. Use: min-max (e.g., 0.08-0.12)")
        return {"minPrice": low, "maxPrice": high}
    target = _as_float(raw)
    if not target or target <= 0:
        raise ValueError("Invalid price format")
    return {"price": target}


def add_price_alert(user_id, address: str, alert_type: str, raw_value) -> dict:
    """
    Attach a new alert to a token already in the user's watchlist.
    Raises ValueError for unknown tokens or malformed thresholds.
    """
    token_key = str(address or "").lower()
    tokens = db_get(f"user_{user_id}.watchlist.tokens", []) or []
    if not any(str(t.get("address") or "").lower() == token_key for t in tokens if isinstance(t, dict)):
        raise ValueError("Token not found in your watchlist. Add it first with /watch")

    alert = {"type": alert_type, **parse_alert_value(alert_type, raw_value)}
    alert.update({"triggered": False, "createdAt": _now_ms()})

    def _append(alerts):
        alerts = alerts if isinstance(alerts, list) else []
        alerts.append(alert)
        return alerts, alert

    return db_update(_alerts_path(user_id, token_key), _append)


def clear_triggered_alerts(user_id, address: str | None = None) -> int:
    """
    Drop triggered alerts (for one token, or all). Untriggered ones stay.
    Token keys left empty are removed. Returns how many alerts were dropped.
    """

    def _clear(price_alerts):
        if not isinstance(price_alerts, dict):
            return None, 0
        keys = [str(address).lower()] if address else list(price_alerts.keys())
        removed = 0
        for key in keys:
            alerts = price_alerts.get(key)
            if not isinstance(alerts, list):
                continue
            kept = [a for a in alerts if not (isinstance(a, dict) and a.get("triggered"))]
            removed += len(alerts) - len(kept)
            if kept:
                price_alerts[key] = kept
            else:
                del price_alerts[key]
        return (price_alerts if removed else None), removed

    return db_update(f"user_{user_id}.priceAlerts", _clear)
