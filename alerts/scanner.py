"""
Per-user scan cycle.

Every watched token runs through one pipeline: synthetic candles, indicator
backfill, optional AI prediction, enabled presets, one-shot price alerts and
finally the AI auto-trigger. A user's flat watchlist and legacy named
watchlists are both turned into scan targets first, so they share that
pipeline. A (token address, trigger) pair notifies at most once per user per
cycle.
"""
import asyncio
import logging

from alerts.presets import AI_AUTO_TRIGGERS, evaluate_preset, matching_presets
from alerts.price_range import check_price_range_alerts, has_pending_alerts
from data.candles import fetch_dex_candles
from data.dexscreener import detect_chain_from_address
from data.predictor import fallback_prediction, predict_ai
from data.taapi import fetch_indicators, unavailable_snapshot
from utils.db import db_get, list_user_ids, log_alert
from utils.format import format_preset_alert, format_price_range_alert
from utils.watchlist import legacy_scan_targets, simple_scan_targets


def _new_stats():
    return {"tokens_scanned": 0, "alerts_sent": 0, "errors": 0}


async def _send(user_id, notifier, token, trigger, message, price, sent, stats):
    key = (str(token.get("address") or "").lower(), trigger)
    if key in sent:
        return
    sent.add(key)
    await _deliver(user_id, notifier, token, trigger, message, price, stats)


async def _deliver(user_id, notifier, token, trigger, message, price, stats):
    # Only delivered alerts count or reach the alert log.
    if not await notifier.notify(user_id, message):
        return
    stats["alerts_sent"] += 1
    await asyncio.to_thread(log_alert, user_id, token.get("symbol"), token.get("address"), trigger, price)


async def _resolve_pair(token):
    """(pair address, chain) to price ``token`` with, looked up when it was saved without a pair."""
    if token.get("pairAddress"):
        return token["pairAddress"], token.get("chain")
    candidates = await asyncio.to_thread(detect_chain_from_address, token.get("address"))
    if not candidates:
        return None, None
    chain = token.get("chain")
    pair = next((c for c in candidates if chain and c.get("chain") == chain), candidates[0])
    return pair.get("pair_address"), pair.get("chain")


async def _scan_target(user_id, target, ai_enabled, notifier, sent, stats):
    token = target["token"]
    presets = target["presets"]
    address = token.get("address")

    if not presets and not ai_enabled:
        if not await asyncio.to_thread(has_pending_alerts, user_id, address):
            return

    pair_address, chain = await _resolve_pair(token)
    if not pair_address:
        logging.warning("No pair found for %s (%s), skipping", token.get("symbol"), address)
        return
    dex = await asyncio.to_thread(fetch_dex_candles, pair_address, chain)
    if not dex:
        logging.info("No market data for %s (%s), skipping", token.get("symbol"), pair_address)
        return
    stats["tokens_scanned"] += 1

    price = dex["current_price"]
    price_change = dex["price_change"]
    if presets or ai_enabled:
        indicators = await asyncio.to_thread(fetch_indicators, dex["candles"])
    else:
        indicators = unavailable_snapshot()

    prediction = await predict_ai(indicators, price, user_id) if ai_enabled else None

    for trigger in matching_presets(presets, indicators, price_change, prediction):
        message = format_preset_alert(token, indicators, prediction or fallback_prediction(price), price, trigger)
        await _send(user_id, notifier, token, trigger, message, price, sent, stats)

    fired = await asyncio.to_thread(check_price_range_alerts, user_id, token, price)
    for alert in fired:
        trigger = f"PRICE_{str(alert.get('type')).upper()}"
        await _deliver(user_id, notifier, token, trigger, format_price_range_alert(token, price, alert), price, stats)

    if prediction and prediction.get("source") == "model":
        for trigger in AI_AUTO_TRIGGERS:
            if evaluate_preset(trigger, indicators, price_change, prediction):
                message = format_preset_alert(token, indicators, prediction, price, trigger)
                await _send(user_id, notifier, token, trigger, message, price, sent, stats)
                break


async def scan_and_alert(user_id, notifier) -> dict:
    """
    Scan every watched token of one user and push whatever fires.
    A failing token is logged and skipped; the rest of the user's tokens
    are still scanned.
    """
    stats = _new_stats()
    data = await asyncio.to_thread(db_get, f"user_{user_id}")
    if not isinstance(data, dict) or not data:
        return stats

    ai_enabled = bool((data.get("ai") or {}).get("enabled"))
    targets = simple_scan_targets(data) + legacy_scan_targets(data)
    sent = set()

    for target in targets:
        token = target["token"]
        try:
            await _scan_target(user_id, target, ai_enabled, notifier, sent, stats)
        except Exception:
            stats["errors"] += 1
            logging.exception("Error scanning %s for user %s (%s)", token.get("symbol"), user_id, target["source"])
    return stats


async def scan_all_users(notifier) -> dict:
    totals = {"users": 0, **_new_stats()}
    try:
        user_ids = await asyncio.to_thread(list_user_ids)
    except Exception:
        logging.exception("Scan cycle aborted: could not enumerate users")
        return totals

    for user_id in user_ids:
        try:
            stats = await scan_and_alert(user_id, notifier)
        except Exception:
            logging.exception("Scan failed for user %s", user_id)
            continue
        totals["users"] += 1
        for key, value in stats.items():
            totals[key] += value

    logging.info(
        "Scan cycle done: users=%s tokens=%s alerts=%s errors=%s",
        totals["users"],
        totals["tokens_scanned"],
        totals["alerts_sent"],
        totals["errors"],
    )
    return totals
