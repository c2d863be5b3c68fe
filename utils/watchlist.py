import re
import time

from alerts.presets import ALERT_PRESETS, enabled_preset_keys
from data.dexscreener import fetch_watchlist_pairs
from utils.db import db_get, db_set

_WATCHLIST_ID_RE = re.compile(r"watchlist/([A-Za-z0-9_-]+)")


def _address_key(token) -> str:
    return str((token or {}).get("address") or "").lower()


def filter_blacklisted(tokens, blacklist):
    blocked = {str(s).strip().upper() for s in (blacklist or []) if str(s).strip()}
    return [
        t for t in (tokens or [])
        if isinstance(t, dict) and str(t.get("symbol") or "").strip().upper() not in blocked
    ]


def add_token_to_watchlist(user_id, token_data: dict) -> dict:
    """
    Add or, when de-duplication is on (the default), merge a token into the
    user's watchlist. Addresses compare case-insensitively.
    """
    dedup = db_get(f"user_{user_id}.watchlist.dedup")
    tokens = db_get(f"user_{user_id}.watchlist.tokens", []) or []
    token = dict(token_data)
    token.setdefault("addedAt", int(time.time() * 1000))

    if dedup is not False:
        key = _address_key(token)
        for index, existing in enumerate(tokens):
            if _address_key(existing) == key:
                merged = {**existing, **token}
                merged["addedAt"] = existing.get("addedAt", token["addedAt"])
                tokens[index] = merged
                db_set(f"user_{user_id}.watchlist.tokens", tokens)
                return {"action": "updated", "index": index}

    tokens.append(token)
    db_set(f"user_{user_id}.watchlist.tokens", tokens)
    return {"action": "added", "index": len(tokens) - 1}


def parse_watchlist_id(url: str) -> str:
    clean = re.sub(r"[`<>]", "", str(url or "")).strip()
    m = _WATCHLIST_ID_RE.search(clean)
    return m.group(1) if m else clean


def import_watchlist_from_url(user_id, url: str) -> list[dict]:
    """
    Merge a public DexScreener watchlist into the user's tokens.
    Returns only the tokens that were not already tracked.
    Raises DexScreenerError when the watchlist can't be read.
    """
    watchlist_id = parse_watchlist_id(url)
    pairs = fetch_watchlist_pairs(watchlist_id)
    now_ms = int(time.time() * 1000)

    new_tokens = []
    for pair in pairs:
        base = pair.get("baseToken") or {}
        if not base.get("address"):
            continue
        new_tokens.append({
            "symbol": base.get("symbol") or "UNKNOWN",
            "address": base.get("address"),
            "chain": pair.get("chainId"),
            "url": pair.get("url"),
            "source": "dex",
            "pairAddress": pair.get("pairAddress"),
            "addedAt": now_ms,
        })

    existing = db_get(f"user_{user_id}.watchlist.tokens", []) or []
    seen = {_address_key(t) for t in existing}
    unique_new = []
    for token in new_tokens:
        key = _address_key(token)
        if key in seen:
            continue
        seen.add(key)
        unique_new.append(token)

    db_set(f"user_{user_id}.watchlist.tokens", existing + unique_new)
    return unique_new


def simple_scan_targets(user_data: dict) -> list[dict]:
    """Flat watchlist: every token uses the user's global preset toggles."""
    user_data = user_data or {}
    tokens = ((user_data.get("watchlist") or {}).get("tokens")) or []
    presets = enabled_preset_keys(user_data.get("alerts"))
    tokens = filter_blacklisted(tokens, user_data.get("blacklist"))
    return [{"source": "watchlist", "token": t, "presets": list(presets)} for t in tokens]


def legacy_scan_targets(user_data: dict) -> list[dict]:
    """Named watchlists, each carrying its own list of active presets."""
    user_data = user_data or {}
    targets = []
    for name, wl in (user_data.get("watchlists") or {}).items():
        if not isinstance(wl, dict):
            continue
        presets = []
        for alert in wl.get("alerts") or []:
            key = (alert or {}).get("preset")
            if (alert or {}).get("active") and key in ALERT_PRESETS and key not in presets:
                presets.append(key)
        for token in filter_blacklisted(wl.get("tokens"), user_data.get("blacklist")):
            targets.append({"source": f"legacy:{name}", "token": token, "presets": presets})
    return targets
