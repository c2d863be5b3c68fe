import logging

import requests

from config import (
    ALLOWED_CHAINS,
    CHAIN_DETECT_TIMEOUT_SECONDS,
    DEXSCREENER_API_URL,
    MAX_CHAIN_CANDIDATES,
    REQUEST_TIMEOUT_SECONDS,
)

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Origin": "https://dexscreener.com",
    "Accept-Language": "en-US,en;q=0.9",
}


class DexScreenerError(Exception):
    """Raised by lookups whose caller needs the failure reason (watchlist import)."""
    pass


def _to_float(value, default=0.0):
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _base_url():
    return DEXSCREENER_API_URL or "https://api.dexscreener.com"


def _normalize_pair(pair):
    pair = pair or {}
    base_token = pair.get("baseToken", {}) or {}
    volume = pair.get("volume", {}) or {}
    price_change = pair.get("priceChange", {}) or {}
    chain_id = str(pair.get("chainId") or "").strip().lower()
    pair_address = pair.get("pairAddress")

    return {
        "symbol": base_token.get("symbol") or "UNKNOWN",
        "address": base_token.get("address"),
        "chain": chain_id,
        "pair_address": pair_address,
        "url": pair.get("url") or (
            f"https://dexscreener.com/{chain_id}/{pair_address}" if chain_id and pair_address else ""
        ),
        "price": _to_float(pair.get("priceUsd", 0)),
        "liquidity": _to_float((pair.get("liquidity", {}) or {}).get("usd", 0)),
        "volume_m5": _to_float(volume.get("m5", 0)),
        "volume_h1": _to_float(volume.get("h1", 0)),
        "volume_24h": _to_float(volume.get("h24", 0)),
        "change_m5": _to_float(price_change.get("m5", 0)),
        "change_1h": _to_float(price_change.get("h1", 0)),
        "change_24h": _to_float(price_change.get("h24", 0)),
        "source": "dexscreener",
    }


def fetch_pair_snapshot(pair_address, chain=None):
    """
    Current price and metadata for one trading pair.
    Returns None when the pair is unknown or the API is unreachable.
    """
    if not pair_address:
        return None
    if chain:
        endpoint = f"{_base_url().rstrip('/')}/latest/dex/pairs/{chain}/{pair_address}"
    else:
        endpoint = f"{_base_url().rstrip('/')}/latest/dex/pairs/{pair_address}"
    try:
        response = requests.get(endpoint, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json() or {}
    except requests.exceptions.RequestException as exc:
        logging.warning("DexScreener pair lookup failed for %s: %s", pair_address, exc)
        return None
    except ValueError:
        logging.warning("DexScreener returned non-JSON for pair %s", pair_address)
        return None

    pairs = data.get("pairs") or []
    raw = pairs[0] if pairs else data.get("pair")
    if not raw:
        return None

    pair = _normalize_pair(raw)
    return {"current_price": pair["price"], "pair": pair}


def fetch_token_pairs(address, timeout=None):
    if not address:
        return []
    endpoint = f"{_base_url().rstrip('/')}/latest/dex/tokens/{address}"
    try:
        response = requests.get(
            endpoint,
            headers={**_BROWSER_HEADERS, "Referer": "https://dexscreener.com/"},
            timeout=timeout or REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json() or {}
    except requests.exceptions.RequestException as exc:
        logging.warning("DexScreener token lookup failed for %s: %s", address, exc)
        return []
    except ValueError:
        return []
    return data.get("pairs", []) or []


def detect_chain_from_address(address):
    """
    Candidate pairs for a bare token address, one per supported chain.
    Most liquid first (then 24h volume); None when nothing matches.
    """
    pairs = fetch_token_pairs(address, timeout=CHAIN_DETECT_TIMEOUT_SECONDS)
    normalized = [
        p for p in (_normalize_pair(pair) for pair in pairs)
        if any(allowed in p["chain"] for allowed in ALLOWED_CHAINS)
    ]
    if not normalized:
        return None

    normalized.sort(key=lambda p: (p["liquidity"], p["volume_24h"]), reverse=True)

    candidates = []
    seen_chains = set()
    for pair in normalized:
        if pair["chain"] in seen_chains:
            continue
        seen_chains.add(pair["chain"])
        candidates.append(pair)
        if len(candidates) >= MAX_CHAIN_CANDIDATES:
            break
    return candidates


def fetch_watchlist_pairs(watchlist_id):
    """Pairs of a public DexScreener watchlist. Raises DexScreenerError on any failure."""
    endpoint = f"{_base_url().rstrip('/')}/watchlists/v1/{watchlist_id}"
    try:
        response = requests.get(
            endpoint,
            headers={**_BROWSER_HEADERS, "Referer": f"https://dexscreener.com/watchlist/{watchlist_id}"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.exceptions.RequestException as exc:
        raise DexScreenerError(f"DexScreener unreachable: {exc}") from exc
    if not response.ok:
        raise DexScreenerError(f"DexScreener {response.status_code}")
    try:
        data = response.json() or {}
    except ValueError as exc:
        raise DexScreenerError("DexScreener returned non-JSON") from exc

    pairs = data.get("pairs") or []
    if not pairs:
        raise DexScreenerError("Empty watchlist or invalid ID")
    return pairs
