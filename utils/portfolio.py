import logging
import time

from data.dexscreener import fetch_pair_snapshot
from utils.db import db_get, db_set


def set_holding(user_id, address: str, symbol: str, amount, avg_buy_price) -> dict:
    """Record (or overwrite) a position for a token. Raises ValueError on bad numbers."""
    try:
        amount = float(amount)
        avg_buy_price = float(avg_buy_price)
    except (TypeError, ValueError) as exc:
        raise ValueError("Amount and buy price must be numbers") from exc
    if amount <= 0 or avg_buy_price <= 0:
        raise ValueError("Amount and buy price must be positive")

    holding = {
        "symbol": symbol,
        "amount": amount,
        "avgBuyPrice": avg_buy_price,
        "addedAt": int(time.time() * 1000),
    }
    db_set(f"user_{user_id}.portfolio.{str(address).lower()}", holding)
    return holding


def get_portfolio_value(user_id) -> dict:
    portfolio = db_get(f"user_{user_id}.portfolio", {}) or {}
    tokens = db_get(f"user_{user_id}.watchlist.tokens", []) or []

    total_value = 0.0
    total_cost = 0.0
    holdings = []
    for token in tokens:
        if not isinstance(token, dict) or not token.get("address"):
            continue
        holding = portfolio.get(str(token["address"]).lower())
        if not isinstance(holding, dict) or float(holding.get("amount") or 0) <= 0:
            continue

        snapshot = fetch_pair_snapshot(token.get("pairAddress") or token["address"], token.get("chain"))
        price = float((snapshot or {}).get("current_price") or 0)
        if price <= 0:
            logging.info("Portfolio: no price for %s, skipped", token.get("symbol"))
            continue

        amount = float(holding["amount"])
        avg_buy = float(holding.get("avgBuyPrice") or 0)
        value = amount * price
        cost = amount * avg_buy
        pnl = value - cost
        total_value += value
        total_cost += cost
        holdings.append({
            "symbol": token.get("symbol"),
            "chain": token.get("chain"),
            "amount": amount,
            "avgBuyPrice": avg_buy,
            "currentPrice": price,
            "currentValue": value,
            "costBasis": cost,
            "pnl": pnl,
            "pnlPercent": (pnl / cost * 100) if cost > 0 else 0.0,
        })

    total_pnl = total_value - total_cost
    return {
        "totalValue": total_value,
        "totalCostBasis": total_cost,
        "totalPnl": total_pnl,
        "totalPnlPercent": (total_pnl / total_cost * 100) if total_cost > 0 else 0.0,
        "holdings": holdings,
    }
