import asyncio
import logging

from utils.db import count_alerts_since, db_get, list_user_ids
from utils.format import format_daily_summary
from utils.portfolio import get_portfolio_value


def _has_holdings(user_id) -> bool:
    portfolio = db_get(f"user_{user_id}.portfolio", {}) or {}
    return isinstance(portfolio, dict) and any(
        isinstance(h, dict) and float(h.get("amount") or 0) > 0 for h in portfolio.values()
    )


async def send_daily_summaries(notifier) -> int:
    """Push the 24h recap to every known user. Returns how many were built."""
    try:
        user_ids = await asyncio.to_thread(list_user_ids)
    except Exception:
        logging.exception("Daily summary aborted: could not enumerate users")
        return 0

    sent = 0
    for user_id in user_ids:
        try:
            count = await asyncio.to_thread(count_alerts_since, user_id, 24)
            portfolio = None
            if await asyncio.to_thread(_has_holdings, user_id):
                portfolio = await asyncio.to_thread(get_portfolio_value, user_id)
            await notifier.notify(user_id, format_daily_summary(count, portfolio))
            sent += 1
        except Exception:
            logging.exception("Daily summary failed for user %s", user_id)
    logging.info("Daily summary sent to %s users", sent)
    return sent
