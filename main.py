import asyncio
import html
import json
import logging
import os
import sys
import time as time_module
from datetime import datetime, time, timezone
from logging.handlers import RotatingFileHandler

from telegram import Update
from telegram.ext import ApplicationBuilder, CommandHandler, ContextTypes

from alerts.presets import ALERT_PRESETS, PresetKey, enabled_preset_keys
from alerts.price_range import add_price_alert, clear_triggered_alerts
from alerts.scanner import scan_all_users, scan_and_alert
from alerts.summary import send_daily_summaries
from config import (
    DAILY_SUMMARY_ENABLED,
    DAILY_SUMMARY_HOUR_UTC,
    DRY_RUN,
    LOG_BACKUP_COUNT,
    LOG_JSON_ENABLED,
    LOG_JSON_PATH,
    LOG_MAX_BYTES,
    SCAN_BOOT_DELAY_SECONDS,
    SCAN_INTERVAL_SECONDS,
    TELEGRAM_TOKEN,
)
from data.dexscreener import DexScreenerError, detect_chain_from_address
from utils.db import db_get, db_set, init_db
from utils.notify import TelegramNotifier
from utils.portfolio import get_portfolio_value, set_holding
from utils.scheduler import SkipIfRunning
from utils.watchlist import add_token_to_watchlist, import_watchlist_from_url


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


class _JsonFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


_root_logger = logging.getLogger()
_root_logger.setLevel(logging.INFO)
_root_logger.handlers.clear()

_stdout_handler = logging.StreamHandler(sys.stdout)
_stdout_handler.setLevel(logging.DEBUG)
_stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))

_stderr_handler = logging.StreamHandler(sys.stderr)
_stderr_handler.setLevel(logging.WARNING)

_formatter = logging.Formatter("%(levelname)s:%(name)s:%(message)s")
_stdout_handler.setFormatter(_formatter)
_stderr_handler.setFormatter(_formatter)

_root_logger.addHandler(_stdout_handler)
_root_logger.addHandler(_stderr_handler)

if LOG_JSON_ENABLED:
    os.makedirs(os.path.dirname(LOG_JSON_PATH) or ".", exist_ok=True)
    _json_handler = RotatingFileHandler(
        LOG_JSON_PATH,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
    )
    _json_handler.setLevel(logging.INFO)
    _json_handler.setFormatter(_JsonFormatter())
    _root_logger.addHandler(_json_handler)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def _esc(value):
    return html.escape(str(value))


def _require_env():
    if not TELEGRAM_TOKEN:
        raise ValueError("❌ TELEGRAM_TOKEN missing in .env")


def _notifier(context) -> TelegramNotifier:
    return TelegramNotifier(context.bot)


async def _reply(update: Update, text: str):
    await update.message.reply_text(text, parse_mode="HTML", disable_web_page_preview=True)


# ── Jobs ─────────────────────────────────────────────────────────────────────

async def _run_scan_cycle(context):
    started = time_module.monotonic()
    totals = await scan_all_users(_notifier(context))
    logging.info("Scan cycle took %.1fs (%s alerts)", time_module.monotonic() - started, totals["alerts_sent"])


run_scan_cycle = SkipIfRunning(_run_scan_cycle, name="scan_cycle")


async def send_daily_summary(context):
    await send_daily_summaries(_notifier(context))


# ── Commands ─────────────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user_id = update.effective_user.id
    existing = await asyncio.to_thread(db_get, f"user_{user_id}")
    if not existing:
        await asyncio.to_thread(
            db_set,
            f"user_{user_id}",
            {
                "watchlist": {"tokens": [], "dedup": True},
                "blacklist": [],
                "priceAlerts": {},
                "ai": {"enabled": False, "history": []},
                "alerts": {},
            },
        )
    await _reply(
        update,
        "👋 <b>DEX Alert Engine</b>\n\n"
        "/watch ADDRESS: track a token\n"
        "/import URL: import a DexScreener watchlist\n"
        "/preset KEY on|off: toggle an alert preset\n"
        "/ai on|off: AI predictions\n"
        "/alert price ADDRESS above|below|range PRICE\n"
        "/alert clear [ADDRESS]\n"
        "/blacklist SYMBOL\n"
        "/hold ADDRESS AMOUNT BUY_PRICE\n"
        "/pnl summary\n"
        "/scan: scan now",
    )


async def cmd_scan(update: Update, context: ContextTypes.DEFAULT_TYPE):
    # Shares the scheduled cycle's guard; None means a scan was already in flight.
    stats = await run_scan_cycle.run(scan_and_alert, update.effective_user.id, _notifier(context))
    if stats is None:
        await _reply(update, "⏳ A scan is already running, try again shortly.")
        return
    await _reply(
        update,
        f"🔎 Scanned {stats['tokens_scanned']} tokens, sent {stats['alerts_sent']} alerts.",
    )


async def cmd_watch(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args:
        await _reply(update, "Usage: /watch ADDRESS")
        return
    address = context.args[0].strip()
    candidates = await asyncio.to_thread(detect_chain_from_address, address)
    if not candidates:
        await _reply(update, "❌ No supported pair found for that address.")
        return

    pair = candidates[0]
    result = await asyncio.to_thread(
        add_token_to_watchlist,
        update.effective_user.id,
        {
            "address": address,
            "chain": pair["chain"],
            "symbol": pair["symbol"],
            "pairAddress": pair["pair_address"],
            "url": pair["url"],
            "source": "dex",
        },
    )
    verb = "Updated" if result["action"] == "updated" else "Added"
    await _reply(update, f"✅ {verb} <b>{_esc(pair['symbol'])}</b> on {_esc(pair['chain'])}")


async def cmd_import(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args:
        await _reply(update, "Usage: /import https://dexscreener.com/watchlist/ID")
        return
    try:
        added = await asyncio.to_thread(import_watchlist_from_url, update.effective_user.id, context.args[0])
    except DexScreenerError as exc:
        await _reply(update, f"❌ Import failed: {_esc(exc)}")
        return
    await _reply(update, f"✅ Imported {len(added)} new tokens.")


async def cmd_preset(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user_id = update.effective_user.id
    if len(context.args) != 2 or context.args[0].upper() not in ALERT_PRESETS:
        alerts = await asyncio.to_thread(db_get, f"user_{user_id}.alerts", {})
        enabled = set(enabled_preset_keys(alerts))
        rows = [
            f"{'✅' if key in enabled else '⬜'} <code>{key}</code> {_esc(p.description)}"
            for key, p in ALERT_PRESETS.items()
        ]
        await _reply(update, "Usage: /preset KEY on|off\n\n" + "\n".join(rows))
        return

    key = PresetKey(context.args[0].upper()).value
    on = context.args[1].lower() in {"on", "1", "true", "yes"}
    await asyncio.to_thread(
        db_set,
        f"user_{user_id}.alerts.{key}",
        {"enabled": on, "createdAt": int(time_module.time() * 1000)},
    )
    await _reply(update, f"{'✅' if on else '⬜'} {_esc(ALERT_PRESETS[key].name)} {'enabled' if on else 'disabled'}")


async def cmd_ai(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args or context.args[0].lower() not in {"on", "off"}:
        await _reply(update, "Usage: /ai on|off")
        return
    on = context.args[0].lower() == "on"
    await asyncio.to_thread(db_set, f"user_{update.effective_user.id}.ai.enabled", on)
    await _reply(update, f"🤖 AI predictions {'ON' if on else 'OFF'}")


async def cmd_alert(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user_id = update.effective_user.id
    args = context.args or []
    if args and args[0].lower() == "clear":
        removed = await asyncio.to_thread(clear_triggered_alerts, user_id, args[1] if len(args) > 1 else None)
        await _reply(update, f"🧹 Cleared {removed} triggered alerts.")
        return
    if len(args) != 4 or args[0].lower() != "price":
        await _reply(update, "Usage: /alert price ADDRESS above|below|range PRICE (range: min-max)")
        return

    _, address, alert_type, raw_value = args
    try:
        alert = await asyncio.to_thread(add_price_alert, user_id, address, alert_type.lower(), raw_value)
    except ValueError as exc:
        await _reply(update, f"❌ {_esc(exc)}")
        return
    if alert["type"] == "range":
        target = f"${alert['minPrice']:g}-${alert['maxPrice']:g}"
    else:
        target = f"${alert['price']:g}"
    await _reply(update, f"✅ Price alert set: {alert['type']} {target}")


async def cmd_blacklist(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user_id = update.effective_user.id
    blacklist = await asyncio.to_thread(db_get, f"user_{user_id}.blacklist", []) or []
    if not context.args:
        shown = ", ".join(_esc(s) for s in blacklist) or "empty"
        await _reply(update, f"🚫 Blacklist: {shown}")
        return
    symbol = context.args[0].strip().upper()
    if symbol not in {str(s).upper() for s in blacklist}:
        blacklist.append(symbol)
        await asyncio.to_thread(db_set, f"user_{user_id}.blacklist", blacklist)
    await _reply(update, f"🚫 {_esc(symbol)} blacklisted")


async def cmd_hold(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user_id = update.effective_user.id
    if len(context.args) != 3:
        await _reply(update, "Usage: /hold ADDRESS AMOUNT BUY_PRICE")
        return
    address, amount, price = context.args
    tokens = await asyncio.to_thread(db_get, f"user_{user_id}.watchlist.tokens", []) or []
    token = next((t for t in tokens if str(t.get("address", "")).lower() == address.lower()), None)
    if token is None:
        await _reply(update, "❌ Token not found in your watchlist. Add it first with /watch")
        return
    try:
        await asyncio.to_thread(set_holding, user_id, address, token.get("symbol"), amount, price)
    except ValueError as exc:
        await _reply(update, f"❌ {_esc(exc)}")
        return
    await _reply(update, f"💼 Position saved for <b>{_esc(token.get('symbol'))}</b>")


async def cmd_pnl(update: Update, context: ContextTypes.DEFAULT_TYPE):
    portfolio = await asyncio.to_thread(get_portfolio_value, update.effective_user.id)
    if not portfolio["holdings"]:
        await _reply(update, "💼 No positions yet. Use /hold to add one.")
        return
    lines = [
        "📊 <b>P&amp;L Summary</b>",
        f"Value: <b>${portfolio['totalValue']:,.2f}</b>",
        f"P&amp;L: <b>${portfolio['totalPnl']:,.2f} ({portfolio['totalPnlPercent']:.2f}%)</b>",
        "",
    ]
    for h in portfolio["holdings"]:
        emoji = "🟢" if h["pnl"] >= 0 else "🔴"
        lines.append(f"{emoji} <b>{_esc(h['symbol'])}</b> ${h['currentValue']:,.2f} ({h['pnlPercent']:+.2f}%)")
    await _reply(update, "\n".join(lines))


def main():
    _require_env()
    init_db()
    logging.info(
        "Startup config: SCAN_INTERVAL_SECONDS=%s DAILY_SUMMARY_ENABLED=%s DAILY_SUMMARY_HOUR_UTC=%s DRY_RUN=%s",
        SCAN_INTERVAL_SECONDS,
        DAILY_SUMMARY_ENABLED,
        DAILY_SUMMARY_HOUR_UTC,
        DRY_RUN,
    )

    app = ApplicationBuilder().token(TELEGRAM_TOKEN).build()
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("scan", cmd_scan))
    app.add_handler(CommandHandler("watch", cmd_watch))
    app.add_handler(CommandHandler("import", cmd_import))
    app.add_handler(CommandHandler("preset", cmd_preset))
    app.add_handler(CommandHandler("ai", cmd_ai))
    app.add_handler(CommandHandler("alert", cmd_alert))
    app.add_handler(CommandHandler("blacklist", cmd_blacklist))
    app.add_handler(CommandHandler("hold", cmd_hold))
    app.add_handler(CommandHandler("pnl", cmd_pnl))

    app.job_queue.run_once(
        run_scan_cycle,
        when=SCAN_BOOT_DELAY_SECONDS,
        name="scan_boot",
        job_kwargs={"misfire_grace_time": 30},
    )
    app.job_queue.run_repeating(
        run_scan_cycle,
        interval=SCAN_INTERVAL_SECONDS,
        first=SCAN_INTERVAL_SECONDS,
        name="scan_cycle",
        job_kwargs={"misfire_grace_time": 30, "coalesce": True},
    )
    if DAILY_SUMMARY_ENABLED:
        summary_hour = max(0, min(23, DAILY_SUMMARY_HOUR_UTC))
        app.job_queue.run_daily(
            send_daily_summary,
            time=time(hour=summary_hour, minute=0, tzinfo=timezone.utc),
            name="daily_summary",
            job_kwargs={"misfire_grace_time": 1800, "coalesce": True},
        )

    print("Engine started...")
    app.run_polling()


if __name__ == "__main__":
    main()
