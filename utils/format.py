import html

from alerts.presets import get_preset
from config import TRADE_BOT_URL


def _esc(value):
    return html.escape(str(value))


def _to_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _fmt_price(value):
    num = _to_float(value)
    return "N/A" if num is None else f"{num:.6f}"


def _fmt_threshold(value):
    num = _to_float(value)
    return "N/A" if num is None else f"{num:g}"


def _rsi_badge(rsi):
    num = _to_float(rsi)
    if num is None:
        return ""
    if num <= 30:
        return " 🟢"
    if num >= 70:
        return " 🔴"
    return ""


def _chart_link(token):
    url = token.get("url")
    if not url:
        return ""
    return f'<a href="{_esc(url)}">View Chart</a>'


def format_preset_alert(token: dict, indicators: dict, prediction: dict, price: float, trigger: str) -> str:
    preset = get_preset(trigger)
    title = preset.name if preset else "CUSTOM"
    badge = "🔷 DEX" if token.get("source") == "dex" else "✏️ MANUAL"
    symbol = token.get("symbol") or "UNKNOWN"
    address = token.get("address") or ""
    pred_label = "AI PREDICTION" if prediction.get("source") == "model" else "ESTIMATE"

    lines = [
        f"🔔 <b>ALERT: {_esc(title)}</b> 🔔",
        f"{badge} | <b>${_esc(symbol)}</b> | {_esc(token.get('chain') or '?')}",
        f"Price: ${_fmt_price(price)}",
        "",
        "📊 <b>Technical Indicators</b>",
        f"RSI (5m): {_esc(indicators.get('rsi', 'N/A'))}{_rsi_badge(indicators.get('rsi'))}",
        f"MACD: {_esc(indicators.get('macd', 'N/A'))} ({_esc(indicators.get('macd_cross', 'N/A'))})",
        f"EMA 9: {_esc(indicators.get('ema9', 'N/A'))} | EMA 21: {_esc(indicators.get('ema21', 'N/A'))}",
        "",
        f"🤖 <b>{pred_label}</b> ({_esc(round(_to_float(prediction.get('accuracy')) or 0))}% Accuracy)",
        f"💰 Entry: ${_fmt_price(prediction.get('entry'))}",
        f"🛑 Stop Loss: ${_fmt_price(prediction.get('sl'))}",
        f"🎯 TP1: ${_fmt_price(prediction.get('tp1'))} "
        f"({_esc(prediction.get('prob1'))}% in {_esc(prediction.get('time1'))})",
        f"🚀 TP2: ${_fmt_price(prediction.get('tp2'))} "
        f"({_esc(prediction.get('prob2'))}% in {_esc(prediction.get('time2'))})",
        f"⏱ Duration: {_esc(prediction.get('duration'))}",
        "",
        f'<a href="{_esc(TRADE_BOT_URL)}?start=trade_{_esc(address)}">Trade Now</a>',
        f"<code>{_esc(address)}</code>",
    ]
    chart = _chart_link(token)
    if chart:
        lines.append(chart)
    return "\n".join(lines)


def format_price_range_alert(token: dict, price: float, alert: dict) -> str:
    symbol = _esc(token.get("symbol") or "UNKNOWN")
    kind = alert.get("type")
    if kind == "above":
        head = "🚀 <b>Price Alert: Above Target!</b>"
        body = f"<b>{symbol}</b> has risen above ${_fmt_threshold(alert.get('price'))}"
    elif kind == "below":
        head = "📉 <b>Price Alert: Below Target!</b>"
        body = f"<b>{symbol}</b> has fallen below ${_fmt_threshold(alert.get('price'))}"
    else:
        head = "🎯 <b>Price Alert: In Range!</b>"
        body = (
            f"<b>{symbol}</b> is now in the ${_fmt_threshold(alert.get('minPrice'))}"
            f"-${_fmt_threshold(alert.get('maxPrice'))} range"
        )

    msg = f"{head}\n\n{body}\nCurrent Price: ${_fmt_price(price)}"
    chart = _chart_link(token)
    if chart:
        msg += f"\n\n{chart}"
    return msg


def format_daily_summary(alert_count: int, portfolio: dict | None = None) -> str:
    lines = [
        "📊 <b>Daily Summary</b>",
        "",
        f"🔔 Alerts sent (24h): <b>{int(alert_count)}</b>",
    ]
    if portfolio and portfolio.get("holdings"):
        pnl = portfolio.get("totalPnl", 0.0)
        emoji = "🟢" if pnl >= 0 else "🔴"
        lines += [
            f"💰 Portfolio value: <b>${portfolio.get('totalValue', 0.0):,.2f}</b>",
            f"📈 Total P&amp;L: {emoji} <b>${pnl:,.2f} ({portfolio.get('totalPnlPercent', 0.0):.2f}%)</b>",
            f"Holdings: <b>{len(portfolio['holdings'])}</b> tokens",
        ]
    lines += ["", "Use /pnl summary to view your stats!"]
    return "\n".join(lines)
