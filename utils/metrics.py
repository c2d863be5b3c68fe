def pct_change(a, b):
    if a == 0:
        return 0.0
    return (b - a) / a


def volume_change_pct(volume_m5, volume_h1):
    """
    Last 5m volume against the average 5m bucket of the last hour, in percent.
    0 when there is no hourly baseline to compare against.
    """
    try:
        recent = float(volume_m5 or 0)
        hourly = float(volume_h1 or 0)
    except (TypeError, ValueError):
        return 0.0
    baseline = hourly / 12.0
    if baseline <= 0:
        return 0.0
    return pct_change(baseline, recent) * 100.0


def price_change_snapshot(pair):
    """
    Inputs for the preset predicates derived from a normalized pair.
    dump/recovery have no detector behind them and stay False.
    """
    pair = pair or {}
    try:
        price_5m = float(pair.get("change_m5") or 0)
    except (TypeError, ValueError):
        price_5m = 0.0
    return {
        "price_5m": price_5m,
        "volume": volume_change_pct(pair.get("volume_m5"), pair.get("volume_h1")),
        "dump": False,
        "recovery": False,
    }
