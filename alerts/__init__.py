from .presets import AI_AUTO_TRIGGERS, ALERT_PRESETS, AlertPreset, PresetKey, evaluate_preset, matching_presets
from .price_range import check_price_range_alerts, clear_triggered_alerts
