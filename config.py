import os
from dotenv import load_dotenv

# Use .env as source of truth even if process env already has stale values.
load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _csv_values(raw: str) -> list[str]:
    return [x.strip() for x in str(raw or "").split(",") if x.strip()]


# =========================================================
# TELEGRAM
# =========================================================

TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN", "").strip()
TRADE_BOT_URL = os.getenv("TRADE_BOT_URL", "https://t.me/basedbot_bot").strip()
DRY_RUN = _env_bool("DRY_RUN", default=False)

# =========================================================
# STORAGE
# =========================================================

DB_PATH = os.getenv(
    "DB_PATH",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data_storage", "bot_users.db"),
)

# =========================================================
# MARKET DATA (DexScreener)
# =========================================================

DEXSCREENER_API_URL = os.getenv("DEXSCREENER_API_URL", "").strip()
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "15"))
CHAIN_DETECT_TIMEOUT_SECONDS = float(os.getenv("CHAIN_DETECT_TIMEOUT_SECONDS", "10"))
ALLOWED_CHAINS = [
    c.lower()
    for c in _csv_values(os.getenv("ALLOWED_CHAINS", "ethereum,bsc,base,arbitrum,solana"))
]
MAX_CHAIN_CANDIDATES = int(os.getenv("MAX_CHAIN_CANDIDATES", "5"))

# Synthetic candle series
CANDLE_COUNT = int(os.getenv("CANDLE_COUNT", "100"))
CANDLE_INTERVAL_SECONDS = int(os.getenv("CANDLE_INTERVAL_SECONDS", "300"))

# =========================================================
# INDICATORS (taapi.io backfill)
# =========================================================

TAAPI_SECRET = os.getenv("TAAPI_SECRET", "").strip()
TAAPI_API_URL = os.getenv("TAAPI_API_URL", "https://api.taapi.io").strip()
# Fixed window: after this many calls, block for the cooldown and reset.
TAAPI_MAX_CALLS = int(os.getenv("TAAPI_MAX_CALLS", "90"))
TAAPI_COOLDOWN_SECONDS = float(os.getenv("TAAPI_COOLDOWN_SECONDS", "60"))
TAAPI_MIN_CANDLES = int(os.getenv("TAAPI_MIN_CANDLES", "50"))

# =========================================================
# AI PREDICTION
# =========================================================

AI_API_URL = os.getenv("AI_API_URL", "https://api.puter.com/v2/ai/chat").strip()
AI_API_KEY = os.getenv("AI_API_KEY", "").strip()
AI_MODEL = os.getenv("AI_MODEL", "deepseek-v3.1").strip()
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.7"))
AI_MAX_TOKENS = int(os.getenv("AI_MAX_TOKENS", "300"))
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))
AI_HISTORY_CONTEXT = int(os.getenv("AI_HISTORY_CONTEXT", "5"))
AI_HISTORY_MAX = int(os.getenv("AI_HISTORY_MAX", "200"))

# =========================================================
# SCHEDULING / REPORTING
# =========================================================

SCAN_INTERVAL_SECONDS = int(os.getenv("SCAN_INTERVAL_SECONDS", "120"))
SCAN_BOOT_DELAY_SECONDS = int(os.getenv("SCAN_BOOT_DELAY_SECONDS", "5"))
DAILY_SUMMARY_ENABLED = _env_bool("DAILY_SUMMARY_ENABLED", default=True)
DAILY_SUMMARY_HOUR_UTC = int(os.getenv("DAILY_SUMMARY_HOUR_UTC", "0"))

# =========================================================
# LOGGING
# =========================================================

LOG_JSON_ENABLED = _env_bool("LOG_JSON_ENABLED", default=True)
LOG_JSON_PATH = os.getenv("LOG_JSON_PATH", "logs/engine.jsonl")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", "5242880"))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))
