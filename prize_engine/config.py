# prize_engine/config.py
import os
from decimal import Decimal
from pathlib import Path

_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


def _read_env_file() -> dict[str, str]:
    vals: dict[str, str] = {}
    if not _ENV_PATH.exists():
        return vals
    for line in _ENV_PATH.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        vals[k.strip()] = v.strip().strip('"').strip("'")
    return vals


_ENV_FILE_VALUES = _read_env_file()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    if v is not None and str(v).strip() != "":
        return str(v)
    return _ENV_FILE_VALUES.get(name, default)


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _env(name, "").strip()
    if not raw:
        return default
    return tuple(x.strip() for x in raw.split(",") if x.strip())

# ================== STORAGE ==================
_DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "data" / "prize_rules.db"
DB_PATH = Path(_env("DB_PATH", str(_DEFAULT_DB_PATH)))

# ================== HTTP ==================
API_HOST = _env("API_HOST", "0.0.0.0")
# Railway and similar platforms expose dynamic HTTP port in PORT.
API_PORT = int(_env("PORT", _env("API_PORT", "8080")))

# Empty key disables the header check (local/dev only).
ADMIN_API_KEY = _env("ADMIN_API_KEY", "").strip()

# ================== LOGGING ==================
LOG_LEVEL = (_env("LOG_LEVEL", "INFO") or "INFO").upper()
LOG_DIR = Path(_env("LOG_DIR", "logs"))
LOG_MAX_MB = int(_env("LOG_MAX_MB", "10") or "10")
LOG_BACKUP_COUNT = int(_env("LOG_BACKUP_COUNT", "5") or "5")

# ================== RULE SCOPES ==================
# Known scope values; the "all" wildcard is not a member, it maps to ANY.
MATCH_TYPES = _env_list("MATCH_TYPES", ("match_win", "tournament", "tdm", "wow", "special"))
GAME_TYPES = _env_list("GAME_TYPES", ("pubg_mobile", "free_fire"))

DISTRIBUTION_TYPES = ("position_based", "percentage", "kill_based", "hybrid", "custom")

# ================== RULE DEFAULTS ==================
DEFAULT_MIN_PARTICIPANTS = 2
DEFAULT_MAX_PARTICIPANTS = 100
DEFAULT_POSITION_POOL_PCT = 100
DEFAULT_KILL_POOL_PCT = 0

# ================== MONEY ==================
MONEY_QUANT = Decimal(_env("MONEY_QUANT", "0.01"))

# ================== ADMIN LISTING ==================
RULES_PAGE_LIMIT = 20
RULES_PAGE_LIMIT_MAX = 100
BULK_UPDATE_FIELDS = ("is_active", "priority", "match_type", "game_type")
