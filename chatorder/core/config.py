import os

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name}: {raw}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name}: {raw}") from exc


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./chatorder.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
AUTO_APPLY_MIGRATIONS = os.getenv("AUTO_APPLY_MIGRATIONS", "0").strip().lower() in _TRUE_VALUES

# Messenger / Graph API
FACEBOOK_APP_SECRET = os.getenv("FACEBOOK_APP_SECRET", "").strip()
FACEBOOK_VERIFY_TOKEN = os.getenv("FACEBOOK_VERIFY_TOKEN", "").strip()
FACEBOOK_PAGE_ACCESS_TOKEN = os.getenv("FACEBOOK_PAGE_ACCESS_TOKEN", "").strip()
MESSENGER_API_VERSION = os.getenv("MESSENGER_API_VERSION", "v18.0")
MESSENGER_GRAPH_BASE_URL = os.getenv("MESSENGER_GRAPH_BASE_URL", "https://graph.facebook.com").rstrip("/")
MESSENGER_HTTP_TIMEOUT_SECONDS = _env_float("MESSENGER_HTTP_TIMEOUT_SECONDS", 10.0)
MESSENGER_USE_MOCK = os.getenv("MESSENGER_USE_MOCK", "0").strip().lower() in _TRUE_VALUES

# Sessions
SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)
SESSION_CAS_MAX_RETRIES = _env_int("SESSION_CAS_MAX_RETRIES", 3)
REACTIVE_WINDOW_HOURS = _env_int("REACTIVE_WINDOW_HOURS", 24)

# Outbound sends
SEND_MAX_ATTEMPTS = _env_int("SEND_MAX_ATTEMPTS", 3)
SEND_MAX_BACKOFF_SECONDS = _env_float("SEND_MAX_BACKOFF_SECONDS", 8.0)
SEND_THROTTLE_THRESHOLD = _env_int("SEND_THROTTLE_THRESHOLD", 3)
RATE_LIMIT_COOLDOWN_SECONDS = _env_float("RATE_LIMIT_COOLDOWN_SECONDS", 2.0)

# Webhook
WEBHOOK_ACK_BUDGET_SECONDS = _env_float("WEBHOOK_ACK_BUDGET_SECONDS", 4.0)

# Delivery (Lalamove)
QUOTE_TIMEOUT_SECONDS = _env_float("QUOTE_TIMEOUT_SECONDS", 8.0)
DELIVERY_HTTP_TIMEOUT_SECONDS = _env_float("DELIVERY_HTTP_TIMEOUT_SECONDS", 10.0)
LALAMOVE_BASE_URL = os.getenv("LALAMOVE_BASE_URL", "https://rest.lalamove.com").rstrip("/")
LALAMOVE_SANDBOX_BASE_URL = os.getenv(
    "LALAMOVE_SANDBOX_BASE_URL", "https://rest.sandbox.lalamove.com"
).rstrip("/")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
