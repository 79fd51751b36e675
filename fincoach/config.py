import os

from dotenv import load_dotenv

env_path = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(env_path)
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


AWS_REGION = os.getenv("AWS_REGION", "us-west-2")
BEDROCK_CONNECT_TIMEOUT = _env_int("BEDROCK_CONNECT_TIMEOUT", 3)
BEDROCK_READ_TIMEOUT = _env_int("BEDROCK_READ_TIMEOUT", 20)
MODEL_MAX_ATTEMPTS = max(1, _env_int("MODEL_MAX_ATTEMPTS", 2))

# Model tiers: empty id means the tier is not provisioned and narration falls back to templates.
MODEL_ID_MINI = os.getenv("MODEL_ID_MINI", "")
MODEL_ID_STD = os.getenv("MODEL_ID_STD", "")
MODEL_ID_PRO = os.getenv("MODEL_ID_PRO", "")
MODEL_TOKENS_MINI = _env_int("MODEL_TOKENS_MINI", 200)
MODEL_TOKENS_STD = _env_int("MODEL_TOKENS_STD", 400)
MODEL_TOKENS_PRO = _env_int("MODEL_TOKENS_PRO", 800)
NARRATION_PROMPT_VERSION = os.getenv("NARRATION_PROMPT_VERSION", "narration_v1")
NARRATION_CONFIDENCE_MIN = _env_float("NARRATION_CONFIDENCE_MIN", 0.6)

# Intent router
ROUTER_RULES_PATH = os.getenv("ROUTER_RULES_PATH", "")
CALIBRATION_VERSION = os.getenv("CALIBRATION_VERSION", "calibration_v1")
CALIBRATION_TEMPERATURE = _env_float("CALIBRATION_TEMPERATURE", 0.3)
CALIBRATION_BIAS = _env_float("CALIBRATION_BIAS", 0.1)
CALIBRATION_SCALE = _env_float("CALIBRATION_SCALE", 1.2)
CALIBRATION_TEMPERATURE_MIN = _env_float("CALIBRATION_TEMPERATURE_MIN", 0.1)
CALIBRATION_TEMPERATURE_MAX = _env_float("CALIBRATION_TEMPERATURE_MAX", 1.0)
ROUTER_ENTER_THRESHOLD = _env_float("ROUTER_ENTER_THRESHOLD", 0.6)
ROUTER_EXIT_THRESHOLD = _env_float("ROUTER_EXIT_THRESHOLD", 0.55)
ROUTER_MIN_STABLE_MS = max(0, _env_int("ROUTER_MIN_STABLE_MS", 5000))
ROUTER_STABILITY_WINDOW_MS = max(0, _env_int("ROUTER_STABILITY_WINDOW_MS", 30000))
ROUTER_STABILITY_MIN_SAMPLES = max(2, _env_int("ROUTER_STABILITY_MIN_SAMPLES", 3))
ROUTER_STABILITY_VARIANCE_MAX = _env_float("ROUTER_STABILITY_VARIANCE_MAX", 0.01)
ROUTER_HISTORY_SIZE = max(3, _env_int("ROUTER_HISTORY_SIZE", 10))
ROUTER_UNKNOWN_FLOOR = _env_float("ROUTER_UNKNOWN_FLOOR", 0.3)
ROUTER_LLM_FLOOR = _env_float("ROUTER_LLM_FLOOR", 0.3)
ROUTER_SECONDARY_MIN = _env_float("ROUTER_SECONDARY_MIN", 0.3)
ROUTER_SHADOW_MIN = _env_float("ROUTER_SHADOW_MIN", 0.2)
ROUTER_SHADOW_ENABLED = _env_bool("ROUTER_SHADOW_ENABLED", True)

# Fast-answer lane
SIMPLE_QA_MIN_SCORE = _env_float("SIMPLE_QA_MIN_SCORE", 3.0)
REPEAT_WINDOW_SECONDS = max(0, _env_int("REPEAT_WINDOW_SECONDS", 120))
KB_PATH = os.getenv("KB_PATH", "")
KB_TOP_K = max(1, _env_int("KB_TOP_K", 3))
KB_MIN_SCORE = _env_float("KB_MIN_SCORE", 0.65)
KB_CONTEXT_MIN_SCORE = _env_float("KB_CONTEXT_MIN_SCORE", 0.5)
KB_SEARCH_CACHE_TTL_SECONDS = max(0, _env_int("KB_SEARCH_CACHE_TTL_SECONDS", 300))
MINI_CACHE_TTL_SECONDS = max(60, _env_int("MINI_CACHE_TTL_SECONDS", 6 * 3600))
MINI_CACHE_MAX_ENTRIES = max(1, _env_int("MINI_CACHE_MAX_ENTRIES", 100))

# Usefulness guard
USEFULNESS_MIN_LOW = _env_float("USEFULNESS_MIN_LOW", 3.0)
USEFULNESS_MIN_MEDIUM = _env_float("USEFULNESS_MIN_MEDIUM", 4.0)
USEFULNESS_MIN_HIGH = _env_float("USEFULNESS_MIN_HIGH", 5.0)

# Fact pack
FACTPACK_WINDOW_DAYS = max(1, _env_int("FACTPACK_WINDOW_DAYS", 30))
FACTPACK_RECENT_TX_LIMIT = max(1, _env_int("FACTPACK_RECENT_TX_LIMIT", 20))
FACTPACK_STALE_DAYS = max(1, _env_int("FACTPACK_STALE_DAYS", 7))
FACTPACK_DATA_VERSION = os.getenv("FACTPACK_DATA_VERSION", "1.0.0")

# Session
FOCUS_TTL_SECONDS = max(0, _env_int("FOCUS_TTL_SECONDS", 600))
PENDING_ACTION_TTL_SECONDS = max(0, _env_int("PENDING_ACTION_TTL_SECONDS", 600))
SESSION_IDLE_TTL_SECONDS = max(60, _env_int("SESSION_IDLE_TTL_SECONDS", 3600))
SESSION_STORE_MAX_ENTRIES = max(1, _env_int("SESSION_STORE_MAX_ENTRIES", 1000))

# Concurrency
LOOKUP_TIMEOUT_SECONDS = _env_float("LOOKUP_TIMEOUT_SECONDS", 2.0)
LOOKUP_MAX_WORKERS = max(1, _env_int("LOOKUP_MAX_WORKERS", 4))

# Analytics
ANALYTICS_ENDPOINT = os.getenv("ANALYTICS_ENDPOINT", "")
ANALYTICS_TIMEOUT = _env_int("ANALYTICS_TIMEOUT", 3)
ANALYTICS_ENABLED = _env_bool("ANALYTICS_ENABLED", True)
