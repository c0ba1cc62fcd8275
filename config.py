"""
Configuration module for vinyl_catalog.
Handles environment variable loading and builds the settings objects that are
passed to the AI client, the catalog store and the batch scheduler.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

# --- Auto-load .env early (never overwrite real env) ---
try:
    from dotenv import load_dotenv, find_dotenv
except ModuleNotFoundError:
    raise SystemExit(
        "Missing dependency: python-dotenv. Install it with:\n"
        "  pip install python-dotenv"
    )

# Load order: .env.local (highest), .env (fallback). Do NOT override existing env.
load_dotenv(".env.local", override=False)
load_dotenv(find_dotenv(filename=".env", usecwd=True), override=False)


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default

def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default

def _env_optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


def require_envs(names):
    """Fail fast on required vars, listing every missing one."""
    missing = [k for k in names if not os.getenv(k)]
    if missing:
        raise SystemExit(
            "Missing required environment variables: "
            + ", ".join(missing)
            + "\nSet them in your shell or in .env/.env.local"
        )


@dataclass
class AISettings:
    provider: str = "gemini"                 # "gemini" | "openai"
    openai_api_key: str = ""
    gemini_api_key: str = ""
    gemini_tier: str = "free"                # "free" | "paid"
    gemini_model: str = "auto"               # "auto" | "flash" | "pro" | "flash-2"
    openai_model: str = "gpt-4o"
    request_timeout: float = 30.0            # per HTTP call to a provider
    model_cooldown: float = 60.0             # Gemini model circuit breaker
    discover_models: bool = True

    @property
    def api_key(self) -> str:
        if self.provider == "openai":
            return self.openai_api_key
        return self.gemini_api_key

    @property
    def is_turbo(self) -> bool:
        """Paid / high-throughput tier: OpenAI, or Gemini on the paid tier."""
        return self.provider == "openai" or (self.provider == "gemini" and self.gemini_tier == "paid")

    @classmethod
    def from_env(cls):
        openai_key = _env_str("OPENAI_API_KEY")
        gemini_key = _env_str("GEMINI_API_KEY")
        provider = _env_str("AI_PROVIDER").lower()
        if not provider:
            provider = "openai" if openai_key and not gemini_key else "gemini"
        return cls(
            provider=provider,
            openai_api_key=openai_key,
            gemini_api_key=gemini_key,
            gemini_tier=_env_str("GEMINI_TIER", "free").lower(),
            gemini_model=_env_str("GEMINI_MODEL", "auto").lower(),
            openai_model=_env_str("OPENAI_MODEL", "gpt-4o"),
            request_timeout=_env_float("AI_REQUEST_TIMEOUT", 30.0),
            model_cooldown=_env_float("AI_MODEL_COOLDOWN", 60.0),
            discover_models=_env_str("GEMINI_DISCOVER_MODELS", "1") not in ("0", "false", "no"),
        )


@dataclass
class SchedulerSettings:
    analysis_timeout: float = 120.0
    item_delay: float = 0.5                  # breathing room before each item
    turbo_delay: float = 1.0                 # after a success, turbo tier
    safe_delay: float = 6.0                  # after a success, safe tier
    backoff_base: float = 5.0
    backoff_factor: float = 1.5
    backoff_max: float = 60.0
    max_retries: int = 20
    max_total_wait: Optional[float] = None   # None = retry rate limits forever
    watchdog_interval: float = 15.0
    stall_after: float = 300.0
    restart_delay: float = 1.0
    log_capacity: int = 50

    @classmethod
    def from_env(cls):
        return cls(
            analysis_timeout=_env_float("BATCH_ANALYSIS_TIMEOUT", 120.0),
            item_delay=_env_float("BATCH_ITEM_DELAY", 0.5),
            turbo_delay=_env_float("BATCH_TURBO_DELAY", 1.0),
            safe_delay=_env_float("BATCH_SAFE_DELAY", 6.0),
            backoff_base=_env_float("BATCH_BACKOFF_BASE", 5.0),
            backoff_factor=_env_float("BATCH_BACKOFF_FACTOR", 1.5),
            backoff_max=_env_float("BATCH_BACKOFF_MAX", 60.0),
            max_retries=_env_int("BATCH_MAX_RETRIES", 20),
            max_total_wait=_env_optional_float("BATCH_MAX_TOTAL_WAIT"),
            watchdog_interval=_env_float("BATCH_WATCHDOG_INTERVAL", 15.0),
            stall_after=_env_float("BATCH_STALL_AFTER", 300.0),
        )


@dataclass
class RectifierSettings:
    max_dim: int = 1200
    min_dim: int = 10
    max_source_dim: int = 2048
    jpeg_quality: int = 90
    min_valid_pixels: int = 100

    @classmethod
    def from_env(cls):
        return cls(
            max_dim=_env_int("RECTIFY_MAX_DIM", 1200),
            min_dim=_env_int("RECTIFY_MIN_DIM", 10),
            max_source_dim=_env_int("RECTIFY_MAX_SOURCE_DIM", 2048),
            jpeg_quality=_env_int("RECTIFY_JPEG_QUALITY", 90),
            min_valid_pixels=_env_int("RECTIFY_MIN_PIXELS", 100),
        )


@dataclass
class PocketBaseSettings:
    url: str = "http://127.0.0.1:8090"
    collection: str = "vinyls"
    email: str = ""
    password: str = ""
    token: str = ""
    cost_field: str = "avarege_cost"         # spelling used by the persisted schema

    @classmethod
    def from_env(cls):
        return cls(
            url=_env_str("POCKETBASE_URL", "http://127.0.0.1:8090").rstrip("/"),
            collection=_env_str("POCKETBASE_COLLECTION", "vinyls"),
            email=_env_str("POCKETBASE_EMAIL"),
            password=_env_str("POCKETBASE_PASSWORD"),
            token=_env_str("POCKETBASE_TOKEN"),
            cost_field=_env_str("POCKETBASE_COST_FIELD", "avarege_cost"),
        )


@dataclass
class DiscogsSettings:
    token: str = ""
    app_name: str = "vinyl-catalog"
    app_version: str = "1.0"
    contact: str = ""
    app_url: str = ""
    format_filter: str = "Vinyl"
    country_pref: str = ""
    search_page_size: int = 10

    @classmethod
    def from_env(cls):
        return cls(
            token=_env_str("DISCOGS_TOKEN"),
            app_name=_env_str("DISCOGS_APP_NAME", "vinyl-catalog"),
            app_version=_env_str("DISCOGS_APP_VERSION", "1.0"),
            contact=_env_str("DISCOGS_CONTACT"),
            app_url=_env_str("DISCOGS_APP_URL"),
            format_filter=_env_str("FORMAT_FILTER", "Vinyl"),
            country_pref=_env_str("COUNTRY_PREF"),
            search_page_size=_env_int("SEARCH_PAGE_SIZE", 10),
        )


@dataclass
class Settings:
    ai: AISettings = field(default_factory=AISettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    rectifier: RectifierSettings = field(default_factory=RectifierSettings)
    pocketbase: PocketBaseSettings = field(default_factory=PocketBaseSettings)
    discogs: DiscogsSettings = field(default_factory=DiscogsSettings)


def load_settings() -> Settings:
    """Build every settings group from the current environment."""
    return Settings(
        ai=AISettings.from_env(),
        scheduler=SchedulerSettings.from_env(),
        rectifier=RectifierSettings.from_env(),
        pocketbase=PocketBaseSettings.from_env(),
        discogs=DiscogsSettings.from_env(),
    )
