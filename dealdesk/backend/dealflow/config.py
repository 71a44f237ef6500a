from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    DEALDESK_DB_URL: str = "sqlite+aiosqlite:///./dealdesk.db"

    # --- Minimal auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- GoHighLevel (system of record) ---
    GHL_API_KEY: str | None = None
    # Associations/relations live behind a separate private-integration token
    GHL_OBJECTS_API_KEY: str | None = None
    GHL_LOCATION_ID: str | None = None
    GHL_BASE_URL: str = "https://services.leadconnectorhq.com"
    GHL_API_VERSION: str = "2021-07-28"
    GHL_SEARCH_PAGE_LIMIT: int = 100
    GHL_SEARCH_MAX_PAGES: int = 50

    GHL_BUYER_PIPELINE_ID: str | None = None
    GHL_PROPERTY_PIPELINE_ID: str | None = None
    GHL_DEAL_PIPELINE_ID: str | None = None

    # stage relation label -> GHL association id (one association per stage)
    GHL_STAGE_ASSOCIATION_IDS: dict[str, str] = {}

    # logical field -> GHL custom field key, merged over domain.parsing.DEFAULT_FIELD_KEYS
    # e.g. GHL_FIELD_KEYS='{"desired_beds": "beds_wanted"}'
    GHL_FIELD_KEYS: dict[str, str] = {}

    # --- Geocoding ---
    MAPBOX_ACCESS_TOKEN: str | None = None
    MAPBOX_BASE_URL: str = "https://api.mapbox.com"
    GEOCACHE_TTL_HOURS: int = 24

    # --- Pipeline UI ---
    UNDO_HISTORY_SIZE: int = 200

    # --- Outbound HTTP resilience ---
    HTTP_TIMEOUT_S: float = 20.0
    HTTP_MAX_RETRIES: int = 2
    HTTP_BACKOFF_BASE_S: float = 0.5
    HTTP_RATE_LIMIT_RPS: float = 8.0  # GHL allows ~10 rps per location
    HTTP_CIRCUIT_FAIL_THRESHOLD: int = 5
    HTTP_CIRCUIT_RESET_S: float = 60.0

    # --- Scheduler tuning ---
    SCHED_GEOCACHE_PRUNE_INTERVAL_MINUTES: int = 360


settings = Settings()
