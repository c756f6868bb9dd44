from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    RENTMAP_DB_URL: str = "sqlite+aiosqlite:///./rentmap.db"
    LOG_LEVEL: str = "INFO"

    # --- Minimal admin auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Inference providers (ordered: OpenRouter first, OpenAI second) ---
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_MODEL: str = "deepseek/deepseek-chat"
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-3.5-turbo"
    AI_HTTP_TIMEOUT_S: float = 30.0
    AI_TEMPERATURE: float = 0.1
    AI_MAX_TOKENS: int = 1000

    # --- Cost governance ---
    AI_MONTHLY_SPENDING_LIMIT: float = 100.0  # USD per calendar month
    AI_SPENDING_WARN_RATIO: float = 0.8

    # --- Extraction ---
    PUBLISH_CONFIDENCE_THRESHOLD: float = 0.6
    MIN_POST_TEXT_LENGTH: int = 20
    EXTRACTION_CACHE_TTL_DAYS: int = 30

    # --- Geocoding ---
    GOOGLE_MAPS_API_KEY: str | None = None
    GOOGLE_GEOCODE_URL: str = "https://maps.googleapis.com/maps/api/geocode/json"
    OPENCAGE_API_KEY: str | None = None
    OPENCAGE_GEOCODE_URL: str = "https://api.opencagedata.com/geocode/v1/json"
    GOOGLE_MIN_INTERVAL_MS: int = 100
    OPENCAGE_MIN_INTERVAL_MS: int = 1000  # free tier is 1 rps
    GEOCODE_HTTP_TIMEOUT_S: float = 10.0

    # Tbilisi bounding box
    CITY_NORTH: float = 41.8
    CITY_SOUTH: float = 41.6
    CITY_EAST: float = 44.9
    CITY_WEST: float = 44.7

    # --- Shared HTTP retry knobs (resilient_request) ---
    HTTP_MAX_RETRIES: int = 2
    HTTP_BACKOFF_BASE_S: float = 0.5

    # --- Pipeline stages ---
    SCRAPE_MAX_ATTEMPTS: int = 3
    SCRAPE_BACKOFF_BASE_S: float = 2.0
    SCRAPE_CONCURRENCY: int = 2

    EXTRACT_MAX_ATTEMPTS: int = 2
    EXTRACT_BACKOFF_BASE_S: float = 1.0
    EXTRACT_CONCURRENCY: int = 4

    GEOCODE_MAX_ATTEMPTS: int = 3
    GEOCODE_BACKOFF_BASE_S: float = 1.5
    GEOCODE_CONCURRENCY: int = 2

    PERSIST_MAX_ATTEMPTS: int = 2
    PERSIST_BACKOFF_BASE_S: float = 0.5
    PERSIST_CONCURRENCY: int = 2

    # --- Clustering ---
    CLUSTER_BASE_GRID_SIZE: float = 0.5  # degrees at zoom 0
    CLUSTER_MERGE_MULTIPLIER: float = 1.5
    CLUSTER_CACHE_TTL_S: float = 60.0
    CLUSTER_CACHE_MAX_ENTRIES: int = 100

    # --- Realtime subscriptions ---
    SUBSCRIPTION_MAX_PER_CONNECTION: int = 10
    WS_MESSAGE_RATE_LIMIT: int = 100
    WS_MESSAGE_RATE_WINDOW_S: float = 60.0

    # --- Scheduler / maintenance ---
    SCHED_ENABLED: bool = False
    SCHED_CHANNELS: str = ""  # comma separated channel names
    SCHED_PARSE_INTERVAL_MINUTES: int = 30
    SCHED_MAINTENANCE_INTERVAL_MINUTES: int = 1440  # daily
    GEOCODE_CACHE_MAX_AGE_DAYS: int = 30
    LISTING_INACTIVE_DAYS: int = 30
    PROCESSED_POST_RETENTION_DAYS: int = 60
    CHANNEL_FIXTURES_DIR: str = "data/channels"


settings = Settings()
