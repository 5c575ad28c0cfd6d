import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()

DEFAULT_HUBS = [
    "Seattle, WA",
    "Portland, OR",
    "Sacramento, CA",
    "San Francisco, CA",
    "Los Angeles, CA",
    "San Diego, CA",
    "Las Vegas, NV",
    "Phoenix, AZ",
    "Salt Lake City, UT",
    "Denver, CO",
    "Dallas, TX",
    "Houston, TX",
    "San Antonio, TX",
    "New Orleans, LA",
    "Oklahoma City, OK",
    "Kansas City, MO",
    "St. Louis, MO",
    "Minneapolis, MN",
    "Chicago, IL",
    "Indianapolis, IN",
    "Detroit, MI",
    "Nashville, TN",
    "Atlanta, GA",
    "Charlotte, NC",
    "Orlando, FL",
    "Miami, FL",
    "Pittsburgh, PA",
    "Washington, DC",
    "Philadelphia, PA",
    "New York, NY",
    "Boston, MA",
]


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Petfinder Configuration
    petfinder_client_id: str = Field(default="", alias="PETFINDER_CLIENT_ID")
    petfinder_client_secret: str = Field(default="", alias="PETFINDER_CLIENT_SECRET")
    petfinder_base_url: str = Field(
        default="https://api.petfinder.com/v2", alias="PETFINDER_BASE_URL"
    )
    petfinder_timeout: float = Field(default=30.0, alias="PETFINDER_TIMEOUT")

    # OpenCage Configuration
    opencage_api_key: str = Field(default="", alias="OPENCAGE_API_KEY")
    opencage_base_url: str = Field(
        default="https://api.opencagedata.com/geocode/v1", alias="OPENCAGE_BASE_URL"
    )
    geocode_daily_limit: int = Field(default=2500, alias="GEOCODE_DAILY_LIMIT")
    geocode_ttl_days: int = Field(default=30, alias="GEOCODE_TTL_DAYS")

    # Shared Cache Configuration (empty url -> in-process cache)
    redis_url: str = Field(default="", alias="REDIS_URL")
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./pawreels.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Call Governor Configuration
    api_daily_limit: int = Field(default=989, alias="API_DAILY_LIMIT")
    retry_attempts: int = Field(default=3, alias="API_RETRY_ATTEMPTS")
    retry_base_delay: float = Field(default=2.0, alias="API_RETRY_BASE_DELAY")

    # Token Manager Configuration
    token_expiry_margin: int = Field(default=60, alias="TOKEN_EXPIRY_MARGIN")
    token_lock_ttl: int = Field(default=10, alias="TOKEN_LOCK_TTL")
    token_retry_delay: float = Field(default=2.0, alias="TOKEN_RETRY_DELAY")

    # Sync Pipeline Configuration
    hubs: list[str] = Field(default_factory=lambda: list(DEFAULT_HUBS), alias="SYNC_HUBS")
    scan_radius_miles: int = Field(default=150, alias="SCAN_RADIUS_MILES")
    page_limit: int = Field(default=100, alias="PAGE_LIMIT")
    discovery_max_pages: int = Field(default=1, alias="DISCOVERY_MAX_PAGES")
    quick_scan_per_hub: int = Field(default=5, alias="QUICK_SCAN_PER_HUB")
    quick_scan_max_pages: int = Field(default=2, alias="QUICK_SCAN_MAX_PAGES")
    refresh_pages: int = Field(default=3, alias="REFRESH_PAGES")
    refresh_batch_size: int = Field(default=20, alias="REFRESH_BATCH_SIZE")
    refresh_max_records: int = Field(default=100, alias="REFRESH_MAX_RECORDS")
    at_risk_hours: float = Field(default=23.0, alias="AT_RISK_HOURS")
    stale_hours: float = Field(default=25.0, alias="STALE_HOURS")
    pacing_seconds: float = Field(default=2.0, alias="PACING_SECONDS")
    blocked_video_hosts: list[str] = Field(
        default_factory=lambda: ["youtube", "vimeo", "facebook"],
        alias="BLOCKED_VIDEO_HOSTS",
    )

    # Feed Configuration
    local_radius_km: float = Field(default=80.0, alias="FEED_LOCAL_RADIUS_KM")
    regional_radius_km: float = Field(default=400.0, alias="FEED_REGIONAL_RADIUS_KM")
    local_limit: int = Field(default=50, alias="FEED_LOCAL_LIMIT")
    regional_limit: int = Field(default=150, alias="FEED_REGIONAL_LIMIT")
    nationwide_limit: int = Field(default=200, alias="FEED_NATIONWIDE_LIMIT")
    feed_page_size: int = Field(default=10, alias="FEED_PAGE_SIZE")
    session_ttl_seconds: int = Field(default=7200, alias="SESSION_TTL_SECONDS")
    browse_cache_ttl_seconds: int = Field(default=3600, alias="BROWSE_CACHE_TTL")

    # Scheduler Configuration
    discovery_hour: int = Field(default=2, alias="DISCOVERY_HOUR")
    quick_scan_interval_minutes: int = Field(default=15, alias="QUICK_SCAN_INTERVAL")
    refresh_interval_hours: int = Field(default=1, alias="REFRESH_INTERVAL")
    janitor_interval_minutes: int = Field(default=30, alias="JANITOR_INTERVAL")
    cleanup_hour: int = Field(default=4, alias="CLEANUP_HOUR")

    @field_validator("hubs", mode="before")
    @classmethod
    def _split_hubs(cls, value):
        # "City, ST" entries contain commas, so hubs are ';'-separated
        if isinstance(value, str):
            return [hub.strip() for hub in value.split(";") if hub.strip()]
        return value

    @field_validator("blocked_video_hosts", mode="before")
    @classmethod
    def _split_hosts(cls, value):
        if isinstance(value, str):
            return [host.strip().lower() for host in value.split(",") if host.strip()]
        return value


global_settings = Settings(**os.environ)
