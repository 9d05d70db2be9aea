from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Load apps/hub/.env and accept env keys in any case
    _env_file = Path(__file__).resolve().parent.parent / ".env"
    model_config = SettingsConfigDict(env_file=str(_env_file), extra="ignore", case_sensitive=False)

    app_name: str = "Wind Hub"
    app_version: str = "0.1.0"
    debug: bool = True
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8000

    # Primary backend
    wind_api_base_url: str = Field(
        default="https://pnp.miko.ru/api",
        description="Base URL of the primary wind backend; relative endpoint paths resolve under it.",
    )
    wind_request_timeout: float = Field(default=10.0, ge=1.0, description="Timeout in seconds for a single backend attempt")
    wind_max_retries: int = Field(default=3, ge=1, le=10, description="Attempts per backend request, first try included")
    wind_user_agent: str = Field(
        default="WindHub/0.1.0 (support@example.com)",
        description="User-Agent sent to the backend and Open-Meteo.",
    )

    # Streaming
    wind_stream_path: str = Field(default="wind/stream", description="SSE endpoint path relative to the backend base URL")
    wind_stream_read_timeout: float = Field(
        default=30.0,
        ge=1.0,
        description="Read timeout on the SSE connection; expiry counts as a disconnect.",
    )
    wind_stream_reconnect_delay: float = Field(
        default=5.0,
        gt=0.0,
        description="Base reconnect delay in seconds, doubled for each consecutive failed session.",
    )
    wind_stream_max_backoff: float = Field(default=60.0, gt=0.0, description="Upper bound for the reconnect delay")
    wind_stream_queue_size: int = Field(
        default=256,
        ge=1,
        description="Updates buffered for a slow consumer before the stream reader waits.",
    )
    wind_stream_relay_enabled: bool = Field(
        default=False,
        description="Subscribe to the backend stream on startup and relay updates to /api/v1/events/stream.",
    )

    # Local store
    wind_store_db: str = Field(
        default="data/wind_store.sqlite",
        description="SQLite database path for last-known-good wind data shared by all hub processes.",
    )
    background_max_age_seconds: float = Field(
        default=600.0,
        ge=0.0,
        description="Cached data younger than this is reused by the background refresh without fetching.",
    )
    refresh_enabled: bool = Field(default=False, description="Run the periodic background refresh loop.")
    refresh_interval_seconds: float = Field(default=300.0, ge=5.0, description="Spacing between background refreshes")

    # Venue
    venue_name: str = Field(default="Pak Nam Pran")
    venue_latitude: float = Field(default=12.346596, ge=-90.0, le=90.0)
    venue_longitude: float = Field(default=99.998179, ge=-180.0, le=180.0)
    venue_timezone: str = Field(default="Asia/Bangkok", description="IANA zone used for the venue's calendar day")

    # Fallback providers
    ambient_base_url: str = Field(
        default="https://lightning.ambientweather.net",
        description="Base URL for the Ambient Weather public device API.",
    )
    ambient_station_slug: str = Field(default="e63ff0d2119b8c024b5aad24cc59a504")
    ambient_user_agent: str = Field(default="Mozilla/5.0", description="Ambient rejects non-browser agents")
    open_meteo_forecast_url: str = Field(default="https://api.open-meteo.com/v1/forecast")
    open_meteo_marine_url: str = Field(default="https://marine-api.open-meteo.com/v1/marine")
    provider_timeout: float = Field(default=10.0, ge=1.0, description="Timeout for fallback provider calls")
    forecast_days: int = Field(default=3, ge=1, le=16)
    forecast_start_hour: int = Field(default=6, ge=0, le=23, description="First venue-local hour kept in forecasts")
    forecast_end_hour: int = Field(default=19, ge=0, le=23, description="Last venue-local hour kept in forecasts")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

settings = Settings()
