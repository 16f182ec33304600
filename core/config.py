"""Relay configuration."""

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class ConfigError(RuntimeError):
    """Startup configuration is missing or invalid."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Upstream (Twelve Data)
    twelve_data_key: str = Field(default="", alias="TWELVE_DATA_KEY")
    upstream_base_url: str = Field(default="https://api.twelvedata.com", alias="UPSTREAM_BASE_URL")
    symbol: str = Field(default="AUD/CHF", alias="SYMBOL")
    request_timeout_s: float = 10.0
    candle_outputsize: int = 100

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Quota - upstream hard cap is 8/min, keep one credit spare
    quota_limit: int = Field(default=7, alias="QUOTA_LIMIT")
    quota_window_ms: int = 60_000

    # Scheduler
    poll_interval_s: float = Field(default=8.5, alias="POLL_INTERVAL_S")
    bootstrap_delay_s: float = 3.0
    background_every: int = 6           # every Nth tick polls a background timeframe
    freshness_s: float = 15.0           # switch triggers a poll if data is older than this
    quote_bars: int = 60

    # Timeframes
    default_timeframe: str = Field(default="1min", alias="DEFAULT_TIMEFRAME")
    timeframes_csv: str = Field(default="1min,5min,15min,30min,1h,4h", alias="TIMEFRAMES")

    # Push stream
    keepalive_s: float = 25.0
    bootstrap_all_timeframes: bool = True
    subscriber_queue_size: int = 256

    @property
    def timeframes(self) -> list[str]:
        return [t.strip() for t in self.timeframes_csv.split(",") if t.strip()]

    @property
    def is_configured(self) -> bool:
        return bool(self.twelve_data_key)

    def validate_startup(self) -> str:
        """Return the upstream API key, raising ConfigError if startup config is unusable."""
        if not self.is_configured:
            raise ConfigError("TWELVE_DATA_KEY env variable is required")
        if self.default_timeframe not in self.timeframes:
            raise ConfigError(
                f"DEFAULT_TIMEFRAME {self.default_timeframe!r} is not one of {self.timeframes}"
            )
        return self.twelve_data_key


settings = Settings()
