"""Application configuration using Pydantic Settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "FuelWatch"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Database paths
    data_dir: Path = Field(default_factory=lambda: Path("./data"))
    duckdb_path: Path = Field(default_factory=lambda: Path("./data/fuelwatch.duckdb"))

    # Performance
    max_workers: int = 4
    repository_timeout_seconds: float = 30.0

    # Baseline
    baseline_window_days: int = 28
    baseline_min_sales: int = 10

    # Detection thresholds
    price_sigma_multiple: float = 3.0
    max_pump_flow_lpm: float = 50.0  # liters per minute, per pump
    default_pump_count: int = 8
    velocity_window_minutes: int = 10
    off_hours_grace_minutes: int = 15
    round_unit: int = 10
    round_share_excess: float = 0.3
    round_min_sales: int = 5
    zero_variance_min_run: int = 5
    zero_variance_decimals: int = 6

    # Validators
    station_code_pattern: str = r"^[A-Z]{3}-\d{3,4}$"
    invoice_number_pattern: str = r"^[A-Z]{2,4}-\d{1,12}$"

    # Logging
    log_dir: Path = Field(default_factory=lambda: Path("./logs"))
    log_level: str = "INFO"

    def ensure_data_dir(self) -> None:
        """Ensure data directory exists."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
