"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # External Services
    ledger_api_base: str = "http://localhost:8002"

    # Service
    service_name: str = "capping-gateway"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 5.0
    refresh_max_retries: int = 3
    refresh_backoff_base: float = 0.5  # Exponential backoff base in seconds

    # Display
    currency_symbol: str = "₹"
    digit_grouping: str = "indian"  # indian | western

    # Capping floors used until the ledger policy has been fetched (rupees)
    default_distributor_floor: str = "10000"
    default_reseller_floor: str = "1000"


settings = Settings()
