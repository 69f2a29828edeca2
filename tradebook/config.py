# tradebook/config.py
"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tradebook.db"
    log_level: str = "INFO"
    database_echo: bool = False
    # Options expire at the close of this zone's calendar day
    exchange_timezone: str = "US/Eastern"

    model_config = {"env_prefix": "TRADEBOOK_", "env_file": ".env"}


settings = Settings()
