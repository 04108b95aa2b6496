from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    INSTANT_FEE_PERCENT: Decimal = Decimal("2.5")
    INSTANT_ARRIVAL: str = "Immediate"
    STANDARD_ARRIVAL: str = "3-5 business days"

    # Shared secret the transfer processor sends with resolution callbacks
    PROCESSOR_TOKEN: Optional[str] = None

    ESPN_BASE_URL: str = "https://fantasy.espn.com/apis/v3/games/ffl"
    ESPN_TIMEOUT_SECONDS: int = 30
    MOCK_SCORE_MIN: float = 80.0
    MOCK_SCORE_SPREAD: float = 100.0

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
