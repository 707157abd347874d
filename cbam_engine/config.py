from __future__ import annotations

import logging

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "CBAM Emissions Engine"
    ENV: str = "dev"

    # Fallback policy when no country/sector factor is registered (tCO2/MWh)
    EU_DEFAULT_ELECTRICITY_FACTOR: float = 0.255
    DEFAULT_ELECTRICITY_UNCERTAINTY_PCT: float = 10.0

    # Scope 3 is an estimate of an estimate: ratio of scope 1
    SCOPE3_RATIO: float = 0.15
    SCOPE3_UNCERTAINTY_PCT: float = 25.0

    DEFAULT_ETS_PRICE_EUR_PER_TCO2: float = 75.0

    PRICE_SHOCK_MULTIPLIER: float = 1.5
    RENEWABLE_SHARE_PCT: float = 30.0

    AUDIT_DB_URL: str | None = None

    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "CBAM_"
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
