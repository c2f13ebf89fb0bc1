from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str
    JWT_ISS: str = "hms"
    JWT_EXP_MIN: int = 12*60
    TZ: str = "Asia/Kathmandu"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    CURRENCY_SYMBOL: str = "Rs."
    OVERPAYMENT_POLICY: Literal["reject", "allow"] = "reject"
    REQUIRE_CREDIT_DUE_DATE: bool = True

    LOW_STOCK_CHECK_ENABLED: bool = False
    LOW_STOCK_INTERVAL_MIN: int = 30
    NOTIFY_WEBHOOK_URL: str | None = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
