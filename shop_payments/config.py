from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    env: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./payment_orders.db"

    # gateway credentials; empty means "not configured"
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 15.0

    currency: str = "INR"
    min_amount_minor_units: int = 1000
    merchant_name: str = "Shabdashri"
    receipt_prefix: str = "shb"

    cors_allow_origins: List[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def missing_secrets(self) -> List[str]:
        """Names of the server-side secrets that are not set."""
        required = {
            "RAZORPAY_KEY_ID": self.razorpay_key_id,
            "RAZORPAY_KEY_SECRET": self.razorpay_key_secret,
            "RAZORPAY_WEBHOOK_SECRET": self.razorpay_webhook_secret,
        }
        return [name for name, value in required.items() if not value]

settings = Settings()
