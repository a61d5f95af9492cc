# walletgate/core/config.py
from typing import Optional

from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Wallet Gate"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Wallet sign-in
    SIGN_IN_PRODUCT_NAME: str = "Grapevine"
    NONCE_TTL_SECONDS: int = 300
    NONCE_SWEEP_INTERVAL_SECONDS: int = 300
    SIGNATURE_MAX_AGE_SECONDS: int = 300

    # Nonce storage: in-memory wins, otherwise REDIS_URL selects Redis
    NONCE_STORE_IN_MEMORY: bool = False
    REDIS_URL: Optional[str] = None

    # Payment instructions service (checked at first use, not at startup)
    PAYMENT_INSTRUCTIONS_API_URL: Optional[str] = None
    PAYMENT_INSTRUCTIONS_API_TOKEN: Optional[str] = None
    FREE_PAYMENT_INSTRUCTION_ID: Optional[str] = None

    # Content delivery
    CONTENT_GATEWAY_HOST: Optional[str] = None
    ACCESS_LINK_EXPIRES_SECONDS: int = 30

    UPSTREAM_TIMEOUT_SECONDS: float = 10

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
