# x402_gateway/core/config.py
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Payment Gateway"

    # Upstream API that metered routes are proxied to
    UPSTREAM_API_URL: AnyHttpUrl = "http://localhost:3000"
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0

    # Facilitator that verifies and settles payments
    X402_FACILITATOR_URL: AnyHttpUrl = "https://facilitator.emfi.dev"
    X402_FACILITATOR_TIMEOUT_SECONDS: float = 10.0
    X402_PROTOCOL_VERSION: str = "1.0.0"

    # JSON file with the per-route payment configuration
    X402_ROUTES_FILE: Optional[str] = None

    # Audit trail (JSON lines, observability only)
    X402_AUDIT_ENABLED: bool = False
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
