"""
config.py — Bharat-ID Global Configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from functools import lru_cache
from typing import List


class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    APP_NAME: str = "Bharat-ID"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # API Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    ALLOWED_HOSTS: List[str] = ["bharat-id.gov.in", "*.bharat-id.gov.in"]

    # Database (only used by the "database" registry backend)
    DATABASE_URL: str = "sqlite+aiosqlite:///./bharatid.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # DID registry
    REGISTRY_BACKEND: str = "simulation"      # simulation | database
    REGISTRY_TIMEOUT_SECONDS: float = 5.0

    # DID derivation
    DID_SALT: str = "BHARAT_ID_SOVEREIGN_INDIA_V1"

    # Credential issuer
    ISSUER_ID: str = "praman-issuer"
    ISSUER_PRIVATE_KEY: str = ""              # PEM, ECDSA P-256
    ISSUER_SERVICE_ENDPOINT: str = "http://localhost:8000/credentials"
    CREDENTIAL_DEFAULT_VALIDITY_DAYS: int = 365
    MAX_CREDENTIAL_VALIDITY_DAYS: int = 1825
    MAX_CONSENT_DURATION_DAYS: int = 365

    # WebAuthn enrollment
    RP_ID: str = "localhost"
    RP_NAME: str = "Bharat-ID"
    EXPECTED_ORIGIN: str = "http://localhost:5173"
    ENROLLMENT_CHALLENGE_TTL_SECONDS: int = 300
    MAX_PENDING_ENROLLMENTS: int = 10000

    # Session tokens
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 30

    # Service credentials, exchanged at /auth/token for scoped tokens.
    # Empty disables that scope.
    ISSUER_API_KEY: str = ""
    ADMIN_API_KEY: str = ""

    # Relying-party verification
    MAX_PRESENTATION_CREDENTIALS: int = 50

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "bharatid.log"            # empty string disables the file handler

    @property
    def redacted_database_url(self) -> str:
        """DATABASE_URL with any password masked, safe for log lines."""
        return make_url(self.DATABASE_URL).render_as_string(hide_password=True)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
