from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "PHIGuard"
    ENVIRONMENT: str = "development"
    DATABASE_URL: str = "sqlite:///./data/phiguard.db"

    # PHI encryption (base64, exactly 32 bytes once decoded)
    PHI_ENCRYPTION_KEY: str = ""
    PHI_ALLOW_LEGACY_PLAINTEXT: bool = True

    # Auth Config (JWT_SECRET is base64, at least 64 bytes once decoded)
    JWT_SECRET: str = ""
    JWT_ISSUER: str = "pms-api"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    JWT_REFRESH_EXPIRATION_MINUTES: int = 1440

    # Brute-force protection
    LOCKOUT_MAX_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15
    RATE_LIMIT_REQUESTS_PER_MINUTE: int = 20
    RATE_LIMIT_PATH_PREFIXES: list[str] = ["/auth/"]

    # Maintenance
    TOKEN_PURGE_INTERVAL_HOURS: int = 24
    RATE_LIMIT_EVICTION_INTERVAL_MINUTES: int = 10

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in {"prod", "production"}

settings = Settings()
