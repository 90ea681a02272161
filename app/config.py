from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False

    # Supabase settings
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str
    SUPABASE_DB_URL: str
    SUPABASE_ANON_KEY: str | None = None

    # OpenAI settings
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_CHAT_MODEL: str = "gpt-4o"
    OPENAI_HEALTH_MODEL: str = "gpt-3.5-turbo"
    OPENAI_MAX_TOKENS: int = 4096
    OPENAI_TEMPERATURE: float = 0.2

    # Analysis pipeline
    ANALYSIS_TIMEOUT_SECONDS: float = 280.0
    ANALYSIS_MAX_RETRIES: int = 3
    ANALYSIS_RETRY_BASE_DELAY_SECONDS: float = 2.0
    ANALYSIS_MAX_BACKOFF_SECONDS: float = 30.0
    ANALYSIS_MAX_INPUT_CHARS: int = 60000
    PDF_MAX_PAGES: int = 20
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Chat
    CHAT_MAX_RETRIES: int = 2
    CHAT_TIMEOUT_SECONDS: float = 60.0
    CHAT_CACHE_TTL_SECONDS: float = 300.0
    CHAT_CACHE_MAX_ENTRIES: int = 100

    # Admin
    ADMIN_SECRET_KEY: str | None = None

    # PayPal settings
    PAYPAL_CLIENT_ID: str | None = None
    PAYPAL_CLIENT_SECRET: str | None = None
    PAYPAL_WEBHOOK_ID: str | None = None
    PAYPAL_PLAN_PRICE: str = "75.00"

    SITE_URL: str = "http://localhost:3000"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # derive sensible defaults if not provided
    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def openai_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY)

    def paypal_api_base(self) -> str:
        """Live PayPal API in production, sandbox everywhere else."""
        if self.environment == "production":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 2,
                    "max_size": 6,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
