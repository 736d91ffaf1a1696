"""
Concierge Service Configuration
Loads settings from environment variables
"""

import os
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment"""

    # Feature flags
    AI_CONCIERGE_ENABLED: bool = _env_bool("AI_CONCIERGE_ENABLED", "false")
    NLU_ENABLED: bool = _env_bool("NLU_ENABLED", "true")

    # Safety
    CHAT_SAFETY_FILTER: bool = _env_bool("CHAT_SAFETY_FILTER", "true")
    CHAT_PROMPT_REDACTION: bool = _env_bool("CHAT_PROMPT_REDACTION", "true")
    CHAT_MAX_INPUT_LENGTH: int = int(os.getenv("CHAT_MAX_INPUT_LENGTH", "2000"))
    CHAT_MAX_MESSAGE_LENGTH: int = int(os.getenv("CHAT_MAX_MESSAGE_LENGTH", "1000"))
    CHAT_SPECIAL_CHAR_RATIO: float = float(os.getenv("CHAT_SPECIAL_CHAR_RATIO", "0.5"))

    # Sessions
    CHAT_MAX_HISTORY: int = int(os.getenv("CHAT_MAX_HISTORY", "20"))
    CHAT_SESSION_TTL_SECONDS: int = int(os.getenv("CHAT_SESSION_TTL_SECONDS", "1800"))
    CHAT_TURN_LOCK_SECONDS: int = int(os.getenv("CHAT_TURN_LOCK_SECONDS", "30"))
    CHAT_MAX_TURNS: int = int(os.getenv("CHAT_MAX_TURNS", "20"))

    # Short-window per-profile rate limit (<= 0 means unlimited)
    CHAT_RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("CHAT_RATE_LIMIT_WINDOW_SECONDS", "60"))
    CHAT_RATE_LIMIT_FREE: int = int(os.getenv("CHAT_RATE_LIMIT_FREE", "5"))
    CHAT_RATE_LIMIT_PREMIUM: int = int(os.getenv("CHAT_RATE_LIMIT_PREMIUM", "30"))

    # Daily quotas (<= 0 means unlimited)
    LLM_DAILY_LIMIT_FREE: int = int(os.getenv("LLM_DAILY_LIMIT_FREE", "10"))
    LLM_DAILY_LIMIT_PREMIUM: int = int(os.getenv("LLM_DAILY_LIMIT_PREMIUM", "1000"))

    # LLM Configuration ("none" or "openai")
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "none").lower()
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "300"))
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "8"))

    # Search index (OpenSearch-compatible)
    OPENSEARCH_URL: str = os.getenv("OPENSEARCH_URL", "")
    OPENSEARCH_INDEX: str = os.getenv("OPENSEARCH_INDEX", "titles")
    SEARCH_TIMEOUT_SECONDS: float = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "3"))
    SEARCH_CACHE_TTL_SECONDS: int = int(os.getenv("SEARCH_CACHE_TTL_SECONDS", "60"))
    SEARCH_PAGE_SIZE: int = int(os.getenv("SEARCH_PAGE_SIZE", "20"))

    # Workers
    WORKER_TIMEOUT_SECONDS: float = float(os.getenv("WORKER_TIMEOUT_SECONDS", "5"))
    MAX_RECOMMENDATIONS: int = int(os.getenv("MAX_RECOMMENDATIONS", "6"))

    # Availability ("LOCAL", "JUSTWATCH" or "WATCHMODE")
    AVAILABILITY_SOURCE: str = os.getenv("AVAILABILITY_SOURCE", "LOCAL").upper()
    AVAILABILITY_PROVIDER_URL: str = os.getenv("AVAILABILITY_PROVIDER_URL", "")
    AVAILABILITY_PROVIDER_KEY: str = os.getenv("AVAILABILITY_PROVIDER_KEY", "")
    DEFAULT_REGION: str = os.getenv("DEFAULT_REGION", "US").upper()

    # Redis Configuration (empty host -> in-memory store)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_PASSWORD: str = os.getenv("REDIS_PASSWORD", "")

    # Catalog store ("mysql" or "memory")
    CATALOG_BACKEND: str = os.getenv("CATALOG_BACKEND", "mysql").lower()
    CATALOG_SEED_PATH: str = os.getenv("CATALOG_SEED_PATH", "")

    # MySQL Configuration
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "3306"))
    DB_USER: str = os.getenv("DB_USER", "root")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "password")
    DB_NAME: str = os.getenv("DB_NAME", "media_catalog")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))

    # API Configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_ENV: str = os.getenv("API_ENV", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # CORS Configuration
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def redis_url(self) -> str:
        """Get Redis connection URL"""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def llm_configured(self) -> bool:
        """True when a language-generation provider can be used"""
        return self.LLM_PROVIDER == "openai" and bool(self.OPENAI_API_KEY)

    def daily_limit(self, tier: str) -> int:
        """Daily chat allowance for a plan tier"""
        if tier == "premium":
            return self.LLM_DAILY_LIMIT_PREMIUM
        return self.LLM_DAILY_LIMIT_FREE

    def rate_limit(self, tier: str) -> int:
        """Requests allowed per rate-limit window for a plan tier"""
        if tier == "premium":
            return self.CHAT_RATE_LIMIT_PREMIUM
        return self.CHAT_RATE_LIMIT_FREE

    def get_mysql_config(self) -> dict:
        """
        Get MySQL connection configuration

        Returns:
            MySQL connection config dict
        """
        return {
            "host": self.DB_HOST,
            "port": self.DB_PORT,
            "user": self.DB_USER,
            "password": self.DB_PASSWORD,
            "database": self.DB_NAME,
            "charset": "utf8mb4",
            "collation": "utf8mb4_unicode_ci"
        }


# Global settings instance
settings = Settings()
