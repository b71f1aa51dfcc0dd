from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: str = "development"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./questboard.db"
    repository_backend: str = "sql"  # "sql" | "memory"

    # Sessions: cookie Max-Age follows the cache TTL
    session_cookie_name: str = "session"
    session_ttl_seconds: int = 300
    session_cache_size: int = 10_000

    # Credentials
    bcrypt_rounds: int = 12

    # Listings
    page_size: int = 20


settings = Settings()
