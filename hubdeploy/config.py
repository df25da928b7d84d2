from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = ""
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10
    db_command_timeout: float = 30.0
    jwt_secret: str = ""
    jwt_expiry_seconds: int = 86400
    hubspot_base_url: str = "https://api.hubapi.com"
    hubspot_timeout_seconds: float = 30.0
    hubspot_max_attempts: int = 3
    hubspot_retry_wait_seconds: float = 1.0
    auto_rollback: bool = True
    skip_existing_entities: bool = False
    log_level: str = "INFO"


settings = Settings()
