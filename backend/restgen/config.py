from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///restgen.db"
    jwt_secret: str | None = None
    jwt_secret_file: str = ".jwt_secret"
    token_ttl_hours: int = 24
    api_prefix: str = "/api"
    id_field: str = "id"
    default_page_size: int = 10
    cors_origins: list[str] = ["*"]
    admin_email: str | None = None
    admin_password: str | None = None
    log_level: str = "INFO"
    version: str = "0.1.0"

    model_config = SettingsConfigDict(
        env_prefix="RESTGEN_", env_file=".env", extra="ignore"
    )


settings = Settings()
