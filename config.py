from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration, read from the environment and an optional .env file."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Blog API"
    version: str = "1.0.0"
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "blog"
    jwt_secret: str = "supersecret-blog-dev"
    jwt_algorithm: str = "HS256"
    jwt_expire_min: int = 60 * 24 * 7
    cors_origins: str = "*"
    slug_max_attempts: int = 100
    mongo_transactions: bool = False
    log_level: str = "INFO"
    port: int = 8000

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
