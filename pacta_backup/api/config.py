"""Configuration for FastAPI application."""

import dataclasses
import json
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings

from ..config import BackupEngineConfig


class Settings(BaseSettings):
    # API Configuration
    api_prefix: str = "/api/v1"
    api_title: str = "Pacta Backup API"
    api_version: str = "1.0.0"
    allowed_origins: Union[str, List[str]] = ["*"]

    @field_validator('allowed_origins', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse allowed_origins from string or list."""
        if isinstance(v, str):
            # If it's a JSON array string, parse it
            if v.startswith('['):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [v]
            # Single origin string
            return [v]
        return v

    # Live stores
    database_path: Optional[str] = None
    documents_dir: Optional[str] = None

    # Backup storage and catalog
    backup_dir: Optional[str] = None
    catalog_path: Optional[str] = None
    redis_url: Optional[str] = None
    redis_password: Optional[str] = None

    scheduler_enabled: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables

    def engine_config(self) -> BackupEngineConfig:
        """Engine config from the environment, with API settings taking precedence."""
        config = BackupEngineConfig.from_env()

        store_overrides = {}
        if self.database_path:
            store_overrides["database_path"] = self.database_path
        if self.documents_dir:
            store_overrides["documents_dir"] = self.documents_dir

        storage_overrides = {}
        if self.backup_dir:
            storage_overrides["local_dir"] = self.backup_dir

        catalog_overrides = {}
        if self.catalog_path:
            catalog_overrides["path"] = self.catalog_path
        if self.redis_url:
            catalog_overrides["redis_url"] = self.redis_url
            catalog_overrides["redis_password"] = self.redis_password

        return dataclasses.replace(
            config,
            store=dataclasses.replace(config.store, **store_overrides),
            storage=dataclasses.replace(config.storage, **storage_overrides),
            catalog=dataclasses.replace(config.catalog, **catalog_overrides),
            scheduler_enabled=config.scheduler_enabled and self.scheduler_enabled,
        )


settings = Settings()
