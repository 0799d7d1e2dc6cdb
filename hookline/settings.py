from pathlib import Path
from typing import Union

from pydantic import Field, PositiveInt
from pydantic_settings import BaseSettings as PydanticBaseSettings
from pydantic_settings import SettingsConfigDict


class BaseSettings(PydanticBaseSettings):
    model_config = SettingsConfigDict(env_prefix="HL_", env_file_encoding="utf-8", env_nested_delimiter="__")


class LoggerSettings(BaseSettings):
    level: int = 20


class StorageSettings(BaseSettings):
    url: str = "sqlite:///./hookline.db"

    @property
    def sqlalchemy_database_url(self) -> str:
        return self.url


class CORSSettings(BaseSettings):
    allow_credentials: bool = True
    allow_methods: list[str] = ["GET", "POST", "PATCH"]
    allow_headers: list[str] = ["*"]

    allow_origins: list[str] = []


class ETLSettings(BaseSettings):
    extract_limit: PositiveInt = 1000
    file_output_dir: Union[Path, None] = None
    request_timeout: Union[float, None] = None
    job_definitions_path: Union[Path, None] = None


class GlobalSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")
    logger_settings: LoggerSettings = Field(default_factory=LoggerSettings)
    cors_settings: CORSSettings = Field(default_factory=CORSSettings)
    storage_settings: StorageSettings = Field(default_factory=StorageSettings)
    etl_settings: ETLSettings = Field(default_factory=ETLSettings)
