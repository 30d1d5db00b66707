from __future__ import annotations
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    config_path: Path = Field(default=Path("appsettings.json"), alias="GSL_CONFIG")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    log_dir: Path = Field(default=Path("logs"), alias="LOG_DIR")

    api_enabled: bool = Field(default=False, alias="API_ENABLED")
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8080, alias="API_PORT")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)
