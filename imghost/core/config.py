import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEVELOPMENT = "development"


class ConfigError(Exception):
    """Raised when the process configuration cannot be resolved."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    go_env: str = Field(default="", alias="GO_ENV")
    port: int = Field(alias="PORT", gt=0, lt=65536)
    auth_key: str = Field(alias="AUTH_KEY", min_length=1)

    aws_access_key: str | None = Field(default=None, alias="AWS_ACCESS_KEY")
    aws_secret_key: str | None = Field(default=None, alias="AWS_SECRET_KEY")
    aws_region: str | None = Field(default=None, alias="AWS_REGION")
    aws_bucket: str | None = Field(default=None, alias="AWS_BUCKET")
    s3_endpoint: str | None = Field(default=None, alias="S3_ENDPOINT_URL")

    storage_backend: Literal["s3", "local"] = Field(default="s3", alias="STORAGE_BACKEND")
    local_storage_dir: str = Field(default="./storage", alias="LOCAL_STORAGE_DIR")

    template_path: str = Field(default="index.tmpl", alias="TEMPLATE_PATH")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _require_s3_credentials(self) -> "Settings":
        if self.storage_backend != "s3":
            return self
        missing = [
            name
            for name, value in (
                ("AWS_ACCESS_KEY", self.aws_access_key),
                ("AWS_SECRET_KEY", self.aws_secret_key),
                ("AWS_REGION", self.aws_region),
                ("AWS_BUCKET", self.aws_bucket),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"missing required settings: {', '.join(missing)}")
        return self

    @property
    def is_development(self) -> bool:
        return self.go_env == DEVELOPMENT

    @property
    def host(self) -> str:
        # An empty Go-style host (":PORT") listens on every interface.
        return "localhost" if self.is_development else "0.0.0.0"

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"


def load_settings(env_file: str | Path = ".env") -> Settings:
    """Resolve settings from the environment.

    ``GO_ENV`` is read from the process environment only. In development the
    ``.env`` file seeds the values and must exist.
    """
    if os.getenv("GO_ENV") == DEVELOPMENT:
        path = Path(env_file)
        if not path.is_file():
            raise ConfigError(f"open {path}: no such file or directory")
        return Settings(_env_file=path)
    return Settings()


@lru_cache
def get_settings() -> Settings:
    return load_settings()
