from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App Config
    APP_NAME: str = "toolgate"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Executable overrides (absolute paths only)
    NPM_EXECUTABLE: str | None = None
    GH_EXECUTABLE: str | None = None

    # Shells
    POSIX_SHELL: str = "/bin/sh"
    WINDOWS_SHELL: Literal["cmd", "powershell"] = "cmd"

    # Execution limits
    NPM_TIMEOUT: float = 30.0
    GH_TIMEOUT: float = 60.0
    MAX_OUTPUT_BYTES: int = 5 * 1024 * 1024
    SERIALIZER_WAIT_TIMEOUT: float = 120.0
    KILL_GRACE_SECONDS: float = 5.0

    # Result cache
    CACHE_DEFAULT_TTL: float = 86400.0
    CACHE_CHECK_PERIOD: float = 3600.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()


def get_settings() -> Settings:
    return settings
