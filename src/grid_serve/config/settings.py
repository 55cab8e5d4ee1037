import os
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

BASE_DIR = Path(__file__).resolve().parent.parent

ENV_PREFIX = "GRIDSERVE_"


class ConfigurationError(Exception):
    """Raised when the process cannot start with the given configuration."""


class GatewaySettings(BaseModel):
    """Process configuration, built once at startup and never mutated."""

    # --- Store ---
    mongo_host: str = "127.0.0.1"
    mongo_port: int = Field(default=27017, gt=0, lt=65536)
    database: str = Field(..., min_length=1)
    collection: str = Field(default="fs", min_length=1)
    storage: str = "gridfs"  # gridfs | memory
    ensure_index: bool = False

    # --- Server ---
    listen_host: str = "0.0.0.0"
    listen_port: int = Field(default=8080, gt=0, lt=65536)
    workers: int = Field(default=1, ge=1)
    log_level: str = "INFO"

    # --- Response policy ---
    buffer_size: int = Field(default=64 * 1024, gt=0)
    cache_control: str = "public, max-age=2629000"  # ~1 month
    default_content_type: str = "application/octet-stream"
    excluded_names: Tuple[str, ...] = ("favicon.ico",)

    model_config = ConfigDict(frozen=True)

    @property
    def mongo_uri(self) -> str:
        return f"mongodb://{self.mongo_host}:{self.mongo_port}/?directConnection=true"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def load_settings(environ: Optional[Mapping[str, str]] = None) -> GatewaySettings:
    """
    Build settings from GRIDSERVE_* environment variables.

    When `environ` is None the process environment is used, after loading an
    optional .env file. Raises ConfigurationError if the database name is
    missing or a value does not validate.
    """
    if environ is None:
        load_dotenv(BASE_DIR / ".env")
        environ = os.environ

    def get(name: str) -> Optional[str]:
        value = environ.get(ENV_PREFIX + name)
        if value is None or value.strip() == "":
            return None
        return value.strip()

    database = get("DATABASE")
    if database is None:
        raise ConfigurationError(f"{ENV_PREFIX}DATABASE must name the GridFS database")

    raw = {
        "mongo_host": get("MONGO_HOST"),
        "mongo_port": get("MONGO_PORT"),
        "database": database,
        "collection": get("COLLECTION"),
        "storage": get("STORAGE"),
        "listen_host": get("LISTEN_HOST"),
        "listen_port": get("LISTEN_PORT"),
        "workers": get("WORKERS"),
        "log_level": get("LOG_LEVEL"),
        "buffer_size": get("BUFFER_SIZE"),
        "cache_control": get("CACHE_CONTROL"),
        "default_content_type": get("DEFAULT_CONTENT_TYPE"),
    }
    values = {k: v for k, v in raw.items() if v is not None}

    ensure_index = get("ENSURE_INDEX")
    if ensure_index is not None:
        values["ensure_index"] = _env_bool(ensure_index)

    excluded = environ.get(ENV_PREFIX + "EXCLUDED_NAMES")
    if excluded is not None:
        values["excluded_names"] = _env_list(excluded)

    try:
        return GatewaySettings(**values)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
