"""Settings for the bridge: environment variables, optionally loaded from .env."""

import os
from typing import Callable, Mapping, Optional, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from topicbus.observability import get_logger

DEFAULT_HEARTBEAT_INTERVAL_SEC = 30.0
DEFAULT_CLIENT_QUEUE_MAX_SIZE = 1024

T = TypeVar("T")


class BridgeSettings(BaseModel):
    """Validated runtime settings. Build with ``BridgeSettings.from_env()``."""

    api_key: Optional[str] = None
    namespace: Optional[str] = None
    serial_number: Optional[str] = None
    heartbeat_interval_sec: float = DEFAULT_HEARTBEAT_INTERVAL_SEC
    client_queue_max_size: int = Field(default=DEFAULT_CLIENT_QUEUE_MAX_SIZE, ge=1)
    bus_latency_sec: float = Field(default=0.0, ge=0.0)
    log_level: str = "INFO"

    @field_validator("api_key", "namespace", "serial_number", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return str(value or "INFO").strip().upper()

    @property
    def resolved_namespace(self) -> Optional[str]:
        """ROBOT_NAMESPACE, else the serial number with dashes replaced by underscores."""
        if self.namespace:
            return self.namespace.strip("/")
        if self.serial_number:
            return self.serial_number.replace("-", "_")
        return None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BridgeSettings":
        """Read settings from ``environ`` (default: os.environ). Unparseable numbers fall back to defaults."""
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get("API_KEY"),
            namespace=env.get("ROBOT_NAMESPACE"),
            serial_number=env.get("ROBOT_SERIAL_NUMBER"),
            heartbeat_interval_sec=_env_number(
                env, "HEARTBEAT_INTERVAL_SEC", DEFAULT_HEARTBEAT_INTERVAL_SEC, float
            ),
            client_queue_max_size=max(
                1, _env_number(env, "CLIENT_QUEUE_MAX_SIZE", DEFAULT_CLIENT_QUEUE_MAX_SIZE, int)
            ),
            bus_latency_sec=max(0.0, _env_number(env, "BUS_LATENCY_SEC", 0.0, float)),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )


def _env_number(env: Mapping[str, str], name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return cast(raw)
    except (ValueError, TypeError):
        get_logger("topicbus.config").warning(
            "invalid_setting", extra={"setting": name, "value": raw, "default": default}
        )
        return default


def load_settings(dotenv_path: Optional[str] = None) -> BridgeSettings:
    """Load .env (if present) into the environment, then read settings from it."""
    load_dotenv(dotenv_path)
    return BridgeSettings.from_env()
