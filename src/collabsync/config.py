"""Runtime configuration and logging setup."""

import logging
import os

from pydantic import BaseModel, Field

DEFAULT_WS_URL = "ws://localhost:8080/ws"

_LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class SyncConfig(BaseModel):
    """Connection and presence settings for a sync session."""

    ws_url: str = Field(DEFAULT_WS_URL, description="Collaboration server websocket URL")
    heartbeat_interval: float = Field(30.0, gt=0, description="Seconds between pings")
    reconnect_base_delay: float = Field(1.0, gt=0, description="First backoff delay in seconds")
    max_reconnect_attempts: int = Field(5, ge=0, description="Reconnects before giving up")
    typing_timeout: float = Field(3.0, gt=0, description="Seconds before a typing entry expires")
    log_level: str = Field("INFO", description="Root log level")

    model_config = {"extra": "forbid"}

    @classmethod
    def from_env(cls, **overrides) -> "SyncConfig":
        """Build a config from COLLABSYNC_* environment variables.

        Keyword arguments take precedence over the environment.
        """
        env = {
            "ws_url": os.environ.get("COLLABSYNC_WS_URL"),
            "heartbeat_interval": os.environ.get("COLLABSYNC_HEARTBEAT_INTERVAL"),
            "reconnect_base_delay": os.environ.get("COLLABSYNC_RECONNECT_DELAY"),
            "max_reconnect_attempts": os.environ.get("COLLABSYNC_MAX_RECONNECT_ATTEMPTS"),
            "typing_timeout": os.environ.get("COLLABSYNC_TYPING_TIMEOUT"),
            "log_level": os.environ.get("COLLABSYNC_LOG_LEVEL"),
        }
        values = {key: value for key, value in env.items() if value is not None}
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging in the same format as the relay server."""
    level = (level or os.environ.get("COLLABSYNC_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=_LOG_FORMAT,
        datefmt=_LOG_DATEFMT,
    )
