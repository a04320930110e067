"""Client configuration read from the environment and optional `.env` files."""

from __future__ import annotations

import contextlib
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from tandem.paths import config_dir

DEFAULT_BASE_URL = "http://localhost:4111"
DEFAULT_REQUEST_TIMEOUT_S = 30.0
DEFAULT_RECONNECT_BASE_DELAY_S = 1.0
DEFAULT_RECONNECT_MAX_DELAY_S = 30.0
DEFAULT_RECONNECT_JITTER = 0.2


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for the Agent Service.

    `request_timeout` applies to control and query requests only; the event
    stream is opened without a read timeout so idle periods between
    heartbeats do not look like failures.
    """

    base_url: str = DEFAULT_BASE_URL
    api_token: str = ""
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S
    reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY_S
    reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY_S
    reconnect_jitter: float = DEFAULT_RECONNECT_JITTER

    def auth_headers(self) -> dict[str, str]:
        if not self.api_token:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}


def parse_level(value: str | None, default: int) -> int:
    """Parse a log level name or number."""
    if not value:
        return default
    if value.isdigit():
        return int(value)
    return logging._nameToLevel.get(value.upper(), default)


def parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    with contextlib.suppress(ValueError):
        return int(value)
    return default


def parse_float(value: str | None, default: float, *, minimum: float = 0.0) -> float:
    """Parse a finite float at or above `minimum`; anything else yields the default."""
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if not math.isfinite(parsed) or parsed < minimum:
        return default
    return parsed


def load_config(env_file: Path | None = None) -> ClientConfig:
    """Build a `ClientConfig` from `TANDEM_*` environment variables.

    A `.env` in the working directory (or the explicit `env_file`) is loaded
    first, then the one in the user config dir; real environment variables
    always take precedence over both.
    """

    if env_file is not None:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(find_dotenv(usecwd=True), override=False)
    user_env = config_dir() / ".env"
    if user_env.exists():
        load_dotenv(user_env, override=False)

    base_url = os.getenv("TANDEM_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL
    return ClientConfig(
        base_url=base_url.rstrip("/"),
        api_token=os.getenv("TANDEM_API_TOKEN", "").strip(),
        request_timeout=parse_float(os.getenv("TANDEM_REQUEST_TIMEOUT_S"), DEFAULT_REQUEST_TIMEOUT_S),
        reconnect_base_delay=parse_float(
            os.getenv("TANDEM_RECONNECT_BASE_DELAY_S"), DEFAULT_RECONNECT_BASE_DELAY_S
        ),
        reconnect_max_delay=parse_float(
            os.getenv("TANDEM_RECONNECT_MAX_DELAY_S"), DEFAULT_RECONNECT_MAX_DELAY_S
        ),
        reconnect_jitter=parse_float(os.getenv("TANDEM_RECONNECT_JITTER"), DEFAULT_RECONNECT_JITTER),
    )
