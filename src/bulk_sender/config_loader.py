# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the bulk sender.

Settings come from an INI file (default: ``bulk_sender.ini``, overridden by
``BULK_CONFIG``) with environment variables as fallbacks. File values win
over environment values, which win over built-in defaults.

Example:
    Configuration file format::

        [limits]
        limit = 100
        interval_seconds = 60
        deferral_cooldown = 10

        [retry]
        max_attempts = 5
        delays = 60, 300, 900, 3600, 7200
        jitter = 0.1

        [workers]
        count = 10
        request_timeout = 30

        [provider]
        url = https://sms.example.com/api/send
        credential = secret-token
        max_payload_length = 160

        [storage]
        failure_db_path = /data/bulk_sender.db
        batch_retention_seconds = 86400

        [server]
        host = 0.0.0.0
        port = 8000
        api_token = my-api-token

        [logging]
        level = INFO
        delivery_activity = false

Environment variables (all prefixed with BULK_):
    BULK_CONFIG, BULK_LIMIT, BULK_INTERVAL_SECONDS, BULK_DEFERRAL_COOLDOWN,
    BULK_MAX_ATTEMPTS, BULK_RETRY_DELAYS, BULK_RETRY_JITTER, BULK_WORKERS,
    BULK_REQUEST_TIMEOUT, BULK_PROVIDER_URL, BULK_PROVIDER_CREDENTIAL,
    BULK_MAX_PAYLOAD_LENGTH, BULK_FAILURE_DB_PATH, BULK_BATCH_RETENTION_SECONDS,
    BULK_HOST, BULK_PORT, BULK_API_TOKEN, BULK_LOG_LEVEL,
    BULK_LOG_DELIVERY_ACTIVITY
"""

from __future__ import annotations

import configparser
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .logger import get_logger

DEFAULT_CONFIG_FILE = "bulk_sender.ini"

logger = get_logger("ConfigLoader")


@dataclass
class DispatcherConfig:
    """Effective configuration of a bulk sender instance.

    Attributes:
        limit: Permits per rate-limit window.
        interval_seconds: Rate-limit window length.
        deferral_cooldown: Wait after a throttled permit check. ``None``
            waits for the current window to end.
        max_attempts: Delivery attempts before a transient failure is final.
        retry_delays: Backoff schedule in seconds after each failed attempt.
        retry_jitter: Random spread applied to retry delays (0 to <1).
        worker_count: Concurrent delivery workers.
        request_timeout: Upper bound on one provider call, in seconds.
        max_payload_length: Longest accepted message, in characters.
        provider_url: HTTP endpoint of the upstream provider.
        provider_credential: Bearer credential for the provider.
        failure_db_path: SQLite file for the failure log, or None to only log.
        batch_retention_seconds: How long a finished batch stays queryable.
            ``None`` keeps batches for the life of the process.
        host: HTTP API bind address.
        port: HTTP API port.
        api_token: Token required in ``X-API-Token``; None disables auth.
        log_level: Root logging level name.
        log_delivery_activity: Log every attempt at INFO level.
    """

    limit: int = 100
    interval_seconds: float = 60.0
    deferral_cooldown: float | None = 10.0
    max_attempts: int = 5
    retry_delays: tuple[float, ...] = field(default=(60, 300, 900, 3600, 7200))
    retry_jitter: float = 0.0
    worker_count: int = 10
    request_timeout: float = 30.0
    max_payload_length: int = 160
    provider_url: str | None = None
    provider_credential: str | None = None
    failure_db_path: str | None = None
    batch_retention_seconds: float | None = 86400.0
    host: str = "0.0.0.0"
    port: int = 8000
    api_token: str | None = None
    log_level: str = "INFO"
    log_delivery_activity: bool = False

    def validate(self) -> DispatcherConfig:
        """Check value ranges.

        Raises:
            ConfigError: On the first invalid value.
        """
        if self.limit < 1:
            raise ConfigError("limit must be at least 1")
        if self.interval_seconds <= 0:
            raise ConfigError("interval_seconds must be positive")
        if self.deferral_cooldown is not None and self.deferral_cooldown <= 0:
            raise ConfigError("deferral_cooldown must be positive, or none to wait for the window end")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if not self.retry_delays or any(d < 0 for d in self.retry_delays):
            raise ConfigError("retry_delays must be a non-empty list of non-negative numbers")
        if not 0 <= self.retry_jitter < 1:
            raise ConfigError("retry_jitter must be in [0, 1)")
        if self.worker_count < 1:
            raise ConfigError("worker_count must be at least 1")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        if self.max_payload_length < 1:
            raise ConfigError("max_payload_length must be at least 1")
        if self.batch_retention_seconds is not None and self.batch_retention_seconds < 0:
            raise ConfigError("batch_retention_seconds must be non-negative")
        return self

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        data = asdict(self)
        data["retry_delays"] = list(self.retry_delays)
        if redact:
            for key in ("provider_credential", "api_token"):
                if data.get(key):
                    data[key] = "***"
        return data


def _parse_delays(value: str) -> tuple[float, ...]:
    try:
        return tuple(float(part) for part in value.replace(";", ",").split(",") if part.strip())
    except ValueError as exc:
        raise ConfigError(f"invalid retry delays: {value!r}") from exc


def load_config(config_path: str | os.PathLike[str] | None = None) -> DispatcherConfig:
    """Load configuration from an INI file with environment fallbacks.

    Args:
        config_path: INI file to read. Defaults to ``BULK_CONFIG`` or
            ``bulk_sender.ini``. A missing file is not an error.

    Returns:
        A validated :class:`DispatcherConfig`.

    Raises:
        ConfigError: If a value cannot be parsed or is out of range.
    """
    path = Path(config_path or os.getenv("BULK_CONFIG", DEFAULT_CONFIG_FILE))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
        logger.debug("Loaded configuration from %s", path)

    def get(section: str, option: str, env: str) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return os.getenv(env)

    def get_int(section: str, option: str, env: str, default: int) -> int:
        value = get(section, option, env)
        if value is None or not value.strip():
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigError(f"[{section}] {option}: expected an integer, got {value!r}") from exc

    def get_float(section: str, option: str, env: str, default: float | None) -> float | None:
        value = get(section, option, env)
        if value is None or not value.strip():
            return default
        if value.strip().lower() in {"none", "window"}:
            return None
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"[{section}] {option}: expected a number, got {value!r}") from exc

    def get_bool(section: str, option: str, env: str, default: bool) -> bool:
        value = get(section, option, env)
        if value is None:
            return default
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        return default

    defaults = DispatcherConfig()
    delays_raw = get("retry", "delays", "BULK_RETRY_DELAYS")
    api_token = get("server", "api_token", "BULK_API_TOKEN")
    if isinstance(api_token, str):
        api_token = api_token.strip() or None
    failure_db_path = get("storage", "failure_db_path", "BULK_FAILURE_DB_PATH")
    if failure_db_path:
        failure_db_path = os.path.expanduser(failure_db_path)

    config = DispatcherConfig(
        limit=get_int("limits", "limit", "BULK_LIMIT", defaults.limit),
        interval_seconds=get_float("limits", "interval_seconds", "BULK_INTERVAL_SECONDS", defaults.interval_seconds),
        deferral_cooldown=get_float(
            "limits", "deferral_cooldown", "BULK_DEFERRAL_COOLDOWN", defaults.deferral_cooldown
        ),
        max_attempts=get_int("retry", "max_attempts", "BULK_MAX_ATTEMPTS", defaults.max_attempts),
        retry_delays=_parse_delays(delays_raw) if delays_raw else defaults.retry_delays,
        retry_jitter=get_float("retry", "jitter", "BULK_RETRY_JITTER", defaults.retry_jitter),
        worker_count=get_int("workers", "count", "BULK_WORKERS", defaults.worker_count),
        request_timeout=get_float("workers", "request_timeout", "BULK_REQUEST_TIMEOUT", defaults.request_timeout),
        max_payload_length=get_int(
            "provider", "max_payload_length", "BULK_MAX_PAYLOAD_LENGTH", defaults.max_payload_length
        ),
        provider_url=get("provider", "url", "BULK_PROVIDER_URL"),
        provider_credential=get("provider", "credential", "BULK_PROVIDER_CREDENTIAL"),
        failure_db_path=failure_db_path or None,
        batch_retention_seconds=get_float(
            "storage", "batch_retention_seconds", "BULK_BATCH_RETENTION_SECONDS", defaults.batch_retention_seconds
        ),
        host=get("server", "host", "BULK_HOST") or defaults.host,
        port=get_int("server", "port", "BULK_PORT", defaults.port),
        api_token=api_token,
        log_level=(get("logging", "level", "BULK_LOG_LEVEL") or defaults.log_level).upper(),
        log_delivery_activity=get_bool(
            "logging", "delivery_activity", "BULK_LOG_DELIVERY_ACTIVITY", defaults.log_delivery_activity
        ),
    )
    for name in ("interval_seconds", "retry_jitter", "request_timeout"):
        if getattr(config, name) is None:
            raise ConfigError(f"{name} cannot be disabled")
    return config.validate()
