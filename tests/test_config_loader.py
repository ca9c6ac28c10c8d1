import pytest

from bulk_sender.config_loader import DispatcherConfig, load_config
from bulk_sender.errors import ConfigError

ENV_VARS = [
    "BULK_CONFIG",
    "BULK_LIMIT",
    "BULK_INTERVAL_SECONDS",
    "BULK_DEFERRAL_COOLDOWN",
    "BULK_MAX_ATTEMPTS",
    "BULK_RETRY_DELAYS",
    "BULK_RETRY_JITTER",
    "BULK_WORKERS",
    "BULK_REQUEST_TIMEOUT",
    "BULK_PROVIDER_URL",
    "BULK_PROVIDER_CREDENTIAL",
    "BULK_MAX_PAYLOAD_LENGTH",
    "BULK_FAILURE_DB_PATH",
    "BULK_BATCH_RETENTION_SECONDS",
    "BULK_HOST",
    "BULK_PORT",
    "BULK_API_TOKEN",
    "BULK_LOG_LEVEL",
    "BULK_LOG_DELIVERY_ACTIVITY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_file_missing(tmp_path):
    config = load_config(tmp_path / "missing.ini")
    assert config == DispatcherConfig()
    assert config.limit == 100
    assert config.interval_seconds == 60.0
    assert config.max_attempts == 5
    assert config.retry_delays == (60, 300, 900, 3600, 7200)
    assert config.batch_retention_seconds == 86400.0


def test_reads_ini_file(tmp_path):
    path = tmp_path / "bulk.ini"
    path.write_text(
        """
[limits]
limit = 20
interval_seconds = 1.5
deferral_cooldown = window

[retry]
max_attempts = 3
delays = 1, 2; 4
jitter = 0.2

[workers]
count = 4
request_timeout = 5

[provider]
url = https://sms.example.com/send
credential = s3cret
max_payload_length = 70

[storage]
failure_db_path = /tmp/failures.db
batch_retention_seconds = none

[server]
port = 9000
api_token = token

[logging]
level = debug
delivery_activity = yes
"""
    )
    config = load_config(path)
    assert config.limit == 20
    assert config.interval_seconds == 1.5
    assert config.deferral_cooldown is None
    assert config.max_attempts == 3
    assert config.retry_delays == (1.0, 2.0, 4.0)
    assert config.retry_jitter == 0.2
    assert config.worker_count == 4
    assert config.request_timeout == 5.0
    assert config.provider_url == "https://sms.example.com/send"
    assert config.max_payload_length == 70
    assert config.failure_db_path == "/tmp/failures.db"
    assert config.batch_retention_seconds is None
    assert config.port == 9000
    assert config.log_level == "DEBUG"
    assert config.log_delivery_activity is True

    redacted = config.to_dict()
    assert redacted["provider_credential"] == "***"
    assert redacted["api_token"] == "***"
    assert config.to_dict(redact=False)["provider_credential"] == "s3cret"


def test_environment_fallback_and_file_precedence(tmp_path, monkeypatch):
    path = tmp_path / "bulk.ini"
    path.write_text("[limits]\nlimit = 7\n")
    monkeypatch.setenv("BULK_CONFIG", str(path))
    monkeypatch.setenv("BULK_LIMIT", "50")
    monkeypatch.setenv("BULK_WORKERS", "3")
    monkeypatch.setenv("BULK_API_TOKEN", "  ")

    config = load_config()
    assert config.limit == 7
    assert config.worker_count == 3
    assert config.api_token is None


@pytest.mark.parametrize(
    "env, value",
    [
        ("BULK_LIMIT", "many"),
        ("BULK_LIMIT", "0"),
        ("BULK_INTERVAL_SECONDS", "-1"),
        ("BULK_INTERVAL_SECONDS", "none"),
        ("BULK_RETRY_DELAYS", "1, soon"),
        ("BULK_RETRY_JITTER", "1.5"),
        ("BULK_WORKERS", "0"),
        ("BULK_MAX_ATTEMPTS", "0"),
        ("BULK_DEFERRAL_COOLDOWN", "0"),
        ("BULK_BATCH_RETENTION_SECONDS", "-5"),
    ],
)
def test_invalid_values_raise(tmp_path, monkeypatch, env, value):
    monkeypatch.setenv(env, value)
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.ini")
