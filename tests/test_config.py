from __future__ import annotations

import pytest

from portal_tracker import config as config_module
from portal_tracker.config import TrackerConfig, get_config, load_config, reset_config


ENV_VARS = (
    "TRACKER_CONFIG",
    "LOG_LEVEL",
    "BROWSER_HEADLESS",
    "POLL_INTERVAL_SECONDS",
    "FIREBASE_DATABASE_URL",
    "FIREBASE_AUTH_TOKEN",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


def test_defaults() -> None:
    config = TrackerConfig()
    assert config.tracking.idle_threshold_minutes == 15
    assert config.tracking.low_performance_threshold == 100
    assert config.tracking.log_capacity == 100
    assert config.alerts.red_thresholds["verification"] == 2000
    assert config.alerts.yellow_thresholds == {"general": 200, "edited": 150}
    assert config.loop.poll_interval_seconds == 60
    assert config.browser.headless is False
    assert config.behavior.queue_monitoring_always is True
    assert config.telegram.enabled is False


def test_load_from_yaml(tmp_path) -> None:
    path = tmp_path / "tracker.yaml"
    path.write_text(
        """
log_level: DEBUG
agents:
  alice:
    id: "101"
    permission_url: /search/user?q=alice
tracking:
  idle_threshold_minutes: 20
  timezone: UTC
sink:
  kind: memory
behavior:
  anti_idle_jitter: true
"""
    )

    config = load_config(str(path))

    assert config.log_level == "DEBUG"
    assert config.agents["alice"].id == "101"
    assert config.agents["alice"].permission_url == "/search/user?q=alice"
    assert config.tracking.idle_threshold_minutes == 20
    assert config.tracking.low_performance_threshold == 100
    assert config.sink.kind == "memory"
    assert config.behavior.anti_idle_jitter is True


def test_env_overrides_win_over_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "tracker.yaml"
    path.write_text("browser:\n  headless: false\nsink:\n  database_url: https://file.firebaseio.test\n")
    monkeypatch.setenv("BROWSER_HEADLESS", "true")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("FIREBASE_DATABASE_URL", "https://env.firebaseio.test")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "1")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    config = load_config(str(path))

    assert config.browser.headless is True
    assert config.loop.poll_interval_seconds == 30
    assert config.sink.database_url == "https://env.firebaseio.test"
    assert config.telegram.enabled is True
    assert config.log_level == "WARNING"


def test_missing_file_uses_defaults(tmp_path) -> None:
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.agents == {}
    assert config.portal.base_url == "https://admin.bikroy.com"


def test_get_config_is_cached(tmp_path, monkeypatch) -> None:
    path = tmp_path / "tracker.yaml"
    path.write_text("log_level: ERROR\n")
    monkeypatch.setenv("TRACKER_CONFIG", str(path))

    first = get_config()
    assert first.log_level == "ERROR"
    assert get_config() is first

    reset_config()
    assert config_module._config is None
    assert get_config() is not first
