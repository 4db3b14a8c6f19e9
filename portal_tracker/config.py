"""Configuration management for the portal tracker."""

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field


DEFAULT_RED_THRESHOLDS = {
    "member": 20,
    "listing_fee": 20,
    "general": 250,
    "manager": 100,
    "fraud": 70,
    "edited": 250,
    "verification": 2000,
}

DEFAULT_YELLOW_THRESHOLDS = {
    "general": 200,
    "edited": 150,
}

DEFAULT_QUEUE_CODES = {
    "member": "M",
    "listing_fee": "L",
    "general": "G",
    "manager": "MGR",
    "fraud": "FRD",
    "edited": "E",
    "verification": "V",
}


class AgentConfig(BaseModel):
    """One tracked agent of the roster."""
    id: str = Field(description="Portal admin user id used in the agent search")
    permission_url: Optional[str] = Field(default=None, description="User search page used to read permissions")


class BrowserConfig(BaseModel):
    """Browser session settings."""
    headless: bool = Field(default=False, description="Run Chromium headless (GUI mode allows manual login)")
    executable_path: Optional[str] = Field(default=None, description="Chromium executable, auto-detected when unset")
    cookies_path: Optional[str] = Field(default="cookies.json", description="Cookie jar loaded into new contexts")
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--start-maximized",
            "--disable-notifications",
        ],
        description="Extra Chromium command line switches",
    )
    launch_timeout_seconds: float = Field(default=60.0, description="Browser launch timeout")


class PortalConfig(BaseModel):
    """Where and how the admin portal is scraped."""
    base_url: str = Field(default="https://admin.bikroy.com", description="Admin portal origin")
    queue_path: str = Field(default="/review/email", description="Page listing review queue counters")
    login_check_path: str = Field(default="/search/item", description="Page opened to verify the login")
    agent_search_path: str = Field(
        default=(
            "/search/item?submitted=1&search=&event_type_from=&event_type_to=&event_type="
            "&category=&rejection=&location=&admin_user={agent_id}"
        ),
        description="Search page template for an agent's cumulative count",
    )
    queue_count_selector: str = Field(default=".review-tabs .review-count", description="Queue counter elements")
    result_count_pattern: str = Field(default=r"of ([\d,]+) results", description="Regex for the result total")
    permission_edit_selector: str = Field(default="a.ui-btn.is-standard.edit.is-s", description="User edit link")
    permission_checkbox_selector: str = Field(
        default=".permissions .ui-checkbox:checked", description="Checked permission boxes"
    )
    navigation_timeout_seconds: float = Field(default=30.0, description="Page navigation timeout")
    selector_timeout_seconds: float = Field(default=10.0, description="Wait for queue counters timeout")
    scrape_timeout_seconds: float = Field(default=45.0, description="Upper bound for one scrape call")


class AlertConfig(BaseModel):
    """Queue backlog thresholds."""
    red_thresholds: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_RED_THRESHOLDS))
    yellow_thresholds: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_YELLOW_THRESHOLDS))
    queue_codes: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_QUEUE_CODES))


class TrackingConfig(BaseModel):
    """Agent tracking settings."""
    idle_threshold_minutes: int = Field(default=15, description="Minutes without progress before an agent is idle")
    low_performance_threshold: int = Field(default=100, description="Hourly count below which a warning is logged")
    permission_refresh_ticks: int = Field(default=60, description="Ticks between permission refreshes")
    log_capacity: int = Field(default=100, description="Session log entries kept")
    timezone: str = Field(default="Asia/Dhaka", description="Timezone of hour buckets and labels")


class LoopConfig(BaseModel):
    """Main loop timing."""
    poll_interval_seconds: float = Field(default=60.0, description="Sleep between ticks")
    error_backoff_seconds: float = Field(default=10.0, description="Sleep after a fatal tick error")
    command_poll_interval_seconds: float = Field(default=2.0, description="Command stream polling interval")


class SinkConfig(BaseModel):
    """Realtime status store settings."""
    kind: str = Field(default="firebase", description="'firebase' or 'memory'")
    database_url: str = Field(default="", description="Firebase Realtime Database URL")
    auth_token: Optional[str] = Field(default=None, description="Database secret or ID token")
    status_path: str = Field(default="status", description="Node receiving status snapshots")
    commands_path: str = Field(default="commands", description="Node holding the pending command")
    request_timeout_seconds: float = Field(default=15.0, description="HTTP timeout")


class TelegramSettings(BaseModel):
    """Optional Telegram alert notifications."""
    bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    chat_id: Optional[str] = Field(default=None, description="Telegram chat id")

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class BehaviorConfig(BaseModel):
    """Deployment flavour switches."""
    anti_idle_jitter: bool = Field(default=False, description="Move/scroll the working page every tick")
    refresh_on_start: bool = Field(default=False, description="Publish one queue scan right after startup")
    queue_monitoring_always: bool = Field(default=True, description="Scan queues even when tracking is stopped")


class TrackerConfig(BaseModel):
    """Main configuration for the portal tracker."""

    log_level: str = Field(default="INFO", description="Logging level")
    agents: Dict[str, AgentConfig] = Field(default_factory=dict, description="Configured agent roster")

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    portal: PortalConfig = Field(default_factory=PortalConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)


def _set_nested(config_data: dict, section: str, key: str, value) -> None:
    target = config_data.setdefault(section, {})
    if isinstance(target, dict):
        target[key] = value


def load_config(config_path: Optional[str] = None) -> TrackerConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("TRACKER_CONFIG", "config/tracker.yaml")

    config_data = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    env_overrides = {
        ("", "log_level"): os.getenv("LOG_LEVEL"),
        ("browser", "headless"): os.getenv("BROWSER_HEADLESS"),
        ("loop", "poll_interval_seconds"): os.getenv("POLL_INTERVAL_SECONDS"),
        ("sink", "database_url"): os.getenv("FIREBASE_DATABASE_URL"),
        ("sink", "auth_token"): os.getenv("FIREBASE_AUTH_TOKEN"),
        ("telegram", "bot_token"): os.getenv("TELEGRAM_BOT_TOKEN"),
        ("telegram", "chat_id"): os.getenv("TELEGRAM_CHAT_ID"),
    }

    for (section, key), value in env_overrides.items():
        if value is None:
            continue
        if key == "headless":
            value = value.lower() in ("true", "1", "yes")
        elif key == "poll_interval_seconds":
            value = int(value)
        if section:
            _set_nested(config_data, section, key, value)
        else:
            config_data[key] = value

    return TrackerConfig(**config_data)


_config: Optional[TrackerConfig] = None


def get_config() -> TrackerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration."""
    global _config
    _config = None
