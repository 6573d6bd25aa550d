"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class SourceConfig:
    enabled: bool = True
    base_url: str | None = None
    cookies: dict[str, str] = field(default_factory=dict)
    export_dir: Path | None = None


@dataclass
class NotionConfig:
    api_key: str = ""
    database_id: str = ""
    api_base: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"
    timeout_seconds: float = 30.0


@dataclass
class RateLimitConfig:
    requests_per_minute: int = 30
    max_queue_seconds: float = 300.0
    backlog_threshold: int = 50
    short_delay_seconds: float = 0.2
    long_delay_seconds: float = 0.5


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay_seconds: float = 2.0


@dataclass
class SyncConfig:
    checkpoint_every: int = 5
    item_delay_seconds: float = 0.8
    quality_threshold: int = 50
    resume_window_seconds: float = 3600.0
    failure_log_size: int = 50
    history_size: int = 50
    append_delay_seconds: float = 0.3
    rate_limit_cooldown_seconds: float = 60.0
    network_retry_delay_seconds: float = 5.0


@dataclass
class Config:
    state_db: Path = field(default_factory=lambda: Path.home() / "convoport" / "state" / "convoport.db")
    log_dir: Path = field(default_factory=lambda: Path.home() / "convoport" / "logs")
    notion: NotionConfig = field(default_factory=NotionConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    sources: dict[str, SourceConfig] = field(default_factory=dict)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "convoport" / "config.yaml",
            Path("/etc/convoport/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    defaults = Config()

    notion_data = data.get("notion", {})
    notion = NotionConfig(
        api_key=expand_env_var(notion_data.get("api_key", "${NOTION_API_KEY}")),
        database_id=expand_env_var(notion_data.get("database_id", "")),
        api_base=notion_data.get("api_base", "https://api.notion.com/v1"),
        notion_version=notion_data.get("notion_version", "2022-06-28"),
        timeout_seconds=notion_data.get("timeout_seconds", 30.0),
    )
    # An unset ${VAR} stays literal; treat it as missing
    if notion.api_key.startswith("${"):
        notion.api_key = ""

    rl_data = data.get("rate_limit", {})
    rate_limit = RateLimitConfig(
        requests_per_minute=rl_data.get("requests_per_minute", 30),
        max_queue_seconds=rl_data.get("max_queue_seconds", 300.0),
        backlog_threshold=rl_data.get("backlog_threshold", 50),
        short_delay_seconds=rl_data.get("short_delay_seconds", 0.2),
        long_delay_seconds=rl_data.get("long_delay_seconds", 0.5),
    )

    retry_data = data.get("retry", {})
    retry = RetryConfig(
        max_attempts=retry_data.get("max_attempts", 3),
        base_delay_seconds=retry_data.get("base_delay_seconds", 2.0),
    )

    sync_data = data.get("sync", {})
    sync = SyncConfig(**{
        key: sync_data.get(key, getattr(defaults.sync, key))
        for key in SyncConfig.__dataclass_fields__
    })

    sources = {}
    for name, src_data in data.get("sources", {}).items():
        src_data = src_data or {}
        export_dir = src_data.get("export_dir")
        cookies = {k: expand_env_var(str(v)) for k, v in (src_data.get("cookies") or {}).items()}
        sources[name] = SourceConfig(
            enabled=src_data.get("enabled", True),
            base_url=src_data.get("base_url"),
            # Drop cookies whose ${VAR} is unset
            cookies={k: v for k, v in cookies.items() if v and not v.startswith("${")},
            export_dir=expand_path(export_dir) if export_dir else None,
        )

    return Config(
        state_db=expand_path(data.get("state_db", "~/convoport/state/convoport.db")),
        log_dir=expand_path(data.get("log_dir", "~/convoport/logs")),
        notion=notion,
        rate_limit=rate_limit,
        retry=retry,
        sync=sync,
        sources=sources,
    )
