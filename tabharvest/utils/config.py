"""
Configuration management for tabharvest.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "tabharvest"
    version: str = "0.1.0"
    log_level: str = "INFO"
    data_dir: str = "data"
    logs_dir: str = "logs"


class BrowserConfig(BaseModel):
    """Browser configuration.

    tabharvest attaches to the user's running Chrome over CDP so that hidden
    tabs share the logged-in session of both web applications. When no Chrome
    is listening, a local Chromium is launched instead.
    """

    chrome_host: str = "localhost"
    chrome_port: int = 9222
    connect_timeout: float = 5.0
    launch_fallback: bool = True
    fallback_headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080


class TabsConfig(BaseModel):
    """Hidden tab lifecycle configuration."""

    model_config = ConfigDict(extra="forbid")

    navigation_timeout: float = 30.0  # Deadline for the "load" state
    spa_settle_delay: float = 1.0  # Pause after load before querying the page agent


class AgentPollConfig(BaseModel):
    """Cross-tab agent polling (exponential backoff)."""

    max_attempts: int = 10
    max_wait: float = 8.0
    base_delay: float = 0.1
    max_delay: float = 0.5


class RenderPollConfig(BaseModel):
    """Same-page render wait (fixed interval)."""

    interval: float = 0.1
    timeout: float = 5.0
    settle_delay: float = 0.1  # Extra pause once a selector matched


class PollingConfig(BaseModel):
    """Polling configuration."""

    agent: AgentPollConfig = Field(default_factory=AgentPollConfig)
    invoice_agent: AgentPollConfig = Field(
        default_factory=lambda: AgentPollConfig(max_attempts=5, max_wait=5.0)
    )
    render: RenderPollConfig = Field(default_factory=RenderPollConfig)


class DownloadsConfig(BaseModel):
    """Download configuration."""

    concurrency: int = 5  # Hidden tabs per wave
    inter_wave_pause: float = 0.5
    post_download_delay: float = 0.2
    sequential_delay: float = 0.1  # Between plain DOWNLOAD_FILES items
    download_dir: str = "data/downloads"
    correlator_max_entries: int = 256
    request_timeout: float = 60.0


class UnitAppConfig(BaseModel):
    """Unit App (maintenance request SPA) configuration."""

    base_url: str = "https://app.propertymeld.com"
    host_marker: str = "propertymeld.com"


class WorkAppConfig(BaseModel):
    """Work App (property records) configuration."""

    base_url: str = "https://app.propertyware.com"
    unit_detail_path: str = "/pw/properties/unit_detail.do"
    work_order_path: str = "/pw/maintenance/work_order_detail.do"


class RecordsApiConfig(BaseModel):
    """Work App REST records API configuration.

    Credentials are supplied through local.yaml or environment variables
    (TABHARVEST_RECORDS_API__CLIENT_ID etc.), never committed.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True)

    base_url: str = "https://api.propertyware.com/pw/api/rest/v1"
    timeout: float = 30.0
    client_id: str = ""
    client_secret: str = ""
    system_id: str = ""
    work_order_limit: int = 200
    max_retries: int = 3


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    tabs: TabsConfig = Field(default_factory=TabsConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    downloads: DownloadsConfig = Field(default_factory=DownloadsConfig)
    unit_app: UnitAppConfig = Field(default_factory=UnitAppConfig)
    work_app: WorkAppConfig = Field(default_factory=WorkAppConfig)
    records_api: RecordsApiConfig = Field(default_factory=RecordsApiConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml with local.yaml overrides.

    local.yaml is optional and never committed; it holds per-machine values
    such as records API credentials.

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    base_path = config_dir / "settings.yaml"
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_path = config_dir / "local.yaml"
    if local_path.exists():
        with open(local_path, encoding="utf-8") as f:
            local = yaml.safe_load(f) or {}
        config = _deep_merge(config, local)

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with TABHARVEST_ and use
    double underscores for nested keys.

    Example:
        TABHARVEST_DOWNLOADS__CONCURRENCY=3

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "TABHARVEST_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "TABHARVEST_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            current = current[part]

        # Parse as bool, float, or int where possible
        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get("TABHARVEST_CONFIG_DIR", "config"))

    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)

    return Settings(**config)


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    # Assuming this file is at tabharvest/utils/config.py
    return Path(__file__).parent.parent.parent


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    settings = get_settings()
    root = get_project_root()

    dirs = [
        root / settings.general.data_dir,
        root / settings.general.logs_dir,
        root / settings.downloads.download_dir,
    ]

    for dir_path in dirs:
        dir_path.mkdir(parents=True, exist_ok=True)
