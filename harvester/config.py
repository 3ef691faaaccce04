"""
Configuration loading: YAML file for tunables, environment for secrets.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class IdentityProfile(BaseModel):
    """One realistic client identity used by the direct fetch strategy."""
    name: str
    headers: Dict[str, str]


DEFAULT_IDENTITIES: List[IdentityProfile] = [
    IdentityProfile(
        name="chrome-windows",
        headers={
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                          "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Upgrade-Insecure-Requests": "1",
        },
    ),
    IdentityProfile(
        name="safari-macos",
        headers={
            "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
                          "(KHTML, like Gecko) Version/17.1 Safari/605.1.15",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        },
    ),
    IdentityProfile(
        name="firefox-linux",
        headers={
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "DNT": "1",
        },
    ),
]


class RelayEndpoint(BaseModel):
    """An open content relay. ``{url}`` in the template is replaced by the quoted target URL."""
    name: str
    template: str
    json_field: Optional[str] = None  # set when the relay wraps HTML in JSON


DEFAULT_RELAYS: List[RelayEndpoint] = [
    RelayEndpoint(name="allorigins", template="https://api.allorigins.win/get?url={url}", json_field="contents"),
    RelayEndpoint(name="corsproxy", template="https://corsproxy.io/?{url}"),
]


class FetchSettings(BaseModel):
    premium_endpoint: str = "https://app.scrapingbee.com/api/v1/"
    premium_api_key: Optional[str] = None
    premium_timeout: float = 60.0
    premium_retries: int = 2
    premium_base_delay: float = 1.0
    premium_max_delay: float = 8.0
    direct_timeout: float = 15.0
    relay_timeout: float = 10.0
    min_html_length: int = 100
    identities: List[IdentityProfile] = Field(default_factory=lambda: list(DEFAULT_IDENTITIES))
    relays: List[RelayEndpoint] = Field(default_factory=lambda: list(DEFAULT_RELAYS))


class OrchestratorSettings(BaseModel):
    recent_window_hours: float = 12.0
    triage_limit: int = 10
    batch_size: int = 5
    batch_delay: float = 1.0
    min_successful_sources: int = 8
    cache_ttl_hours: float = 24.0


class StorageSettings(BaseModel):
    db_path: str = "harvester.db"


class SchedulerSettings(BaseModel):
    cron: str = "0 6 * * *"
    timezone: str = "UTC"
    organization_delay: float = 1.0


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


class HarvesterSettings(BaseModel):
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(path: Optional[str] = None) -> HarvesterSettings:
    """Load settings from YAML, then apply environment overrides.

    A missing file is not an error; every setting has a default.
    """
    config_path = Path(path or os.getenv("HARVESTER_CONFIG", DEFAULT_CONFIG_PATH))

    data: Dict = {}
    if config_path.exists():
        try:
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    else:
        logger.info(f"Config file not found: {config_path}, using defaults")

    try:
        settings = HarvesterSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

    api_key = os.getenv("PREMIUM_FETCH_API_KEY")
    if api_key:
        settings.fetch.premium_api_key = api_key
    db_path = os.getenv("HARVESTER_DB")
    if db_path:
        settings.storage.db_path = db_path
    tz = os.getenv("SCHEDULER_TIMEZONE")
    if tz:
        settings.scheduler.timezone = tz

    return settings
