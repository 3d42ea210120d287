"""Configuration loader and validator for config.yaml.

Loads config.yaml from the project root and provides typed access to all
configuration sections via Pydantic models. Also loads .env for
environment overrides.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Project root: two levels up from creon_health/utils/config.py
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_PATH = PROJECT_ROOT / "config.yaml"
ENV_PATH = PROJECT_ROOT / ".env"

CATALOG_PATH_ENV = "CREON_CATALOG_PATH"
LOG_LEVEL_ENV = "CREON_LOG_LEVEL"


# ---------------------------------------------------------------------------
# Config section models
# ---------------------------------------------------------------------------

class ScheduleConfig(BaseModel):
    """Cron schedule settings."""
    link_testing_cron: str = "0 2 * * *"
    timezone: str = "UTC"


class TesterConfig(BaseModel):
    """HTTP probing and batching settings for the link tester."""
    batch_size: int = Field(default=5, ge=1)
    batch_delay_seconds: float = Field(default=1.0, ge=0)
    owner_delay_seconds: float = Field(default=0.5, ge=0)
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=10, ge=0)
    user_agent: str = "Creon Link Checker 1.0"


class MarketplaceRule(BaseModel):
    """A marketplace whose affiliate links must land on a product page.

    A URL belongs to the marketplace when it contains any of ``domains``;
    a successful response only counts as working when the final URL
    contains one of ``product_patterns``.
    """
    name: str
    domains: list[str]
    product_patterns: list[str]


DEFAULT_MARKETPLACES = [
    MarketplaceRule(
        name="nykaa",
        domains=["nykaa.onelink.me", "nykaa.com"],
        product_patterns=["/p/", "?productId=", "&productId="],
    ),
    MarketplaceRule(
        name="tira",
        domains=["tirabeauty.com"],
        product_patterns=["/product/"],
    ),
]


class StorageConfig(BaseModel):
    """Location of the catalog document."""
    catalog_path: str = "data/catalog.json"

    def resolved_catalog_path(self) -> Path:
        """Return the catalog path, honouring the env override and the project root."""
        raw = os.environ.get(CATALOG_PATH_ENV) or self.catalog_path
        path = Path(raw)
        if not path.is_absolute():
            path = PROJECT_ROOT / path
        return path


# ---------------------------------------------------------------------------
# Top-level config model
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    """Complete application configuration loaded from config.yaml."""
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    tester: TesterConfig = Field(default_factory=TesterConfig)
    marketplaces: list[MarketplaceRule] = Field(
        default_factory=lambda: [m.model_copy() for m in DEFAULT_MARKETPLACES]
    )
    storage: StorageConfig = Field(default_factory=StorageConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Also loads environment variables from .env if the file exists. A
    missing config file yields the built-in defaults.

    Args:
        config_path: Path to config.yaml. Defaults to PROJECT_ROOT/config.yaml.

    Returns:
        A validated AppConfig instance.

    Raises:
        ValueError: If the config file exists but is empty.
        yaml.YAMLError: If the YAML is malformed.
        pydantic.ValidationError: If the config fails validation.
    """
    path = config_path or CONFIG_PATH

    if ENV_PATH.exists():
        load_dotenv(ENV_PATH)
        logger.debug("Loaded environment variables from %s", ENV_PATH)

    if not path.exists():
        logger.warning("Config file not found at %s, using defaults", path)
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ValueError(f"Config file is empty: {path}")

    config = AppConfig.model_validate(raw)
    logger.info(
        "Config loaded: cron '%s' (%s), batch size %d, %d marketplace rules",
        config.schedule.link_testing_cron,
        config.schedule.timezone,
        config.tester.batch_size,
        len(config.marketplaces),
    )
    return config


def get_setting(key: str, default: Optional[str] = None) -> Optional[str]:
    """Read a setting from environment variables.

    Ensures .env has been loaded first.

    Args:
        key: Environment variable name (e.g. "CREON_LOG_LEVEL").
        default: Fallback value if the variable is not set.

    Returns:
        The setting value or the default.
    """
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH)
    return os.environ.get(key, default)
