"""Settings and risk gate configuration.

Settings come from environment variables (prefix ``ADMISSION_``) or a
``.env`` file. Risk profiles come from ``risk.yaml``; with no YAML file the
two default profiles (reward/risk >= 2, stop-loss distance >= 1%) apply,
tuned by the settings.
"""

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

from admission.models import RiskGateConfig, RiskProfileConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Indicator cache
    timeframe: str = "15m"
    cache_max_entries: int = 0  # 0 = unbounded

    # Default risk gates
    min_reward_risk: Decimal = Decimal("2")
    min_stop_loss_pct: Decimal = Decimal("1")
    max_active_positions: int = 0  # 0 = no limit

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging in the application's format."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format=LOG_FORMAT,
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def config_from_settings(settings: Settings) -> RiskGateConfig:
    """Default profiles with thresholds taken from *settings*."""
    profiles = [
        RiskProfileConfig(
            risk_name="reward_risk",
            note=f"Take profit must be at least {settings.min_reward_risk}x the stop distance",
            min_reward_risk=settings.min_reward_risk,
        ),
        RiskProfileConfig(
            risk_name="stop_loss_distance",
            note=f"Stop loss must sit at least {settings.min_stop_loss_pct}% away from entry",
            min_stop_loss_pct=settings.min_stop_loss_pct,
        ),
    ]
    if settings.max_active_positions > 0:
        profiles.append(
            RiskProfileConfig(
                risk_name="max_positions",
                max_active_positions=settings.max_active_positions,
            )
        )
    return RiskGateConfig(timeframe=settings.timeframe, profiles=profiles)


def load_risk_config(path: Path | None = None, settings: Settings | None = None) -> RiskGateConfig:
    """Load risk gate config from YAML.

    *path* defaults to ``risk.yaml`` in the current working directory at
    call time. Falls back to settings-derived defaults if the file doesn't
    exist.
    """
    config_path = path or Path.cwd() / "risk.yaml"

    # Load .env next to the YAML file before settings are read
    loaded_env = load_dotenv(config_path.parent / ".env", override=False)
    if settings is None:
        if loaded_env:
            # Settings cached before this .env was loaded would miss it
            get_settings.cache_clear()
        settings = get_settings()

    if not config_path.exists():
        logger.info(
            "No risk.yaml found at %s, using default risk profiles",
            config_path,
        )
        return config_from_settings(settings)

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw.setdefault("timeframe", settings.timeframe)
    config = RiskGateConfig(**raw)
    logger.info(
        "Loaded risk config: timeframe=%s, %d profiles (%d enabled)",
        config.timeframe,
        len(config.profiles),
        len(config.enabled_profiles()),
    )
    return config
