"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

HARVEST_MODES = ("demo", "production")
LEDGER_MODES = ("simulated", "jsonrpc")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceConfig:
    source: str = ""
    refresh_interval_seconds: int = 14400
    history_days: int = 180


@dataclass(frozen=True)
class HealthConfig:
    check_interval_seconds: int = 60


@dataclass(frozen=True)
class HarvestConfig:
    mode: str = "demo"
    demo_interval_seconds: int = 240
    production_interval_seconds: int = 86400

    @property
    def interval_seconds(self) -> int:
        if self.mode == "production":
            return self.production_interval_seconds
        return self.demo_interval_seconds


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 5
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0


@dataclass(frozen=True)
class SimulatedPositionConfig:
    owner: str = ""
    collateral: str = "0"
    debt: str = "0"
    asset_id: str = ""


@dataclass(frozen=True)
class SimulatedLedgerConfig:
    annual_interest_bp: int = 500
    dex_stable_reserve: str = "1000000"
    positions: tuple[SimulatedPositionConfig, ...] = ()


@dataclass(frozen=True)
class LedgerConfig:
    mode: str = "simulated"
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    sync_interval_seconds: int = 300
    simulated: SimulatedLedgerConfig = field(default_factory=SimulatedLedgerConfig)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    price: PriceConfig = field(default_factory=PriceConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    harvest: HarvestConfig = field(default_factory=HarvestConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_price(raw: dict[str, Any]) -> PriceConfig:
    return PriceConfig(
        source=str(raw.get("source") or ""),
        refresh_interval_seconds=int(raw.get("refresh_interval_seconds", 14400)),
        history_days=int(raw.get("history_days", 180)),
    )


def _build_health(raw: dict[str, Any]) -> HealthConfig:
    return HealthConfig(
        check_interval_seconds=int(raw.get("check_interval_seconds", 60)),
    )


def _build_harvest(raw: dict[str, Any]) -> HarvestConfig:
    return HarvestConfig(
        mode=str(raw.get("mode", "demo")),
        demo_interval_seconds=int(raw.get("demo_interval_seconds", 240)),
        production_interval_seconds=int(
            raw.get("production_interval_seconds", 86400)
        ),
    )


def _build_retry(raw: dict[str, Any]) -> RetryConfig:
    return RetryConfig(
        max_attempts=int(raw.get("max_attempts", 5)),
        base_delay=float(raw.get("base_delay", 2.0)),
        multiplier=float(raw.get("multiplier", 2.0)),
        max_delay=float(raw.get("max_delay", 60.0)),
    )


def _build_simulated(raw: dict[str, Any]) -> SimulatedLedgerConfig:
    positions: list[SimulatedPositionConfig] = []
    for p in raw.get("positions", []):
        positions.append(
            SimulatedPositionConfig(
                owner=str(p.get("owner", "")),
                collateral=str(p.get("collateral", "0")),
                debt=str(p.get("debt", "0")),
                asset_id=str(p.get("asset_id", "")),
            )
        )
    return SimulatedLedgerConfig(
        annual_interest_bp=int(raw.get("annual_interest_bp", 500)),
        dex_stable_reserve=str(raw.get("dex_stable_reserve", "1000000")),
        positions=tuple(positions),
    )


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    return LedgerConfig(
        mode=str(raw.get("mode", "simulated")),
        rpc_endpoints=tuple(e for e in raw.get("rpc_endpoints", []) if e),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        sync_interval_seconds=int(raw.get("sync_interval_seconds", 300)),
        simulated=_build_simulated(raw.get("simulated", {})),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        price=_build_price(raw.get("price", {})),
        health=_build_health(raw.get("health", {})),
        harvest=_build_harvest(raw.get("harvest", {})),
        retry=_build_retry(raw.get("retry", {})),
        ledger=_build_ledger(raw.get("ledger", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if cfg.price.refresh_interval_seconds <= 0:
        raise ValueError("price.refresh_interval_seconds must be positive")
    if cfg.price.history_days < 1:
        raise ValueError("price.history_days must be at least 1")
    if cfg.health.check_interval_seconds <= 0:
        raise ValueError("health.check_interval_seconds must be positive")

    if cfg.harvest.mode not in HARVEST_MODES:
        raise ValueError(f"Unknown harvest mode '{cfg.harvest.mode}'")
    if cfg.harvest.interval_seconds <= 0:
        raise ValueError("harvest interval must be positive")

    if cfg.retry.max_attempts < 1:
        raise ValueError("retry.max_attempts must be at least 1")
    if cfg.retry.base_delay < 0 or cfg.retry.multiplier < 1:
        raise ValueError("retry.base_delay must be >= 0 and multiplier >= 1")

    if cfg.ledger.mode not in LEDGER_MODES:
        raise ValueError(f"Unknown ledger mode '{cfg.ledger.mode}'")
    if cfg.ledger.sync_interval_seconds <= 0:
        raise ValueError("ledger.sync_interval_seconds must be positive")
    if cfg.ledger.mode == "jsonrpc" and not cfg.ledger.rpc_endpoints:
        raise ValueError("Ledger mode 'jsonrpc' requires at least one rpc endpoint")

    for position in cfg.ledger.simulated.positions:
        if not position.owner:
            raise ValueError("Simulated position has no owner")
