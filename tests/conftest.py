"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from leverage_keeper.amounts import parse_collateral, parse_stable
from leverage_keeper.config import (
    AppConfig,
    EmailConfig,
    HarvestConfig,
    HealthConfig,
    LedgerConfig,
    NotificationsConfig,
    PriceConfig,
    RetryConfig,
    SimulatedLedgerConfig,
    SimulatedPositionConfig,
    TelegramConfig,
)
from leverage_keeper.ledger import SimulatedLedger
from leverage_keeper.models import PriceSample
from leverage_keeper.retry import RetryPolicy
from leverage_keeper.services.guard import TransitionGuard
from leverage_keeper.services.notifications import NotificationDispatcher
from leverage_keeper.services.position_ledger import PositionLedgerMirror
from leverage_keeper.services.price_cache import PriceCache

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class StaticFeed:
    """Price feed returning a fixed list of (date, price) samples."""

    def __init__(self, *prices: str, end: date = START.date()) -> None:
        start = end - timedelta(days=len(prices) - 1)
        self.samples = [
            PriceSample(date=start + timedelta(days=i), price=parse_stable(p))
            for i, p in enumerate(prices)
        ]

    def load_samples(self, lookback_days: int) -> list[PriceSample]:
        return self.samples[-lookback_days:]


# ---------------------------------------------------------------------------
# Infrastructure fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.01, sleep=AsyncMock())


@pytest.fixture()
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.send.return_value = True
    return mock


@pytest.fixture()
def dispatcher(notifier: AsyncMock) -> NotificationDispatcher:
    return NotificationDispatcher([notifier])


@pytest.fixture()
def guard() -> TransitionGuard:
    return TransitionGuard()


@pytest.fixture()
def mirror(clock: FakeClock) -> PositionLedgerMirror:
    return PositionLedgerMirror(clock)


@pytest.fixture()
def price_cache(clock: FakeClock) -> PriceCache:
    cache = PriceCache(clock)
    cache.load(StaticFeed("3000"), lookback_days=30)
    return cache


@pytest.fixture()
def sim_ledger(price_cache: PriceCache, clock: FakeClock) -> SimulatedLedger:
    return SimulatedLedger(
        annual_interest_bp=500,
        dex_stable_reserve=parse_stable("1000000"),
        price_source=price_cache.current_price,
        clock=clock,
    )


@pytest.fixture()
def standard_position(
    sim_ledger: SimulatedLedger, mirror: PositionLedgerMirror, price_cache: PriceCache
) -> int:
    """50 collateral at $3000 against $100,000 debt: health 150%."""
    position_id = sim_ledger.open_position(
        "0xA11CE", parse_collateral("50"), parse_stable("100000"), price_cache.current_price()
    )
    mirror.create_position(
        position_id=position_id,
        owner="0xA11CE",
        collateral_amount=parse_collateral("50"),
        debt_amount=parse_stable("100000"),
        initial_ltv=6666,
        current_health_factor=15000,
    )
    return position_id


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_app_config() -> AppConfig:
    return AppConfig(
        price=PriceConfig(source="", refresh_interval_seconds=3600, history_days=30),
        health=HealthConfig(check_interval_seconds=60),
        harvest=HarvestConfig(mode="demo", demo_interval_seconds=240),
        retry=RetryConfig(max_attempts=2, base_delay=0.01, multiplier=2.0, max_delay=1.0),
        ledger=LedgerConfig(
            mode="simulated",
            simulated=SimulatedLedgerConfig(
                annual_interest_bp=500,
                dex_stable_reserve="1000000",
                positions=(
                    SimulatedPositionConfig(owner="0xA11CE", collateral="50", debt="100000"),
                ),
            ),
        ),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(enabled=False),
            email=EmailConfig(enabled=False),
        ),
    )


SAMPLE_YAML = textwrap.dedent("""\
    price:
      source: ""
      refresh_interval_seconds: 3600
      history_days: 30
    health:
      check_interval_seconds: 30
    harvest:
      mode: production
      demo_interval_seconds: 240
      production_interval_seconds: 86400
    retry:
      max_attempts: 4
      base_delay: 1.0
      multiplier: 3.0
      max_delay: 30.0
    ledger:
      mode: simulated
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
      sync_interval_seconds: 120
      simulated:
        annual_interest_bp: 400
        dex_stable_reserve: "500000"
        positions:
          - owner: "0xA11CE"
            collateral: "50"
            debt: "100000"
            asset_id: meth
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
