"""Shared fixtures for the cartflow test suite."""

from __future__ import annotations

from datetime import date

import pytest

from cartflow.cart.models import Asset
from cartflow.cart.store import InMemoryCartStore
from cartflow.config import DEFAULT_URN_PREFIX, Settings
from cartflow.workflow.models import IntendedUseDeclaration, IntendedUseDraft, RightsData


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def settings(tmp_path):
  return Settings(
    environment="test",
    debug=False,
    rights_base_url="https://rights.test",
    assets_base_url="https://assets.test",
    access_token="token-123",
    http_timeout_seconds=5.0,
    archive_poll_interval_seconds=0.0,
    archive_max_poll_attempts=60,
    asset_urn_prefix=DEFAULT_URN_PREFIX,
    download_dir=str(tmp_path / "downloads"),
    restricted_brands=(),
    log_dir=str(tmp_path / "logs"),
    log_max_bytes=1024,
    log_backup_count=2,
  )


@pytest.fixture
def ready_asset():
  return Asset(asset_id="urn:aaid:aem:A", name="a.jpg", ready_to_use=True)


@pytest.fixture
def pending_asset():
  return Asset(asset_id="urn:aaid:aem:B", name="b.mp4")


@pytest.fixture
def cart_store(ready_asset, pending_asset):
  return InMemoryCartStore([ready_asset, pending_asset])


@pytest.fixture
def market():
  return RightsData(id=301, name="M1")


@pytest.fixture
def channel():
  return RightsData(id=201, name="C1")


@pytest.fixture
def draft(market, channel):
  return IntendedUseDraft(air_date=date(2025, 9, 1), pull_date=date(2025, 9, 3), markets=(market,), media_channels=(channel,))


@pytest.fixture
def declaration(market, channel):
  return IntendedUseDeclaration(air_date=date(2025, 9, 1), pull_date=date(2025, 9, 3), markets=(market,), media_channels=(channel,))
