"""Workflow configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from cartflow.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_URN_PREFIX = "urn:aaid:aem:"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the cart fulfillment engine."""

  environment: str
  debug: bool
  rights_base_url: str | None
  assets_base_url: str | None
  access_token: str | None
  http_timeout_seconds: float
  archive_poll_interval_seconds: float
  archive_max_poll_attempts: int
  asset_urn_prefix: str
  download_dir: str
  restricted_brands: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_csv(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ()
  return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("CARTFLOW_ENV", "development").lower()
  debug = _parse_bool(os.getenv("CARTFLOW_DEBUG"))

  http_timeout_seconds = float(os.getenv("CARTFLOW_HTTP_TIMEOUT_SECONDS", "30"))
  if http_timeout_seconds <= 0:
    raise ValueError("CARTFLOW_HTTP_TIMEOUT_SECONDS must be a positive number.")

  # Archive jobs are polled on a fixed cadence; the attempt bound is the only timeout.
  archive_poll_interval_seconds = float(os.getenv("CARTFLOW_ARCHIVE_POLL_INTERVAL_SECONDS", "5"))
  if archive_poll_interval_seconds < 0:
    raise ValueError("CARTFLOW_ARCHIVE_POLL_INTERVAL_SECONDS must be zero or a positive number.")

  archive_max_poll_attempts = int(os.getenv("CARTFLOW_ARCHIVE_MAX_POLL_ATTEMPTS", "60"))
  if archive_max_poll_attempts <= 0:
    raise ValueError("CARTFLOW_ARCHIVE_MAX_POLL_ATTEMPTS must be a positive integer.")

  log_max_bytes = int(os.getenv("CARTFLOW_LOG_MAX_BYTES", "5242880"))  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("CARTFLOW_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("CARTFLOW_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("CARTFLOW_LOG_BACKUP_COUNT must be zero or a positive integer.")

  return Settings(
    environment=environment,
    debug=debug,
    rights_base_url=_optional_str(os.getenv("CARTFLOW_RIGHTS_BASE_URL")),
    assets_base_url=_optional_str(os.getenv("CARTFLOW_ASSETS_BASE_URL")),
    access_token=_optional_str(os.getenv("CARTFLOW_ACCESS_TOKEN")),
    http_timeout_seconds=http_timeout_seconds,
    archive_poll_interval_seconds=archive_poll_interval_seconds,
    archive_max_poll_attempts=archive_max_poll_attempts,
    asset_urn_prefix=os.getenv("CARTFLOW_ASSET_URN_PREFIX", DEFAULT_URN_PREFIX),
    download_dir=(os.getenv("CARTFLOW_DOWNLOAD_DIR") or "./downloads").strip(),
    restricted_brands=_parse_csv(os.getenv("CARTFLOW_RESTRICTED_BRANDS")),
    log_dir=(os.getenv("CARTFLOW_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
  )
