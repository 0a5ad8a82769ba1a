"""Archive fulfillment: create a server-side archive, poll it, fan out downloads."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from cartflow.cart.models import Asset, AssetSelection, Rendition
from cartflow.config import Settings
from cartflow.core.errors import ArchiveFailedError, AssetDeliveryError
from cartflow.fulfillment.client import AssetDeliveryClient
from cartflow.fulfillment.contracts import ArchiveStatus, FileDownloader
from cartflow.fulfillment.downloads import HttpFileDownloader, rendition_filename

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLL_ATTEMPTS = 60

Sleeper = Callable[[float], Awaitable[None]]


class ArchiveFulfillment:
  """Turns asset selections into completed downloads.

  One rendition is fetched directly. Anything larger is bundled by the
  server into an archive job that is polled until COMPLETED or FAILED, at
  most `max_poll_attempts` times. File downloads for a completed job are
  started without waiting on each other and are not confirmed; the batch
  counts as a success once they are triggered.
  """

  def __init__(self, client: AssetDeliveryClient, downloader: FileDownloader, *, poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS, max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS, sleep: Sleeper = asyncio.sleep) -> None:
    if max_poll_attempts <= 0:
      raise ValueError("max_poll_attempts must be positive")
    self._client = client
    self._downloader = downloader
    self._poll_interval_seconds = poll_interval_seconds
    self._max_poll_attempts = max_poll_attempts
    self._sleep = sleep
    self._background: set[asyncio.Task[Path]] = set()

  @classmethod
  def from_settings(cls, settings: Settings) -> ArchiveFulfillment:
    return cls(AssetDeliveryClient(settings), HttpFileDownloader(settings), poll_interval_seconds=settings.archive_poll_interval_seconds, max_poll_attempts=settings.archive_max_poll_attempts)

  async def create(self, selections: Sequence[AssetSelection]) -> str | None:
    return await self._client.create_archive(selections)

  async def poll(self, job_id: str) -> bool:
    """Poll job_id until terminal; raise ArchiveFailedError on FAILED or when attempts run out."""
    for attempt in range(1, self._max_poll_attempts + 1):
      job = await self._client.get_archive_status(job_id)
      if job.status is ArchiveStatus.FAILED:
        raise ArchiveFailedError(f"Archive job {job_id} failed")
      if job.status is ArchiveStatus.COMPLETED:
        logger.info("Archive job completed job_id=%s attempts=%d files=%d", job_id, attempt, len(job.files))
        self._fan_out(job.files)
        return True
      logger.debug("Archive job processing job_id=%s attempt=%d", job_id, attempt)
      if attempt < self._max_poll_attempts:
        await self._sleep(self._poll_interval_seconds)
    raise ArchiveFailedError(f"Archive job {job_id} still processing after {self._max_poll_attempts} attempts")

  async def run(self, selections: Sequence[AssetSelection]) -> bool:
    """Create an archive for selections and poll it; every failure is a False result."""
    try:
      job_id = await self.create(selections)
      if job_id is None:
        return False
      return await self.poll(job_id)
    except ArchiveFailedError as exc:
      logger.warning("Archive fulfillment failed: %s", exc)
      return False
    except AssetDeliveryError as exc:
      logger.error("Archive fulfillment aborted: %s", exc)
      return False

  async def download_rendition(self, asset: Asset, rendition: Rendition) -> bool:
    """Download one rendition (or image preset) of asset directly."""
    is_preset = rendition.name in asset.image_presets
    filename = rendition_filename(asset, rendition, is_preset=is_preset)
    try:
      token = await self._client.get_download_token(asset.asset_id)
      if is_preset:
        url = self._client.preset_url(asset.asset_id, filename, rendition.name, token=token)
      else:
        url = self._client.rendition_url(asset.asset_id, rendition.name, filename, token=token)
      await self._downloader.download(url, filename=filename, authorized=True)
    except AssetDeliveryError as exc:
      logger.error("Rendition download failed asset_id=%s rendition=%s: %s", asset.asset_id, rendition.name, exc)
      return False
    return True

  async def download_selections(self, selections: Sequence[AssetSelection]) -> bool:
    """Download selections directly when there is exactly one rendition, otherwise via an archive."""
    if not selections:
      return False
    if len(selections) == 1 and len(selections[0].renditions) == 1:
      selection = selections[0]
      return await self.download_rendition(selection.asset, selection.renditions[0])
    return await self.run(selections)

  def _fan_out(self, files: Sequence[str]) -> None:
    for url in files:
      task = asyncio.create_task(self._downloader.download(url))
      self._background.add(task)
      task.add_done_callback(self._background.discard)
      task.add_done_callback(self._log_task_error)

  async def drain(self) -> None:
    """Wait for fanned-out downloads; their failures were already logged."""
    if self._background:
      await asyncio.gather(*list(self._background), return_exceptions=True)

  @staticmethod
  def _log_task_error(task: asyncio.Task[Path]) -> None:
    """Log background download failures; they never reach the workflow."""
    if task.cancelled():
      return
    try:
      _ = task.result()
    except Exception as exc:  # noqa: BLE001
      logger.error("Background file download failed: %s", exc, exc_info=True)
