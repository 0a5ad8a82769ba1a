"""Stream delivered files to the local download directory."""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import unquote, urlsplit

import httpx

from cartflow.cart.models import Asset, Rendition
from cartflow.config import Settings
from cartflow.core.errors import AssetDeliveryError

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_FILENAME = "archive.zip"


def filename_from_url(url: str, default: str = DEFAULT_ARCHIVE_FILENAME) -> str:
  """Return the last path segment of url without its query, or default."""
  segment = urlsplit(url).path.rsplit("/", 1)[-1]
  return unquote(segment) or default


def _split_ext(name: str) -> tuple[str, str]:
  stem, dot, ext = name.rpartition(".")
  if not dot or not stem:
    return name, ""
  return stem, f".{ext}"


def rendition_filename(asset: Asset, rendition: Rendition, *, is_preset: bool) -> str:
  """Name a single-rendition download as <asset stem>_<rendition stem><ext>.

  Presets take their extension from the first entry of the rendition format
  ("jpeg,rgb" -> ".jpeg"); regular renditions from the rendition name. Both
  fall back to the asset name's extension.
  """
  asset_stem, asset_ext = _split_ext(asset.name) if asset.name else (f"asset-{asset.asset_id}-{rendition.name}", "")
  rendition_stem, rendition_ext = _split_ext(rendition.name)
  if is_preset:
    preset_format = (rendition.format or "").split(",")[0].strip()
    extension = f".{preset_format}" if preset_format else asset_ext
  else:
    extension = rendition_ext or asset_ext
  return f"{asset_stem}_{rendition_stem}{extension}"


class HttpFileDownloader:
  """Writes one URL to settings.download_dir using a streaming httpx request."""

  def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._settings = settings
    self._transport = transport

  def _build_client(self, authorized: bool) -> httpx.AsyncClient:
    headers: dict[str, str] = {}
    if authorized and self._settings.access_token:
      headers["authorization"] = f"Bearer {self._settings.access_token}"
    return httpx.AsyncClient(headers=headers, timeout=self._settings.http_timeout_seconds, transport=self._transport, follow_redirects=True, trust_env=False)

  async def download(self, url: str, *, filename: str | None = None, authorized: bool = False) -> Path:
    target_dir = Path(self._settings.download_dir)
    # Only the final path component is honoured so a crafted name cannot escape the directory.
    target = target_dir / Path(filename or filename_from_url(url)).name
    try:
      target_dir.mkdir(parents=True, exist_ok=True)
      async with self._build_client(authorized) as client:
        async with client.stream("GET", url) as response:
          response.raise_for_status()
          try:
            with target.open("wb") as handle:
              async for chunk in response.aiter_bytes():
                handle.write(chunk)
          except BaseException:
            # A partial file is never left in download_dir.
            target.unlink(missing_ok=True)
            raise

    except httpx.HTTPStatusError as e:
      logger.error("File download returned %s url=%s", e.response.status_code, url)
      raise AssetDeliveryError(f"File download failed: {e.response.status_code}", status_code=e.response.status_code) from e
    except httpx.RequestError as e:
      logger.error("File download request failed url=%s: %s", url, e)
      raise AssetDeliveryError(f"File download request failed: {e}") from e
    except OSError as e:
      logger.error("File download could not be written path=%s: %s", target, e)
      raise AssetDeliveryError(f"File download could not be written: {e}") from e

    logger.info("Downloaded file path=%s", target)
    return target
