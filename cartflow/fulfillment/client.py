"""HTTP client for the asset delivery API (archives, tokens, renditions)."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from urllib.parse import quote, urlencode

import httpx
from pydantic import ValidationError

from cartflow.cart.models import AssetSelection
from cartflow.config import Settings
from cartflow.core.errors import AssetDeliveryError
from cartflow.fulfillment.contracts import ArchiveData, ArchiveJob, ArchiveStatus, ArchiveStatusResponse, CreateArchiveRequest, DownloadToken

logger = logging.getLogger(__name__)

ARCHIVES_PATH = "/adobe/assets/archives"
ARCHIVE_STATUS_PATH = "/adobe/assets/archives/{job_id}/status"
TOKEN_PATH = "/adobe/assets/{asset_id}/token"
RENDITION_PATH = "/adobe/assets/{asset_id}/renditions/{rendition}/as/{filename}"
PRESET_PATH = "/adobe/assets/{asset_id}/as/{filename}"


class AssetDeliveryClient:
  """Thin async wrapper over the delivery endpoints used by fulfillment."""

  def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not settings.assets_base_url:
      raise RuntimeError("CARTFLOW_ASSETS_BASE_URL must be set to build the asset delivery client.")
    self._settings = settings
    self._transport = transport

  @property
  def base_url(self) -> str:
    return (self._settings.assets_base_url or "").rstrip("/")

  def _build_client(self) -> httpx.AsyncClient:
    headers = {"accept": "application/json"}
    if self._settings.access_token:
      headers["authorization"] = f"Bearer {self._settings.access_token}"
    return httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=self._settings.http_timeout_seconds, transport=self._transport, trust_env=False)

  async def create_archive(self, selections: Sequence[AssetSelection]) -> str | None:
    """Start an archive job and return its id, or None when the server gave none."""
    request = CreateArchiveRequest.from_selections(selections)
    try:
      async with self._build_client() as client:
        response = await client.post(ARCHIVES_PATH, json=request.to_payload())
        response.raise_for_status()
        body = response.json() if response.content else {}

    except httpx.HTTPStatusError as e:
      logger.error("Archive creation returned %s: %s", e.response.status_code, e.response.text)
      raise AssetDeliveryError(f"Archive creation failed: {e.response.status_code}", status_code=e.response.status_code) from e
    except httpx.RequestError as e:
      logger.error("Archive creation request failed: %s", e)
      raise AssetDeliveryError(f"Archive creation request failed: {e}") from e
    except ValueError as e:
      raise AssetDeliveryError("Archive creation returned an unreadable body") from e

    job_id = body.get("id") if isinstance(body, dict) else None
    if not job_id:
      logger.warning("Archive creation returned no id items=%d", len(request.items))
      return None
    logger.info("Archive job created job_id=%s items=%d", job_id, len(request.items))
    return str(job_id)

  async def get_archive_status(self, job_id: str) -> ArchiveJob:
    try:
      async with self._build_client() as client:
        response = await client.get(ARCHIVE_STATUS_PATH.format(job_id=quote(job_id, safe="")))
        response.raise_for_status()
        parsed = ArchiveStatusResponse.model_validate(response.json())

    except httpx.HTTPStatusError as e:
      logger.error("Archive status job_id=%s returned %s", job_id, e.response.status_code)
      raise AssetDeliveryError(f"Archive status failed: {e.response.status_code}", status_code=e.response.status_code) from e
    except httpx.RequestError as e:
      logger.error("Archive status request failed job_id=%s: %s", job_id, e)
      raise AssetDeliveryError(f"Archive status request failed: {e}") from e
    except (ValueError, ValidationError) as e:
      raise AssetDeliveryError("Archive status returned an unreadable body") from e

    data = parsed.data or ArchiveData()
    try:
      status = ArchiveStatus(data.status)
    except ValueError:
      logger.warning("Archive job_id=%s reported unknown status=%s", job_id, data.status)
      status = ArchiveStatus.FAILED
    files = tuple(data.files) if status is ArchiveStatus.COMPLETED else ()
    return ArchiveJob(id=job_id, status=status, files=files)

  async def get_download_token(self, asset_id: str) -> DownloadToken | None:
    """Fetch a short-lived download token; None when the server refuses one."""
    try:
      async with self._build_client() as client:
        response = await client.get(TOKEN_PATH.format(asset_id=quote(asset_id, safe=":")))
    except httpx.RequestError as e:
      logger.error("Download token request failed asset_id=%s: %s", asset_id, e)
      raise AssetDeliveryError(f"Download token request failed: {e}") from e

    if response.status_code != 200:
      logger.warning("Download token unavailable asset_id=%s status=%s", asset_id, response.status_code)
      return None
    try:
      return DownloadToken.model_validate(response.json())
    except (ValueError, ValidationError):
      logger.warning("Download token response unreadable asset_id=%s", asset_id)
      return None

  def rendition_url(self, asset_id: str, rendition: str, filename: str, *, token: DownloadToken | None = None) -> str:
    path = RENDITION_PATH.format(asset_id=quote(asset_id, safe=":"), rendition=quote(rendition, safe=""), filename=quote(filename, safe=""))
    return self._url(path, {}, token)

  def preset_url(self, asset_id: str, filename: str, preset: str, *, token: DownloadToken | None = None) -> str:
    path = PRESET_PATH.format(asset_id=quote(asset_id, safe=":"), filename=quote(filename, safe=""))
    return self._url(path, {"preset": preset, "attachment": "true"}, token)

  def _url(self, path: str, params: dict[str, str], token: DownloadToken | None) -> str:
    # A token is only usable together with its expiry.
    if token is not None and token.token and token.expiry_time:
      params = {**params, "token": token.token, "expiryTime": str(token.expiry_time)}
    query = f"?{urlencode(params)}" if params else ""
    return f"{self.base_url}{path}{query}"
