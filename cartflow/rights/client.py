"""HTTP adapter for the external rights clearance authority."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timezone

import httpx
from pydantic import ValidationError

from cartflow.cart.store import KeyValueStore
from cartflow.config import Settings
from cartflow.core.errors import RightsAuthorityError
from cartflow.rights.contracts import MARKET_RIGHTS_CATEGORY, MEDIA_RIGHTS_CATEGORY, CheckRightsRequest, CheckRightsResponse, ClearanceResult, RightsSearchResponse, interpret_response, strip_urn_prefix
from cartflow.workflow.models import IntendedUseDeclaration

logger = logging.getLogger(__name__)

CLEARANCE_PATH = "/rc-api/clearance/assetclearance"
RIGHTS_SEARCH_PATH = "/rc-api/rights/search/{category}"
RIGHTS_CACHE_KEYS = {MEDIA_RIGHTS_CATEGORY: "rights:media", MARKET_RIGHTS_CATEGORY: "rights:market"}


def calendar_date_to_epoch_ms(value: date) -> int:
  """Convert a calendar date to epoch milliseconds at UTC midnight."""
  moment = datetime.combine(value, time.min, tzinfo=timezone.utc)
  return int(moment.timestamp() * 1000)


class RightsAuthorityClient:
  """Builds clearance requests and interprets the authority's verdicts.

  The client never retries; transport and non-2xx failures surface as
  RightsAuthorityError so the orchestrator can mark the step failed.
  """

  def __init__(self, settings: Settings, *, cache: KeyValueStore | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not settings.rights_base_url:
      raise RuntimeError("CARTFLOW_RIGHTS_BASE_URL must be set to build the rights authority client.")
    self._settings = settings
    self._cache = cache
    self._transport = transport

  def _build_client(self) -> httpx.AsyncClient:
    headers = {"content-type": "application/json", "accept": "application/json"}
    if self._settings.access_token:
      headers["authorization"] = f"Bearer {self._settings.access_token}"
    return httpx.AsyncClient(base_url=self._settings.rights_base_url or "", headers=headers, timeout=self._settings.http_timeout_seconds, transport=self._transport, trust_env=False)

  def build_request(self, intended_use: IntendedUseDeclaration, asset_ids: Iterable[str]) -> CheckRightsRequest:
    """Build the clearance payload with URN prefixes stripped and rights split by category."""
    prefix = self._settings.asset_urn_prefix
    external_ids = [strip_urn_prefix(asset_id, prefix) for asset_id in asset_ids if asset_id]
    return CheckRightsRequest(
      in_date=calendar_date_to_epoch_ms(intended_use.air_date),
      out_date=calendar_date_to_epoch_ms(intended_use.pull_date),
      selected_external_assets=external_ids,
      selected_rights={MEDIA_RIGHTS_CATEGORY: intended_use.media_channel_ids, MARKET_RIGHTS_CATEGORY: intended_use.market_ids},
    )

  async def check_rights(self, intended_use: IntendedUseDeclaration, asset_ids: Iterable[str]) -> ClearanceResult:
    """Ask the authority to clear asset_ids for the declared intended use."""
    submitted = tuple(asset_id for asset_id in asset_ids if asset_id)
    request = self.build_request(intended_use, submitted)
    response = await self._post_clearance(request)
    result = interpret_response(response, submitted, strip_prefix=self._settings.asset_urn_prefix)
    logger.info("Rights check completed submitted=%d cleared=%d restricted=%d all_cleared=%s", len(submitted), len(result.cleared_ids), len(result.restricted_ids), result.all_cleared)
    return result

  async def _post_clearance(self, request: CheckRightsRequest) -> CheckRightsResponse:
    try:
      async with self._build_client() as client:
        logger.debug("Posting rights clearance assets=%d", len(request.selected_external_assets))
        response = await client.post(CLEARANCE_PATH, json=request.to_payload())
        response.raise_for_status()
        # 204 is the authority's shorthand for "everything requested is cleared".
        if response.status_code == 204:
          return CheckRightsResponse(status=204)
        payload = response.json()
        if not isinstance(payload, dict):
          logger.error("Rights check returned a non-object body type=%s", type(payload).__name__)
          raise RightsAuthorityError("Rights check returned an unreadable body", status_code=response.status_code)
        return CheckRightsResponse.model_validate({**payload, "status": response.status_code})

    except httpx.HTTPStatusError as e:
      logger.error("Rights check returned %s: %s", e.response.status_code, e.response.text)
      raise RightsAuthorityError(f"Rights check failed: {e.response.status_code}", status_code=e.response.status_code) from e
    except httpx.RequestError as e:
      logger.error("Rights check request failed: %s", e)
      raise RightsAuthorityError(f"Rights check request failed: {e}") from e
    except (ValueError, ValidationError) as e:
      logger.error("Rights check returned an unreadable body: %s", e)
      raise RightsAuthorityError("Rights check returned an unreadable body") from e

  async def fetch_media_rights(self) -> RightsSearchResponse:
    """Return the media-channel rights tree, cached after the first fetch."""
    return await self._fetch_rights(MEDIA_RIGHTS_CATEGORY)

  async def fetch_market_rights(self) -> RightsSearchResponse:
    """Return the market rights tree, cached after the first fetch."""
    return await self._fetch_rights(MARKET_RIGHTS_CATEGORY)

  async def _fetch_rights(self, category: str) -> RightsSearchResponse:
    cache_key = RIGHTS_CACHE_KEYS[category]
    cached = self._cache.get(cache_key) if self._cache is not None else None
    if cached:
      try:
        return RightsSearchResponse.model_validate_json(cached)
      except ValidationError as exc:
        # Fall through and refetch when the cached copy is stale or corrupt.
        logger.warning("Failed to parse cached rights category=%s: %s", category, exc)

    try:
      async with self._build_client() as client:
        response = await client.post(RIGHTS_SEARCH_PATH.format(category=category), json={"description": ""})
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as e:
      logger.error("Rights search category=%s returned %s", category, e.response.status_code)
      raise RightsAuthorityError(f"Rights search failed: {e.response.status_code}", status_code=e.response.status_code) from e
    except httpx.RequestError as e:
      logger.error("Rights search category=%s failed: %s", category, e)
      raise RightsAuthorityError(f"Rights search request failed: {e}") from e

    try:
      rights = RightsSearchResponse.model_validate(payload)
    except ValidationError as e:
      raise RightsAuthorityError("Rights search returned an unreadable body") from e

    if self._cache is not None:
      try:
        self._cache.set(cache_key, json.dumps(payload))
      except (OSError, TypeError, ValueError) as exc:
        logger.warning("Failed to cache rights category=%s: %s", category, exc)
    return rights
