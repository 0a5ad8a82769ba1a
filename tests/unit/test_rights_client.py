import json
from dataclasses import replace
from datetime import date

import httpx
import pytest

from cartflow.cart.store import DictKeyValueStore
from cartflow.core.errors import RightsAuthorityError
from cartflow.rights.client import RIGHTS_CACHE_KEYS, RightsAuthorityClient, calendar_date_to_epoch_ms
from cartflow.rights.contracts import MARKET_RIGHTS_CATEGORY, build_rights_map


def _client(settings, handler, cache=None):
  return RightsAuthorityClient(settings, cache=cache, transport=httpx.MockTransport(handler))


def test_calendar_date_converts_to_utc_midnight_millis():
  assert calendar_date_to_epoch_ms(date(1970, 1, 2)) == 86_400_000
  assert calendar_date_to_epoch_ms(date(2025, 9, 1)) == 1_756_684_800_000


def test_client_requires_base_url(settings):
  with pytest.raises(RuntimeError):
    RightsAuthorityClient(replace(settings, rights_base_url=None))


@pytest.mark.anyio
async def test_check_rights_posts_expected_payload(settings, declaration):
  captured = {}

  def handler(request: httpx.Request) -> httpx.Response:
    captured["url"] = str(request.url)
    captured["auth"] = request.headers.get("authorization")
    captured["body"] = json.loads(request.content)
    return httpx.Response(204)

  await _client(settings, handler).check_rights(declaration, ["urn:aaid:aem:B", "plain-id"])

  assert captured["url"] == "https://rights.test/rc-api/clearance/assetclearance"
  assert captured["auth"] == "Bearer token-123"
  assert captured["body"] == {
    "inDate": 1_756_684_800_000,
    "outDate": 1_756_857_600_000,
    "selectedExternalAssets": ["B", "plain-id"],
    "selectedRights": {"20": [201], "30": [301]},
  }


@pytest.mark.anyio
async def test_no_content_clears_all_submitted(settings, declaration):
  result = await _client(settings, lambda request: httpx.Response(204)).check_rights(declaration, ["urn:aaid:aem:A", "urn:aaid:aem:B"])

  assert result.all_cleared is True
  assert result.cleared_ids == frozenset({"urn:aaid:aem:A", "urn:aaid:aem:B"})
  assert result.restricted_ids == frozenset()


@pytest.mark.anyio
async def test_assets_missing_from_response_are_presumed_cleared(settings, declaration):
  body = {
    "status": 200,
    "totalRecords": 2,
    "restOfAssets": [
      {"asset": {"assetExtId": "A"}, "available": True, "notAvailable": False, "availableExcept": False},
      {"asset": {"assetExtId": "B"}, "available": False, "notAvailable": True, "availableExcept": False},
    ],
  }

  result = await _client(settings, lambda request: httpx.Response(200, json=body)).check_rights(declaration, ["urn:aaid:aem:A", "urn:aaid:aem:B", "urn:aaid:aem:C"])

  assert result.cleared_ids == frozenset({"urn:aaid:aem:A", "urn:aaid:aem:C"})
  assert result.restricted_ids == frozenset({"urn:aaid:aem:B"})
  assert len(result.verdicts) == 2


@pytest.mark.anyio
async def test_server_error_raises_rights_authority_error(settings, declaration):
  calls = []

  def handler(request: httpx.Request) -> httpx.Response:
    calls.append(request)
    return httpx.Response(503, text="unavailable")

  with pytest.raises(RightsAuthorityError) as exc_info:
    await _client(settings, handler).check_rights(declaration, ["urn:aaid:aem:B"])

  assert exc_info.value.status_code == 503
  assert len(calls) == 1


@pytest.mark.anyio
async def test_transport_error_raises_rights_authority_error(settings, declaration):
  def handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("refused", request=request)

  with pytest.raises(RightsAuthorityError):
    await _client(settings, handler).check_rights(declaration, ["urn:aaid:aem:B"])


@pytest.mark.anyio
@pytest.mark.parametrize("body", [[], None, "cleared"])
async def test_non_object_body_raises_rights_authority_error(settings, declaration, body):
  with pytest.raises(RightsAuthorityError) as exc_info:
    await _client(settings, lambda request: httpx.Response(200, json=body)).check_rights(declaration, ["urn:aaid:aem:B"])

  assert exc_info.value.status_code == 200


@pytest.mark.anyio
async def test_market_rights_are_fetched_once_and_cached(settings):
  tree = {
    "attribute": [
      {
        "id": 1,
        "right": {"rightId": 30, "description": "Worldwide"},
        "externalId": "WW",
        "childrenLst": [{"id": 2, "parentId": 1, "right": {"rightId": 31, "description": "Germany"}, "externalId": "DE"}],
      }
    ]
  }
  calls = []

  def handler(request: httpx.Request) -> httpx.Response:
    calls.append(request)
    assert request.url.path == "/rc-api/rights/search/30"
    assert json.loads(request.content) == {"description": ""}
    return httpx.Response(200, json=tree)

  cache = DictKeyValueStore()
  client = _client(settings, handler, cache=cache)

  first = await client.fetch_market_rights()
  second = await client.fetch_market_rights()

  assert len(calls) == 1
  assert first == second
  assert cache.get(RIGHTS_CACHE_KEYS[MARKET_RIGHTS_CATEGORY]) is not None
  assert build_rights_map(first) == {"WW": "Worldwide", "DE": "Germany"}
