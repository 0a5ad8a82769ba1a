from cartflow.cart.models import Asset, AuthorizationStatus
from cartflow.rights.contracts import CheckRightsResponse, ClearanceResult, interpret_response
from cartflow.workflow.partition import partition

PREFIX = "urn:aaid:aem:"


def _cart():
  return [
    Asset(asset_id=f"{PREFIX}ready", name="ready", ready_to_use=True),
    Asset(asset_id=f"{PREFIX}stored", name="stored", authorized=AuthorizationStatus.AVAILABLE),
    Asset(asset_id=f"{PREFIX}denied", name="denied", authorized=AuthorizationStatus.NOT_AVAILABLE),
    Asset(asset_id=f"{PREFIX}unknown", name="unknown"),
    Asset(asset_id=f"{PREFIX}earlier", name="earlier"),
  ]


def test_partition_is_total_and_keeps_cart_order():
  cart = _cart()
  verdicts = ClearanceResult(submitted_ids=(f"{PREFIX}denied", f"{PREFIX}unknown"), cleared_ids=frozenset({f"{PREFIX}unknown"}))

  result = partition(cart, verdicts, [f"{PREFIX}earlier"])

  authorized_ids = [asset.asset_id for asset in result.authorized]
  restricted_ids = [asset.asset_id for asset in result.restricted]
  assert sorted(authorized_ids + restricted_ids) == sorted(asset.asset_id for asset in cart)
  assert not set(authorized_ids) & set(restricted_ids)
  assert authorized_ids == [f"{PREFIX}ready", f"{PREFIX}stored", f"{PREFIX}unknown", f"{PREFIX}earlier"]
  assert restricted_ids == [f"{PREFIX}denied"]


def test_newly_authorized_only_tracks_latest_check():
  cart = _cart()
  verdicts = ClearanceResult(submitted_ids=(f"{PREFIX}unknown", f"{PREFIX}earlier"), cleared_ids=frozenset({f"{PREFIX}unknown", f"{PREFIX}earlier"}))

  result = partition(cart, verdicts, [f"{PREFIX}earlier"])

  assert result.newly_authorized_ids == frozenset({f"{PREFIX}unknown"})


def test_partition_without_verdicts_restricts_unknown_assets():
  result = partition(_cart(), None)

  assert result.restricted_ids == (f"{PREFIX}denied", f"{PREFIX}unknown", f"{PREFIX}earlier")
  assert result.newly_authorized_ids == frozenset()


def test_empty_cart_partitions_to_empty_sets():
  result = partition([], None)

  assert result.authorized == ()
  assert result.restricted == ()


def test_asset_absent_from_response_is_authorized():
  submitted = (f"{PREFIX}denied", f"{PREFIX}unknown")
  response = CheckRightsResponse.model_validate(
    {"status": 200, "totalRecords": 1, "restOfAssets": [{"asset": {"assetExtId": "denied"}, "available": False, "notAvailable": True, "availableExcept": False}]}
  )

  verdicts = interpret_response(response, submitted, strip_prefix=PREFIX)
  result = partition(_cart(), verdicts)

  assert f"{PREFIX}unknown" in {asset.asset_id for asset in result.authorized}
  assert result.restricted_ids[0] == f"{PREFIX}denied"


def test_available_except_stays_restricted():
  submitted = (f"{PREFIX}unknown",)
  response = CheckRightsResponse.model_validate({"restOfAssets": [{"asset": {"assetExtId": "unknown"}, "available": False, "notAvailable": False, "availableExcept": True}]})

  verdicts = interpret_response(response, submitted, strip_prefix=PREFIX)

  assert verdicts.cleared_ids == frozenset()
  assert verdicts.restricted_ids == frozenset(submitted)
  assert verdicts.verdicts[0].available_except is True


def test_no_content_response_clears_every_submitted_asset():
  submitted = (f"{PREFIX}denied", f"{PREFIX}unknown", f"{PREFIX}earlier")

  verdicts = interpret_response(CheckRightsResponse(status=204), submitted, strip_prefix=PREFIX)
  result = partition(_cart(), verdicts)

  assert verdicts.all_cleared is True
  assert result.restricted == ()
  assert result.newly_authorized_ids == frozenset(submitted)


def test_asset_stamped_available_by_latest_check_counts_as_new():
  stamped = Asset(asset_id=f"{PREFIX}unknown", name="unknown", authorized=AuthorizationStatus.AVAILABLE)
  verdicts = ClearanceResult(submitted_ids=(stamped.asset_id,), cleared_ids=frozenset({stamped.asset_id}))

  result = partition([stamped], verdicts)

  assert result.newly_authorized_ids == frozenset({stamped.asset_id})
