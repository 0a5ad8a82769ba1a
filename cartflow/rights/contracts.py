"""Wire models and verdict types for the rights clearance authority."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Right-category buckets used by the clearance API.
MEDIA_RIGHTS_CATEGORY = "20"
MARKET_RIGHTS_CATEGORY = "30"


class CheckRightsRequest(BaseModel):
  """Clearance request payload; dates are epoch milliseconds."""

  in_date: int = Field(alias="inDate")
  out_date: int = Field(alias="outDate")
  selected_external_assets: list[str] = Field(alias="selectedExternalAssets")
  selected_rights: dict[str, list[int]] = Field(alias="selectedRights")
  model_config = ConfigDict(populate_by_name=True)

  def to_payload(self) -> dict[str, Any]:
    return self.model_dump(by_alias=True)


class ClearedAsset(BaseModel):
  """Asset reference inside a clearance verdict."""

  asset_ext_id: str = Field(alias="assetExtId")
  asset_id: int | None = Field(default=None, alias="assetId")
  name: str | None = None
  model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RestOfAssetsItem(BaseModel):
  """One per-asset verdict returned by the authority."""

  asset: ClearedAsset
  available: bool = False
  not_available: bool = Field(default=False, alias="notAvailable")
  available_except: bool = Field(default=False, alias="availableExcept")
  type_code: str | None = Field(default=None, alias="typeCode")
  model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CheckRightsResponse(BaseModel):
  """Clearance response body; a 204 is normalized to an empty list with status 204."""

  status: int = 200
  rest_of_assets: list[RestOfAssetsItem] = Field(default_factory=list, alias="restOfAssets")
  total_records: int = Field(default=0, alias="totalRecords")
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  @property
  def all_cleared(self) -> bool:
    return self.status == 204


class RightDetails(BaseModel):
  right_id: int = Field(alias="rightId")
  description: str
  short_description: str | None = Field(default=None, alias="shortDescription")
  type_code: str | None = Field(default=None, alias="typeCode")
  model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RightsAttribute(BaseModel):
  """Node in the authority's market or media-channel rights tree."""

  id: int
  parent_id: int | None = Field(default=None, alias="parentId")
  right: RightDetails
  children: list[RightsAttribute] = Field(default_factory=list, alias="childrenLst")
  right_order: int | None = Field(default=None, alias="rightOrder")
  external_id: str | None = Field(default=None, alias="externalId")
  enabled: bool = True
  model_config = ConfigDict(populate_by_name=True, extra="ignore")


RightsAttribute.model_rebuild()


class RightsSearchResponse(BaseModel):
  attribute: list[RightsAttribute] = Field(default_factory=list)
  model_config = ConfigDict(extra="ignore")


def build_rights_map(response: RightsSearchResponse) -> dict[str, str]:
  """Flatten a rights tree into externalId -> description."""
  rights_map: dict[str, str] = {}

  def _walk(node: RightsAttribute) -> None:
    if node.external_id:
      rights_map[node.external_id] = node.right.description
    for child in node.children:
      _walk(child)

  for attribute in response.attribute:
    _walk(attribute)
  return rights_map


@dataclass(frozen=True)
class ClearanceVerdict:
  """Per-asset outcome from the authority, keyed by the stripped external id."""

  asset_ext_id: str
  available: bool
  not_available: bool
  available_except: bool


@dataclass(frozen=True)
class ClearanceResult:
  """Interpreted clearance outcome for the submitted asset ids.

  `cleared_ids` holds the original (prefixed) ids of every submitted asset the
  authority cleared, explicitly or by omission.
  """

  submitted_ids: tuple[str, ...]
  cleared_ids: frozenset[str]
  verdicts: tuple[ClearanceVerdict, ...] = field(default_factory=tuple)
  all_cleared: bool = False

  @property
  def restricted_ids(self) -> frozenset[str]:
    return frozenset(self.submitted_ids) - self.cleared_ids


def interpret_response(response: CheckRightsResponse, submitted_ids: tuple[str, ...], *, strip_prefix: str) -> ClearanceResult:
  """Map a clearance response onto the submitted asset ids.

  A 204 clears every submitted asset. Otherwise an asset is cleared when its
  verdict says `available`, or when the authority did not mention it at all:
  the authority only reports assets it has an opinion about.
  """
  if response.all_cleared:
    return ClearanceResult(submitted_ids=submitted_ids, cleared_ids=frozenset(submitted_ids), all_cleared=True)

  verdicts = tuple(ClearanceVerdict(asset_ext_id=item.asset.asset_ext_id, available=item.available, not_available=item.not_available, available_except=item.available_except) for item in response.rest_of_assets)
  by_ext_id = {verdict.asset_ext_id: verdict for verdict in verdicts}

  cleared: set[str] = set()
  for asset_id in submitted_ids:
    verdict = by_ext_id.get(strip_urn_prefix(asset_id, strip_prefix))
    if verdict is None or verdict.available:
      cleared.add(asset_id)
  return ClearanceResult(submitted_ids=submitted_ids, cleared_ids=frozenset(cleared), verdicts=verdicts)


def strip_urn_prefix(asset_id: str, prefix: str) -> str:
  if prefix and asset_id.startswith(prefix):
    return asset_id[len(prefix) :]
  return asset_id
