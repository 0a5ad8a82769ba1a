"""Split cart assets into authorized and restricted sets."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from cartflow.cart.models import Asset
from cartflow.rights.contracts import ClearanceResult


@dataclass(frozen=True)
class PartitionResult:
  """Every cart asset lands in exactly one of authorized/restricted, in cart order."""

  authorized: tuple[Asset, ...]
  restricted: tuple[Asset, ...]
  newly_authorized_ids: frozenset[str]

  @property
  def restricted_ids(self) -> tuple[str, ...]:
    return tuple(asset.asset_id for asset in self.restricted)


def partition(cart: Iterable[Asset], verdicts: ClearanceResult | None, previously_authorized_ids: Iterable[str] = ()) -> PartitionResult:
  """Classify the cart against the latest clearance result and accumulated authorizations."""
  previous = frozenset(previously_authorized_ids)
  latest_cleared = verdicts.cleared_ids if verdicts is not None else frozenset()

  authorized: list[Asset] = []
  restricted: list[Asset] = []
  newly_authorized: set[str] = set()
  for asset in cart:
    if asset.asset_id in previous:
      authorized.append(asset)
    elif asset.asset_id in latest_cleared:
      authorized.append(asset)
      newly_authorized.add(asset.asset_id)
    elif asset.is_cleared:
      authorized.append(asset)
    else:
      restricted.append(asset)

  return PartitionResult(authorized=tuple(authorized), restricted=tuple(restricted), newly_authorized_ids=frozenset(newly_authorized))
