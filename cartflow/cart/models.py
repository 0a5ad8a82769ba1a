"""Domain models for cart assets and snapshots."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum


class AuthorizationStatus(str, Enum):
  """Stored rights verdict for an asset."""

  AVAILABLE = "available"
  NOT_AVAILABLE = "not_available"
  AVAILABLE_EXCEPT = "available_except"


@dataclass(frozen=True)
class Rendition:
  """A named rendition (or image preset) of an asset."""

  name: str
  format: str | None = None
  size: int | None = None


@dataclass(frozen=True)
class Asset:
  """A media asset held in the cart. The workflow annotates assets but never creates them."""

  asset_id: str
  name: str
  ready_to_use: bool = False
  authorized: AuthorizationStatus | None = None
  title: str | None = None
  format: str | None = None
  brand: str | None = None
  risk_type_management: str | None = None
  is_restricted_brand: bool = False
  image_presets: tuple[str, ...] = ()

  @property
  def display_name(self) -> str:
    return self.title or self.name

  @property
  def is_cleared(self) -> bool:
    """Return True when the asset can be downloaded without a rights check."""
    return self.ready_to_use or self.authorized is AuthorizationStatus.AVAILABLE

  def with_authorization(self, status: AuthorizationStatus) -> Asset:
    return replace(self, authorized=status)


def parse_ready_to_use(raw: str | bool | None) -> bool:
  """Metadata stores readiness as a "yes"/"no" string; compare case-insensitively."""
  if isinstance(raw, bool):
    return raw
  if raw is None:
    return False
  return raw.strip().lower() == "yes"


@dataclass(frozen=True)
class CartSnapshot:
  """Ordered, immutable view of the cart at a given version."""

  items: tuple[Asset, ...] = ()
  version: int = 0

  def __len__(self) -> int:
    return len(self.items)

  def __iter__(self):
    return iter(self.items)

  @property
  def is_empty(self) -> bool:
    return not self.items

  @property
  def asset_ids(self) -> tuple[str, ...]:
    return tuple(item.asset_id for item in self.items)

  def get(self, asset_id: str) -> Asset | None:
    for item in self.items:
      if item.asset_id == asset_id:
        return item
    return None

  def all_cleared(self) -> bool:
    """Return True when every item is ready-to-use or already authorized."""
    return all(item.is_cleared for item in self.items)

  def has_smr_items(self) -> bool:
    """Return True when any item carries self-managed rights."""
    return any((item.risk_type_management or "").lower() == "smr" for item in self.items)

  def has_restricted_brand_items(self) -> bool:
    return any(item.is_restricted_brand for item in self.items)

  def next(self, items: Iterable[Asset]) -> CartSnapshot:
    """Return a new snapshot with the given items and a bumped version."""
    return CartSnapshot(items=tuple(items), version=self.version + 1)


@dataclass(frozen=True)
class AssetSelection:
  """An asset plus the rendition names to include when it is downloaded."""

  asset: Asset
  renditions: tuple[Rendition, ...] = field(default_factory=tuple)

  def rendition_names(self) -> list[str]:
    """Return archive rendition names, prefixing image presets as the archive API expects."""
    names: list[str] = []
    for rendition in self.renditions:
      if rendition.name in self.asset.image_presets:
        names.append(f"preset_{rendition.name}")
      else:
        names.append(rendition.name)
    return names
