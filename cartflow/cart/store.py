"""Cart storage contracts and copy-on-write implementations."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, replace
from typing import Any, Protocol

from cartflow.cart.models import Asset, AuthorizationStatus, CartSnapshot

logger = logging.getLogger(__name__)

CartListener = Callable[[CartSnapshot], None]

CART_INDEX_KEY = "cart:index"
CART_ASSET_KEY_PREFIX = "cart:asset:"


class KeyValueStore(Protocol):
  """Durable client-side string store (localStorage-like)."""

  def get(self, key: str) -> str | None:
    """Return the stored value or None."""

  def set(self, key: str, value: str) -> None:
    """Store a value under a key."""

  def delete(self, key: str) -> None:
    """Remove a key if present."""


class DictKeyValueStore(KeyValueStore):
  """Process-local key-value store used in tests and single-process runs."""

  def __init__(self, initial: dict[str, str] | None = None) -> None:
    self._data: dict[str, str] = dict(initial or {})

  def get(self, key: str) -> str | None:
    return self._data.get(key)

  def set(self, key: str, value: str) -> None:
    self._data[key] = value

  def delete(self, key: str) -> None:
    self._data.pop(key, None)

  def keys(self) -> list[str]:
    return list(self._data)


class CartStore(Protocol):
  """Contract for the cart collaborator the workflow mutates."""

  def snapshot(self) -> CartSnapshot:
    """Return the current immutable cart snapshot."""

  def update(self, fn: Callable[[CartSnapshot], Iterable[Asset]]) -> CartSnapshot:
    """Replace the cart with fn(current) and return the new snapshot."""

  def subscribe(self, listener: CartListener) -> Callable[[], None]:
    """Register a change listener and return an unsubscribe callable."""


class InMemoryCartStore(CartStore):
  """Copy-on-write cart: every change swaps in a new versioned snapshot."""

  def __init__(self, items: Iterable[Asset] = ()) -> None:
    self._snapshot = CartSnapshot(items=tuple(items), version=0)
    self._listeners: list[CartListener] = []

  def snapshot(self) -> CartSnapshot:
    return self._snapshot

  def update(self, fn: Callable[[CartSnapshot], Iterable[Asset]]) -> CartSnapshot:
    current = self._snapshot
    new_items = tuple(fn(current))
    if new_items == current.items:
      return current
    self._snapshot = current.next(new_items)
    self._persist(self._snapshot)
    logger.debug("Cart updated version=%d items=%d", self._snapshot.version, len(self._snapshot))
    for listener in list(self._listeners):
      listener(self._snapshot)
    return self._snapshot

  def subscribe(self, listener: CartListener) -> Callable[[], None]:
    self._listeners.append(listener)

    def _unsubscribe() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return _unsubscribe

  def _persist(self, snapshot: CartSnapshot) -> None:
    """Hook for durable subclasses."""


class KeyValueCartStore(InMemoryCartStore):
  """Cart persisted in a key-value store keyed by asset identifier."""

  def __init__(self, kv: KeyValueStore) -> None:
    self._kv = kv
    super().__init__(_load_assets(kv))

  def _persist(self, snapshot: CartSnapshot) -> None:
    previous_ids = set(_load_index(self._kv))
    current_ids = snapshot.asset_ids
    for asset in snapshot.items:
      self._kv.set(CART_ASSET_KEY_PREFIX + asset.asset_id, json.dumps(_asset_to_json(asset)))
    for stale_id in previous_ids - set(current_ids):
      self._kv.delete(CART_ASSET_KEY_PREFIX + stale_id)
    self._kv.set(CART_INDEX_KEY, json.dumps(list(current_ids)))


def _load_index(kv: KeyValueStore) -> list[str]:
  raw = kv.get(CART_INDEX_KEY)
  if not raw:
    return []
  try:
    ids = json.loads(raw)
  except json.JSONDecodeError:
    logger.warning("Discarding unreadable cart index")
    return []
  return [str(asset_id) for asset_id in ids] if isinstance(ids, list) else []


def _load_assets(kv: KeyValueStore) -> list[Asset]:
  assets: list[Asset] = []
  for asset_id in _load_index(kv):
    raw = kv.get(CART_ASSET_KEY_PREFIX + asset_id)
    if raw is None:
      continue
    try:
      assets.append(_asset_from_json(json.loads(raw)))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
      logger.warning("Skipping unreadable cart entry asset_id=%s error=%s", asset_id, exc)
  return assets


def _asset_to_json(asset: Asset) -> dict[str, Any]:
  payload = asdict(asset)
  payload["authorized"] = asset.authorized.value if asset.authorized else None
  payload["image_presets"] = list(asset.image_presets)
  return payload


def _asset_from_json(payload: dict[str, Any]) -> Asset:
  authorized = payload.get("authorized")
  return Asset(
    asset_id=payload["asset_id"],
    name=payload.get("name") or "",
    ready_to_use=bool(payload.get("ready_to_use")),
    authorized=AuthorizationStatus(authorized) if authorized else None,
    title=payload.get("title"),
    format=payload.get("format"),
    brand=payload.get("brand"),
    risk_type_management=payload.get("risk_type_management"),
    is_restricted_brand=bool(payload.get("is_restricted_brand")),
    image_presets=tuple(payload.get("image_presets") or ()),
  )


def remove_assets(store: CartStore, asset_ids: Iterable[str]) -> CartSnapshot:
  """Remove every cart item whose identifier is in asset_ids; others are untouched."""
  doomed = set(asset_ids)
  return store.update(lambda snapshot: [item for item in snapshot.items if item.asset_id not in doomed])


def clear_cart(store: CartStore) -> CartSnapshot:
  return store.update(lambda snapshot: [])


def annotate_authorized(store: CartStore, asset_ids: Iterable[str]) -> CartSnapshot:
  """Stamp AVAILABLE on cart items cleared by a rights check."""
  cleared = set(asset_ids)
  if not cleared:
    return store.snapshot()

  def _annotate(snapshot: CartSnapshot) -> list[Asset]:
    return [item.with_authorization(AuthorizationStatus.AVAILABLE) if item.asset_id in cleared and item.authorized is not AuthorizationStatus.AVAILABLE else item for item in snapshot.items]

  return store.update(_annotate)


def mark_restricted_brands(store: CartStore, restricted_brands: Iterable[str]) -> CartSnapshot:
  """Flag items whose comma-separated brand list contains a restricted brand.

  Brands compare case-insensitively. The snapshot is only replaced when at
  least one flag actually changes.
  """
  restricted = {brand.strip().lower() for brand in restricted_brands if brand and brand.strip()}
  if not restricted:
    return store.snapshot()

  def _flag(item: Asset) -> bool:
    if not item.brand:
      return False
    brands = (part.strip().lower() for part in item.brand.split(","))
    return any(brand and brand in restricted for brand in brands)

  def _mark(snapshot: CartSnapshot) -> list[Asset]:
    updated: list[Asset] = []
    for item in snapshot.items:
      flagged = _flag(item)
      updated.append(item if flagged == item.is_restricted_brand else replace(item, is_restricted_brand=flagged))
    return updated

  return store.update(_mark)
