"""Single-flight rights check cycle over the cart's restricted assets."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Protocol

from cartflow.cart.store import CartStore, annotate_authorized
from cartflow.core.errors import RightsAuthorityError
from cartflow.rights.contracts import ClearanceResult
from cartflow.workflow.models import IntendedUseDeclaration
from cartflow.workflow.partition import PartitionResult, partition

logger = logging.getLogger(__name__)

CheckKey = tuple[tuple, frozenset[str]]


class RightsChecker(Protocol):
  """Anything that can clear asset ids for an intended use."""

  async def check_rights(self, intended_use: IntendedUseDeclaration, asset_ids: Iterable[str]) -> ClearanceResult:
    """Return the interpreted clearance result for asset_ids."""


class RightsCheckCoordinator:
  """Runs the rights check at most once per (intended use, restricted set).

  Concurrent callers asking for the same check share one in-flight task.
  A caller asking for a different check waits for the in-flight one to land
  and then re-evaluates the restricted set, so two checks never overlap.
  Assets the authority clears are accumulated across cycles and stamped
  AVAILABLE in the cart.
  """

  def __init__(self, checker: RightsChecker, cart_store: CartStore) -> None:
    self._checker = checker
    self._cart = cart_store
    self._authorized_ids: frozenset[str] = frozenset()
    self._prior_authorized_ids: frozenset[str] = frozenset()
    self._checked_use: tuple | None = None
    self._checked_ids: frozenset[str] = frozenset()
    self._in_flight: tuple[CheckKey, asyncio.Task[ClearanceResult]] | None = None
    self._last_result: ClearanceResult | None = None
    self._network_calls = 0

  @property
  def authorized_ids(self) -> frozenset[str]:
    return self._authorized_ids

  @property
  def last_result(self) -> ClearanceResult | None:
    return self._last_result

  @property
  def network_calls(self) -> int:
    return self._network_calls

  @property
  def in_flight(self) -> bool:
    return self._in_flight is not None

  def current_partition(self) -> PartitionResult:
    """Partition the live cart using everything authorized so far.

    newly_authorized_ids holds what the most recent completed check cleared.
    """
    return partition(self._cart.snapshot(), self._last_result, self._prior_authorized_ids)

  def is_settled(self, intended_use: IntendedUseDeclaration) -> bool:
    """Return True when running a check now would issue no network call."""
    current = self.current_partition()
    if not current.restricted:
      return True
    return self._already_checked(intended_use.fingerprint(), frozenset(current.restricted_ids))

  def _already_checked(self, use_key: tuple, restricted_ids: frozenset[str]) -> bool:
    return use_key == self._checked_use and restricted_ids <= self._checked_ids

  async def run(self, intended_use: IntendedUseDeclaration) -> PartitionResult:
    """Check the cart's restricted assets unless that exact check already ran."""
    use_key = intended_use.fingerprint()
    while self._in_flight is not None:
      key, task = self._in_flight
      if key == (use_key, frozenset(self.current_partition().restricted_ids)):
        logger.debug("Joining in-flight rights check assets=%d", len(key[1]))
        await asyncio.shield(task)
        return self.current_partition()
      try:
        await asyncio.shield(task)
      except RightsAuthorityError as exc:
        # The caller that started it owns the failure.
        logger.info("Superseded rights check failed: %s", exc)

    current = self.current_partition()
    restricted_ids = frozenset(current.restricted_ids)
    if not restricted_ids:
      logger.debug("Rights check skipped: no restricted assets")
      return current
    if self._already_checked(use_key, restricted_ids):
      logger.debug("Rights check skipped: restricted set unchanged assets=%d", len(restricted_ids))
      return current

    key: CheckKey = (use_key, restricted_ids)
    task = asyncio.create_task(self._perform(key, intended_use, current.restricted_ids))
    self._in_flight = (key, task)
    await asyncio.shield(task)
    return self.current_partition()

  async def _perform(self, key: CheckKey, intended_use: IntendedUseDeclaration, asset_ids: tuple[str, ...]) -> ClearanceResult:
    self._network_calls += 1
    logger.info("Running rights check assets=%d", len(asset_ids))
    try:
      result = await self._checker.check_rights(intended_use, asset_ids)
    finally:
      self._in_flight = None
    self._apply(key, result)
    return result

  def _apply(self, key: CheckKey, result: ClearanceResult) -> None:
    use_key, restricted_ids = key
    self._prior_authorized_ids = self._authorized_ids
    self._authorized_ids = self._authorized_ids | result.cleared_ids
    self._checked_use = use_key
    self._checked_ids = restricted_ids
    self._last_result = result
    annotate_authorized(self._cart, result.cleared_ids)
    logger.info("Rights check applied cleared=%d still_restricted=%d", len(result.cleared_ids), len(result.restricted_ids))
