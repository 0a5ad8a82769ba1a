"""Domain models for the cart-to-fulfillment workflow."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from cartflow.cart.models import Asset


class WorkflowStep(str, Enum):
  """Stages of the cart workflow; exactly one is active at a time."""

  CART = "cart"
  REQUEST_DOWNLOAD = "request-download"
  RIGHTS_CHECK = "rights-check"
  REQUEST_RIGHTS_EXTENSION = "request-rights-extension"
  DOWNLOAD = "download"
  CLOSE_DOWNLOAD = "close-download"


class StepStatus(str, Enum):
  INIT = "init"
  CURRENT = "current"
  SUCCESS = "success"
  FAILURE = "failure"


@dataclass(frozen=True)
class RightsData:
  """A selectable market or media channel from the rights authority."""

  id: int
  name: str
  right_id: int | None = None


@dataclass(frozen=True)
class IntendedUseDraft:
  """In-progress intended-use form; any field may still be missing."""

  air_date: date | None = None
  pull_date: date | None = None
  markets: tuple[RightsData, ...] = ()
  media_channels: tuple[RightsData, ...] = ()
  market_search_term: str = ""


@dataclass(frozen=True)
class IntendedUseDeclaration:
  """Validated intended use handed to the rights check."""

  air_date: date
  pull_date: date
  markets: tuple[RightsData, ...]
  media_channels: tuple[RightsData, ...]

  @property
  def market_ids(self) -> list[int]:
    return [market.id for market in self.markets]

  @property
  def media_channel_ids(self) -> list[int]:
    return [channel.id for channel in self.media_channels]

  def fingerprint(self) -> tuple:
    """Order-insensitive identity used to dedupe rights checks."""
    return (self.air_date.isoformat(), self.pull_date.isoformat(), tuple(sorted(self.market_ids)), tuple(sorted(self.media_channel_ids)))

  def to_draft(self) -> IntendedUseDraft:
    return IntendedUseDraft(air_date=self.air_date, pull_date=self.pull_date, markets=self.markets, media_channels=self.media_channels)


@dataclass(frozen=True)
class DownloadOption:
  asset_id: str
  original_asset: bool = True
  all_renditions: bool = False


@dataclass(frozen=True)
class RightsCheckStepData:
  """Form state kept for the rights-check step."""

  download_options: tuple[DownloadOption, ...] = ()
  agrees_to_terms: bool = False


@dataclass(frozen=True)
class UsageRightsRequired:
  music: bool = False
  talent: bool = False
  photographer: bool = False
  voiceover: bool = False
  stock_footage: bool = False


@dataclass(frozen=True)
class RightsExtensionRequest:
  """Rights extension form for a subset of restricted assets."""

  restricted_assets: tuple[Asset, ...] = ()
  agency_type: str = "TCCC Associate"
  agency_name: str = ""
  contact_name: str = ""
  contact_email: str = ""
  contact_phone: str = ""
  materials_required_date: date | None = None
  formats_required: str = ""
  usage_rights_required: UsageRightsRequired = field(default_factory=UsageRightsRequired)
  adaptation_intention: str = ""
  budget_for_market: str = ""
  exception_or_notes: str = ""
  agrees_to_terms: bool = False

  @property
  def restricted_asset_ids(self) -> tuple[str, ...]:
    return tuple(asset.asset_id for asset in self.restricted_assets)


ALL_STEPS: tuple[WorkflowStep, ...] = tuple(WorkflowStep)


def _initial_statuses() -> Mapping[WorkflowStep, StepStatus]:
  return MappingProxyType({step: StepStatus.INIT for step in ALL_STEPS})


@dataclass(frozen=True)
class WorkflowState:
  """Immutable workflow state; transitions always produce a new instance."""

  active_step: WorkflowStep = WorkflowStep.CART
  statuses: Mapping[WorkflowStep, StepStatus] = field(default_factory=_initial_statuses)
  closed: bool = False
  version: int = 0

  def status(self, step: WorkflowStep) -> StepStatus:
    return self.statuses[step]

  def with_statuses(self, *, active_step: WorkflowStep | None = None, closed: bool | None = None, **updates: StepStatus) -> WorkflowState:
    """Return a new state with step statuses replaced by name (e.g. RIGHTS_CHECK=StepStatus.CURRENT)."""
    merged = dict(self.statuses)
    for step_name, status in updates.items():
      merged[WorkflowStep[step_name]] = status
    # A single CURRENT step is enforced here so no transition can leave two behind.
    current_steps = [step for step, status in merged.items() if status is StepStatus.CURRENT]
    if len(current_steps) > 1:
      raise ValueError(f"At most one step may be CURRENT, got {[step.value for step in current_steps]}")
    return replace(self, active_step=active_step or self.active_step, statuses=MappingProxyType(merged), closed=self.closed if closed is None else closed, version=self.version + 1)
