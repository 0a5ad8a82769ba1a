"""Append-only history of the form data entered at each workflow step."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from cartflow.workflow.models import IntendedUseDraft, RightsCheckStepData, RightsExtensionRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StepDataEntry(Generic[T]):
  """One recorded form value and why it was recorded."""

  sequence: int
  value: T
  reason: str


class StepDataStore:
  """Holds every value written for the request-download, rights-check and extension steps.

  Entries are never overwritten; `latest_*` returns the newest entry so a
  re-entered step can restore what the user last typed.
  """

  def __init__(self) -> None:
    self._sequence = 0
    self._request_download: tuple[StepDataEntry[IntendedUseDraft], ...] = ()
    self._rights_check: tuple[StepDataEntry[RightsCheckStepData], ...] = ()
    self._rights_extension: tuple[StepDataEntry[RightsExtensionRequest], ...] = ()

  def _next(self) -> int:
    self._sequence += 1
    return self._sequence

  def record_request_download(self, value: IntendedUseDraft, *, reason: str) -> None:
    self._request_download = (*self._request_download, StepDataEntry(self._next(), value, reason))
    logger.debug("Recorded request-download data reason=%s seq=%d", reason, self._sequence)

  def record_rights_check(self, value: RightsCheckStepData, *, reason: str) -> None:
    self._rights_check = (*self._rights_check, StepDataEntry(self._next(), value, reason))
    logger.debug("Recorded rights-check data reason=%s seq=%d", reason, self._sequence)

  def record_rights_extension(self, value: RightsExtensionRequest, *, reason: str) -> None:
    self._rights_extension = (*self._rights_extension, StepDataEntry(self._next(), value, reason))
    logger.debug("Recorded rights-extension data reason=%s seq=%d", reason, self._sequence)

  @property
  def request_download(self) -> IntendedUseDraft | None:
    return self._request_download[-1].value if self._request_download else None

  @property
  def rights_check(self) -> RightsCheckStepData | None:
    return self._rights_check[-1].value if self._rights_check else None

  @property
  def rights_extension(self) -> RightsExtensionRequest | None:
    return self._rights_extension[-1].value if self._rights_extension else None

  def history(self, step: str) -> tuple[StepDataEntry, ...]:
    """Return all entries for 'request_download', 'rights_check' or 'rights_extension'."""
    entries = {"request_download": self._request_download, "rights_check": self._rights_check, "rights_extension": self._rights_extension}
    if step not in entries:
      raise ValueError(f"Unknown step data bucket: {step}")
    return entries[step]

  def initial_request_download(self) -> IntendedUseDraft:
    return self.request_download or IntendedUseDraft()

  def initial_rights_check(self) -> RightsCheckStepData:
    return self.rights_check or RightsCheckStepData()

  def initial_rights_extension(self) -> RightsExtensionRequest:
    return self.rights_extension or RightsExtensionRequest()
