"""Error taxonomy for the cart fulfillment workflow."""

from __future__ import annotations


class CartflowError(Exception):
  """Base class for all workflow failures."""


class TransitionError(CartflowError):
  """Raised when a command is not legal for the current step or its guard is unmet."""

  def __init__(self, message: str, *, step: str | None = None, trigger: str | None = None) -> None:
    super().__init__(message)
    self.step = step
    self.trigger = trigger


class RightsAuthorityError(CartflowError):
  """Raised when the rights authority is unreachable or answers with a non-2xx status."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class AssetDeliveryError(CartflowError):
  """Raised when an asset delivery endpoint (archive, token, rendition) fails."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class ArchiveFailedError(AssetDeliveryError):
  """Exception raised when an archive job ends in FAILED or exhausts its polling bound."""
