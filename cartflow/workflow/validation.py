"""Form validation for the intended-use and rights-extension steps.

Validators return messages instead of raising: a failed validation only
disables the step's forward action.
"""

from __future__ import annotations

from datetime import date, timedelta

from cartflow.workflow.models import IntendedUseDeclaration, IntendedUseDraft, RightsExtensionRequest

PULL_DATE_ERROR = "Pull date must be at least 1 day after air date"
MIN_AIRING_DAYS = 1


def date_validation_error(air_date: date | None, pull_date: date | None) -> str:
  """Return the inline date error for the form, or an empty string."""
  if air_date is None or pull_date is None:
    return ""
  if pull_date < air_date + timedelta(days=MIN_AIRING_DAYS):
    return PULL_DATE_ERROR
  return ""


def validate_intended_use(draft: IntendedUseDraft) -> list[str]:
  """Return every reason the draft cannot be submitted yet."""
  errors: list[str] = []
  if draft.air_date is None:
    errors.append("Air date is required")
  if draft.pull_date is None:
    errors.append("Pull date is required")
  date_error = date_validation_error(draft.air_date, draft.pull_date)
  if date_error:
    errors.append(date_error)
  if not draft.markets:
    errors.append("Select at least one market")
  if not draft.media_channels:
    errors.append("Select at least one media channel")
  return errors


def to_declaration(draft: IntendedUseDraft) -> IntendedUseDeclaration | None:
  """Freeze a valid draft into a declaration; None while the draft is incomplete."""
  if validate_intended_use(draft):
    return None
  assert draft.air_date is not None and draft.pull_date is not None
  return IntendedUseDeclaration(air_date=draft.air_date, pull_date=draft.pull_date, markets=tuple(draft.markets), media_channels=tuple(draft.media_channels))


REQUIRED_EXTENSION_FIELDS = ("agency_name", "contact_name", "contact_email", "adaptation_intention", "budget_for_market")


def missing_extension_fields(request: RightsExtensionRequest) -> list[str]:
  return [name for name in REQUIRED_EXTENSION_FIELDS if not str(getattr(request, name) or "").strip()]


def validate_extension_request(request: RightsExtensionRequest) -> list[str]:
  errors = [f"{name} is required" for name in missing_extension_fields(request)]
  if not request.agrees_to_terms:
    errors.append("Terms must be accepted")
  return errors
