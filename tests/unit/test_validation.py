from datetime import date

from cartflow.workflow.models import IntendedUseDraft, RightsData, RightsExtensionRequest
from cartflow.workflow.validation import PULL_DATE_ERROR, date_validation_error, to_declaration, validate_extension_request, validate_intended_use


def test_date_rule_needs_a_full_day_between_air_and_pull():
  assert date_validation_error(date(2025, 9, 1), date(2025, 9, 2)) == ""
  assert date_validation_error(date(2025, 9, 1), date(2025, 9, 1)) == PULL_DATE_ERROR
  assert date_validation_error(date(2025, 9, 1), None) == ""


def test_empty_draft_reports_every_missing_field():
  errors = validate_intended_use(IntendedUseDraft())

  assert errors == ["Air date is required", "Pull date is required", "Select at least one market", "Select at least one media channel"]
  assert to_declaration(IntendedUseDraft()) is None


def test_declaration_fingerprint_ignores_selection_order():
  m1, m2, c1 = RightsData(1, "M1"), RightsData(2, "M2"), RightsData(9, "C1")
  a = to_declaration(IntendedUseDraft(air_date=date(2025, 1, 1), pull_date=date(2025, 1, 5), markets=(m1, m2), media_channels=(c1,)))
  b = to_declaration(IntendedUseDraft(air_date=date(2025, 1, 1), pull_date=date(2025, 1, 5), markets=(m2, m1), media_channels=(c1,)))

  assert a.fingerprint() == b.fingerprint()
  assert a.market_ids == [1, 2]
  assert a.to_draft().markets == (m1, m2)


def test_extension_requires_fields_and_terms():
  errors = validate_extension_request(RightsExtensionRequest(agency_name="  "))

  assert "agency_name is required" in errors
  assert "budget_for_market is required" in errors
  assert errors[-1] == "Terms must be accepted"

  complete = RightsExtensionRequest(agency_name="A", contact_name="B", contact_email="c@d.e", adaptation_intention="x", budget_for_market="1", agrees_to_terms=True)
  assert validate_extension_request(complete) == []
