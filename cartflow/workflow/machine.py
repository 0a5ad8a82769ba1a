"""Cart-to-fulfillment workflow state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace

from cartflow.cart.models import Asset, AssetSelection, CartSnapshot
from cartflow.cart.store import CartStore, KeyValueStore, mark_restricted_brands, remove_assets
from cartflow.config import Settings, get_settings
from cartflow.core.errors import AssetDeliveryError, RightsAuthorityError, TransitionError
from cartflow.core.logging import initialize_logging
from cartflow.fulfillment.archive import ArchiveFulfillment
from cartflow.fulfillment.contracts import SelectionDownloader
from cartflow.rights.client import RightsAuthorityClient
from cartflow.workflow.models import IntendedUseDeclaration, IntendedUseDraft, RightsCheckStepData, RightsExtensionRequest, StepStatus, WorkflowState, WorkflowStep
from cartflow.workflow.partition import PartitionResult
from cartflow.workflow.rights_check import RightsCheckCoordinator
from cartflow.workflow.step_data import StepDataStore
from cartflow.workflow.transitions import TRANSITIONS, Trigger, apply_transition, lookup
from cartflow.workflow.validation import date_validation_error, to_declaration, validate_extension_request, validate_intended_use

logger = logging.getLogger(__name__)

StateListener = Callable[[WorkflowState], None]
CloseListener = Callable[[str], None]
ExtensionListener = Callable[[RightsExtensionRequest], None]


class WorkflowStateMachine:
  """Sequences cart, intended use, rights check, extension request and download.

  State lives in one immutable WorkflowState that only changes through the
  transition table. Form data goes to the StepDataStore before any
  transition so back-navigation restores it. Commands whose step or guard is
  wrong raise TransitionError and leave the state untouched; the matching
  `can_*` predicates report the same thing without raising.
  """

  def __init__(
    self,
    cart_store: CartStore,
    rights_check: RightsCheckCoordinator,
    fulfillment: SelectionDownloader,
    *,
    step_data: StepDataStore | None = None,
    restricted_brands: Iterable[str] = (),
    on_change: StateListener | None = None,
    on_close: CloseListener | None = None,
    on_extension_submitted: ExtensionListener | None = None,
  ) -> None:
    self._cart = cart_store
    self._rights = rights_check
    self._fulfillment = fulfillment
    self._step_data = step_data or StepDataStore()
    self._on_change = on_change
    self._on_close = on_close
    self._on_extension_submitted = on_extension_submitted
    self._state = WorkflowState()
    self._intended_use: IntendedUseDeclaration | None = None
    self._close_reason: str | None = None
    mark_restricted_brands(cart_store, restricted_brands)
    self._unsubscribe = cart_store.subscribe(self._handle_cart_change)

  @property
  def state(self) -> WorkflowState:
    return self._state

  @property
  def active_step(self) -> WorkflowStep:
    return self._state.active_step

  @property
  def closed(self) -> bool:
    return self._state.closed

  @property
  def close_reason(self) -> str | None:
    return self._close_reason

  @property
  def step_data(self) -> StepDataStore:
    return self._step_data

  @property
  def intended_use(self) -> IntendedUseDeclaration | None:
    return self._intended_use

  @property
  def cart(self) -> CartSnapshot:
    return self._cart.snapshot()

  def status(self, step: WorkflowStep) -> StepStatus:
    return self._state.status(step)

  def authorization(self) -> PartitionResult:
    """Current authorized/restricted split of the cart."""
    return self._rights.current_partition()

  # State plumbing

  def _set_state(self, state: WorkflowState) -> None:
    self._state = state
    logger.debug("Workflow state version=%d active=%s closed=%s", state.version, state.active_step.value, state.closed)
    if self._on_change is not None:
      self._on_change(state)

  def _fire(self, trigger: Trigger) -> None:
    previous = self._state.active_step
    self._set_state(apply_transition(self._state, trigger))
    logger.info("Workflow transition trigger=%s from=%s to=%s", trigger.value, previous.value, self._state.active_step.value)

  def _allowed(self, trigger: Trigger) -> bool:
    return not self._state.closed and (self._state.active_step, trigger) in TRANSITIONS

  def _check(self, trigger: Trigger, guard: bool, message: str) -> None:
    if self._state.closed:
      raise TransitionError("Workflow is closed", step=self._state.active_step.value, trigger=trigger.value)
    lookup(self._state.active_step, trigger)
    if not guard:
      raise TransitionError(message, step=self._state.active_step.value, trigger=trigger.value)

  def _require_step(self, step: WorkflowStep, action: str) -> None:
    if self._state.closed:
      raise TransitionError("Workflow is closed", step=self._state.active_step.value, trigger=action)
    if self._state.active_step is not step:
      raise TransitionError(f"Cannot {action} from {self._state.active_step.value}", step=self._state.active_step.value, trigger=action)

  def _set_status(self, step: WorkflowStep, status: StepStatus) -> None:
    self._set_state(self._state.with_statuses(**{step.name: status}))

  # CART

  def can_open_request_download(self) -> bool:
    return self._allowed(Trigger.OPEN_REQUEST_DOWNLOAD) and not self.cart.is_empty

  def open_request_download(self) -> None:
    self._check(Trigger.OPEN_REQUEST_DOWNLOAD, not self.cart.is_empty, "Cart is empty")
    self._fire(Trigger.OPEN_REQUEST_DOWNLOAD)

  def can_open_direct_download(self) -> bool:
    return self._allowed(Trigger.OPEN_DIRECT_DOWNLOAD) and self._all_authorized()

  def open_direct_download(self) -> None:
    self._check(Trigger.OPEN_DIRECT_DOWNLOAD, self._all_authorized(), "Every cart item must be ready to use or authorized")
    self._fire(Trigger.OPEN_DIRECT_DOWNLOAD)

  def _all_authorized(self) -> bool:
    return not self.cart.is_empty and not self.authorization().restricted

  # REQUEST_DOWNLOAD

  def intended_use_draft(self) -> IntendedUseDraft:
    """Initial values for the intended-use form."""
    return self._step_data.initial_request_download()

  def date_error(self, draft: IntendedUseDraft | None = None) -> str:
    draft = draft or self.intended_use_draft()
    return date_validation_error(draft.air_date, draft.pull_date)

  def update_intended_use(self, draft: IntendedUseDraft) -> list[str]:
    """Record an edit of the intended-use form and return what still blocks submission."""
    self._require_step(WorkflowStep.REQUEST_DOWNLOAD, "edit intended use")
    self._step_data.record_request_download(draft, reason="edit")
    return validate_intended_use(draft)

  def can_submit_intended_use(self, draft: IntendedUseDraft | None = None) -> bool:
    return self._allowed(Trigger.SUBMIT_INTENDED_USE) and not validate_intended_use(draft or self.intended_use_draft())

  def submit_intended_use(self, draft: IntendedUseDraft | None = None) -> IntendedUseDeclaration:
    draft = draft or self.intended_use_draft()
    errors = validate_intended_use(draft)
    self._check(Trigger.SUBMIT_INTENDED_USE, not errors, "; ".join(errors))
    declaration = to_declaration(draft)
    assert declaration is not None
    self._step_data.record_request_download(draft, reason="submit")
    self._intended_use = declaration
    self._fire(Trigger.SUBMIT_INTENDED_USE)
    return declaration

  # Back navigation

  def can_go_back(self) -> bool:
    return self._allowed(Trigger.BACK)

  def back(self, form: IntendedUseDraft | RightsCheckStepData | RightsExtensionRequest | None = None) -> None:
    """Return to the previous step, first saving the form of the step being left."""
    self._check(Trigger.BACK, True, "")
    if form is not None:
      self._record_for_step(self._state.active_step, form)
    self._fire(Trigger.BACK)

  def _record_for_step(self, step: WorkflowStep, form: IntendedUseDraft | RightsCheckStepData | RightsExtensionRequest) -> None:
    if step is WorkflowStep.REQUEST_DOWNLOAD and isinstance(form, IntendedUseDraft):
      self._step_data.record_request_download(form, reason="back")
    elif step is WorkflowStep.RIGHTS_CHECK and isinstance(form, RightsCheckStepData):
      self._step_data.record_rights_check(form, reason="back")
    elif step is WorkflowStep.REQUEST_RIGHTS_EXTENSION and isinstance(form, RightsExtensionRequest):
      self._step_data.record_rights_extension(form, reason="back")
    else:
      raise TransitionError(f"{type(form).__name__} is not the form of {step.value}", step=step.value, trigger=Trigger.BACK.value)

  # RIGHTS_CHECK

  async def run_rights_check(self) -> PartitionResult | None:
    """Clear the restricted assets for the submitted intended use.

    Returns the new partition, or None when the authority failed, in which
    case RIGHTS_CHECK is marked FAILURE and every input is kept for a retry.
    """
    self._require_step(WorkflowStep.RIGHTS_CHECK, "run rights check")
    if self._intended_use is None:
      raise TransitionError("No intended use has been submitted", step=WorkflowStep.RIGHTS_CHECK.value, trigger="run rights check")
    if self.status(WorkflowStep.RIGHTS_CHECK) is StepStatus.FAILURE:
      self._set_status(WorkflowStep.RIGHTS_CHECK, StepStatus.CURRENT)

    try:
      result = await self._rights.run(self._intended_use)
    except RightsAuthorityError as exc:
      logger.warning("Rights check failed: %s", exc)
      if not self._state.closed and self._state.active_step is WorkflowStep.RIGHTS_CHECK:
        self._set_status(WorkflowStep.RIGHTS_CHECK, StepStatus.FAILURE)
      return None
    return result

  def _rights_settled(self) -> bool:
    """True once a check has landed for the current intended use and restricted set."""
    if self._intended_use is None or self._rights.in_flight:
      return False
    if self.status(WorkflowStep.RIGHTS_CHECK) is StepStatus.FAILURE:
      return False
    return self._rights.is_settled(self._intended_use)

  def can_open_rights_extension(self) -> bool:
    return self._allowed(Trigger.OPEN_RIGHTS_EXTENSION) and self._rights_settled() and bool(self.authorization().restricted)

  def open_rights_extension(self, form: RightsCheckStepData | None = None, restricted_assets: Sequence[Asset] | None = None) -> RightsExtensionRequest:
    """Move to the extension form for restricted_assets (default: every restricted asset)."""
    self._check(Trigger.OPEN_RIGHTS_EXTENSION, self._rights_settled(), "Rights check has not completed")
    restricted = self.authorization().restricted
    self._check(Trigger.OPEN_RIGHTS_EXTENSION, bool(restricted), "No restricted assets to extend")
    chosen = tuple(restricted_assets) if restricted_assets is not None else restricted
    restricted_ids = {asset.asset_id for asset in restricted}
    unknown = [asset.asset_id for asset in chosen if asset.asset_id not in restricted_ids]
    if not chosen or unknown:
      raise TransitionError(f"Extension must cover restricted assets only, got {unknown or 'none'}", step=self._state.active_step.value, trigger=Trigger.OPEN_RIGHTS_EXTENSION.value)

    if form is not None:
      self._step_data.record_rights_check(form, reason="submit")
    request = replace(self._step_data.initial_rights_extension(), restricted_assets=chosen)
    self._step_data.record_rights_extension(request, reason="open")
    self._fire(Trigger.OPEN_RIGHTS_EXTENSION)
    return request

  # REQUEST_RIGHTS_EXTENSION

  def rights_extension_draft(self) -> RightsExtensionRequest:
    return self._step_data.initial_rights_extension()

  def update_rights_extension(self, request: RightsExtensionRequest) -> list[str]:
    self._require_step(WorkflowStep.REQUEST_RIGHTS_EXTENSION, "edit rights extension")
    self._step_data.record_rights_extension(request, reason="edit")
    return validate_extension_request(request)

  def can_submit_rights_extension(self, request: RightsExtensionRequest | None = None) -> bool:
    return self._allowed(Trigger.SUBMIT_RIGHTS_EXTENSION) and not validate_extension_request(request or self.rights_extension_draft())

  def submit_rights_extension(self, request: RightsExtensionRequest | None = None) -> CartSnapshot:
    """Submit the extension request and drop exactly its assets from the cart.

    Returns to RIGHTS_CHECK while the cart still has items; an emptied cart
    closes the panel instead.
    """
    request = request or self.rights_extension_draft()
    errors = validate_extension_request(request)
    self._check(Trigger.SUBMIT_RIGHTS_EXTENSION, not errors, "; ".join(errors))
    self._step_data.record_rights_extension(request, reason="submit")
    if self._on_extension_submitted is not None:
      self._on_extension_submitted(request)

    snapshot = remove_assets(self._cart, request.restricted_asset_ids)
    logger.info("Rights extension submitted assets=%d cart_remaining=%d", len(request.restricted_asset_ids), len(snapshot))
    if self._state.closed:
      self._set_status(WorkflowStep.REQUEST_RIGHTS_EXTENSION, StepStatus.SUCCESS)
    else:
      self._fire(Trigger.SUBMIT_RIGHTS_EXTENSION)
    return snapshot

  # DOWNLOAD

  def can_open_download(self) -> bool:
    return self._allowed(Trigger.OPEN_DOWNLOAD) and bool(self.authorization().authorized)

  def open_download(self, form: RightsCheckStepData | None = None) -> None:
    """Move from RIGHTS_CHECK to DOWNLOAD with the authorized assets."""
    self._check(Trigger.OPEN_DOWNLOAD, bool(self.authorization().authorized), "No authorized assets to download")
    if form is not None:
      self._step_data.record_rights_check(form, reason="download")
    self._fire(Trigger.OPEN_DOWNLOAD)

  async def start_download(self, selections: Sequence[AssetSelection]) -> bool:
    """Download authorized selections; the outcome is applied through handle_download_completed."""
    self._require_step(WorkflowStep.DOWNLOAD, "download")
    authorized_ids = {asset.asset_id for asset in self.authorization().authorized}
    unauthorized = [selection.asset.asset_id for selection in selections if selection.asset.asset_id not in authorized_ids]
    if not selections or unauthorized:
      raise TransitionError(f"Only authorized assets can be downloaded, got {unauthorized or 'none'}", step=WorkflowStep.DOWNLOAD.value, trigger="download")
    if self.status(WorkflowStep.DOWNLOAD) is not StepStatus.CURRENT:
      self._set_status(WorkflowStep.DOWNLOAD, StepStatus.CURRENT)

    try:
      success = await self._fulfillment.download_selections(selections)
    except AssetDeliveryError as exc:
      logger.error("Download failed: %s", exc)
      success = False
    self.handle_download_completed(success, [selection.asset.asset_id for selection in selections])
    return success

  def handle_download_completed(self, success: bool, asset_ids: Iterable[str]) -> None:
    """Mark DOWNLOAD and, on success, drop the downloaded assets from the cart."""
    if self._state.closed:
      logger.info("Ignoring download result for a closed workflow success=%s", success)
      return
    self._set_status(WorkflowStep.DOWNLOAD, StepStatus.SUCCESS if success else StepStatus.FAILURE)
    if success:
      remove_assets(self._cart, asset_ids)

  def can_complete_download(self) -> bool:
    return self._allowed(Trigger.COMPLETE_DOWNLOAD)

  def complete_download(self) -> None:
    self._check(Trigger.COMPLETE_DOWNLOAD, True, "")
    self._fire(Trigger.COMPLETE_DOWNLOAD)
    self._close("download-complete")

  # Closing

  def cancel(self) -> None:
    self._close("cancelled")

  def _handle_cart_change(self, snapshot: CartSnapshot) -> None:
    if snapshot.is_empty and not self._state.closed:
      self._close("cart-empty")

  def _close(self, reason: str) -> None:
    if self._state.closed:
      return
    self._close_reason = reason
    self._unsubscribe()
    self._set_state(self._state.with_statuses(closed=True))
    logger.info("Workflow closed reason=%s step=%s", reason, self._state.active_step.value)
    if self._on_close is not None:
      self._on_close(reason)


def build_workflow(
  cart_store: CartStore,
  *,
  settings: Settings | None = None,
  rights_cache: KeyValueStore | None = None,
  on_change: StateListener | None = None,
  on_close: CloseListener | None = None,
) -> WorkflowStateMachine:
  """Wire the HTTP-backed rights authority and archive fulfillment around cart_store."""
  settings = settings or get_settings()
  initialize_logging(settings)
  coordinator = RightsCheckCoordinator(RightsAuthorityClient(settings, cache=rights_cache), cart_store)
  fulfillment = ArchiveFulfillment.from_settings(settings)
  return WorkflowStateMachine(cart_store, coordinator, fulfillment, restricted_brands=settings.restricted_brands, on_change=on_change, on_close=on_close)
