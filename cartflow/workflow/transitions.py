"""Transition table for the cart workflow."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cartflow.core.errors import TransitionError
from cartflow.workflow.models import StepStatus, WorkflowState, WorkflowStep


class Trigger(str, Enum):
  OPEN_REQUEST_DOWNLOAD = "open-request-download"
  OPEN_DIRECT_DOWNLOAD = "open-direct-download"
  SUBMIT_INTENDED_USE = "submit-intended-use"
  OPEN_RIGHTS_EXTENSION = "open-rights-extension"
  SUBMIT_RIGHTS_EXTENSION = "submit-rights-extension"
  OPEN_DOWNLOAD = "open-download"
  COMPLETE_DOWNLOAD = "complete-download"
  BACK = "back"


@dataclass(frozen=True)
class Transition:
  """Target step plus the status the source step is left in.

  A source status of None keeps whatever the source had, demoting CURRENT to
  SUCCESS so the target can become the single CURRENT step.
  """

  target: WorkflowStep
  source_status: StepStatus | None


TRANSITIONS: dict[tuple[WorkflowStep, Trigger], Transition] = {
  (WorkflowStep.CART, Trigger.OPEN_REQUEST_DOWNLOAD): Transition(WorkflowStep.REQUEST_DOWNLOAD, StepStatus.SUCCESS),
  (WorkflowStep.CART, Trigger.OPEN_DIRECT_DOWNLOAD): Transition(WorkflowStep.DOWNLOAD, StepStatus.SUCCESS),
  (WorkflowStep.REQUEST_DOWNLOAD, Trigger.SUBMIT_INTENDED_USE): Transition(WorkflowStep.RIGHTS_CHECK, StepStatus.SUCCESS),
  (WorkflowStep.REQUEST_DOWNLOAD, Trigger.BACK): Transition(WorkflowStep.CART, StepStatus.INIT),
  (WorkflowStep.RIGHTS_CHECK, Trigger.OPEN_RIGHTS_EXTENSION): Transition(WorkflowStep.REQUEST_RIGHTS_EXTENSION, StepStatus.SUCCESS),
  (WorkflowStep.RIGHTS_CHECK, Trigger.OPEN_DOWNLOAD): Transition(WorkflowStep.DOWNLOAD, StepStatus.SUCCESS),
  (WorkflowStep.RIGHTS_CHECK, Trigger.BACK): Transition(WorkflowStep.REQUEST_DOWNLOAD, StepStatus.INIT),
  (WorkflowStep.REQUEST_RIGHTS_EXTENSION, Trigger.SUBMIT_RIGHTS_EXTENSION): Transition(WorkflowStep.RIGHTS_CHECK, StepStatus.SUCCESS),
  (WorkflowStep.REQUEST_RIGHTS_EXTENSION, Trigger.BACK): Transition(WorkflowStep.RIGHTS_CHECK, StepStatus.INIT),
  (WorkflowStep.DOWNLOAD, Trigger.COMPLETE_DOWNLOAD): Transition(WorkflowStep.CLOSE_DOWNLOAD, None),
}


def lookup(step: WorkflowStep, trigger: Trigger) -> Transition:
  """Return the transition for (step, trigger) or raise TransitionError."""
  transition = TRANSITIONS.get((step, trigger))
  if transition is None:
    raise TransitionError(f"Cannot {trigger.value} from {step.value}", step=step.value, trigger=trigger.value)
  return transition


def allowed_triggers(step: WorkflowStep) -> tuple[Trigger, ...]:
  return tuple(trigger for (source, trigger) in TRANSITIONS if source is step)


def apply_transition(state: WorkflowState, trigger: Trigger) -> WorkflowState:
  """Move state along the table; the caller has already checked the guard."""
  if state.closed:
    raise TransitionError("Workflow is closed", step=state.active_step.value, trigger=trigger.value)
  source = state.active_step
  transition = lookup(source, trigger)
  source_status = transition.source_status
  if source_status is None:
    previous = state.status(source)
    source_status = StepStatus.SUCCESS if previous is StepStatus.CURRENT else previous
  updates = {source.name: source_status, transition.target.name: StepStatus.CURRENT}
  return state.with_statuses(active_step=transition.target, **updates)
