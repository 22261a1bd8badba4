"""Workflow definitions: states, transitions, conditions and post actions.

Conditions and post actions are closed tagged unions keyed on ``kind`` so the
engine can check every variant explicitly instead of inspecting free-form dicts.
"""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cadence.models.tasks import DependencyType, TaskType


class StateCategory(str, Enum):
    """Coarse lifecycle bucket every workflow state belongs to."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class WorkflowState(BaseModel):
    """A single status in a workflow."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    category: StateCategory
    blocked: bool = False

    @property
    def is_terminal(self) -> bool:
        """Done-category states admit no outgoing transitions."""
        return self.category == StateCategory.DONE


class Actor(BaseModel):
    """Who is requesting a transition."""

    model_config = ConfigDict(frozen=True)

    id: str
    roles: list[str] = Field(default_factory=list)


# =============================================================================
# Conditions
# =============================================================================


class FieldEquals(BaseModel):
    """Task field must equal a value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["field_equals"] = "field_equals"
    field: str
    value: Any

    def describe(self) -> str:
        return f"{self.field} must equal {self.value!r}"


class FieldPresent(BaseModel):
    """Task field must be set (not None and not empty)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["field_present"] = "field_present"
    field: str

    def describe(self) -> str:
        return f"{self.field} must be set"


class RoleIs(BaseModel):
    """Actor must hold at least one of the roles."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["role_is"] = "role_is"
    roles: list[str]

    def describe(self) -> str:
        return "actor must have role " + " or ".join(self.roles)


class ApprovalCountAtLeast(BaseModel):
    """At least ``count`` approvals must have been recorded."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["approval_count_at_least"] = "approval_count_at_least"
    count: int = Field(ge=1)

    def describe(self) -> str:
        return f"at least {self.count} approval(s) required"


class DependenciesComplete(BaseModel):
    """Every predecessor over the given edge types must be in a done-category state."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["dependencies_complete"] = "dependencies_complete"
    dependency_types: list[DependencyType] = Field(
        default_factory=lambda: [DependencyType.FINISH_TO_START]
    )

    def describe(self) -> str:
        return "all blocking dependencies must be complete"


Condition = Annotated[
    FieldEquals | FieldPresent | RoleIs | ApprovalCountAtLeast | DependenciesComplete,
    Field(discriminator="kind"),
]


# =============================================================================
# Post actions
# =============================================================================


class AssignAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["assign"] = "assign"
    assignee_id: str


class NotifyAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["notify"] = "notify"
    recipients: list[str]
    message: str = ""


class CreateSubtaskAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["create_subtask"] = "create_subtask"
    title: str
    task_type: TaskType = TaskType.SUBTASK


class UpdateFieldAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["update_field"] = "update_field"
    field: str
    value: Any

    @model_validator(mode="after")
    def forbid_status(self) -> "UpdateFieldAction":
        if self.field in {"status", "version", "id"}:
            raise ValueError(f"post actions cannot update '{self.field}'")
        return self


class WebhookAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["webhook"] = "webhook"
    url: str
    event: str = "task.transitioned"


PostAction = Annotated[
    AssignAction | NotifyAction | CreateSubtaskAction | UpdateFieldAction | WebhookAction,
    Field(discriminator="kind"),
]


# =============================================================================
# Workflow
# =============================================================================


class WorkflowTransition(BaseModel):
    """An allowed edge in the workflow's state machine."""

    model_config = ConfigDict(frozen=True)

    from_state: str
    to_state: str
    name: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    required_approvals: int = Field(default=0, ge=0)
    post_actions: list[PostAction] = Field(default_factory=list)
    allowed_roles: list[str] = Field(default_factory=list)
    allowed_users: list[str] = Field(default_factory=list)


class Workflow(BaseModel):
    """A named state machine over task status.

    Validated on construction: state ids are unique, every transition points at
    known states, and no transition leaves a terminal (done-category) state.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    states: list[WorkflowState]
    transitions: list[WorkflowTransition] = Field(default_factory=list)
    initial_state: str = "todo"
    cancel_state: str | None = "cancelled"

    @model_validator(mode="after")
    def validate_state_machine(self) -> "Workflow":
        ids = [s.id for s in self.states]
        if len(ids) != len(set(ids)):
            raise ValueError(f"workflow '{self.name}' has duplicate state ids")
        known = set(ids)
        if self.initial_state not in known:
            raise ValueError(f"initial state '{self.initial_state}' is not a workflow state")
        if self.cancel_state is not None and self.cancel_state not in known:
            raise ValueError(f"cancel state '{self.cancel_state}' is not a workflow state")

        by_id = {s.id: s for s in self.states}
        if by_id[self.initial_state].is_terminal:
            raise ValueError("initial state cannot be terminal")
        if self.cancel_state is not None and not by_id[self.cancel_state].is_terminal:
            raise ValueError("cancel state must be a done-category state")

        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            for endpoint in (t.from_state, t.to_state):
                if endpoint not in known:
                    raise ValueError(f"transition references unknown state '{endpoint}'")
            if by_id[t.from_state].is_terminal:
                raise ValueError(f"terminal state '{t.from_state}' cannot have transitions")
            if (t.from_state, t.to_state) in seen:
                raise ValueError(f"duplicate transition {t.from_state} -> {t.to_state}")
            seen.add((t.from_state, t.to_state))
        return self

    def state_index(self) -> dict[str, WorkflowState]:
        return {s.id: s for s in self.states}

    def has_state(self, state_id: str) -> bool:
        return state_id in self.state_index()

    def state(self, state_id: str) -> WorkflowState:
        """Look up a state; raises KeyError for unknown ids."""
        return self.state_index()[state_id]

    def category_of(self, state_id: str) -> StateCategory | None:
        state = self.state_index().get(state_id)
        return state.category if state else None

    def is_terminal(self, state_id: str) -> bool:
        return self.category_of(state_id) == StateCategory.DONE

    def is_completion(self, state_id: str) -> bool:
        """Done-category and not the cancel state."""
        return self.is_terminal(state_id) and state_id != self.cancel_state

    def is_blocked(self, state_id: str) -> bool:
        state = self.state_index().get(state_id)
        return bool(state and state.blocked)

    def states_in(self, category: StateCategory) -> list[str]:
        return [s.id for s in self.states if s.category == category]

    def transitions_from(self, state_id: str) -> list[WorkflowTransition]:
        return [t for t in self.transitions if t.from_state == state_id]

    def find_transition(self, from_state: str, to_state: str) -> WorkflowTransition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None


def default_workflow() -> Workflow:
    """The stock software workflow: todo, in progress, review, blocked, done, cancelled."""
    states = [
        WorkflowState(id="todo", name="To Do", category=StateCategory.TODO),
        WorkflowState(id="in_progress", name="In Progress", category=StateCategory.IN_PROGRESS),
        WorkflowState(id="in_review", name="In Review", category=StateCategory.IN_PROGRESS),
        WorkflowState(
            id="blocked", name="Blocked", category=StateCategory.IN_PROGRESS, blocked=True
        ),
        WorkflowState(id="done", name="Done", category=StateCategory.DONE),
        WorkflowState(id="cancelled", name="Cancelled", category=StateCategory.DONE),
    ]
    pairs = [
        ("todo", "in_progress"),
        ("todo", "blocked"),
        ("in_progress", "todo"),
        ("in_progress", "blocked"),
        ("in_progress", "in_review"),
        ("in_progress", "done"),
        ("blocked", "in_progress"),
        ("blocked", "todo"),
        ("in_review", "in_progress"),
        ("in_review", "done"),
    ]
    transitions = [WorkflowTransition(from_state=a, to_state=b) for a, b in pairs]
    transitions += [
        WorkflowTransition(from_state=s, to_state="cancelled", name="cancel")
        for s in ("todo", "in_progress", "in_review", "blocked")
    ]
    return Workflow(name="default", states=states, transitions=transitions)
