"""Lifecycle state machines for forms, sections, questions and templates.

Forms move draft <-> active (publish/unpublish) and may be archived from
either; sections, questions and templates follow the same shape with their
own status enum. Archived is terminal everywhere: no restore path exists.

Entities are immutable snapshots, so a lifecycle here does not hold state.
It checks a proposed (current, target) pair and raises
InvalidStateTransitionError when the move is not allowed.

Usage:
    >>> from formbuilder.state_machine import FORM_LIFECYCLE
    >>> from formbuilder.types import FormStatus
    >>> FORM_LIFECYCLE.can_transition(FormStatus.DRAFT, FormStatus.ACTIVE)
    True
    >>> FORM_LIFECYCLE.is_terminal(FormStatus.ARCHIVED)
    True
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping

from formbuilder.errors import InvalidStateTransitionError
from formbuilder.types import EntityStatus, FormStatus, HistoryAction


# Valid form transitions; archived is terminal
VALID_FORM_TRANSITIONS: Dict[FormStatus, FrozenSet[FormStatus]] = {
    FormStatus.DRAFT: frozenset({FormStatus.ACTIVE, FormStatus.ARCHIVED}),
    FormStatus.ACTIVE: frozenset({FormStatus.DRAFT, FormStatus.ARCHIVED}),
    FormStatus.ARCHIVED: frozenset(),
}

# Valid section/question/template transitions; archived is terminal
VALID_ENTITY_TRANSITIONS: Dict[EntityStatus, FrozenSet[EntityStatus]] = {
    EntityStatus.DRAFT: frozenset({EntityStatus.ACTIVE, EntityStatus.ARCHIVED}),
    EntityStatus.ACTIVE: frozenset({EntityStatus.DRAFT, EntityStatus.ARCHIVED}),
    EntityStatus.ARCHIVED: frozenset(),
}

# History action recorded when a form reaches the given status
FORM_STATUS_TO_ACTION: Dict[FormStatus, HistoryAction] = {
    FormStatus.ACTIVE: HistoryAction.PUBLISHED,
    FormStatus.DRAFT: HistoryAction.UNPUBLISHED,
    FormStatus.ARCHIVED: HistoryAction.ARCHIVED,
}


@dataclass(frozen=True)
class Lifecycle:
    """Transition table for one kind of entity.

    Attributes:
        name: Entity kind name used in error messages
        transitions: Maps each state to the states it may move to
    """

    name: str
    transitions: Mapping[Any, FrozenSet[Any]]

    def can_transition(self, current: Any, target: Any) -> bool:
        """Check if moving from current to target is valid."""
        return target in self.transitions.get(current, frozenset())

    def is_terminal(self, state: Any) -> bool:
        """True if no transition leaves state."""
        return len(self.transitions.get(state, frozenset())) == 0

    def ensure(self, current: Any, target: Any) -> None:
        """Raise unless the transition is allowed.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        if self.can_transition(current, target):
            return
        valid = self.transitions.get(current, frozenset())
        if valid:
            message = (
                f"Invalid {self.name} transition: cannot move from "
                f"'{current.value}' to '{target.value}'. Valid transitions from "
                f"'{current.value}' are: {', '.join(sorted(s.value for s in valid))}"
            )
        else:
            message = (
                f"Invalid {self.name} transition: '{current.value}' is a terminal "
                f"state, no transitions are allowed."
            )
        raise InvalidStateTransitionError(current_state=current, target_state=target, message=message)

    def ensure_mutable(self, current: Any) -> None:
        """Raise if an entity in state current may no longer be edited."""
        if self.is_terminal(current):
            raise InvalidStateTransitionError(
                current_state=current,
                target_state=current,
                message=f"{self.name.capitalize()} is '{current.value}' and can no longer be modified.",
            )


FORM_LIFECYCLE = Lifecycle(name="form", transitions=VALID_FORM_TRANSITIONS)
SECTION_LIFECYCLE = Lifecycle(name="section", transitions=VALID_ENTITY_TRANSITIONS)
QUESTION_LIFECYCLE = Lifecycle(name="question", transitions=VALID_ENTITY_TRANSITIONS)
TEMPLATE_LIFECYCLE = Lifecycle(name="template", transitions=VALID_ENTITY_TRANSITIONS)


__all__ = [
    "Lifecycle",
    "VALID_FORM_TRANSITIONS",
    "VALID_ENTITY_TRANSITIONS",
    "FORM_STATUS_TO_ACTION",
    "FORM_LIFECYCLE",
    "SECTION_LIFECYCLE",
    "QUESTION_LIFECYCLE",
    "TEMPLATE_LIFECYCLE",
]
