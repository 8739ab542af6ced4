"""Core type definitions for the form builder engine.

This module defines the fundamental types used throughout the engine:
- FormStatus / EntityStatus: Lifecycle states for forms, sections and questions
- AnswerType: The kinds of answers a question can collect
- RuleType: Closed set of validation rule kinds
- VisibilityOperator / VisibilityAction: Conditional visibility vocabulary
- HistoryAction: Actions recorded in a form's history log
- FailureCode: Stable error codes surfaced by the engine
- Actor: Identity representation for users, services and system processes
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class FormStatus(str, Enum):
    """Form lifecycle states.

    draft and active may move back and forth (publish/unpublish).
    archived is terminal.
    """
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class EntityStatus(str, Enum):
    """Section, question and template lifecycle states."""
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class AnswerType(str, Enum):
    """Answer types a question can carry."""
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DATE = "date"
    DROPDOWN = "dropdown"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    LOOKUP = "lookup"
    FORMULA = "formula"


# Answer types that need an options source before leaving draft
CHOICE_ANSWER_TYPES: FrozenSet[AnswerType] = frozenset(
    {AnswerType.DROPDOWN, AnswerType.RADIO, AnswerType.CHECKBOX}
)


class RuleType(str, Enum):
    """Validation rule kinds."""
    REQUIRED = "required"
    MIN_LENGTH = "minLength"
    MAX_LENGTH = "maxLength"
    PATTERN = "pattern"
    RANGE = "range"
    CUSTOM = "custom"


class VisibilityOperator(str, Enum):
    """Comparison applied to a controlling question's answer."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    IS_EMPTY = "isEmpty"


class VisibilityAction(str, Enum):
    """Effect a fired visibility rule has on its question."""
    SHOW = "show"
    HIDE = "hide"
    REQUIRE = "require"
    DISABLE = "disable"


class HistoryAction(str, Enum):
    """Actions recorded in a form's history log."""
    CREATED = "created"
    UPDATED = "updated"
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    ARCHIVED = "archived"


class EntityKind(str, Enum):
    """Kinds of entity the engine stores and mutates."""
    FORM = "form"
    SECTION = "section"
    QUESTION = "question"
    TEMPLATE = "template"


class FailureCode(str, Enum):
    """Stable error codes for engine failures.

    Every FormBuilderError carries one of these so callers can branch on
    the failure without parsing messages.
    """
    INVALID_CONFIGURATION = "invalid_configuration"
    CONFLICT = "conflict"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    EMPTY_FORM = "empty_form"
    REMOTE_ENDPOINT = "remote_endpoint"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN = "unknown"


class ActorKind(str, Enum):
    """Actor type classification.

    Distinguishes between people editing forms, integrated services and
    the engine itself (cascades, imports).
    """
    USER = "user"
    SERVICE = "service"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Identity of an actor performing a mutation.

    Actors are recorded on every history entry and stamped into
    createdBy/updatedBy.

    Attributes:
        kind: Type of actor (user, service, or system)
        id: Unique identifier for this actor
        name: Optional display name (e.g., "Jane Doe")
        metadata: Optional arbitrary data

    Examples:
        >>> editor = Actor(kind=ActorKind.USER, id="user_123", name="Jane Doe")
        >>> system = Actor(kind=ActorKind.SYSTEM, id="system")
    """
    kind: ActorKind
    id: str
    name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "kind": self.kind.value if isinstance(self.kind, ActorKind) else self.kind,
            "id": self.id,
        }
        if self.name is not None:
            result["name"] = self.name
        if self.metadata:
            result["metadata"] = self.metadata
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        """Create Actor from dict."""
        kind = data.get("kind", ActorKind.USER)
        if isinstance(kind, str):
            kind = ActorKind(kind)
        return cls(
            kind=kind,
            id=data["id"],
            name=data.get("name"),
            metadata=data.get("metadata") or {},
        )


__all__ = [
    "FormStatus",
    "EntityStatus",
    "AnswerType",
    "CHOICE_ANSWER_TYPES",
    "RuleType",
    "VisibilityOperator",
    "VisibilityAction",
    "HistoryAction",
    "EntityKind",
    "FailureCode",
    "ActorKind",
    "Actor",
]
