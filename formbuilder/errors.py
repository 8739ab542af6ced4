"""Error taxonomy for the form builder engine.

Structural and conflict errors abort the single mutation they apply to and are
raised to the caller verbatim. Validation failures are collected per question
and returned as a batch (see formbuilder.validation); ValidationFailed exists
for callers that want to turn such a batch into an exception.

Every error carries a stable FailureCode and serializes with to_dict() so a
transport layer can report it without inspecting the exception type.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from formbuilder.types import EntityKind, FailureCode


class FormBuilderError(Exception):
    """Base class for all engine errors.

    Attributes:
        code: Stable failure code
        message: Human-readable description
        details: Optional structured context
        retryable: Whether the caller may retry after re-fetching state
    """

    code: FailureCode = FailureCode.UNKNOWN
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            result["details"] = self.details
        return result


class InvalidConfiguration(FormBuilderError):
    """Structural schema violation. Must be fixed by the caller, never retried."""

    code = FailureCode.INVALID_CONFIGURATION


class ConflictError(FormBuilderError):
    """Optimistic concurrency failure: the supplied etag is stale.

    The caller must re-fetch the entity and may retry with the fresh etag.
    No automatic merge is attempted.
    """

    code = FailureCode.CONFLICT
    retryable = True

    def __init__(
        self,
        kind: EntityKind,
        entity_id: Any,
        expected_etag: Optional[str],
        current_etag: str,
    ):
        self.kind = kind
        self.entity_id = entity_id
        self.expected_etag = expected_etag
        self.current_etag = current_etag
        super().__init__(
            f"{kind.value.capitalize()} {entity_id} was modified concurrently: "
            f"supplied etag {expected_etag!r} does not match current etag {current_etag!r}",
            details={
                "entity": kind.value,
                "id": entity_id,
                "expectedEtag": expected_etag,
                "currentEtag": current_etag,
            },
        )


class ValidationFailed(FormBuilderError):
    """Submitted answers failed one or more rules.

    Attributes:
        errors: Mapping of question id to the single surfaced error message
    """

    code = FailureCode.VALIDATION_FAILED

    def __init__(self, errors: Mapping[Any, str]):
        self.errors = dict(errors)
        super().__init__(
            f"{len(self.errors)} question(s) failed validation",
            details={"errors": {str(k): v for k, v in self.errors.items()}},
        )


class NotFound(FormBuilderError):
    """Referenced form, section, question or template does not exist."""

    code = FailureCode.NOT_FOUND

    def __init__(self, kind: EntityKind, entity_id: Any):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(
            f"{kind.value.capitalize()} {entity_id} not found",
            details={"entity": kind.value, "id": entity_id},
        )


class EmptyFormError(FormBuilderError):
    """Publish attempted on a form with no active sections."""

    code = FailureCode.EMPTY_FORM


class RemoteEndpointError(FormBuilderError):
    """Remote options source was unreachable or returned a malformed payload."""

    code = FailureCode.REMOTE_ENDPOINT
    retryable = True


class InvalidStateTransitionError(FormBuilderError):
    """Raised when a lifecycle move is not allowed (e.g. out of archived).

    Attributes:
        current_state: The state before the attempted transition
        target_state: The state that was attempted
    """

    code = FailureCode.INVALID_TRANSITION

    def __init__(self, current_state: Any, target_state: Any, message: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            message,
            details={
                "from": getattr(current_state, "value", current_state),
                "to": getattr(target_state, "value", target_state),
            },
        )


@dataclass(frozen=True)
class FieldError:
    """Per-question validation error details.

    Attributes:
        question_id: Id of the failing question
        tkey: Stable machine key of the failing question
        rule: Rule kind that failed ("required", "range", ..., or "type")
        message: The single message surfaced for this question

    Examples:
        >>> err = FieldError(question_id=7, tkey="age", rule="range",
        ...                  message="Value must be between 1 and 10")
        >>> err.tkey
        'age'
    """
    question_id: Any
    tkey: str
    rule: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "questionId": self.question_id,
            "tkey": self.tkey,
            "rule": self.rule,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        return cls(
            question_id=data["questionId"],
            tkey=data["tkey"],
            rule=data["rule"],
            message=data["message"],
        )


__all__ = [
    "FormBuilderError",
    "InvalidConfiguration",
    "ConflictError",
    "ValidationFailed",
    "NotFound",
    "EmptyFormError",
    "RemoteEndpointError",
    "InvalidStateTransitionError",
    "FieldError",
]
