"""Structural invariants for questions, enforced at construction and mutation.

create_question() and instantiate_from_template() return new immutable
Question snapshots and have no side effects; persisting them is the
runtime's job. check_question_config() is shared with updates so an edit can
never produce a question that creation would have rejected.
"""

from typing import Any, Dict, Iterable, Mapping, Optional

from formbuilder.errors import InvalidConfiguration
from formbuilder.models import Question, QuestionTemplate, Section, utcnow
from formbuilder.types import CHOICE_ANSWER_TYPES, AnswerType, EntityStatus

# camelCase keys accepted from JSON callers, mapped to Question fields
_CAMEL_TO_SNAKE: Dict[str, str] = {
    "answerType": "answer_type",
    "helperText": "helper_text",
    "defaultValue": "default_value",
    "optionsApi": "options_api",
    "questionTemplateId": "question_template_id",
    "storageMetadata": "storage",
}

QUESTION_SPEC_FIELDS = frozenset({
    "tkey", "label", "answer_type", "helper_text", "required", "validation",
    "visibility", "default_value", "options", "options_api", "storage", "order",
    "question_template_id",
})


def normalize_spec(spec: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Convert a question spec to snake_case field names and reject unknown keys."""
    normalized: Dict[str, Any] = {}
    for key, value in (spec or {}).items():
        name = _CAMEL_TO_SNAKE.get(key, key)
        if name not in QUESTION_SPEC_FIELDS:
            raise InvalidConfiguration(f"Unknown question field {key!r}")
        normalized[name] = value
    return normalized


def check_question_config(question: Question, siblings: Iterable[Question]) -> None:
    """Enforce the structural invariants of a question.

    Args:
        question: Candidate snapshot
        siblings: Other questions of the same form (any status)

    Raises:
        InvalidConfiguration: On a tkey collision with another non-archived
            question, a choice answer type without an options source, a
            checkbox that is both required and carries a required rule, or a
            visibility rule that refers to the question itself
    """
    for other in siblings:
        if other.id != question.id and not other.is_archived and other.tkey == question.tkey:
            raise InvalidConfiguration(
                f"tkey {question.tkey!r} is already used by question {other.id} in form {question.form_id}",
                details={"tkey": question.tkey, "conflictsWith": other.id},
            )

    if question.answer_type in CHOICE_ANSWER_TYPES and not question.has_options_source:
        raise InvalidConfiguration(
            f"{question.answer_type.value} question {question.tkey!r} needs static options or an options endpoint",
            details={"tkey": question.tkey},
        )

    if (
        question.answer_type == AnswerType.CHECKBOX
        and question.required
        and question.required_rule is not None
    ):
        raise InvalidConfiguration(
            f"checkbox question {question.tkey!r} is marked required and also carries a "
            f"required rule; configure one or the other",
            details={"tkey": question.tkey},
        )

    if question.tkey in question.depends_on:
        raise InvalidConfiguration(
            f"question {question.tkey!r} has a visibility rule that depends on itself",
            details={"tkey": question.tkey},
        )


def check_can_activate(question: Question) -> None:
    """Raise unless the question may leave draft status."""
    if question.answer_type in CHOICE_ANSWER_TYPES and not question.has_options_source:
        raise InvalidConfiguration(
            f"{question.answer_type.value} question {question.tkey!r} cannot leave draft "
            f"without an options source",
            details={"tkey": question.tkey},
        )


def create_question(
    section: Section,
    spec: Mapping[str, Any],
    siblings: Iterable[Question] = (),
    *,
    question_id: Any = None,
    etag: str = "",
    actor_id: Optional[str] = None,
) -> Question:
    """Build a new draft question under section.

    Args:
        section: Owning section; must not be archived
        spec: Question fields (snake_case or camelCase); tkey and label are
            required, answer_type defaults to text, order defaults to 1
        siblings: Existing questions of the same form, for tkey uniqueness
        question_id: Id assigned by the repository
        etag: Initial etag
        actor_id: Recorded as createdBy/updatedBy

    Returns:
        A new Question snapshot in draft status at version 1

    Raises:
        InvalidConfiguration: If the spec violates any structural invariant
    """
    if section.is_archived:
        raise InvalidConfiguration(f"Section {section.id} is archived; questions cannot be added to it")

    fields = normalize_spec(spec)
    for name in ("tkey", "label"):
        if not fields.get(name):
            raise InvalidConfiguration(f"Question {name} is required")
    fields.setdefault("answer_type", AnswerType.TEXT)

    now = utcnow()
    question = Question(
        id=question_id,
        form_id=section.form_id,
        section_id=section.id,
        status=EntityStatus.DRAFT,
        etag=etag,
        version=1,
        created_at=now,
        updated_at=now,
        created_by=actor_id,
        updated_by=actor_id,
        **fields,
    )
    check_question_config(question, siblings)
    return question


def instantiate_from_template(
    template: QuestionTemplate,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    section: Optional[Section] = None,
    question_id: Any = None,
    etag: str = "",
    actor_id: Optional[str] = None,
) -> Question:
    """Copy a template into a new draft question, with overrides winning.

    Fields are copied by value: later template edits never reach the
    question. question_template_id is always the template's id, whatever
    overrides say, so usage tracking stays truthful. The template itself is
    never modified.

    Args:
        template: Source template; must not be archived
        overrides: Question fields that replace the template's values
        section: Owning section, if already known
        question_id: Id assigned by the repository
        etag: Initial etag
        actor_id: Recorded as createdBy/updatedBy

    Raises:
        InvalidConfiguration: If the template is archived or the merged
            fields are invalid
    """
    if template.is_archived:
        raise InvalidConfiguration(f"Template {template.id} is archived and cannot be instantiated")

    fields: Dict[str, Any] = {
        "tkey": template.tkey,
        "label": template.label,
        "helper_text": template.helper_text,
        "answer_type": template.answer_type,
        "validation": template.validation,
        "default_value": template.default_value,
        "options": template.options,
        "options_api": template.options_api,
        "storage": template.storage_metadata,
        "required": False,
    }
    fields.update(normalize_spec(overrides))
    fields["question_template_id"] = template.id

    now = utcnow()
    return Question(
        id=question_id,
        form_id=section.form_id if section is not None else None,
        section_id=section.id if section is not None else None,
        status=EntityStatus.DRAFT,
        etag=etag,
        version=1,
        created_at=now,
        updated_at=now,
        created_by=actor_id,
        updated_by=actor_id,
        **fields,
    )


__all__ = [
    "QUESTION_SPEC_FIELDS",
    "normalize_spec",
    "check_question_config",
    "check_can_activate",
    "create_question",
    "instantiate_from_template",
]
