"""Template library: the question template catalogue and its usage.

Templates are region-scoped blueprints. Questions are copied from them by
value, so editing a template never changes a question that already exists;
usage() reports which live questions were instantiated from a template, by
counting real question_template_id references, for impact analysis before an
edit or archive.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

from formbuilder.concurrency import EtagFactory, bump, changed_fields, check_etag
from formbuilder.errors import InvalidConfiguration, NotFound
from formbuilder.models import QuestionTemplate, utcnow
from formbuilder.repository import Repository
from formbuilder.state_machine import TEMPLATE_LIFECYCLE
from formbuilder.types import Actor, AnswerType, EntityKind, EntityStatus

logger = logging.getLogger(__name__)

_CAMEL_TO_SNAKE: Dict[str, str] = {
    "answerType": "answer_type",
    "helperText": "helper_text",
    "defaultValue": "default_value",
    "optionsApi": "options_api",
    "storageMetadata": "storage_metadata",
    "availableRegions": "available_regions",
    "isGlobal": "is_global",
}


def _template_fields(spec: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key, value in (spec or {}).items():
        name = _CAMEL_TO_SNAKE.get(key, key)
        if name not in QuestionTemplate.EDITABLE_FIELDS:
            raise InvalidConfiguration(f"Unknown template field {key!r}")
        fields[name] = value
    return fields


@dataclass(frozen=True)
class TemplateFilter:
    """Predicates for listing templates; all set predicates must hold.

    Attributes:
        region_id: Keep templates available in this region, or global ones
        category: Case-insensitive substring of the template category
        answer_type: Exact answer type
        is_global: Exact global flag
        text: Case-insensitive substring of label, tkey or helper text
        tags: Tags the template must all carry (case-insensitive)
        include_archived: Whether archived templates are listed
    """
    region_id: Optional[int] = None
    category: Optional[str] = None
    answer_type: Optional[AnswerType] = None
    is_global: Optional[bool] = None
    text: Optional[str] = None
    tags: Tuple[str, ...] = ()
    include_archived: bool = False

    def __post_init__(self):
        tags = (self.tags,) if isinstance(self.tags, str) else tuple(self.tags or ())
        object.__setattr__(self, "tags", tags)

    def matches(self, template: QuestionTemplate) -> bool:
        if template.is_archived and not self.include_archived:
            return False
        if self.region_id is not None:
            if self.region_id not in template.available_regions and not template.is_global:
                return False
        if self.category:
            if not template.category or self.category.lower() not in template.category.lower():
                return False
        if self.answer_type is not None and template.answer_type != AnswerType(self.answer_type):
            return False
        if self.is_global is not None and template.is_global != self.is_global:
            return False
        if self.text:
            needle = self.text.lower()
            haystacks = (template.label, template.tkey, template.helper_text or "")
            if not any(needle in h.lower() for h in haystacks):
                return False
        if self.tags:
            carried = {tag.lower() for tag in template.tags}
            if not all(tag.lower() in carried for tag in self.tags):
                return False
        return True


@dataclass(frozen=True)
class TemplateUsage:
    """One question instantiated from a template."""
    form_id: Any
    form_name: str
    section_id: Any
    section_name: str
    question_id: Any
    is_active: bool

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "formId": self.form_id,
            "formName": self.form_name,
            "sectionId": self.section_id,
            "sectionName": self.section_name,
            "questionId": self.question_id,
            "isActive": self.is_active,
        }


class TemplateLibrary:
    """Manages the template catalogue through the injected repository.

    Attributes:
        repository: Persistence collaborator
        etags: Etag factory shared with the owning FormBuilder
    """

    def __init__(self, repository: Repository, etags: Optional[EtagFactory] = None):
        self.repository = repository
        self.etags = etags or EtagFactory()

    def get_template(self, template_id: Any) -> QuestionTemplate:
        return self.repository.get_template(template_id)

    def list_templates(self, template_filter: Optional[TemplateFilter] = None, **predicates: Any) -> List[QuestionTemplate]:
        """List templates matching filter (or keyword predicates), ordered by label.

        Examples:
            >>> from formbuilder.repository import InMemoryRepository
            >>> TemplateLibrary(InMemoryRepository()).list_templates(region_id=1)
            []
        """
        if template_filter is None:
            template_filter = TemplateFilter(**predicates)
        found = [t for t in self.repository.list_templates() if template_filter.matches(t)]
        return sorted(found, key=lambda t: (t.label.lower(), str(t.id)))

    def usage(self, template_id: Any) -> List[TemplateUsage]:
        """Every question, across every form, instantiated from this template.

        Raises:
            NotFound: If the template does not exist
        """
        self.repository.get_template(template_id)
        result: List[TemplateUsage] = []
        for question in self.repository.list_questions_by_template(template_id):
            try:
                form = self.repository.get_form(question.form_id)
                section = self.repository.get_section(question.section_id)
            except NotFound:
                logger.warning(
                    "question %s references missing form/section form_id=%s section_id=%s",
                    question.id,
                    question.form_id,
                    question.section_id,
                )
                continue
            result.append(
                TemplateUsage(
                    form_id=form.id,
                    form_name=form.name,
                    section_id=section.id,
                    section_name=section.name,
                    question_id=question.id,
                    is_active=not question.is_archived and section.is_live,
                )
            )
        return result

    def _check_unique_tkey(self, template: QuestionTemplate) -> None:
        for other in self.repository.list_templates():
            if other.id != template.id and not other.is_archived and other.tkey == template.tkey:
                raise InvalidConfiguration(
                    f"Template tkey {template.tkey!r} is already used by template {other.id}",
                    details={"tkey": template.tkey, "conflictsWith": other.id},
                )

    def create_template(self, spec: Mapping[str, Any], actor: Actor) -> QuestionTemplate:
        """Add a template to the catalogue in active status.

        Raises:
            InvalidConfiguration: On missing tkey/label, unknown fields or a
                tkey already used by another non-archived template
        """
        fields = _template_fields(spec)
        for name in ("tkey", "label"):
            if not fields.get(name):
                raise InvalidConfiguration(f"Template {name} is required")
        fields.setdefault("answer_type", AnswerType.TEXT)

        template_id = self.repository.next_id(EntityKind.TEMPLATE)
        now = utcnow()
        template = QuestionTemplate(
            id=template_id,
            status=EntityStatus.ACTIVE,
            etag=self.etags.next_etag(EntityKind.TEMPLATE, template_id, 1),
            version=1,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._check_unique_tkey(template)
        self.repository.create_template(template)
        logger.info("template created id=%s tkey=%s by=%s", template.id, template.tkey, actor.id)
        return template

    def update_template(
        self,
        template_id: Any,
        changes: Mapping[str, Any],
        etag: str,
        actor: Actor,
    ) -> QuestionTemplate:
        """Versioned template edit; existing questions are left untouched.

        Raises:
            NotFound: If the template does not exist
            ConflictError: If etag is stale
            InvalidStateTransitionError: If the template is archived
            InvalidConfiguration: On unknown fields or invalid values
        """
        current = self.repository.get_template(template_id)
        check_etag(EntityKind.TEMPLATE, current, etag)
        TEMPLATE_LIFECYCLE.ensure_mutable(current.status)

        updated = bump(current, EntityKind.TEMPLATE, self.etags, actor.id, **_template_fields(changes))
        self._check_unique_tkey(updated)
        self.repository.update_template(updated, expected_etag=current.etag)
        in_use = len(self.repository.list_questions_by_template(template_id))
        logger.info(
            "template updated id=%s version=%d changes=%s questions_unaffected=%d",
            updated.id,
            updated.version,
            sorted(changed_fields(current, updated)),
            in_use,
        )
        return updated

    def archive_template(self, template_id: Any, etag: str, actor: Actor) -> QuestionTemplate:
        """Archive a template; it can no longer be listed by default or instantiated."""
        current = self.repository.get_template(template_id)
        check_etag(EntityKind.TEMPLATE, current, etag)
        TEMPLATE_LIFECYCLE.ensure(current.status, EntityStatus.ARCHIVED)

        archived = bump(current, EntityKind.TEMPLATE, self.etags, actor.id, status=EntityStatus.ARCHIVED)
        self.repository.update_template(archived, expected_etag=current.etag)
        in_use = sum(1 for u in self.usage(template_id) if u.is_active)
        if in_use:
            logger.warning(
                "template archived id=%s while %d active question(s) still reference it",
                template_id,
                in_use,
            )
        else:
            logger.info("template archived id=%s by=%s", template_id, actor.id)
        return archived


__all__ = [
    "TemplateFilter",
    "TemplateUsage",
    "TemplateLibrary",
]
