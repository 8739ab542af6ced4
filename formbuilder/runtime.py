"""FormBuilder orchestrator for the form definition engine.

This module provides the FormBuilder class that coordinates the schema model,
lifecycle tables, optimistic concurrency, history log, template library and
validation engine behind one API.

Every mutation follows the same path: fetch the current snapshot through the
repository, check the caller's etag, check the lifecycle allows the change,
build the next snapshot (version + 1, fresh etag), write it with
compare-and-swap, append one history entry to the owning form, then notify
history listeners. Reads and submission validation never write.

Usage:
    >>> from formbuilder import FormBuilder
    >>> builder = FormBuilder()
    >>> form = builder.create_form({"name": "Intake", "formType": "intake", "regionId": 1})
    >>> form.status.value
    'draft'
    >>> form.version
    1
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging
import uuid

from formbuilder import payloads
from formbuilder.concurrency import EtagFactory, bump, changed_fields, check_etag
from formbuilder.config import Settings, get_settings
from formbuilder.errors import EmptyFormError, FormBuilderError, InvalidConfiguration, InvalidStateTransitionError
from formbuilder.events import FormHistoryEntry, FormVersion, HistoryEmitter
from formbuilder.models import Form, Question, QuestionTemplate, Section, order_key, slugify, sort_by_order, utcnow
from formbuilder.remote import EndpointTestResult, RemoteOptionsClient
from formbuilder.repository import InMemoryRepository, Repository
from formbuilder.schema import check_can_activate, check_question_config, create_question, instantiate_from_template, normalize_spec
from formbuilder.state_machine import FORM_LIFECYCLE, FORM_STATUS_TO_ACTION, QUESTION_LIFECYCLE, SECTION_LIFECYCLE
from formbuilder.templates import TemplateFilter, TemplateLibrary, TemplateUsage
from formbuilder.types import Actor, ActorKind, AnswerType, EntityKind, EntityStatus, FormStatus, HistoryAction
from formbuilder.validation import CustomPredicate, FormValidationResult, ValidationEngine
from formbuilder.visibility import QuestionState, VisibilityEvaluator

logger = logging.getLogger(__name__)

ActorLike = Union[Actor, Dict[str, Any], None]

_FORM_KEYS: Dict[str, str] = {"formType": "form_type", "regionId": "region_id"}
_SECTION_KEYS: Dict[str, str] = {"isActive": "is_active"}

# Question fields that make up an exported question
_EXPORTED_QUESTION_KEYS = (
    "tkey", "label", "helperText", "answerType", "required", "validation", "visibility",
    "defaultValue", "options", "optionsApi", "storage", "order", "questionTemplateId",
)


def _fields(spec: Optional[Mapping[str, Any]], keys: Mapping[str, str], allowed: Any, what: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in (spec or {}).items():
        name = keys.get(key, key)
        if name not in allowed:
            raise InvalidConfiguration(f"Unknown {what} field {key!r}")
        result[name] = value
    return result


def _next_order(items: Sequence[Any]) -> int:
    live = [i.order for i in items if not i.is_archived]
    return max(live) + 1 if live else 1


@dataclass
class ImportResult:
    """Outcome of importing an exported form tree.

    Attributes:
        success: Whether the form was created
        form_id: Id of the new form (None on failure)
        errors: Problems that prevented the import
        warnings: Problems that were worked around
    """
    success: bool
    form_id: Optional[Any] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "success": self.success,
            "formId": self.form_id,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class QuestionCheckResult:
    """Outcome of a dry-run question configuration check."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"isValid": self.is_valid, "errors": list(self.errors)}


class FormBuilder:
    """Orchestrator for form definitions, their history and submissions.

    The builder keeps no entity collections of its own: every call reads and
    writes through the injected repository, so two builders over the same
    repository see the same forms.

    Attributes:
        repository: Persistence collaborator
        validation_engine: Engine used by validate_submission
        evaluator: Visibility evaluator used by evaluate_visibility
        remote_client: Client for remote options endpoints
        emitter: Receives every appended history entry
        templates: Template library sharing this builder's repository
        settings: Engine settings

    Examples:
        >>> builder = FormBuilder()
        >>> form = builder.create_form({"name": "Vendor onboarding", "formType": "vendor", "regionId": 3})
        >>> form.slug
        'vendor-onboarding'
        >>> [e.action.value for e in builder.get_history(form.id)]
        ['created']
    """

    def __init__(
        self,
        repository: Optional[Repository] = None,
        validation_engine: Optional[ValidationEngine] = None,
        evaluator: Optional[VisibilityEvaluator] = None,
        remote_client: Optional[RemoteOptionsClient] = None,
        emitter: Optional[HistoryEmitter] = None,
        custom_rules: Optional[Mapping[str, CustomPredicate]] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the FormBuilder.

        Args:
            repository: Persistence collaborator; an InMemoryRepository if omitted
            validation_engine: Engine for submissions; built from settings if omitted
            evaluator: Visibility evaluator shared with the validation engine
            remote_client: Options endpoint client; created lazily if omitted
            emitter: History emitter; a fresh one if omitted
            custom_rules: Custom predicates registered on the validation engine
            settings: Overrides get_settings()
        """
        self.settings = settings or get_settings()
        self.repository = repository if repository is not None else InMemoryRepository()
        self.evaluator = evaluator or VisibilityEvaluator()
        self.validation_engine = validation_engine or ValidationEngine(
            strict_answer_types=self.settings.STRICT_ANSWER_TYPES,
            evaluator=self.evaluator,
        )
        for name, predicate in (custom_rules or {}).items():
            self.validation_engine.register(name, predicate)
        self._remote_client = remote_client
        self.emitter = emitter or HistoryEmitter()
        self.etags = EtagFactory()
        self.templates = TemplateLibrary(self.repository, self.etags)

    @property
    def remote_client(self) -> RemoteOptionsClient:
        if self._remote_client is None:
            self._remote_client = RemoteOptionsClient(
                timeout=self.settings.REMOTE_TIMEOUT_SECONDS,
                max_workers=self.settings.REMOTE_MAX_WORKERS,
            )
        return self._remote_client

    def close(self) -> None:
        """Release the remote options client, if one was ever created or injected."""
        if self._remote_client is not None:
            self._remote_client.close()

    # Shared plumbing

    def _actor(self, actor: ActorLike) -> Actor:
        if actor is None:
            return Actor(kind=ActorKind.SYSTEM, id=self.settings.DEFAULT_ACTOR_ID)
        if isinstance(actor, dict):
            return Actor.from_dict(actor)
        return actor

    def _record(
        self,
        form_id: Any,
        action: HistoryAction,
        kind: EntityKind,
        entity: Any,
        actor: Actor,
        changes: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> FormHistoryEntry:
        """Append a history entry for entity; listeners are notified separately."""
        entry = FormHistoryEntry(
            entry_id=f"hist_{uuid.uuid4().hex[:16]}",
            form_id=form_id,
            version=entity.version,
            action=action,
            entity=kind,
            entity_id=entity.id,
            actor=actor,
            timestamp=entity.updated_at,
            changes=changes,
            description=description,
        )
        self.repository.append_history(entry)
        return entry

    def _notify(self, *entries: FormHistoryEntry) -> None:
        for entry in entries:
            self.emitter.emit(entry)

    def _mutable_form(self, form_id: Any) -> Form:
        form = self.repository.get_form(form_id)
        FORM_LIFECYCLE.ensure_mutable(form.status)
        return form

    # Forms

    def _insert_form(self, spec: Mapping[str, Any], actor: Actor, description: Optional[str] = None) -> Tuple[Form, FormHistoryEntry]:
        fields_ = _fields(spec, _FORM_KEYS, Form.EDITABLE_FIELDS | {"region_id"}, "form")
        for name in ("name", "form_type", "region_id"):
            if fields_.get(name) in (None, ""):
                raise InvalidConfiguration(f"Form {name} is required")
        fields_["slug"] = fields_.get("slug") or slugify(fields_["name"])

        form_id = self.repository.next_id(EntityKind.FORM)
        now = utcnow()
        form = Form(
            id=form_id,
            status=FormStatus.DRAFT,
            etag=self.etags.next_etag(EntityKind.FORM, form_id, 1),
            version=1,
            created_at=now,
            updated_at=now,
            created_by=actor.id,
            updated_by=actor.id,
            **fields_,
        )
        self.repository.create_form(form)
        entry = self._record(form.id, HistoryAction.CREATED, EntityKind.FORM, form, actor, description=description)
        return form, entry

    def create_form(self, spec: Mapping[str, Any], actor: ActorLike = None) -> Form:
        """Create a draft form.

        Args:
            spec: name, formType and regionId are required; slug (derived from
                name when absent) and description are optional
            actor: Who is creating the form

        Raises:
            InvalidConfiguration: On missing or unknown fields
        """
        actor = self._actor(actor)
        form, entry = self._insert_form(spec, actor)
        self._notify(entry)
        logger.info("form created id=%s slug=%s region=%s by=%s", form.id, form.slug, form.region_id, actor.id)
        return form

    def get_form(self, form_id: Any) -> Form:
        return self.repository.get_form(form_id)

    def list_forms(
        self,
        region_id: Optional[int] = None,
        status: Optional[FormStatus] = None,
        form_type: Optional[str] = None,
    ) -> List[Form]:
        """Forms matching every given predicate, ordered by name."""
        forms = [
            f for f in self.repository.list_forms()
            if (region_id is None or f.region_id == region_id)
            and (status is None or f.status == FormStatus(status))
            and (form_type is None or f.form_type == form_type)
        ]
        return sorted(forms, key=lambda f: (f.name.lower(), str(f.id)))

    def update_form(self, form_id: Any, changes: Mapping[str, Any], etag: str, actor: ActorLike = None) -> Form:
        """Edit a form's name, slug, description or form type.

        Raises:
            ConflictError: If etag is stale
            InvalidStateTransitionError: If the form is archived
            InvalidConfiguration: On fields that cannot be edited here
        """
        actor = self._actor(actor)
        current = self.repository.get_form(form_id)
        check_etag(EntityKind.FORM, current, etag)
        FORM_LIFECYCLE.ensure_mutable(current.status)

        updated = bump(current, EntityKind.FORM, self.etags, actor.id, **_fields(changes, _FORM_KEYS, Form.EDITABLE_FIELDS, "form"))
        self.repository.update_form(updated, expected_etag=current.etag)
        entry = self._record(form_id, HistoryAction.UPDATED, EntityKind.FORM, updated, actor, changes=changed_fields(current, updated))
        self._notify(entry)
        logger.info("form updated id=%s version=%d by=%s", form_id, updated.version, actor.id)
        return updated

    def _transition_form(self, form_id: Any, target: FormStatus, etag: str, actor: Actor, **extra: Any) -> Form:
        current = self.repository.get_form(form_id)
        check_etag(EntityKind.FORM, current, etag)
        FORM_LIFECYCLE.ensure(current.status, target)

        updated = bump(current, EntityKind.FORM, self.etags, actor.id, status=target, **extra)
        self.repository.update_form(updated, expected_etag=current.etag)
        entry = self._record(
            form_id,
            FORM_STATUS_TO_ACTION[target],
            EntityKind.FORM,
            updated,
            actor,
            changes=changed_fields(current, updated),
        )
        self._notify(entry)
        logger.info(
            "form %s id=%s version=%d by=%s",
            FORM_STATUS_TO_ACTION[target].value,
            form_id,
            updated.version,
            actor.id,
        )
        return updated

    def publish_form(self, form_id: Any, etag: str, actor: ActorLike = None) -> Form:
        """Make a draft form active.

        The form needs at least one active section, and every visibility rule
        of its live questions must name a tkey that exists in the form.

        Raises:
            EmptyFormError: If the form has no active section
            InvalidConfiguration: If a visibility rule names an unknown tkey
            ConflictError: If etag is stale
            InvalidStateTransitionError: If the form is not a draft
        """
        actor = self._actor(actor)
        form = self.repository.get_form(form_id)
        check_etag(EntityKind.FORM, form, etag)
        FORM_LIFECYCLE.ensure(form.status, FormStatus.ACTIVE)

        tree = self._live_tree(form_id)
        if not tree:
            raise EmptyFormError(
                f"Form {form_id} has no active sections and cannot be published",
                details={"formId": form_id},
            )

        questions = [q for _, section_questions in tree for q in section_questions]
        known = {q.tkey for q in questions}
        dangling = {
            q.tkey: sorted(set(q.depends_on) - known)
            for q in questions
            if set(q.depends_on) - known
        }
        if dangling:
            raise InvalidConfiguration(
                f"Form {form_id} has visibility rules that refer to unknown questions",
                details={"unknownDependencies": dangling},
            )

        return self._transition_form(
            form_id,
            FormStatus.ACTIVE,
            etag,
            actor,
            has_published_version=True,
            published_at=utcnow(),
        )

    def unpublish_form(self, form_id: Any, etag: str, actor: ActorLike = None) -> Form:
        """Return an active form to draft; hasPublishedVersion stays set."""
        return self._transition_form(form_id, FormStatus.DRAFT, etag, self._actor(actor))

    def archive_form(self, form_id: Any, etag: str, actor: ActorLike = None) -> Form:
        """Archive a form. Terminal; its sections and questions are left as they are."""
        return self._transition_form(form_id, FormStatus.ARCHIVED, etag, self._actor(actor))

    def duplicate_form(self, form_id: Any, actor: ActorLike = None, name: Optional[str] = None) -> Form:
        """Copy a form's non-archived sections and questions into a new draft form.

        Copies get new ids and start over at version 1 in draft status. The
        source form is not modified.
        """
        actor = self._actor(actor)
        source = self.repository.get_form(form_id)
        new_name = name or f"{source.name} (Copy)"
        entries: List[FormHistoryEntry] = []

        with self.repository.atomic():
            form, entry = self._insert_form(
                {
                    "name": new_name,
                    "slug": slugify(new_name),
                    "description": source.description,
                    "form_type": source.form_type,
                    "region_id": source.region_id,
                },
                actor,
                description=f"Duplicated from form {source.id}",
            )
            entries.append(entry)
            for section in self.list_sections(form_id):
                copy, entry = self._insert_section(
                    form,
                    {
                        "name": section.name,
                        "slug": section.slug,
                        "description": section.description,
                        "order": section.order,
                        "is_active": section.is_active,
                    },
                    actor,
                )
                entries.append(entry)
                for question in self.list_questions(form_id, section_id=section.id):
                    spec = {k: v for k, v in question.to_dict().items() if k in _EXPORTED_QUESTION_KEYS}
                    _, entry = self._insert_question(copy, spec, actor)
                    entries.append(entry)

        self._notify(*entries)
        logger.info("form duplicated source=%s copy=%s entities=%d by=%s", form_id, form.id, len(entries), actor.id)
        return form

    def export_form(self, form_id: Any) -> Dict[str, Any]:
        """JSON-serializable tree of a form's non-archived sections and questions.

        Ids, etags and bookkeeping are left out; import_form() accepts the result.
        """
        form = self.repository.get_form(form_id)
        sections = []
        for section in self.list_sections(form_id):
            sections.append({
                "name": section.name,
                "slug": section.slug,
                "description": section.description,
                "order": section.order,
                "isActive": section.is_active,
                "questions": [
                    {k: v for k, v in q.to_dict().items() if k in _EXPORTED_QUESTION_KEYS}
                    for q in self.list_questions(form_id, section_id=section.id)
                ],
            })
        return {
            "form": {
                "name": form.name,
                "slug": form.slug,
                "description": form.description,
                "formType": form.form_type,
                "regionId": form.region_id,
            },
            "sections": sections,
        }

    def import_form(self, data: Mapping[str, Any], actor: ActorLike = None, region_id: Optional[int] = None) -> ImportResult:
        """Create a new draft form from an exported tree.

        Never raises on a bad payload: payload and configuration problems are
        reported in the result and nothing is created. Template references
        that no longer resolve are dropped with a warning.

        Args:
            data: Output of export_form(), possibly from another deployment
            actor: Who is importing
            region_id: Overrides the exported region
        """
        actor = self._actor(actor)
        problems = payloads.payload_errors(payloads.EXPORT_SCHEMA, data)
        if problems:
            logger.warning("form import rejected errors=%d", len(problems))
            return ImportResult(success=False, errors=problems)

        warnings: List[str] = []
        entries: List[FormHistoryEntry] = []
        form_spec = dict(data["form"])
        if region_id is not None:
            form_spec["regionId"] = region_id

        try:
            with self.repository.atomic():
                form, entry = self._insert_form(form_spec, actor, description="Imported")
                entries.append(entry)
                for position, section_data in enumerate(data.get("sections", []), start=1):
                    section_spec = {k: v for k, v in section_data.items() if k != "questions"}
                    section_spec.setdefault("order", position)
                    section, entry = self._insert_section(
                        form, _fields(section_spec, _SECTION_KEYS, Section.EDITABLE_FIELDS, "section"), actor
                    )
                    entries.append(entry)
                    for question_data in section_data.get("questions", []):
                        spec = dict(question_data)
                        template_id = spec.get("questionTemplateId")
                        if template_id is not None and not self._template_exists(template_id):
                            warnings.append(
                                f"Question {spec['tkey']!r}: template {template_id} not found, reference dropped"
                            )
                            spec.pop("questionTemplateId")
                        _, entry = self._insert_question(section, spec, actor)
                        entries.append(entry)
        except FormBuilderError as exc:
            logger.warning("form import failed: %s", exc.message)
            return ImportResult(success=False, errors=[exc.message], warnings=warnings)

        self._notify(*entries)
        logger.info("form imported id=%s entities=%d warnings=%d by=%s", form.id, len(entries), len(warnings), actor.id)
        return ImportResult(success=True, form_id=form.id, warnings=warnings)

    def _template_exists(self, template_id: Any) -> bool:
        return any(t.id == template_id for t in self.repository.list_templates())

    def get_history(self, form_id: Any) -> List[FormHistoryEntry]:
        """History of a form, oldest first."""
        self.repository.get_form(form_id)
        return self.repository.get_history(form_id)

    def list_form_versions(self, form_id: Any) -> List[FormVersion]:
        """Versions of the form itself, oldest first, read from its history."""
        return [
            FormVersion.from_entry(entry)
            for entry in self.get_history(form_id)
            if entry.entity == EntityKind.FORM and entry.entity_id == form_id
        ]

    # Sections

    def _insert_section(self, form: Form, fields_: Mapping[str, Any], actor: Actor) -> Tuple[Section, FormHistoryEntry]:
        fields_ = dict(fields_)
        if not fields_.get("name"):
            raise InvalidConfiguration("Section name is required")
        if fields_.pop("status", None) not in (None, EntityStatus.DRAFT, EntityStatus.DRAFT.value):
            raise InvalidConfiguration("Sections are created in draft status")
        fields_["slug"] = fields_.get("slug") or slugify(fields_["name"])
        if fields_.get("order") is None:
            fields_["order"] = _next_order(self.repository.list_sections(form.id))

        section_id = self.repository.next_id(EntityKind.SECTION)
        now = utcnow()
        section = Section(
            id=section_id,
            form_id=form.id,
            status=EntityStatus.DRAFT,
            etag=self.etags.next_etag(EntityKind.SECTION, section_id, 1),
            version=1,
            created_at=now,
            updated_at=now,
            created_by=actor.id,
            updated_by=actor.id,
            **fields_,
        )
        self.repository.create_section(section)
        entry = self._record(form.id, HistoryAction.CREATED, EntityKind.SECTION, section, actor)
        return section, entry

    def create_section(self, form_id: Any, spec: Mapping[str, Any], actor: ActorLike = None) -> Section:
        """Add a draft section to a form; order defaults to the next position."""
        actor = self._actor(actor)
        form = self._mutable_form(form_id)
        section, entry = self._insert_section(
            form, _fields(spec, _SECTION_KEYS, Section.EDITABLE_FIELDS, "section"), actor
        )
        self._notify(entry)
        logger.info("section created id=%s form_id=%s order=%d by=%s", section.id, form_id, section.order, actor.id)
        return section

    def get_section(self, section_id: Any) -> Section:
        return self.repository.get_section(section_id)

    def list_sections(self, form_id: Any, include_archived: bool = False) -> List[Section]:
        """Sections of a form ordered by (order, id)."""
        self.repository.get_form(form_id)
        sections = self.repository.list_sections(form_id)
        if not include_archived:
            sections = [s for s in sections if not s.is_archived]
        return sort_by_order(sections)

    def update_section(self, section_id: Any, changes: Mapping[str, Any], etag: str, actor: ActorLike = None) -> Section:
        """Edit a section. Archiving goes through archive_section().

        Raises:
            ConflictError: If etag is stale
            InvalidStateTransitionError: If the section or its form is archived
            InvalidConfiguration: On fields that cannot be edited here
        """
        actor = self._actor(actor)
        current = self.repository.get_section(section_id)
        check_etag(EntityKind.SECTION, current, etag)
        SECTION_LIFECYCLE.ensure_mutable(current.status)
        self._mutable_form(current.form_id)

        fields_ = _fields(changes, _SECTION_KEYS, Section.EDITABLE_FIELDS, "section")
        if "status" in fields_:
            target = EntityStatus(fields_["status"])
            if target == EntityStatus.ARCHIVED:
                raise InvalidConfiguration("Use archive_section() to archive a section")
            if target != current.status:
                SECTION_LIFECYCLE.ensure(current.status, target)
            fields_["status"] = target

        updated = bump(current, EntityKind.SECTION, self.etags, actor.id, **fields_)
        self.repository.update_section(updated, expected_etag=current.etag)
        entry = self._record(
            current.form_id, HistoryAction.UPDATED, EntityKind.SECTION, updated, actor,
            changes=changed_fields(current, updated),
        )
        self._notify(entry)
        logger.info("section updated id=%s version=%d by=%s", section_id, updated.version, actor.id)
        return updated

    def archive_section(self, section_id: Any, etag: str, actor: ActorLike = None) -> Section:
        """Archive a section together with all of its questions.

        The section and every non-archived question under it are archived in
        one atomic block: if any write fails, none of them is kept. One
        history entry is appended per archived entity.

        Raises:
            ConflictError: If etag is stale, or a question changed mid-cascade
            InvalidStateTransitionError: If the section is already archived or
                its form is archived
        """
        actor = self._actor(actor)
        current = self.repository.get_section(section_id)
        check_etag(EntityKind.SECTION, current, etag)
        SECTION_LIFECYCLE.ensure(current.status, EntityStatus.ARCHIVED)
        self._mutable_form(current.form_id)
        entries: List[FormHistoryEntry] = []

        with self.repository.atomic():
            archived = bump(current, EntityKind.SECTION, self.etags, actor.id, status=EntityStatus.ARCHIVED)
            self.repository.update_section(archived, expected_etag=current.etag)
            entries.append(
                self._record(current.form_id, HistoryAction.ARCHIVED, EntityKind.SECTION, archived, actor)
            )
            for question in self.repository.list_questions(current.form_id, section_id=section_id):
                if question.is_archived:
                    continue
                archived_question = bump(
                    question, EntityKind.QUESTION, self.etags, actor.id, status=EntityStatus.ARCHIVED
                )
                self.repository.update_question(archived_question, expected_etag=question.etag)
                entries.append(
                    self._record(
                        current.form_id,
                        HistoryAction.ARCHIVED,
                        EntityKind.QUESTION,
                        archived_question,
                        actor,
                        description=f"Archived with section {section_id}",
                    )
                )

        self._notify(*entries)
        logger.info(
            "section archived id=%s questions=%d by=%s",
            section_id,
            len(entries) - 1,
            actor.id,
        )
        return archived

    def _reorder(
        self,
        kind: EntityKind,
        form_id: Any,
        current: Sequence[Any],
        etags: Mapping[Any, str],
        update: Any,
        actor: Actor,
    ) -> List[Any]:
        by_id = {item.id: item for item in current}
        if set(etags) != set(by_id):
            raise InvalidConfiguration(
                f"Reorder must list every non-archived {kind.value} exactly once",
                details={"expected": sorted(map(str, by_id)), "given": sorted(map(str, etags))},
            )
        for item_id, etag in etags.items():
            check_etag(kind, by_id[item_id], etag)

        result: List[Any] = []
        entries: List[FormHistoryEntry] = []
        with self.repository.atomic():
            for position, item_id in enumerate(etags, start=1):
                item = by_id[item_id]
                if item.order == position:
                    result.append(item)
                    continue
                moved = bump(item, kind, self.etags, actor.id, order=position)
                update(moved, expected_etag=item.etag)
                entries.append(
                    self._record(form_id, HistoryAction.UPDATED, kind, moved, actor, changes={"order": position})
                )
                result.append(moved)

        self._notify(*entries)
        logger.info("%ss reordered form_id=%s moved=%d by=%s", kind.value, form_id, len(entries), actor.id)
        return result

    def reorder_sections(self, form_id: Any, etags: Mapping[Any, str], actor: ActorLike = None) -> List[Section]:
        """Renumber a form's sections 1..n in the iteration order of etags.

        Args:
            form_id: Form whose sections are reordered
            etags: Every non-archived section id mapped to its observed etag,
                in the desired order
            actor: Who is reordering

        Raises:
            ConflictError: If any etag is stale; nothing is written
        """
        self._mutable_form(form_id)
        return self._reorder(
            EntityKind.SECTION,
            form_id,
            self.list_sections(form_id),
            etags,
            self.repository.update_section,
            self._actor(actor),
        )

    # Questions

    def _insert_question(self, section: Section, spec: Mapping[str, Any], actor: Actor) -> Tuple[Question, FormHistoryEntry]:
        spec = dict(spec)
        siblings = self.repository.list_questions(section.form_id)
        if spec.get("order") is None:
            spec["order"] = _next_order([q for q in siblings if q.section_id == section.id])
        question_id = self.repository.next_id(EntityKind.QUESTION)
        question = create_question(
            section,
            spec,
            siblings,
            question_id=question_id,
            etag=self.etags.next_etag(EntityKind.QUESTION, question_id, 1),
            actor_id=actor.id,
        )
        self.repository.create_question(question)
        entry = self._record(section.form_id, HistoryAction.CREATED, EntityKind.QUESTION, question, actor)
        return question, entry

    def create_question(self, section_id: Any, spec: Mapping[str, Any], actor: ActorLike = None) -> Question:
        """Add a draft question to a section.

        Args:
            section_id: Owning section
            spec: Question fields; tkey and label are required
            actor: Who is creating the question

        Raises:
            InvalidConfiguration: If the question violates a structural invariant
                or the section is archived
        """
        actor = self._actor(actor)
        section = self.repository.get_section(section_id)
        self._mutable_form(section.form_id)
        question, entry = self._insert_question(section, spec, actor)
        self._notify(entry)
        logger.info("question created id=%s tkey=%s section_id=%s by=%s", question.id, question.tkey, section_id, actor.id)
        return question

    def create_question_from_template(
        self,
        section_id: Any,
        template_id: Any,
        actor: ActorLike = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> Question:
        """Instantiate a template into a section.

        The template must be available in the form's region (or global).

        Raises:
            InvalidConfiguration: If the template is archived, not available in
                the form's region, or the result violates a structural invariant
        """
        actor = self._actor(actor)
        section = self.repository.get_section(section_id)
        form = self._mutable_form(section.form_id)
        if section.is_archived:
            raise InvalidConfiguration(f"Section {section.id} is archived; questions cannot be added to it")

        template = self.templates.get_template(template_id)
        if not template.is_global and form.region_id not in template.available_regions:
            raise InvalidConfiguration(
                f"Template {template_id} is not available in region {form.region_id}",
                details={"templateId": template_id, "regionId": form.region_id},
            )

        siblings = self.repository.list_questions(section.form_id)
        merged = dict(overrides or {})
        if merged.get("order") is None:
            merged["order"] = _next_order([q for q in siblings if q.section_id == section.id])
        question_id = self.repository.next_id(EntityKind.QUESTION)
        question = instantiate_from_template(
            template,
            merged,
            section=section,
            question_id=question_id,
            etag=self.etags.next_etag(EntityKind.QUESTION, question_id, 1),
            actor_id=actor.id,
        )
        check_question_config(question, siblings)

        self.repository.create_question(question)
        entry = self._record(
            section.form_id, HistoryAction.CREATED, EntityKind.QUESTION, question, actor,
            description=f"Instantiated from template {template_id}",
        )
        self._notify(entry)
        logger.info("question created id=%s tkey=%s template_id=%s by=%s", question.id, question.tkey, template_id, actor.id)
        return question

    def get_question(self, question_id: Any) -> Question:
        return self.repository.get_question(question_id)

    def list_questions(
        self,
        form_id: Any,
        section_id: Optional[Any] = None,
        status: Optional[EntityStatus] = None,
        answer_type: Optional[AnswerType] = None,
        text: Optional[str] = None,
    ) -> List[Question]:
        """Questions of a form in section order, then question order.

        Archived questions are only listed when status asks for them. text
        matches label, tkey or helper text case-insensitively.
        """
        sections = {s.id: s for s in self.repository.list_sections(form_id)}
        questions = self.repository.list_questions(form_id, section_id=section_id)
        if status is None:
            questions = [q for q in questions if not q.is_archived]
        else:
            questions = [q for q in questions if q.status == EntityStatus(status)]
        if answer_type is not None:
            questions = [q for q in questions if q.answer_type == AnswerType(answer_type)]
        if text:
            needle = text.lower()
            questions = [
                q for q in questions
                if any(needle in h.lower() for h in (q.label, q.tkey, q.helper_text or ""))
            ]

        def key(q: Question) -> Tuple[Any, ...]:
            section = sections.get(q.section_id)
            return (order_key(section) if section else (0, 0, 0)) + order_key(q)

        return sorted(questions, key=key)

    def update_question(self, question_id: Any, changes: Mapping[str, Any], etag: str, actor: ActorLike = None) -> Question:
        """Versioned question edit.

        The result is checked against the same invariants as creation; an
        active question must keep an options source.

        Raises:
            ConflictError: If etag is stale
            InvalidStateTransitionError: If the question or its form is archived
            InvalidConfiguration: On invalid or non-editable fields
        """
        actor = self._actor(actor)
        current = self.repository.get_question(question_id)
        check_etag(EntityKind.QUESTION, current, etag)
        QUESTION_LIFECYCLE.ensure_mutable(current.status)
        self._mutable_form(current.form_id)

        fields_ = normalize_spec(changes)
        frozen = set(fields_) - Question.EDITABLE_FIELDS
        if frozen:
            raise InvalidConfiguration(f"Question fields {sorted(frozen)} cannot be edited")

        updated = bump(current, EntityKind.QUESTION, self.etags, actor.id, **fields_)
        check_question_config(updated, self.repository.list_questions(current.form_id))
        if updated.status == EntityStatus.ACTIVE:
            check_can_activate(updated)

        self.repository.update_question(updated, expected_etag=current.etag)
        entry = self._record(
            current.form_id, HistoryAction.UPDATED, EntityKind.QUESTION, updated, actor,
            changes=changed_fields(current, updated),
        )
        self._notify(entry)
        logger.info("question updated id=%s version=%d by=%s", question_id, updated.version, actor.id)
        return updated

    def bulk_update_questions(
        self,
        etags: Mapping[Any, str],
        changes: Mapping[str, Any],
        actor: ActorLike = None,
    ) -> List[Question]:
        """Apply the same edit to several questions, all or nothing.

        Every etag, lifecycle and invariant check runs before the first write;
        the writes then happen in one atomic block, with one history entry per
        question.

        Args:
            etags: Question ids mapped to their observed etags
            changes: Fields applied to every listed question
            actor: Who is editing

        Returns:
            The updated questions, in the iteration order of etags

        Raises:
            ConflictError: If any etag is stale; nothing is written
            InvalidStateTransitionError: If any question or its form is archived
            InvalidConfiguration: On invalid or non-editable fields, or if any
                updated question would break an invariant
        """
        actor = self._actor(actor)
        if not etags:
            raise InvalidConfiguration("Bulk update needs at least one question")
        fields_ = normalize_spec(changes)
        frozen = set(fields_) - Question.EDITABLE_FIELDS
        if frozen:
            raise InvalidConfiguration(f"Question fields {sorted(frozen)} cannot be edited")

        current: Dict[Any, Question] = {}
        for question_id, etag in etags.items():
            question = self.repository.get_question(question_id)
            check_etag(EntityKind.QUESTION, question, etag)
            QUESTION_LIFECYCLE.ensure_mutable(question.status)
            self._mutable_form(question.form_id)
            current[question_id] = question

        pending = {
            question_id: bump(question, EntityKind.QUESTION, self.etags, actor.id, **fields_)
            for question_id, question in current.items()
        }
        for updated in pending.values():
            siblings = [pending.get(q.id, q) for q in self.repository.list_questions(updated.form_id)]
            check_question_config(updated, siblings)
            if updated.status == EntityStatus.ACTIVE:
                check_can_activate(updated)

        entries: List[FormHistoryEntry] = []
        with self.repository.atomic():
            for question_id, updated in pending.items():
                before = current[question_id]
                self.repository.update_question(updated, expected_etag=before.etag)
                entries.append(
                    self._record(
                        before.form_id, HistoryAction.UPDATED, EntityKind.QUESTION, updated, actor,
                        changes=changed_fields(before, updated),
                    )
                )

        self._notify(*entries)
        logger.info("questions bulk updated count=%d fields=%s by=%s", len(pending), sorted(fields_), actor.id)
        return list(pending.values())

    def check_question(
        self,
        section_id: Any,
        spec: Mapping[str, Any],
        question_id: Optional[Any] = None,
    ) -> QuestionCheckResult:
        """Dry-run a question configuration without writing anything.

        Without question_id, spec is checked as a new question under
        section_id. With it, spec is checked as an edit of that question.
        Configuration and lifecycle problems are reported in the result.

        Raises:
            NotFound: If the section or question does not exist
        """
        section = self.repository.get_section(section_id)
        siblings = self.repository.list_questions(section.form_id)
        try:
            self._mutable_form(section.form_id)
            if question_id is None:
                create_question(section, spec, siblings)
            else:
                current = self.repository.get_question(question_id)
                if current.section_id != section.id:
                    raise InvalidConfiguration(f"Question {question_id} is not in section {section_id}")
                QUESTION_LIFECYCLE.ensure_mutable(current.status)
                fields_ = normalize_spec(spec)
                frozen = set(fields_) - Question.EDITABLE_FIELDS
                if frozen:
                    raise InvalidConfiguration(f"Question fields {sorted(frozen)} cannot be edited")
                candidate = replace(current, **fields_)
                check_question_config(candidate, siblings)
                if candidate.status == EntityStatus.ACTIVE:
                    check_can_activate(candidate)
        except (InvalidConfiguration, InvalidStateTransitionError) as exc:
            logger.debug("question check failed section_id=%s: %s", section_id, exc.message)
            return QuestionCheckResult(is_valid=False, errors=[exc.message])
        return QuestionCheckResult(is_valid=True)

    def _transition_question(self, question_id: Any, target: EntityStatus, etag: str, actor: Actor) -> Question:
        current = self.repository.get_question(question_id)
        check_etag(EntityKind.QUESTION, current, etag)
        QUESTION_LIFECYCLE.ensure(current.status, target)
        self._mutable_form(current.form_id)
        if target == EntityStatus.ACTIVE:
            check_can_activate(current)

        updated = bump(current, EntityKind.QUESTION, self.etags, actor.id, status=target)
        self.repository.update_question(updated, expected_etag=current.etag)
        action = HistoryAction.ARCHIVED if target == EntityStatus.ARCHIVED else HistoryAction.UPDATED
        entry = self._record(
            current.form_id, action, EntityKind.QUESTION, updated, actor,
            changes={"status": target.value},
        )
        self._notify(entry)
        logger.info("question id=%s now %s version=%d by=%s", question_id, target.value, updated.version, actor.id)
        return updated

    def activate_question(self, question_id: Any, etag: str, actor: ActorLike = None) -> Question:
        """Move a draft question to active.

        Raises:
            InvalidConfiguration: If a choice question has no options source
        """
        return self._transition_question(question_id, EntityStatus.ACTIVE, etag, self._actor(actor))

    def archive_question(self, question_id: Any, etag: str, actor: ActorLike = None) -> Question:
        return self._transition_question(question_id, EntityStatus.ARCHIVED, etag, self._actor(actor))

    def move_question(
        self,
        question_id: Any,
        section_id: Any,
        etag: str,
        actor: ActorLike = None,
        order: Optional[int] = None,
    ) -> Question:
        """Move a question to another non-archived section of the same form."""
        actor = self._actor(actor)
        current = self.repository.get_question(question_id)
        check_etag(EntityKind.QUESTION, current, etag)
        QUESTION_LIFECYCLE.ensure_mutable(current.status)
        self._mutable_form(current.form_id)

        target = self.repository.get_section(section_id)
        if target.form_id != current.form_id:
            raise InvalidConfiguration(
                f"Section {section_id} belongs to another form; questions only move within their form"
            )
        if target.is_archived:
            raise InvalidConfiguration(f"Section {section_id} is archived; questions cannot be moved into it")
        if order is None:
            order = _next_order(self.repository.list_questions(current.form_id, section_id=section_id))

        moved = bump(current, EntityKind.QUESTION, self.etags, actor.id, section_id=section_id, order=order)
        self.repository.update_question(moved, expected_etag=current.etag)
        entry = self._record(
            current.form_id, HistoryAction.UPDATED, EntityKind.QUESTION, moved, actor,
            changes={"sectionId": section_id, "order": order},
            description=f"Moved from section {current.section_id}",
        )
        self._notify(entry)
        logger.info("question moved id=%s from=%s to=%s by=%s", question_id, current.section_id, section_id, actor.id)
        return moved

    def reorder_questions(self, section_id: Any, etags: Mapping[Any, str], actor: ActorLike = None) -> List[Question]:
        """Renumber a section's questions 1..n in the iteration order of etags.

        Raises:
            ConflictError: If any etag is stale; nothing is written
        """
        section = self.repository.get_section(section_id)
        self._mutable_form(section.form_id)
        return self._reorder(
            EntityKind.QUESTION,
            section.form_id,
            self.list_questions(section.form_id, section_id=section_id),
            etags,
            self.repository.update_question,
            self._actor(actor),
        )

    def test_endpoint(self, url: str) -> EndpointTestResult:
        return self.remote_client.test_endpoint(url)

    def refresh_options_from_endpoint(
        self,
        question_id: Any,
        etag: str,
        actor: ActorLike = None,
    ) -> Tuple[Question, EndpointTestResult]:
        """Replace a question's static options with what its endpoint returns.

        A failed endpoint test leaves the question untouched; the failure is
        reported in the returned EndpointTestResult, never raised.

        Raises:
            InvalidConfiguration: If the question has no options endpoint
            ConflictError: If etag is stale
        """
        actor = self._actor(actor)
        current = self.repository.get_question(question_id)
        check_etag(EntityKind.QUESTION, current, etag)
        QUESTION_LIFECYCLE.ensure_mutable(current.status)
        self._mutable_form(current.form_id)
        if not current.options_api:
            raise InvalidConfiguration(f"Question {current.tkey!r} has no options endpoint")

        result = self.remote_client.test_endpoint(current.options_api)
        if not result.success:
            return current, result

        options = tuple(replace(o, order=o.order or i) for i, o in enumerate(result.options, start=1))
        return self.update_question(question_id, {"options": options}, etag, actor), result

    # Templates

    def create_template(self, spec: Mapping[str, Any], actor: ActorLike = None) -> QuestionTemplate:
        return self.templates.create_template(spec, self._actor(actor))

    def get_template(self, template_id: Any) -> QuestionTemplate:
        return self.templates.get_template(template_id)

    def update_template(self, template_id: Any, changes: Mapping[str, Any], etag: str, actor: ActorLike = None) -> QuestionTemplate:
        return self.templates.update_template(template_id, changes, etag, self._actor(actor))

    def archive_template(self, template_id: Any, etag: str, actor: ActorLike = None) -> QuestionTemplate:
        return self.templates.archive_template(template_id, etag, self._actor(actor))

    def list_templates(self, template_filter: Optional[TemplateFilter] = None, **predicates: Any) -> List[QuestionTemplate]:
        return self.templates.list_templates(template_filter, **predicates)

    def template_usage(self, template_id: Any) -> List[TemplateUsage]:
        return self.templates.usage(template_id)

    # Submissions

    def _live_tree(self, form_id: Any) -> List[Tuple[Section, List[Question]]]:
        return [
            (section, self.list_questions(form_id, section_id=section.id))
            for section in self.list_sections(form_id)
            if section.is_live
        ]

    def validate_submission(self, form_id: Any, answers: Mapping[str, Any]) -> FormValidationResult:
        """Validate answers (keyed by tkey) against the form's current definition."""
        form = self.repository.get_form(form_id)
        tree = [
            (section, self.repository.list_questions(form_id, section_id=section.id))
            for section in self.repository.list_sections(form_id)
        ]
        return self.validation_engine.validate_form(form, tree, answers)

    def evaluate_visibility(self, form_id: Any, answers: Optional[Mapping[str, Any]] = None) -> Dict[Any, QuestionState]:
        """Effective state of every live question of the form for answers."""
        self.repository.get_form(form_id)
        questions = [q for _, section_questions in self._live_tree(form_id) for q in section_questions]
        return self.evaluator.evaluate(questions, answers or {})


__all__ = [
    "FormBuilder",
    "ImportResult",
    "QuestionCheckResult",
]
