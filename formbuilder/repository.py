"""Persistence collaborator interface and an in-memory implementation.

The engine holds no entity collections of its own. Every operation fetches
what it needs through a Repository injected into FormBuilder and writes
through it. A real deployment backs the protocol with its datastore or
remote API; InMemoryRepository serves tests, prototyping and embedding.

Failures are raised as the engine's typed errors: NotFound for absent
entities and ConflictError when an update's expected etag no longer matches
what is stored (compare-and-swap), so concurrent writers that both passed the
engine's own check are still serialized here.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
import itertools
import logging
import threading

from typing_extensions import Protocol, runtime_checkable

from formbuilder.errors import ConflictError, NotFound
from formbuilder.events import FormHistoryEntry
from formbuilder.models import Form, Question, QuestionTemplate, Section
from formbuilder.types import EntityKind

logger = logging.getLogger(__name__)


@runtime_checkable
class Repository(Protocol):
    """Boundary contract for entity persistence.

    get_* raise NotFound; update_* raise ConflictError when the stored etag
    differs from expected_etag. atomic() groups several writes so that either
    all of them are kept or none are.
    """

    def next_id(self, kind: EntityKind) -> Any: ...

    def get_form(self, form_id: Any) -> Form: ...
    def list_forms(self) -> List[Form]: ...
    def create_form(self, form: Form) -> Form: ...
    def update_form(self, form: Form, expected_etag: str) -> Form: ...

    def get_section(self, section_id: Any) -> Section: ...
    def list_sections(self, form_id: Any) -> List[Section]: ...
    def create_section(self, section: Section) -> Section: ...
    def update_section(self, section: Section, expected_etag: str) -> Section: ...

    def get_question(self, question_id: Any) -> Question: ...
    def list_questions(self, form_id: Any, section_id: Optional[Any] = None) -> List[Question]: ...
    def list_questions_by_template(self, template_id: Any) -> List[Question]: ...
    def create_question(self, question: Question) -> Question: ...
    def update_question(self, question: Question, expected_etag: str) -> Question: ...

    def get_template(self, template_id: Any) -> QuestionTemplate: ...
    def list_templates(self) -> List[QuestionTemplate]: ...
    def create_template(self, template: QuestionTemplate) -> QuestionTemplate: ...
    def update_template(self, template: QuestionTemplate, expected_etag: str) -> QuestionTemplate: ...

    def append_history(self, entry: FormHistoryEntry) -> None: ...
    def get_history(self, form_id: Any) -> List[FormHistoryEntry]: ...

    def atomic(self) -> Any: ...


class InMemoryRepository:
    """Repository kept in process memory.

    Each instance owns its own collections; nothing is shared between
    instances. atomic() snapshots the collections and restores them if the
    block raises, which gives all-or-nothing cascades.

    Examples:
        >>> repo = InMemoryRepository()
        >>> repo.next_id(EntityKind.FORM)
        1
        >>> repo.get_history(1)
        []
    """

    def __init__(self):
        self._store: Dict[EntityKind, Dict[Any, Any]] = {kind: {} for kind in EntityKind}
        self._history: Dict[Any, List[FormHistoryEntry]] = {}
        self._ids = {kind: itertools.count(1) for kind in EntityKind}
        self._lock = threading.RLock()

    def next_id(self, kind: EntityKind) -> int:
        with self._lock:
            return next(self._ids[kind])

    # Generic helpers

    def _get(self, kind: EntityKind, entity_id: Any) -> Any:
        with self._lock:
            try:
                return self._store[kind][entity_id]
            except KeyError:
                raise NotFound(kind, entity_id) from None

    def _create(self, kind: EntityKind, entity: Any) -> Any:
        with self._lock:
            self._store[kind][entity.id] = entity
        return entity

    def _update(self, kind: EntityKind, entity: Any, expected_etag: str) -> Any:
        with self._lock:
            current = self._get(kind, entity.id)
            if current.etag != expected_etag:
                raise ConflictError(kind, entity.id, expected_etag, current.etag)
            self._store[kind][entity.id] = entity
        return entity

    def _all(self, kind: EntityKind) -> List[Any]:
        with self._lock:
            return list(self._store[kind].values())

    # Forms

    def get_form(self, form_id: Any) -> Form:
        return self._get(EntityKind.FORM, form_id)

    def list_forms(self) -> List[Form]:
        return self._all(EntityKind.FORM)

    def create_form(self, form: Form) -> Form:
        return self._create(EntityKind.FORM, form)

    def update_form(self, form: Form, expected_etag: str) -> Form:
        return self._update(EntityKind.FORM, form, expected_etag)

    # Sections

    def get_section(self, section_id: Any) -> Section:
        return self._get(EntityKind.SECTION, section_id)

    def list_sections(self, form_id: Any) -> List[Section]:
        return [s for s in self._all(EntityKind.SECTION) if s.form_id == form_id]

    def create_section(self, section: Section) -> Section:
        return self._create(EntityKind.SECTION, section)

    def update_section(self, section: Section, expected_etag: str) -> Section:
        return self._update(EntityKind.SECTION, section, expected_etag)

    # Questions

    def get_question(self, question_id: Any) -> Question:
        return self._get(EntityKind.QUESTION, question_id)

    def list_questions(self, form_id: Any, section_id: Optional[Any] = None) -> List[Question]:
        return [
            q for q in self._all(EntityKind.QUESTION)
            if q.form_id == form_id and (section_id is None or q.section_id == section_id)
        ]

    def list_questions_by_template(self, template_id: Any) -> List[Question]:
        return [q for q in self._all(EntityKind.QUESTION) if q.question_template_id == template_id]

    def create_question(self, question: Question) -> Question:
        return self._create(EntityKind.QUESTION, question)

    def update_question(self, question: Question, expected_etag: str) -> Question:
        return self._update(EntityKind.QUESTION, question, expected_etag)

    # Templates

    def get_template(self, template_id: Any) -> QuestionTemplate:
        return self._get(EntityKind.TEMPLATE, template_id)

    def list_templates(self) -> List[QuestionTemplate]:
        return self._all(EntityKind.TEMPLATE)

    def create_template(self, template: QuestionTemplate) -> QuestionTemplate:
        return self._create(EntityKind.TEMPLATE, template)

    def update_template(self, template: QuestionTemplate, expected_etag: str) -> QuestionTemplate:
        return self._update(EntityKind.TEMPLATE, template, expected_etag)

    # History

    def append_history(self, entry: FormHistoryEntry) -> None:
        with self._lock:
            self._history.setdefault(entry.form_id, []).append(entry)

    def get_history(self, form_id: Any) -> List[FormHistoryEntry]:
        """History of one form, oldest first."""
        with self._lock:
            return list(self._history.get(form_id, []))

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Keep every write made in the block, or none of them.

        Snapshots are shallow: entities are immutable, so copying the
        id -> entity mappings is enough to restore them.
        """
        with self._lock:
            store = {kind: dict(entities) for kind, entities in self._store.items()}
            history = {form_id: list(entries) for form_id, entries in self._history.items()}
            try:
                yield
            except BaseException:
                self._store = store
                self._history = history
                logger.warning("atomic block failed; in-memory state rolled back")
                raise


__all__ = [
    "Repository",
    "InMemoryRepository",
]
