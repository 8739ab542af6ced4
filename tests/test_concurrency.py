"""Unit tests for optimistic concurrency and the in-memory repository.

Tests cover:
- Etag uniqueness and format
- check_etag / bump / changed_fields
- Repository compare-and-swap, lookups and atomic rollback
"""

import pytest

from formbuilder.concurrency import EtagFactory, bump, changed_fields, check_etag
from formbuilder.errors import ConflictError, NotFound
from formbuilder.models import Form, QuestionTemplate, Section
from formbuilder.repository import InMemoryRepository, Repository
from formbuilder.types import EntityKind, EntityStatus


def make_section(etag='W/"s1"', **overrides):
    fields = {"id": 1, "form_id": 1, "slug": "main", "name": "Main", "etag": etag}
    fields.update(overrides)
    return Section(**fields)


class TestEtagFactory:
    """Test etag generation."""

    def test_etags_are_never_reused(self):
        factory = EtagFactory()
        etags = {factory.next_etag(EntityKind.QUESTION, 1, 1) for _ in range(200)}
        assert len(etags) == 200

    def test_separate_factories_do_not_collide(self):
        a = EtagFactory().next_etag(EntityKind.FORM, 1, 1)
        b = EtagFactory().next_etag(EntityKind.FORM, 1, 1)
        assert a != b

    def test_weak_etag_format(self):
        etag = EtagFactory().next_etag(EntityKind.SECTION, 5, 2)
        assert etag.startswith('W/"') and etag.endswith('"')


class TestCheckEtag:
    """Test the etag check."""

    def test_matching_etag_passes(self):
        check_etag(EntityKind.SECTION, make_section(), 'W/"s1"')

    @pytest.mark.parametrize("supplied", ['W/"stale"', None, ""])
    def test_mismatch_raises_conflict(self, supplied):
        with pytest.raises(ConflictError) as exc_info:
            check_etag(EntityKind.SECTION, make_section(), supplied)
        error = exc_info.value
        assert error.current_etag == 'W/"s1"'
        assert error.expected_etag == supplied
        assert error.retryable is True
        assert error.to_dict()["code"] == "conflict"


class TestBump:
    """Test versioned snapshots."""

    def test_bump_increments_version_and_etag(self):
        section = make_section()
        updated = bump(section, EntityKind.SECTION, EtagFactory(), "editor_1", name="Renamed")
        assert updated.version == section.version + 1
        assert updated.etag != section.etag
        assert updated.name == "Renamed"
        assert updated.updated_by == "editor_1"
        assert updated.updated_at >= section.updated_at
        assert section.name == "Main"

    def test_bump_without_updated_by_field(self):
        """Should work for entities that do not track updatedBy."""
        template = QuestionTemplate(id=1, tkey="email", label="Email", answer_type="text")
        updated = bump(template, EntityKind.TEMPLATE, EtagFactory(), "editor_1", label="Work email")
        assert updated.version == 2
        assert updated.label == "Work email"

    def test_changed_fields_skips_bookkeeping(self):
        section = make_section()
        updated = bump(section, EntityKind.SECTION, EtagFactory(), "editor_1", order=3)
        assert changed_fields(section, updated) == {"order": 3}


class TestInMemoryRepository:
    """Test the in-memory persistence collaborator."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryRepository(), Repository)

    def test_ids_are_per_kind(self):
        repo = InMemoryRepository()
        assert repo.next_id(EntityKind.FORM) == 1
        assert repo.next_id(EntityKind.FORM) == 2
        assert repo.next_id(EntityKind.SECTION) == 1

    def test_missing_entity_raises_not_found(self):
        with pytest.raises(NotFound) as exc_info:
            InMemoryRepository().get_question(42)
        assert exc_info.value.to_dict()["details"] == {"entity": "question", "id": 42}

    def test_update_is_compare_and_swap(self):
        """Should reject an update whose expected etag is no longer stored."""
        repo = InMemoryRepository()
        section = repo.create_section(make_section())
        first = bump(section, EntityKind.SECTION, EtagFactory(), "a", name="First")
        second = bump(section, EntityKind.SECTION, EtagFactory(), "b", name="Second")

        repo.update_section(first, expected_etag=section.etag)
        with pytest.raises(ConflictError):
            repo.update_section(second, expected_etag=section.etag)
        assert repo.get_section(1).name == "First"

    def test_list_sections_by_form(self):
        repo = InMemoryRepository()
        repo.create_section(make_section(id=1, form_id=1))
        repo.create_section(make_section(id=2, form_id=2))
        assert [s.id for s in repo.list_sections(1)] == [1]

    def test_atomic_rolls_back_on_error(self):
        repo = InMemoryRepository()
        repo.create_form(Form(id=1, name="F", slug="f", form_type="t", region_id=1))
        section = repo.create_section(make_section())

        with pytest.raises(RuntimeError):
            with repo.atomic():
                archived = bump(section, EntityKind.SECTION, EtagFactory(), "a", status=EntityStatus.ARCHIVED)
                repo.update_section(archived, expected_etag=section.etag)
                raise RuntimeError("write failed")

        assert repo.get_section(1).status == EntityStatus.DRAFT
        assert repo.get_section(1).etag == section.etag

    def test_atomic_keeps_writes_on_success(self):
        repo = InMemoryRepository()
        section = repo.create_section(make_section())
        with repo.atomic():
            repo.update_section(bump(section, EntityKind.SECTION, EtagFactory(), "a", name="Kept"), section.etag)
        assert repo.get_section(1).name == "Kept"

    def test_history_is_per_form(self):
        assert InMemoryRepository().get_history(7) == []
