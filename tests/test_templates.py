"""Unit tests for the template library and template instantiation.

Tests cover:
- instantiate_from_template copying and overrides
- Catalogue maintenance (create, versioned update, archive)
- Filtering and ordering of list_templates
- Usage tracking through real question references
"""

import pytest

from formbuilder import FormBuilder
from formbuilder.errors import ConflictError, InvalidConfiguration, InvalidStateTransitionError
from formbuilder.models import QuestionTemplate
from formbuilder.schema import instantiate_from_template
from formbuilder.templates import TemplateFilter
from formbuilder.types import AnswerType, EntityStatus

ACTOR = {"kind": "user", "id": "librarian"}


def make_template(**overrides):
    fields = {
        "id": 7,
        "tkey": "work_email",
        "label": "Work email",
        "answer_type": AnswerType.TEXT,
        "helper_text": "Company address only",
        "default_value": "someone@example.com",
        "validation": [{"type": "pattern", "operand": "@"}],
    }
    fields.update(overrides)
    return QuestionTemplate(**fields)


def builder_with_section(region_id=1):
    builder = FormBuilder()
    form = builder.create_form({"name": "Onboarding", "formType": "vendor", "regionId": region_id}, ACTOR)
    section = builder.create_section(form.id, {"name": "Contact"}, ACTOR)
    return builder, form, section


class TestInstantiateFromTemplate:
    """Test copying a template into a question."""

    def test_copies_fields_by_value(self):
        template = make_template()
        question = instantiate_from_template(template, {})
        assert question.label == template.label
        assert question.answer_type == template.answer_type
        assert question.helper_text == template.helper_text
        assert question.default_value == template.default_value
        assert question.validation == template.validation
        assert question.question_template_id == template.id
        assert question.status == EntityStatus.DRAFT

    def test_overrides_win(self):
        question = instantiate_from_template(make_template(), {"label": "Email", "helperText": None})
        assert question.label == "Email"
        assert question.helper_text is None

    def test_template_id_cannot_be_overridden(self):
        question = instantiate_from_template(make_template(), {"questionTemplateId": 99})
        assert question.question_template_id == 7

    def test_template_is_not_modified(self):
        template = make_template()
        before = template.to_dict()
        instantiate_from_template(template, {"label": "Changed"})
        assert template.to_dict() == before

    def test_archived_template_is_rejected(self):
        with pytest.raises(InvalidConfiguration, match="archived"):
            instantiate_from_template(make_template(status="archived"))

    def test_unknown_override_is_rejected(self):
        with pytest.raises(InvalidConfiguration, match="Unknown question field"):
            instantiate_from_template(make_template(), {"colour": "red"})


class TestTemplateCatalogue:
    """Test create, update and archive."""

    def test_create_template(self):
        builder = FormBuilder()
        template = builder.create_template(
            {"tkey": "dob", "label": "Date of birth", "answerType": "date", "availableRegions": [1]},
            ACTOR,
        )
        assert template.status == EntityStatus.ACTIVE
        assert template.version == 1
        assert template.created_by == "librarian"
        assert builder.get_template(template.id) == template

    def test_create_requires_tkey_and_label(self):
        with pytest.raises(InvalidConfiguration, match="label is required"):
            FormBuilder().create_template({"tkey": "dob"}, ACTOR)

    def test_tkey_unique_among_live_templates(self):
        builder = FormBuilder()
        first = builder.create_template({"tkey": "dob", "label": "Date of birth"}, ACTOR)
        with pytest.raises(InvalidConfiguration, match="already used"):
            builder.create_template({"tkey": "dob", "label": "Birthday"}, ACTOR)

        builder.archive_template(first.id, first.etag, ACTOR)
        assert builder.create_template({"tkey": "dob", "label": "Birthday"}, ACTOR).tkey == "dob"

    def test_update_is_versioned(self):
        builder = FormBuilder()
        template = builder.create_template({"tkey": "dob", "label": "Date of birth"}, ACTOR)
        updated = builder.update_template(template.id, {"label": "Birth date"}, template.etag, ACTOR)
        assert updated.version == 2
        assert updated.etag != template.etag
        with pytest.raises(ConflictError):
            builder.update_template(template.id, {"label": "Stale"}, template.etag, ACTOR)

    def test_update_never_touches_existing_questions(self):
        builder, form, section = builder_with_section()
        template = builder.create_template({"tkey": "dob", "label": "Date of birth", "isGlobal": True}, ACTOR)
        question = builder.create_question_from_template(section.id, template.id, ACTOR)

        builder.update_template(template.id, {"label": "Birth date", "helperText": "DD/MM/YYYY"}, template.etag, ACTOR)

        stored = builder.get_question(question.id)
        assert stored.label == "Date of birth"
        assert stored.helper_text is None
        assert stored.version == 1

    def test_archived_template_cannot_be_updated(self):
        builder = FormBuilder()
        template = builder.create_template({"tkey": "dob", "label": "Date of birth"}, ACTOR)
        archived = builder.archive_template(template.id, template.etag, ACTOR)
        with pytest.raises(InvalidStateTransitionError):
            builder.update_template(template.id, {"label": "x"}, archived.etag, ACTOR)

    def test_unknown_field_is_rejected(self):
        with pytest.raises(InvalidConfiguration, match="Unknown template field"):
            FormBuilder().create_template({"tkey": "a", "label": "A", "colour": "red"}, ACTOR)


class TestListTemplates:
    """Test template filtering."""

    @pytest.fixture
    def builder(self):
        builder = FormBuilder()
        builder.create_template({
            "tkey": "vat", "label": "VAT number", "category": "Finance",
            "availableRegions": [1], "helperText": "EU tax id",
            "tags": ["Tax", "EU"],
        }, ACTOR)
        builder.create_template({
            "tkey": "email", "label": "Email", "category": "Contact", "isGlobal": True,
        }, ACTOR)
        builder.create_template({
            "tkey": "headcount", "label": "Headcount", "answerType": "number",
            "category": "Finance", "availableRegions": [2],
            "tags": ["hr"],
        }, ACTOR)
        return builder

    def test_region_includes_global(self, builder):
        assert [t.tkey for t in builder.list_templates(region_id=1)] == ["email", "vat"]
        assert [t.tkey for t in builder.list_templates(region_id=2)] == ["email", "headcount"]

    def test_predicates_are_anded(self, builder):
        found = builder.list_templates(TemplateFilter(category="fin", answer_type=AnswerType.NUMBER))
        assert [t.tkey for t in found] == ["headcount"]

    def test_text_matches_helper_text(self, builder):
        assert [t.tkey for t in builder.list_templates(text="TAX")] == ["vat"]

    def test_tags_must_all_be_carried(self, builder):
        assert [t.tkey for t in builder.list_templates(tags=["tax"])] == ["vat"]
        assert [t.tkey for t in builder.list_templates(tags=["tax", "eu"])] == ["vat"]
        assert builder.list_templates(tags=["tax", "hr"]) == []
        assert [t.tkey for t in builder.list_templates(TemplateFilter(tags="HR"))] == ["headcount"]

    def test_is_global_filter(self, builder):
        assert [t.tkey for t in builder.list_templates(is_global=False)] == ["headcount", "vat"]

    def test_archived_hidden_by_default(self, builder):
        email = next(t for t in builder.list_templates() if t.tkey == "email")
        builder.archive_template(email.id, email.etag, ACTOR)
        assert "email" not in [t.tkey for t in builder.list_templates()]
        assert "email" in [t.tkey for t in builder.list_templates(include_archived=True)]


class TestTemplateUsage:
    """Test usage tracking."""

    def test_usage_lists_real_references(self):
        builder, form, section = builder_with_section()
        template = builder.create_template({"tkey": "dob", "label": "Date of birth", "isGlobal": True}, ACTOR)
        unused = builder.create_template({"tkey": "ssn", "label": "SSN", "isGlobal": True}, ACTOR)
        question = builder.create_question_from_template(section.id, template.id, ACTOR)

        usage = builder.template_usage(template.id)

        assert len(usage) == 1
        assert usage[0].to_dict() == {
            "formId": form.id,
            "formName": "Onboarding",
            "sectionId": section.id,
            "sectionName": "Contact",
            "questionId": question.id,
            "isActive": True,
        }
        assert builder.template_usage(unused.id) == []

    def test_usage_across_forms(self):
        builder, _, section = builder_with_section()
        other_form = builder.create_form({"name": "Renewal", "formType": "vendor", "regionId": 1}, ACTOR)
        other_section = builder.create_section(other_form.id, {"name": "Details"}, ACTOR)
        template = builder.create_template({"tkey": "dob", "label": "Date of birth", "isGlobal": True}, ACTOR)

        builder.create_question_from_template(section.id, template.id, ACTOR)
        builder.create_question_from_template(other_section.id, template.id, ACTOR)

        assert {u.form_name for u in builder.template_usage(template.id)} == {"Onboarding", "Renewal"}

    def test_archived_question_is_not_active_usage(self):
        builder, _, section = builder_with_section()
        template = builder.create_template({"tkey": "dob", "label": "Date of birth", "isGlobal": True}, ACTOR)
        question = builder.create_question_from_template(section.id, template.id, ACTOR)
        builder.archive_question(question.id, question.etag, ACTOR)

        usage = builder.template_usage(template.id)
        assert [u.is_active for u in usage] == [False]


class TestCreateQuestionFromTemplate:
    """Test instantiation through the builder."""

    def test_region_must_match(self):
        builder, _, section = builder_with_section(region_id=1)
        template = builder.create_template({"tkey": "vat", "label": "VAT", "availableRegions": [2]}, ACTOR)
        with pytest.raises(InvalidConfiguration, match="not available in region 1"):
            builder.create_question_from_template(section.id, template.id, ACTOR)

    def test_tkey_collision_needs_override(self):
        builder, _, section = builder_with_section()
        template = builder.create_template({"tkey": "dob", "label": "Date of birth", "isGlobal": True}, ACTOR)
        builder.create_question_from_template(section.id, template.id, ACTOR)

        with pytest.raises(InvalidConfiguration, match="already used"):
            builder.create_question_from_template(section.id, template.id, ACTOR)
        second = builder.create_question_from_template(section.id, template.id, ACTOR, {"tkey": "partner_dob"})
        assert second.order == 2
        assert second.question_template_id == template.id

    def test_history_records_provenance(self):
        builder, form, section = builder_with_section()
        template = builder.create_template({"tkey": "dob", "label": "Date of birth", "isGlobal": True}, ACTOR)
        builder.create_question_from_template(section.id, template.id, ACTOR)
        last = builder.get_history(form.id)[-1]
        assert last.description == f"Instantiated from template {template.id}"
