"""Unit tests for the schema model entities.

Tests cover:
- ValidationRule operand checks per rule kind
- Legacy validation shapes normalized to rule lists
- VisibilityRule construction and dependsOn derivation
- Entity serialization (to_dict / from_dict) and payload checks
- Ordering helpers and slugs
"""

import pytest

from formbuilder.errors import InvalidConfiguration
from formbuilder.models import (
    Form,
    PicklistOption,
    Question,
    QuestionTemplate,
    Section,
    StorageConfig,
    ValidationRule,
    VisibilityRule,
    order_key,
    parse_validation,
    slugify,
    sort_by_order,
)
from formbuilder.types import AnswerType, EntityStatus, RuleType, VisibilityAction, VisibilityOperator


def make_question(**overrides):
    fields = {
        "id": 1,
        "form_id": 1,
        "section_id": 1,
        "tkey": "first_name",
        "label": "First name",
        "answer_type": "text",
    }
    fields.update(overrides)
    return Question(**fields)


class TestValidationRule:
    """Test ValidationRule construction."""

    def test_string_type_is_coerced_to_enum(self):
        """Should accept the rule kind as a plain string."""
        rule = ValidationRule(type="maxLength", operand=10)
        assert rule.type == RuleType.MAX_LENGTH

    def test_unknown_type_is_rejected(self):
        """Should reject rule kinds outside the closed set."""
        with pytest.raises(InvalidConfiguration, match="Invalid type"):
            ValidationRule(type="email")

    @pytest.mark.parametrize("operand", [-1, "3", None, True])
    def test_length_rules_need_non_negative_int(self, operand):
        """Should reject length operands that are not non-negative integers."""
        with pytest.raises(InvalidConfiguration):
            ValidationRule(type="minLength", operand=operand)

    def test_pattern_must_compile(self):
        """Should reject patterns that are not valid regular expressions."""
        with pytest.raises(InvalidConfiguration, match="not a valid regular expression"):
            ValidationRule(type="pattern", operand="([a-z")

    def test_range_list_operand_is_normalized(self):
        """Should accept [min, max] and store it as a bounds mapping."""
        rule = ValidationRule(type="range", operand=[1, 10])
        assert rule.operand == {"minValue": 1, "maxValue": 10}
        assert rule.min_value == 1
        assert rule.max_value == 10

    def test_range_with_single_bound(self):
        """Should accept a range with only one bound set."""
        rule = ValidationRule(type="range", operand={"minValue": 18})
        assert rule.min_value == 18
        assert rule.max_value is None

    def test_range_without_bounds_is_rejected(self):
        """Should reject a range with neither bound."""
        with pytest.raises(InvalidConfiguration, match="at least one"):
            ValidationRule(type="range", operand={})

    def test_range_inverted_bounds_are_rejected(self):
        """Should reject minValue greater than maxValue."""
        with pytest.raises(InvalidConfiguration, match="greater than"):
            ValidationRule(type="range", operand={"minValue": 10, "maxValue": 1})

    def test_custom_needs_predicate_name(self):
        """Should reject custom rules without a predicate name."""
        with pytest.raises(InvalidConfiguration):
            ValidationRule(type="custom")

    def test_from_dict_checks_payload(self):
        """Should reject rule dicts missing the type key."""
        with pytest.raises(InvalidConfiguration, match="type: is required"):
            ValidationRule.from_dict({"operand": 3})


class TestParseValidation:
    """Test normalization of the accepted validation shapes."""

    def test_list_order_is_preserved(self):
        """Should keep rules in the order they were given."""
        rules = parse_validation([
            {"type": "pattern", "operand": "^a"},
            {"type": "minLength", "operand": 2},
        ])
        assert [r.type for r in rules] == [RuleType.PATTERN, RuleType.MIN_LENGTH]

    def test_legacy_flat_mapping(self):
        """Should convert {"minLength": 3, "pattern": ...} into rules."""
        rules = parse_validation({"minLength": 3, "pattern": "^[a-z]+$"})
        assert [(r.type, r.operand) for r in rules] == [
            (RuleType.MIN_LENGTH, 3),
            (RuleType.PATTERN, "^[a-z]+$"),
        ]

    def test_legacy_rules_and_messages(self):
        """Should attach legacy messages and fold min/max into one range rule."""
        rules = parse_validation({
            "rules": {"required": True, "minValue": 1, "maxValue": 10},
            "messages": {"required": "Tell us your age", "range": "Out of range"},
        })
        assert rules[0] == ValidationRule(RuleType.REQUIRED, message="Tell us your age")
        assert rules[1].type == RuleType.RANGE
        assert rules[1].operand == {"minValue": 1, "maxValue": 10}
        assert rules[1].message == "Out of range"

    def test_legacy_required_false_adds_no_rule(self):
        """Should drop a legacy required key set to False."""
        assert parse_validation({"required": False}) == ()

    def test_unknown_legacy_key_is_rejected(self):
        """Should reject unknown keys in the legacy shape."""
        with pytest.raises(InvalidConfiguration, match="Unknown validation key"):
            parse_validation({"email": True})

    def test_two_required_rules_are_rejected(self):
        """Should allow at most one required rule."""
        with pytest.raises(InvalidConfiguration, match="At most one required rule"):
            parse_validation([{"type": "required"}, {"type": "required", "message": "again"}])

    def test_none_means_no_rules(self):
        assert parse_validation(None) == ()

    @pytest.mark.parametrize("data", [5, "minLength", 2.5])
    def test_scalar_is_rejected(self, data):
        """Should raise InvalidConfiguration rather than fail while iterating."""
        with pytest.raises(InvalidConfiguration, match="list of rules or a mapping"):
            parse_validation(data)


class TestVisibilityRule:
    """Test VisibilityRule construction."""

    def test_from_dict(self):
        """Should build a rule from its camelCase dict."""
        rule = VisibilityRule.from_dict({
            "controllingQuestionTkey": "married",
            "operator": "equals",
            "value": "yes",
            "action": "show",
        })
        assert rule.operator == VisibilityOperator.EQUALS
        assert rule.action == VisibilityAction.SHOW
        assert rule.to_dict()["controllingQuestionTkey"] == "married"

    def test_unknown_operator_is_rejected(self):
        """Should reject operators outside the closed set."""
        with pytest.raises(InvalidConfiguration):
            VisibilityRule.from_dict({
                "controllingQuestionTkey": "married",
                "operator": "greaterThan",
                "action": "show",
            })

    def test_missing_controlling_tkey_is_rejected(self):
        with pytest.raises(InvalidConfiguration):
            VisibilityRule(controlling_question_tkey="", operator="isEmpty", action="hide")


class TestQuestion:
    """Test Question construction and derived fields."""

    def test_depends_on_is_derived_from_visibility(self):
        """Should list each controlling tkey once, in rule order."""
        question = make_question(visibility=[
            {"controllingQuestionTkey": "a", "operator": "equals", "value": "x", "action": "show"},
            {"controllingQuestionTkey": "b", "operator": "isEmpty", "action": "hide"},
            {"controllingQuestionTkey": "a", "operator": "notEquals", "value": "y", "action": "require"},
        ])
        assert question.depends_on == ("a", "b")

    def test_is_required_from_flag_or_rule(self):
        """Should treat a required rule like the required flag."""
        assert make_question(required=True).is_required is True
        assert make_question(validation=[{"type": "required"}]).is_required is True
        assert make_question().is_required is False

    def test_order_must_be_positive(self):
        with pytest.raises(InvalidConfiguration, match="order must be >= 1"):
            make_question(order=0)

    @pytest.mark.parametrize("order", ["2", True, 1.5, None])
    def test_order_must_be_an_integer(self, order):
        with pytest.raises(InvalidConfiguration, match="order must be an integer"):
            make_question(order=order)

    @pytest.mark.parametrize("field", ["visibility", "options"])
    def test_rule_lists_must_be_lists(self, field):
        with pytest.raises(InvalidConfiguration, match="must be a list"):
            make_question(**{field: 5})

    def test_storage_mapping_is_coerced(self):
        """Should turn a storage dict into StorageConfig."""
        question = make_question(storage={"column": "first_name", "encrypted": True})
        assert question.storage == StorageConfig(column="first_name", encrypted=True)

    def test_has_options_source(self):
        """Should count static options or an endpoint as an options source."""
        assert make_question(options=[{"label": "A", "value": "a"}]).has_options_source
        assert make_question(options_api="https://example.com/opts").has_options_source
        assert not make_question().has_options_source

    def test_dict_roundtrip(self):
        """Should rebuild an equal question from its serialized form."""
        question = make_question(
            answer_type="dropdown",
            required=True,
            validation=[{"type": "custom", "operand": "no_profanity", "message": "Be nice"}],
            visibility=[{"controllingQuestionTkey": "role", "operator": "contains", "value": "admin", "action": "show"}],
            options=[{"label": "Red", "value": "red", "isDefault": True}],
            storage={"column": "colour", "indexed": True},
            status="active",
            etag='W/"abc"',
            version=3,
        )
        restored = Question.from_dict(question.to_dict())
        assert restored == question

    def test_from_dict_rejects_bad_answer_type(self):
        """Should report answerType problems as InvalidConfiguration."""
        data = make_question().to_dict()
        data["answerType"] = "signature"
        with pytest.raises(InvalidConfiguration, match="answerType"):
            Question.from_dict(data)


class TestOtherEntities:
    """Test Form, Section and QuestionTemplate serialization."""

    def test_form_from_dict_derives_slug(self):
        form = Form.from_dict({"id": 1, "name": "Vendor Intake", "formType": "vendor", "regionId": 2})
        assert form.slug == "vendor-intake"
        assert form.status.value == "draft"

    def test_section_order_must_be_positive(self):
        with pytest.raises(InvalidConfiguration):
            Section(id=1, form_id=1, slug="s", name="S", order=0)

    def test_section_order_must_be_an_integer(self):
        with pytest.raises(InvalidConfiguration, match="Section order must be an integer"):
            Section(id=1, form_id=1, slug="s", name="S", order="2")

    def test_section_is_live(self):
        """Should treat inactive or archived sections as not live."""
        assert Section(id=1, form_id=1, slug="s", name="S").is_live
        assert not Section(id=1, form_id=1, slug="s", name="S", is_active=False).is_live
        assert not Section(id=1, form_id=1, slug="s", name="S", status=EntityStatus.ARCHIVED).is_live

    def test_template_roundtrip(self):
        template = QuestionTemplate(
            id=4,
            tkey="email",
            label="Email",
            answer_type=AnswerType.TEXT,
            validation=[{"type": "pattern", "operand": "@"}],
            available_regions=[1, 2],
            tags=["contact"],
            storage_metadata={"column": "email", "encrypted": True},
        )
        assert QuestionTemplate.from_dict(template.to_dict()) == template

    def test_picklist_option_defaults(self):
        option = PicklistOption.from_dict({"label": "Yes", "value": "yes"})
        assert option.is_active is True
        assert option.is_default is False


class TestOrdering:
    """Test ordering helpers."""

    def test_ties_break_on_numeric_id(self):
        """Should order equal order values by id, numerically."""
        items = [make_question(id=10, order=1), make_question(id=2, order=1), make_question(id=3, order=1)]
        assert [q.id for q in sort_by_order(items)] == [2, 3, 10]

    def test_lower_order_first(self):
        items = [make_question(id=1, order=3), make_question(id=2, order=1)]
        assert [q.id for q in sort_by_order(items)] == [2, 1]

    def test_order_key_handles_string_ids(self):
        assert order_key(make_question(id="q-7", order=2)) == (2, 1, "q-7")

    def test_slugify(self):
        assert slugify("  Contact Details & Address ") == "contact-details-address"
