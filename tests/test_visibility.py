"""Unit tests for the visibility evaluator.

Tests cover:
- Operator semantics with type-coerced comparison
- AND within an action, independence across actions
- Conflict resolution (hide wins)
- Defaults for questions without rules
"""

import pytest

from formbuilder.models import Question
from formbuilder.visibility import QuestionState, VisibilityEvaluator, as_text, is_blank


def rule(tkey, operator, action, value=None):
    return {"controllingQuestionTkey": tkey, "operator": operator, "value": value, "action": action}


def make_question(*rules, **overrides):
    fields = {
        "id": 9,
        "form_id": 1,
        "section_id": 1,
        "tkey": "target",
        "label": "Target",
        "answer_type": "text",
        "visibility": list(rules),
    }
    fields.update(overrides)
    return Question(**fields)


class TestCoercion:
    """Test the helpers behind comparisons."""

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (True, "true"),
        (False, "false"),
        (5.0, "5"),
        (5.5, "5.5"),
        (7, "7"),
        ("x", "x"),
    ])
    def test_as_text(self, value, expected):
        assert as_text(value) == expected

    @pytest.mark.parametrize("value", [None, "", [], {}, ()])
    def test_blank_values(self, value):
        assert is_blank(value)

    @pytest.mark.parametrize("value", [0, False, " ", ["a"]])
    def test_non_blank_values(self, value):
        assert not is_blank(value)


class TestOperators:
    """Test each operator against the controlling answer."""

    def test_equals_coerces_types(self):
        """Should treat 5, 5.0 and "5" as equal."""
        question = make_question(rule("count", "equals", "show", "5"))
        evaluator = VisibilityEvaluator()
        assert evaluator.evaluate_question(question, {"count": 5}).visible
        assert evaluator.evaluate_question(question, {"count": 5.0}).visible
        assert not evaluator.evaluate_question(question, {"count": 6}).visible

    def test_equals_boolean_answer(self):
        question = make_question(rule("agree", "equals", "show", "true"))
        assert VisibilityEvaluator().evaluate_question(question, {"agree": True}).visible

    def test_equals_single_element_list(self):
        question = make_question(rule("colour", "equals", "show", "red"))
        evaluator = VisibilityEvaluator()
        assert evaluator.evaluate_question(question, {"colour": ["red"]}).visible
        assert not evaluator.evaluate_question(question, {"colour": ["red", "blue"]}).visible

    def test_not_equals(self):
        question = make_question(rule("country", "notEquals", "hide", "US"))
        evaluator = VisibilityEvaluator()
        assert not evaluator.evaluate_question(question, {"country": "CA"}).visible
        assert evaluator.evaluate_question(question, {"country": "US"}).visible

    def test_contains_substring(self):
        question = make_question(rule("notes", "contains", "show", "urgent"))
        assert VisibilityEvaluator().evaluate_question(question, {"notes": "very urgent"}).visible

    def test_contains_membership(self):
        question = make_question(rule("roles", "contains", "show", "admin"))
        evaluator = VisibilityEvaluator()
        assert evaluator.evaluate_question(question, {"roles": ["user", "admin"]}).visible
        assert not evaluator.evaluate_question(question, {"roles": ["administrator"]}).visible

    def test_contains_missing_answer(self):
        question = make_question(rule("roles", "contains", "show", "admin"))
        assert not VisibilityEvaluator().evaluate_question(question, {}).visible

    def test_is_empty(self):
        question = make_question(rule("email", "isEmpty", "require"))
        evaluator = VisibilityEvaluator()
        assert evaluator.evaluate_question(question, {}).required
        assert evaluator.evaluate_question(question, {"email": []}).required
        assert not evaluator.evaluate_question(question, {"email": "a@b.c"}).required


class TestActions:
    """Test how fired rules combine."""

    def test_no_rules_always_visible(self):
        """Should leave a question without rules visible with its own required flag."""
        state = VisibilityEvaluator().evaluate_question(make_question(required=True), {"x": 1})
        assert state == QuestionState(question_id=9, tkey="target", visible=True, required=True, disabled=False)

    def test_show_rule_not_firing_hides(self):
        question = make_question(rule("married", "equals", "show", "yes"))
        assert not VisibilityEvaluator().evaluate_question(question, {"married": "no"}).visible

    def test_rules_for_one_action_are_anded(self):
        question = make_question(
            rule("a", "equals", "show", "x"),
            rule("b", "equals", "show", "y"),
        )
        evaluator = VisibilityEvaluator()
        assert evaluator.evaluate_question(question, {"a": "x", "b": "y"}).visible
        assert not evaluator.evaluate_question(question, {"a": "x", "b": "z"}).visible

    def test_hide_wins_over_show(self):
        """Should hide when both a show and a hide rule fire."""
        question = make_question(
            rule("A", "equals", "show", "x"),
            rule("B", "equals", "hide", "y"),
        )
        state = VisibilityEvaluator().evaluate_question(question, {"A": "x", "B": "y"})
        assert state.visible is False

    def test_hide_alone_only_when_fired(self):
        question = make_question(rule("B", "equals", "hide", "y"))
        evaluator = VisibilityEvaluator()
        assert evaluator.evaluate_question(question, {"B": "n"}).visible
        assert not evaluator.evaluate_question(question, {"B": "y"}).visible

    def test_actions_combine(self):
        """Should let separate rule sets show and require the same question."""
        question = make_question(
            rule("a", "equals", "show", "x"),
            rule("b", "equals", "require", "y"),
            rule("c", "isEmpty", "disable"),
        )
        state = VisibilityEvaluator().evaluate_question(question, {"a": "x", "b": "y"})
        assert (state.visible, state.required, state.disabled) == (True, True, True)

    def test_evaluate_maps_by_id(self):
        first = make_question(id=1, tkey="a")
        second = make_question(rule("a", "isEmpty", "hide"), id=2, tkey="b")
        states = VisibilityEvaluator().evaluate([first, second], {"a": ""})
        assert set(states) == {1, 2}
        assert states[1].visible
        assert not states[2].visible
        assert states[2].to_dict()["tkey"] == "b"
