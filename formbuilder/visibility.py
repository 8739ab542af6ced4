"""Visibility evaluator: conditional show/hide/require/disable resolution.

For a given answer snapshot (answers keyed by question tkey) the evaluator
resolves the effective visible/required/disabled state of every question.

Rules are grouped by action. All rules targeting the same action must hold
for that action to fire (logical AND); different actions are independent and
combine. When both show and hide fire, hide wins. A question with no rules is
always visible and keeps its own required flag.

Evaluation is a pure function of the questions and the answers; it is safe to
run concurrently with anything.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from formbuilder.models import Question, VisibilityRule
from formbuilder.types import VisibilityAction, VisibilityOperator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestionState:
    """Effective state of a question for one answer snapshot.

    Attributes:
        question_id: Id of the question
        tkey: Stable key of the question
        visible: Whether the question is shown (hidden questions skip validation)
        required: Own required flag or a fired require rule
        disabled: Whether a disable rule fired
    """
    question_id: Any
    tkey: str
    visible: bool = True
    required: bool = False
    disabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "questionId": self.question_id,
            "tkey": self.tkey,
            "visible": self.visible,
            "required": self.required,
            "disabled": self.disabled,
        }


def is_blank(value: Any) -> bool:
    """null, empty string or empty collection."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def as_text(value: Any) -> str:
    """String form used for type-coerced comparison.

    None is "", booleans are "true"/"false", integral floats drop the ".0"
    so 5 and 5.0 and "5" all compare equal.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _equals(answer: Any, expected: Any) -> bool:
    if isinstance(answer, (list, tuple)):
        if isinstance(expected, (list, tuple)):
            return [as_text(a) for a in answer] == [as_text(e) for e in expected]
        return len(answer) == 1 and as_text(answer[0]) == as_text(expected)
    return as_text(answer) == as_text(expected)


def _contains(answer: Any, expected: Any) -> bool:
    if answer is None:
        return False
    if isinstance(answer, (list, tuple, set, frozenset)):
        return as_text(expected) in {as_text(a) for a in answer}
    return as_text(expected) in as_text(answer)


class VisibilityEvaluator:
    """Resolves question states against an answer snapshot.

    Examples:
        >>> from formbuilder.models import Question
        >>> q = Question(id=2, form_id=1, section_id=1, tkey="spouse_name",
        ...              label="Spouse name", answer_type="text",
        ...              visibility=[{"controllingQuestionTkey": "married",
        ...                           "operator": "equals", "value": "yes",
        ...                           "action": "show"}])
        >>> VisibilityEvaluator().evaluate_question(q, {"married": "no"}).visible
        False
    """

    def rule_holds(self, rule: VisibilityRule, answers: Mapping[str, Any]) -> bool:
        """Evaluate one rule's condition against the controlling answer."""
        answer = answers.get(rule.controlling_question_tkey)
        operator = rule.operator

        if operator == VisibilityOperator.EQUALS:
            return _equals(answer, rule.value)
        if operator == VisibilityOperator.NOT_EQUALS:
            return not _equals(answer, rule.value)
        if operator == VisibilityOperator.CONTAINS:
            return _contains(answer, rule.value)
        if operator == VisibilityOperator.IS_EMPTY:
            return is_blank(answer)
        return False

    def evaluate_question(self, question: Question, answers: Mapping[str, Any]) -> QuestionState:
        """Resolve the effective state of a single question."""
        if not question.visibility:
            return QuestionState(
                question_id=question.id,
                tkey=question.tkey,
                visible=True,
                required=question.is_required,
                disabled=False,
            )

        grouped: Dict[VisibilityAction, List[VisibilityRule]] = {}
        for rule in question.visibility:
            grouped.setdefault(rule.action, []).append(rule)

        fired: Dict[VisibilityAction, bool] = {
            action: all(self.rule_holds(rule, answers) for rule in rules)
            for action, rules in grouped.items()
        }

        if fired.get(VisibilityAction.HIDE):
            visible = False
        elif VisibilityAction.SHOW in fired:
            visible = fired[VisibilityAction.SHOW]
        else:
            visible = True

        state = QuestionState(
            question_id=question.id,
            tkey=question.tkey,
            visible=visible,
            required=question.is_required or fired.get(VisibilityAction.REQUIRE, False),
            disabled=fired.get(VisibilityAction.DISABLE, False),
        )
        logger.debug(
            "visibility question=%s fired=%s state=%s",
            question.tkey,
            {a.value: v for a, v in fired.items()},
            state.to_dict(),
        )
        return state

    def evaluate(
        self,
        questions: Iterable[Question],
        answers: Optional[Mapping[str, Any]] = None,
    ) -> Dict[Any, QuestionState]:
        """Resolve every question's state.

        Args:
            questions: Questions to evaluate
            answers: Current answers keyed by tkey

        Returns:
            Mapping of question id to its QuestionState
        """
        answers = answers or {}
        return {q.id: self.evaluate_question(q, answers) for q in questions}


__all__ = [
    "QuestionState",
    "VisibilityEvaluator",
    "is_blank",
    "as_text",
]
