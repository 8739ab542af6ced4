"""Validation engine: evaluates a question's rules against a submitted value.

Per question the algorithm is deterministic and short-circuiting:

1. If the question is required and the value is empty (None, "", an empty
   list, or False for a checkbox) it fails with the required message and
   nothing else runs.
2. An empty value on an optional question passes; rules only apply to
   present values.
3. A present value is checked against the configured rules in list order.
   The first failure determines the single message surfaced for the
   question.

Only configured rules decide the outcome by default. With
strict_answer_types enabled, a value that passed every rule is then also
checked against its answer type (numbers must be numeric, dates must parse,
choice answers must match a static option).

Unresolvable custom rules fail closed.

validate_form() runs this for every visible question of a form and returns
all failures at once; it never raises mid-evaluation.
"""

from dataclasses import dataclass, field
from datetime import date
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple
import logging
import re

from dateutil.parser import isoparse

from formbuilder.config import get_settings
from formbuilder.errors import FieldError, ValidationFailed
from formbuilder.models import Form, Question, Section, ValidationRule, order_key, sort_by_order
from formbuilder.types import AnswerType, RuleType
from formbuilder.visibility import QuestionState, VisibilityEvaluator, is_blank

logger = logging.getLogger(__name__)

CustomPredicate = Callable[[Any, Question], bool]
"""Custom rule predicate: (value, question) -> True when the value is acceptable."""

TYPE_RULE = "type"


@lru_cache(maxsize=256)
def _compiled(pattern: str) -> Pattern[str]:
    return re.compile(pattern)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _fmt_bound(bound: Any) -> str:
    if isinstance(bound, float) and bound.is_integer():
        return str(int(bound))
    return str(bound)


def is_empty_answer(question: Question, value: Any) -> bool:
    """Empty in the sense of the required check; False counts for checkboxes."""
    if question.answer_type == AnswerType.CHECKBOX and value is False:
        return True
    return is_blank(value)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one value against one question.

    Attributes:
        is_valid: Whether the value passed
        message: The surfaced error message (None when valid)
        rule: Which check failed: a rule type value or "type"

    Examples:
        >>> ValidationResult.ok().is_valid
        True
    """
    is_valid: bool
    message: Optional[str] = None
    rule: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def fail(cls, rule: str, message: str) -> "ValidationResult":
        return cls(is_valid=False, message=message, rule=rule)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"isValid": self.is_valid}
        if self.message is not None:
            result["message"] = self.message
        if self.rule is not None:
            result["rule"] = self.rule
        return result


@dataclass(frozen=True)
class FormValidationResult:
    """Outcome of validating a whole submission.

    Attributes:
        errors: Question id -> surfaced message, for every failing question
        field_errors: The same failures with tkey and rule detail, in form order
        states: Question id -> effective visibility state used for this pass
    """
    errors: Dict[Any, str]
    field_errors: List[FieldError] = field(default_factory=list)
    states: Dict[Any, QuestionState] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise ValidationFailed carrying every failure, if there are any."""
        if self.errors:
            raise ValidationFailed(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.field_errors],
            "states": [s.to_dict() for s in self.states.values()],
        }


class ValidationEngine:
    """Evaluates question rules against submitted answers.

    Holds only the registry of custom predicates; validation itself keeps no
    state between calls, so validating the same question and value twice
    always yields the same result.

    Attributes:
        custom_rules: Registered predicates keyed by custom rule operand
        strict_answer_types: Whether a value that passed every rule must also
            match its answer type

    Examples:
        >>> from formbuilder.models import Question
        >>> q = Question(id=1, form_id=1, section_id=1, tkey="age", label="Age",
        ...              answer_type="number", required=True,
        ...              validation=[{"type": "range", "operand": {"minValue": 1, "maxValue": 10}}])
        >>> engine = ValidationEngine()
        >>> engine.validate(q, 5).is_valid
        True
        >>> engine.validate(q, 15).message
        'Value must be between 1 and 10'
        >>> engine.validate(q, "").message
        'Age is required'
    """

    def __init__(
        self,
        custom_rules: Optional[Mapping[str, CustomPredicate]] = None,
        strict_answer_types: Optional[bool] = None,
        evaluator: Optional[VisibilityEvaluator] = None,
    ) -> None:
        self.custom_rules: Dict[str, CustomPredicate] = dict(custom_rules or {})
        if strict_answer_types is None:
            strict_answer_types = get_settings().STRICT_ANSWER_TYPES
        self.strict_answer_types = strict_answer_types
        self.evaluator = evaluator or VisibilityEvaluator()

    def register(self, name: str, predicate: CustomPredicate) -> None:
        """Register a predicate for custom rules whose operand is name."""
        self.custom_rules[name] = predicate

    def validate(
        self,
        question: Question,
        value: Any,
        required: Optional[bool] = None,
    ) -> ValidationResult:
        """Validate one value against one question.

        Args:
            question: The question whose configuration applies
            value: The submitted value
            required: Effective requiredness; defaults to the question's own.
                validate_form passes the visibility-resolved value here.

        Returns:
            ValidationResult with at most one message
        """
        if required is None:
            required = question.is_required

        if is_empty_answer(question, value):
            if required:
                rule = question.required_rule
                message = (rule.message if rule and rule.message else None) or f"{question.label} is required"
                return ValidationResult.fail(RuleType.REQUIRED.value, message)
            return ValidationResult.ok()

        for rule in question.validation:
            if rule.type == RuleType.REQUIRED:
                continue
            message = self._check_rule(question, rule, value)
            if message is not None:
                return ValidationResult.fail(rule.type.value, message)

        if self.strict_answer_types:
            type_error = self._check_answer_type(question, value)
            if type_error is not None:
                return ValidationResult.fail(TYPE_RULE, type_error)

        return ValidationResult.ok()

    def validate_form(
        self,
        form: Form,
        sections_with_questions: Sequence[Tuple[Section, Sequence[Question]]],
        answers: Mapping[str, Any],
    ) -> FormValidationResult:
        """Validate a submission against every visible question of a form.

        Archived questions, and questions under archived or inactive
        sections, are not part of the submission. Questions hidden by their
        visibility rules are exempt even when required. An answer missing
        from answers falls back to the question's default value.

        Args:
            form: The form being submitted
            sections_with_questions: (section, questions) pairs of the form
            answers: Submitted answers keyed by question tkey

        Returns:
            FormValidationResult; empty errors means the submission is valid
        """
        questions: List[Question] = []
        for section, section_questions in sorted(
            sections_with_questions, key=lambda pair: order_key(pair[0])
        ):
            if not section.is_live:
                continue
            questions.extend(q for q in sort_by_order(section_questions) if not q.is_archived)

        resolved = dict(answers)
        for question in questions:
            if question.tkey not in resolved and question.default_value is not None:
                resolved[question.tkey] = question.default_value

        states = self.evaluator.evaluate(questions, resolved)
        errors: Dict[Any, str] = {}
        field_errors: List[FieldError] = []

        for question in questions:
            state = states[question.id]
            if not state.visible:
                continue
            result = self.validate(question, resolved.get(question.tkey), required=state.required)
            if not result.is_valid:
                errors[question.id] = result.message
                field_errors.append(
                    FieldError(
                        question_id=question.id,
                        tkey=question.tkey,
                        rule=result.rule,
                        message=result.message,
                    )
                )

        logger.info(
            "validated form_id=%s questions=%d failures=%d",
            form.id,
            len(questions),
            len(errors),
        )
        return FormValidationResult(errors=errors, field_errors=field_errors, states=states)

    def _check_answer_type(self, question: Question, value: Any) -> Optional[str]:
        answer_type = question.answer_type

        if answer_type == AnswerType.NUMBER:
            if _to_number(value) is None:
                return f"{question.label} must be a number"

        elif answer_type == AnswerType.DATE:
            if isinstance(value, date):
                return None
            if not isinstance(value, str):
                return f"{question.label} must be a valid date"
            try:
                isoparse(value)
            except ValueError:
                return f"{question.label} must be a valid date"

        elif answer_type in (AnswerType.DROPDOWN, AnswerType.RADIO, AnswerType.CHECKBOX):
            if not question.options:
                return None
            if answer_type == AnswerType.CHECKBOX and isinstance(value, bool):
                return None
            allowed = {str(o.value) for o in question.options if o.is_active}
            picked = value if isinstance(value, (list, tuple)) else [value]
            if answer_type != AnswerType.CHECKBOX and len(picked) != 1:
                return f"{question.label} accepts a single option"
            if any(str(v) not in allowed for v in picked):
                return f"{question.label} must be one of the available options"

        return None

    def _check_rule(self, question: Question, rule: ValidationRule, value: Any) -> Optional[str]:
        """Return the failure message for rule, or None if it passes."""
        rule_type = rule.type

        if rule_type == RuleType.MIN_LENGTH:
            if isinstance(value, str) and len(value) < rule.operand:
                return rule.message or f"Minimum length is {rule.operand}"
            return None

        if rule_type == RuleType.MAX_LENGTH:
            if isinstance(value, str) and len(value) > rule.operand:
                return rule.message or f"Maximum length is {rule.operand}"
            return None

        if rule_type == RuleType.PATTERN:
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                return None
            if _compiled(rule.operand).search(str(value)) is None:
                return rule.message or "Invalid format"
            return None

        if rule_type == RuleType.RANGE:
            low, high = rule.min_value, rule.max_value
            number = _to_number(value)
            if number is not None and (low is None or number >= low) and (high is None or number <= high):
                return None
            if rule.message:
                return rule.message
            if low is not None and high is not None:
                return f"Value must be between {_fmt_bound(low)} and {_fmt_bound(high)}"
            if low is not None:
                return f"Value must be at least {_fmt_bound(low)}"
            return f"Value must be at most {_fmt_bound(high)}"

        if rule_type == RuleType.CUSTOM:
            default = f"{question.label} failed validation rule '{rule.operand}'"
            predicate = self.custom_rules.get(rule.operand)
            if predicate is None:
                logger.warning(
                    "custom rule %r is not registered; failing question %s",
                    rule.operand,
                    question.tkey,
                )
                return rule.message or default
            try:
                passed = bool(predicate(value, question))
            except Exception:
                logger.warning(
                    "custom rule %r raised for question %s",
                    rule.operand,
                    question.tkey,
                    exc_info=True,
                )
                passed = False
            return None if passed else (rule.message or default)

        return None


__all__ = [
    "CustomPredicate",
    "ValidationResult",
    "FormValidationResult",
    "ValidationEngine",
    "is_empty_answer",
]
