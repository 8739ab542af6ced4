"""Schema model entities: forms, sections, questions and templates.

Every entity is a frozen dataclass. Mutations never edit a snapshot in place;
they produce a new snapshot with dataclasses.replace() and hand it to the
repository. Construction normalizes raw values (strings to enums, lists to
tuples, rule dicts to rule objects) and rejects malformed rules with
InvalidConfiguration, so evaluation code can trust what it receives.

All entities serialize to camelCase dicts with to_dict() and load from them
with from_dict(), which checks the payload against formbuilder.payloads first.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from dateutil.parser import isoparse

from formbuilder import payloads
from formbuilder.errors import InvalidConfiguration
from formbuilder.types import (
    AnswerType,
    EntityStatus,
    FormStatus,
    RuleType,
    VisibilityAction,
    VisibilityOperator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return isoparse(value)


def _fmt_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _coerce_enum(instance: Any, name: str, enum_cls: Any) -> None:
    value = getattr(instance, name)
    if not isinstance(value, enum_cls):
        try:
            object.__setattr__(instance, name, enum_cls(value))
        except ValueError:
            raise InvalidConfiguration(
                f"Invalid {name} {value!r}; expected one of "
                f"{', '.join(m.value for m in enum_cls)}"
            ) from None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_order(order: Any, kind: str) -> None:
    if not isinstance(order, int) or isinstance(order, bool):
        raise InvalidConfiguration(f"{kind} order must be an integer, got {order!r}")
    if order < 1:
        raise InvalidConfiguration(f"{kind} order must be >= 1, got {order}")


def _check_list(data: Any, kind: str) -> None:
    if not isinstance(data, (list, tuple)):
        raise InvalidConfiguration(f"{kind} must be a list, got {type(data).__name__}")


@dataclass(frozen=True)
class ValidationRule:
    """A single declarative validation rule.

    Attributes:
        type: Rule kind
        operand: Kind-specific argument. None for required, a non-negative int
            for minLength/maxLength, a regular expression string for pattern,
            {"minValue": n, "maxValue": m} (either may be omitted) for range, and
            the name of a registered predicate for custom.
        message: Message surfaced when the rule fails; a default is used if None

    Examples:
        >>> ValidationRule(type="minLength", operand=3).type
        <RuleType.MIN_LENGTH: 'minLength'>
        >>> ValidationRule(type="range", operand=[1, 10]).operand
        {'minValue': 1, 'maxValue': 10}
    """
    type: RuleType
    operand: Any = None
    message: Optional[str] = None

    def __post_init__(self):
        _coerce_enum(self, "type", RuleType)
        rule_type = self.type

        if rule_type in (RuleType.MIN_LENGTH, RuleType.MAX_LENGTH):
            if not isinstance(self.operand, int) or isinstance(self.operand, bool) or self.operand < 0:
                raise InvalidConfiguration(
                    f"{rule_type.value} rule needs a non-negative integer operand, got {self.operand!r}"
                )

        elif rule_type == RuleType.PATTERN:
            if not isinstance(self.operand, str) or not self.operand:
                raise InvalidConfiguration("pattern rule needs a regular expression string operand")
            try:
                re.compile(self.operand)
            except re.error as exc:
                raise InvalidConfiguration(
                    f"pattern rule operand {self.operand!r} is not a valid regular expression: {exc}"
                ) from None

        elif rule_type == RuleType.RANGE:
            operand = self.operand
            if isinstance(operand, (list, tuple)) and len(operand) == 2:
                operand = {"minValue": operand[0], "maxValue": operand[1]}
            if not isinstance(operand, Mapping):
                raise InvalidConfiguration(
                    "range rule needs an operand of the form {'minValue': n, 'maxValue': m}"
                )
            low = operand.get("minValue")
            high = operand.get("maxValue")
            if low is None and high is None:
                raise InvalidConfiguration("range rule needs at least one of minValue or maxValue")
            for bound in (low, high):
                if bound is not None and not _is_number(bound):
                    raise InvalidConfiguration(f"range bound {bound!r} is not a number")
            if low is not None and high is not None and low > high:
                raise InvalidConfiguration(f"range minValue {low} is greater than maxValue {high}")
            object.__setattr__(self, "operand", {"minValue": low, "maxValue": high})

        elif rule_type == RuleType.CUSTOM:
            if not isinstance(self.operand, str) or not self.operand:
                raise InvalidConfiguration("custom rule needs the name of a registered predicate")

    @property
    def min_value(self) -> Optional[float]:
        return self.operand.get("minValue") if self.type == RuleType.RANGE else None

    @property
    def max_value(self) -> Optional[float]:
        return self.operand.get("maxValue") if self.type == RuleType.RANGE else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"type": self.type.value}
        if self.operand is not None:
            result["operand"] = self.operand
        if self.message is not None:
            result["message"] = self.message
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationRule":
        """Create ValidationRule from dict."""
        payloads.check_payload(payloads.VALIDATION_RULE_SCHEMA, data, "validation rule")
        return cls(type=data["type"], operand=data.get("operand"), message=data.get("message"))


# Legacy flat keys that map one-to-one onto a rule kind
_LEGACY_KEYS = {
    "minLength": RuleType.MIN_LENGTH,
    "maxLength": RuleType.MAX_LENGTH,
    "pattern": RuleType.PATTERN,
    "custom": RuleType.CUSTOM,
}


def _rules_from_legacy(rules: Mapping[str, Any], messages: Mapping[str, str]) -> List[ValidationRule]:
    result: List[ValidationRule] = []
    for key, value in rules.items():
        if key == "required":
            if value:
                result.append(ValidationRule(RuleType.REQUIRED, message=messages.get("required")))
        elif key in _LEGACY_KEYS:
            result.append(ValidationRule(_LEGACY_KEYS[key], operand=value, message=messages.get(key)))
        elif key in ("minValue", "maxValue", "min", "max"):
            continue
        else:
            raise InvalidConfiguration(f"Unknown validation key {key!r}")

    low = rules.get("minValue", rules.get("min"))
    high = rules.get("maxValue", rules.get("max"))
    if low is not None or high is not None:
        result.append(
            ValidationRule(
                RuleType.RANGE,
                operand={"minValue": low, "maxValue": high},
                message=messages.get("range"),
            )
        )
    return result


def parse_validation(data: Any) -> Tuple[ValidationRule, ...]:
    """Normalize any accepted validation shape into an ordered rule tuple.

    Accepts a list of rule dicts/ValidationRule objects (order preserved), a
    legacy flat mapping such as {"minLength": 3, "pattern": "^a"}, or the
    legacy {"rules": {...}, "messages": {...}} configuration.

    Raises:
        InvalidConfiguration: If any rule is malformed or more than one
            required rule is configured
    """
    if data is None:
        return ()

    if isinstance(data, Mapping):
        if "rules" in data or "messages" in data:
            rules = _rules_from_legacy(data.get("rules") or {}, data.get("messages") or {})
        else:
            rules = _rules_from_legacy(data, {})
    elif isinstance(data, (list, tuple)):
        rules = [
            item if isinstance(item, ValidationRule) else ValidationRule.from_dict(item)
            for item in data
        ]
    else:
        raise InvalidConfiguration(
            f"Validation must be a list of rules or a mapping, got {type(data).__name__}"
        )

    if sum(1 for r in rules if r.type == RuleType.REQUIRED) > 1:
        raise InvalidConfiguration("At most one required rule may be configured per question")
    return tuple(rules)


@dataclass(frozen=True)
class VisibilityRule:
    """Conditional visibility dependency on another question's answer.

    Attributes:
        controlling_question_tkey: tkey of the question whose answer is inspected
        operator: Comparison applied to that answer
        value: Operand of the comparison (ignored for isEmpty)
        action: Effect on the owning question when the condition holds
    """
    controlling_question_tkey: str
    operator: VisibilityOperator
    action: VisibilityAction
    value: Any = None

    def __post_init__(self):
        if not self.controlling_question_tkey:
            raise InvalidConfiguration("Visibility rule needs a controlling question tkey")
        _coerce_enum(self, "operator", VisibilityOperator)
        _coerce_enum(self, "action", VisibilityAction)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "controllingQuestionTkey": self.controlling_question_tkey,
            "operator": self.operator.value,
            "value": self.value,
            "action": self.action.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VisibilityRule":
        """Create VisibilityRule from dict."""
        payloads.check_payload(payloads.VISIBILITY_RULE_SCHEMA, data, "visibility rule")
        return cls(
            controlling_question_tkey=data["controllingQuestionTkey"],
            operator=data["operator"],
            action=data["action"],
            value=data.get("value"),
        )


def parse_visibility(data: Optional[Iterable[Any]]) -> Tuple[VisibilityRule, ...]:
    if not data:
        return ()
    _check_list(data, "Visibility")
    return tuple(
        item if isinstance(item, VisibilityRule) else VisibilityRule.from_dict(item)
        for item in data
    )


@dataclass(frozen=True)
class PicklistOption:
    """A static option for a dropdown, radio or checkbox question."""
    label: str
    value: Any
    id: Optional[Any] = None
    order: Optional[int] = None
    is_default: bool = False
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "label": self.label,
            "value": self.value,
            "isDefault": self.is_default,
            "isActive": self.is_active,
        }
        if self.id is not None:
            result["id"] = self.id
        if self.order is not None:
            result["order"] = self.order
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PicklistOption":
        """Create PicklistOption from dict."""
        payloads.check_payload(payloads.PICKLIST_OPTION_SCHEMA, data, "option")
        return cls(
            label=data["label"],
            value=data["value"],
            id=data.get("id"),
            order=data.get("order"),
            is_default=data.get("isDefault", False),
            is_active=data.get("isActive", True),
        )


def parse_options(data: Optional[Iterable[Any]]) -> Tuple[PicklistOption, ...]:
    if not data:
        return ()
    _check_list(data, "Options")
    return tuple(
        item if isinstance(item, PicklistOption) else PicklistOption.from_dict(item)
        for item in data
    )


@dataclass(frozen=True)
class StorageConfig:
    """Where and how a question's answer is persisted downstream."""
    column: Optional[str] = None
    encrypted: bool = False
    indexed: bool = False
    persist_to_table: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "column": self.column,
            "encrypted": self.encrypted,
            "indexed": self.indexed,
            "persistToTable": self.persist_to_table,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["StorageConfig"]:
        """Create StorageConfig from dict; None stays None."""
        if data is None:
            return None
        return cls(
            column=data.get("column"),
            encrypted=data.get("encrypted", False),
            indexed=data.get("indexed", False),
            persist_to_table=data.get("persistToTable"),
        )


def _coerce_storage(instance: Any, name: str) -> None:
    value = getattr(instance, name)
    if isinstance(value, Mapping):
        object.__setattr__(instance, name, StorageConfig.from_dict(dict(value)))


@dataclass(frozen=True)
class Form:
    """Top-level container of sections, tied to a region and a form type.

    Forms carry an etag/version pair like sections and questions, since
    publish, unpublish and archive are versioned mutations.
    """
    id: Any
    name: str
    slug: str
    form_type: str
    region_id: int
    status: FormStatus = FormStatus.DRAFT
    description: Optional[str] = None
    etag: str = ""
    version: int = 1
    has_published_version: bool = False
    published_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    EDITABLE_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"name", "slug", "description", "form_type"})

    def __post_init__(self):
        _coerce_enum(self, "status", FormStatus)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "formType": self.form_type,
            "regionId": self.region_id,
            "status": self.status.value,
            "etag": self.etag,
            "version": self.version,
            "hasPublishedVersion": self.has_published_version,
            "publishedAt": _fmt_ts(self.published_at),
            "createdAt": _fmt_ts(self.created_at),
            "updatedAt": _fmt_ts(self.updated_at),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Form":
        """Create Form from dict."""
        payloads.check_payload(payloads.FORM_SCHEMA, data, "form")
        now = utcnow()
        return cls(
            id=data["id"],
            name=data["name"],
            slug=data.get("slug") or slugify(data["name"]),
            form_type=data["formType"],
            region_id=data["regionId"],
            status=data.get("status", FormStatus.DRAFT),
            description=data.get("description"),
            etag=data.get("etag", ""),
            version=data.get("version", 1),
            has_published_version=data.get("hasPublishedVersion", False),
            published_at=_parse_ts(data.get("publishedAt")),
            created_at=_parse_ts(data.get("createdAt")) or now,
            updated_at=_parse_ts(data.get("updatedAt")) or now,
            created_by=data.get("createdBy"),
            updated_by=data.get("updatedBy"),
        )


@dataclass(frozen=True)
class Section:
    """Ordered grouping of questions within a form."""
    id: Any
    form_id: Any
    slug: str
    name: str
    order: int = 1
    is_active: bool = True
    status: EntityStatus = EntityStatus.DRAFT
    description: Optional[str] = None
    etag: str = ""
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    EDITABLE_FIELDS: ClassVar[FrozenSet[str]] = frozenset(
        {"name", "slug", "description", "order", "is_active", "status"}
    )

    def __post_init__(self):
        _coerce_enum(self, "status", EntityStatus)
        _check_order(self.order, "Section")

    @property
    def is_archived(self) -> bool:
        return self.status == EntityStatus.ARCHIVED

    @property
    def is_live(self) -> bool:
        """Active flag set and not archived; the sense of "active" publish checks use."""
        return self.is_active and not self.is_archived

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "formId": self.form_id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "isActive": self.is_active,
            "status": self.status.value,
            "etag": self.etag,
            "version": self.version,
            "createdAt": _fmt_ts(self.created_at),
            "updatedAt": _fmt_ts(self.updated_at),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Section":
        """Create Section from dict."""
        payloads.check_payload(payloads.SECTION_SCHEMA, data, "section")
        now = utcnow()
        return cls(
            id=data["id"],
            form_id=data["formId"],
            slug=data.get("slug") or slugify(data["name"]),
            name=data["name"],
            order=data.get("order", 1),
            is_active=data.get("isActive", True),
            status=data.get("status", EntityStatus.DRAFT),
            description=data.get("description"),
            etag=data.get("etag", ""),
            version=data.get("version", 1),
            created_at=_parse_ts(data.get("createdAt")) or now,
            updated_at=_parse_ts(data.get("updatedAt")) or now,
            created_by=data.get("createdBy"),
            updated_by=data.get("updatedBy"),
        )


@dataclass(frozen=True)
class Question:
    """A single data-collection field within a section.

    tkey is the externally visible field identifier; answers are keyed by it
    and visibility rules refer to controlling questions through it.
    depends_on lists the tkeys referenced by this question's visibility rules.
    """
    id: Any
    form_id: Any
    section_id: Any
    tkey: str
    label: str
    answer_type: AnswerType
    order: int = 1
    question_template_id: Optional[Any] = None
    helper_text: Optional[str] = None
    required: bool = False
    validation: Tuple[ValidationRule, ...] = ()
    visibility: Tuple[VisibilityRule, ...] = ()
    default_value: Any = None
    options: Tuple[PicklistOption, ...] = ()
    options_api: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    storage: Optional[StorageConfig] = None
    status: EntityStatus = EntityStatus.DRAFT
    etag: str = ""
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    EDITABLE_FIELDS: ClassVar[FrozenSet[str]] = frozenset({
        "tkey", "label", "helper_text", "answer_type", "required", "validation",
        "visibility", "default_value", "options", "options_api", "storage", "order",
    })

    def __post_init__(self):
        _coerce_enum(self, "answer_type", AnswerType)
        _coerce_enum(self, "status", EntityStatus)
        if not self.tkey:
            raise InvalidConfiguration("Question tkey must not be empty")
        _check_order(self.order, "Question")
        object.__setattr__(self, "validation", parse_validation(self.validation))
        object.__setattr__(self, "visibility", parse_visibility(self.visibility))
        object.__setattr__(self, "options", parse_options(self.options))
        _coerce_storage(self, "storage")
        depends_on = tuple(dict.fromkeys(r.controlling_question_tkey for r in self.visibility))
        object.__setattr__(self, "depends_on", depends_on)

    @property
    def is_archived(self) -> bool:
        return self.status == EntityStatus.ARCHIVED

    @property
    def has_options_source(self) -> bool:
        return bool(self.options) or bool(self.options_api)

    @property
    def required_rule(self) -> Optional[ValidationRule]:
        for rule in self.validation:
            if rule.type == RuleType.REQUIRED:
                return rule
        return None

    @property
    def is_required(self) -> bool:
        """required flag or a configured required rule."""
        return self.required or self.required_rule is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "formId": self.form_id,
            "sectionId": self.section_id,
            "order": self.order,
            "questionTemplateId": self.question_template_id,
            "tkey": self.tkey,
            "label": self.label,
            "helperText": self.helper_text,
            "answerType": self.answer_type.value,
            "required": self.required,
            "validation": [r.to_dict() for r in self.validation],
            "visibility": [r.to_dict() for r in self.visibility],
            "defaultValue": self.default_value,
            "options": [o.to_dict() for o in self.options],
            "optionsApi": self.options_api,
            "dependsOn": list(self.depends_on),
            "storage": self.storage.to_dict() if self.storage else None,
            "status": self.status.value,
            "etag": self.etag,
            "version": self.version,
            "createdAt": _fmt_ts(self.created_at),
            "updatedAt": _fmt_ts(self.updated_at),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        """Create Question from dict."""
        payloads.check_payload(payloads.QUESTION_SCHEMA, data, "question")
        now = utcnow()
        return cls(
            id=data["id"],
            form_id=data["formId"],
            section_id=data["sectionId"],
            tkey=data["tkey"],
            label=data["label"],
            answer_type=data["answerType"],
            order=data.get("order", 1),
            question_template_id=data.get("questionTemplateId"),
            helper_text=data.get("helperText"),
            required=data.get("required", False),
            validation=data.get("validation") or (),
            visibility=data.get("visibility") or (),
            default_value=data.get("defaultValue"),
            options=data.get("options") or (),
            options_api=data.get("optionsApi"),
            storage=data.get("storage"),
            status=data.get("status", EntityStatus.DRAFT),
            etag=data.get("etag", ""),
            version=data.get("version", 1),
            created_at=_parse_ts(data.get("createdAt")) or now,
            updated_at=_parse_ts(data.get("updatedAt")) or now,
            created_by=data.get("createdBy"),
            updated_by=data.get("updatedBy"),
        )


@dataclass(frozen=True)
class QuestionTemplate:
    """A reusable, region-scoped blueprint for questions.

    Questions copy a template's fields by value; there is no live link, only
    question_template_id on the question for provenance and usage tracking.
    """
    id: Any
    tkey: str
    label: str
    answer_type: AnswerType
    helper_text: Optional[str] = None
    validation: Tuple[ValidationRule, ...] = ()
    default_value: Any = None
    options: Tuple[PicklistOption, ...] = ()
    options_api: Optional[str] = None
    storage_metadata: Optional[StorageConfig] = None
    available_regions: Tuple[int, ...] = ()
    is_global: bool = False
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    status: EntityStatus = EntityStatus.ACTIVE
    etag: str = ""
    version: int = 1
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    EDITABLE_FIELDS: ClassVar[FrozenSet[str]] = frozenset({
        "tkey", "label", "answer_type", "helper_text", "validation", "default_value",
        "options", "options_api", "storage_metadata", "available_regions",
        "is_global", "category", "tags",
    })

    def __post_init__(self):
        _coerce_enum(self, "answer_type", AnswerType)
        _coerce_enum(self, "status", EntityStatus)
        object.__setattr__(self, "validation", parse_validation(self.validation))
        object.__setattr__(self, "options", parse_options(self.options))
        object.__setattr__(self, "available_regions", tuple(self.available_regions))
        object.__setattr__(self, "tags", tuple(self.tags))
        _coerce_storage(self, "storage_metadata")

    @property
    def is_archived(self) -> bool:
        return self.status == EntityStatus.ARCHIVED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "tkey": self.tkey,
            "label": self.label,
            "answerType": self.answer_type.value,
            "helperText": self.helper_text,
            "validation": [r.to_dict() for r in self.validation],
            "defaultValue": self.default_value,
            "options": [o.to_dict() for o in self.options],
            "optionsApi": self.options_api,
            "storageMetadata": self.storage_metadata.to_dict() if self.storage_metadata else None,
            "availableRegions": list(self.available_regions),
            "isGlobal": self.is_global,
            "category": self.category,
            "tags": list(self.tags),
            "status": self.status.value,
            "etag": self.etag,
            "version": self.version,
            "createdBy": self.created_by,
            "createdAt": _fmt_ts(self.created_at),
            "updatedAt": _fmt_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuestionTemplate":
        """Create QuestionTemplate from dict."""
        payloads.check_payload(payloads.TEMPLATE_SCHEMA, data, "question template")
        now = utcnow()
        return cls(
            id=data["id"],
            tkey=data["tkey"],
            label=data["label"],
            answer_type=data["answerType"],
            helper_text=data.get("helperText"),
            validation=data.get("validation") or (),
            default_value=data.get("defaultValue"),
            options=data.get("options") or (),
            options_api=data.get("optionsApi"),
            storage_metadata=data.get("storageMetadata"),
            available_regions=data.get("availableRegions") or (),
            is_global=data.get("isGlobal", False),
            category=data.get("category"),
            tags=data.get("tags") or (),
            status=data.get("status", EntityStatus.ACTIVE),
            etag=data.get("etag", ""),
            version=data.get("version", 1),
            created_by=data.get("createdBy"),
            created_at=_parse_ts(data.get("createdAt")) or now,
            updated_at=_parse_ts(data.get("updatedAt")) or now,
        )


_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, hyphen-separated slug derived from a display name."""
    return _SLUG_STRIP.sub("-", name.lower()).strip("-")


def sort_by_order(items: Iterable[Any]) -> List[Any]:
    """Stable ordering by (order, id); duplicate order values tie-break on id."""
    return sorted(items, key=order_key)


def order_key(item: Any) -> Tuple[int, int, Any]:
    # Integer ids sort numerically, anything else lexically after them
    if isinstance(item.id, int) and not isinstance(item.id, bool):
        return (item.order, 0, item.id)
    return (item.order, 1, str(item.id))


__all__ = [
    "ValidationRule",
    "VisibilityRule",
    "PicklistOption",
    "StorageConfig",
    "Form",
    "Section",
    "Question",
    "QuestionTemplate",
    "parse_validation",
    "parse_visibility",
    "parse_options",
    "slugify",
    "sort_by_order",
    "order_key",
    "utcnow",
]
