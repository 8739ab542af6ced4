"""Form history entries and the history emitter.

Every successful mutation appends exactly one FormHistoryEntry to the owning
form's history log (archive cascades append one per archived entity). The log
is append-only: entries are never rewritten or compacted, and the engine
never reads it back for its own decisions.

HistoryEmitter lets callers observe entries as they are appended, e.g. to
forward them to an audit sink.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import json
import logging

from dateutil.parser import isoparse

from formbuilder import payloads
from formbuilder.types import Actor, ActorKind, EntityKind, HistoryAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormHistoryEntry:
    """A single record in a form's history log.

    Attributes:
        entry_id: Unique entry identifier (e.g., "hist_4f1c...")
        form_id: Form whose log this entry belongs to
        version: Version of the mutated entity after the mutation
        action: What happened
        entity: Kind of entity that was mutated
        entity_id: Id of the mutated entity
        actor: Who performed the mutation
        timestamp: UTC time of the mutation
        changes: Changed fields, as {field: new value}
        description: Optional human-readable summary

    Examples:
        >>> from datetime import datetime, timezone
        >>> entry = FormHistoryEntry(
        ...     entry_id="hist_001",
        ...     form_id=1,
        ...     version=2,
        ...     action=HistoryAction.PUBLISHED,
        ...     entity=EntityKind.FORM,
        ...     entity_id=1,
        ...     actor=Actor(kind=ActorKind.USER, id="admin"),
        ...     timestamp=datetime.now(timezone.utc),
        ... )
    """
    entry_id: str
    form_id: Any
    version: int
    action: HistoryAction
    entity: EntityKind
    entity_id: Any
    actor: Actor
    timestamp: datetime
    changes: Optional[Dict[str, Any]] = None
    description: Optional[str] = None

    def __post_init__(self):
        """Normalize string enum values."""
        if isinstance(self.action, str) and not isinstance(self.action, HistoryAction):
            object.__setattr__(self, "action", HistoryAction(self.action))
        if isinstance(self.entity, str) and not isinstance(self.entity, EntityKind):
            object.__setattr__(self, "entity", EntityKind(self.entity))
        if isinstance(self.actor, Actor) and isinstance(self.actor.kind, str):
            object.__setattr__(
                self,
                "actor",
                Actor(
                    kind=ActorKind(self.actor.kind),
                    id=self.actor.id,
                    name=self.actor.name,
                    metadata=self.actor.metadata,
                ),
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to dictionary for serialization.

        Returns:
            Dictionary with all entry fields, suitable for JSON serialization.
            Timestamp is formatted as ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "entryId": self.entry_id,
            "formId": self.form_id,
            "version": self.version,
            "action": self.action.value,
            "entity": self.entity.value,
            "entityId": self.entity_id,
            "actor": self.actor.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }
        if self.changes is not None:
            result["changes"] = self.changes
        if self.description is not None:
            result["description"] = self.description
        return result

    def to_jsonl(self) -> str:
        """Single-line JSON suitable for appending to a JSONL audit file."""
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormHistoryEntry":
        """Create FormHistoryEntry from dictionary (camelCase keys)."""
        payloads.check_payload(payloads.HISTORY_ENTRY_SCHEMA, data, "history entry")
        return cls(
            entry_id=data["entryId"],
            form_id=data["formId"],
            version=data["version"],
            action=HistoryAction(data["action"]),
            entity=EntityKind(data["entity"]),
            entity_id=data["entityId"],
            actor=Actor.from_dict(data["actor"]),
            timestamp=isoparse(data["timestamp"]),
            changes=data.get("changes"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class FormVersion:
    """One version of a form, derived from a form-level history entry.

    Child edits (sections, questions) are not form versions: they bump their
    own entity version and leave the form's version alone.
    """
    form_id: Any
    version: int
    action: HistoryAction
    created_at: datetime
    created_by: str
    changes: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: FormHistoryEntry) -> "FormVersion":
        return cls(
            form_id=entry.form_id,
            version=entry.version,
            action=entry.action,
            created_at=entry.timestamp,
            created_by=entry.actor.id,
            changes=dict(entry.changes or {}),
            description=entry.description,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "formId": self.form_id,
            "version": self.version,
            "action": self.action.value,
            "changes": self.changes,
            "createdAt": self.created_at.isoformat(),
            "createdBy": self.created_by,
            "description": self.description,
        }


HistoryListener = Callable[[FormHistoryEntry], None]
"""Type alias for history listener callbacks.

Listeners are called synchronously after an entry has been persisted.
"""


class HistoryEmitter:
    """Dispatches appended history entries to registered listeners.

    Features:
    - Action-specific subscriptions (e.g. only "published")
    - Wildcard subscriptions (every entry)
    - Synchronous dispatch in registration order
    - Error isolation: a failing listener is logged and skipped

    Examples:
        >>> emitter = HistoryEmitter()
        >>> seen = []
        >>> emitter.on(HistoryAction.PUBLISHED, seen.append)
        >>> emitter.on_any(lambda e: None)
        >>> emitter.listener_count()
        2
    """

    def __init__(self):
        self._listeners: Dict[HistoryAction, List[HistoryListener]] = {}
        self._any_listeners: List[HistoryListener] = []

    def on(self, action: HistoryAction, listener: HistoryListener) -> None:
        """Subscribe to a specific history action."""
        self._listeners.setdefault(action, []).append(listener)

    def on_any(self, listener: HistoryListener) -> None:
        """Subscribe to every history entry."""
        self._any_listeners.append(listener)

    def off(self, action: HistoryAction, listener: HistoryListener) -> None:
        """Unsubscribe from a specific history action; unknown listeners are ignored."""
        listeners = self._listeners.get(action, [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: HistoryListener) -> None:
        """Unsubscribe a wildcard listener; unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, entry: FormHistoryEntry) -> None:
        """Dispatch an entry to action-specific listeners, then wildcard listeners.

        A listener exception is logged and does not reach the caller or the
        remaining listeners; the entry is already persisted at this point.
        """
        for listener in list(self._listeners.get(entry.action, [])) + list(self._any_listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception(
                    "history listener failed form_id=%s action=%s entry_id=%s",
                    entry.form_id,
                    entry.action.value,
                    entry.entry_id,
                )

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, action: Optional[HistoryAction] = None) -> int:
        """Count listeners for one action, or all listeners including wildcards."""
        if action is not None:
            return len(self._listeners.get(action, []))
        return len(self._any_listeners) + sum(len(v) for v in self._listeners.values())


__all__ = [
    "FormHistoryEntry",
    "FormVersion",
    "HistoryListener",
    "HistoryEmitter",
]
