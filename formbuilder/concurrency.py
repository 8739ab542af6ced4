"""Optimistic concurrency for entity mutations.

Every mutable entity carries an (etag, version) pair. A mutation must present
the etag the caller last observed; a mismatch fails with ConflictError and the
caller has to re-fetch and retry. Nothing is merged and no lock is held across
operations: the etag check is the only concurrency control.

A successful mutation bumps version by one, stamps a fresh etag that is never
reused, and refreshes updatedAt/updatedBy.
"""

from dataclasses import fields, replace
from typing import Any, Dict, Optional, TypeVar
import hashlib
import itertools
import logging
import threading
import uuid

from formbuilder.errors import ConflictError
from formbuilder.models import utcnow
from formbuilder.types import EntityKind

logger = logging.getLogger(__name__)

E = TypeVar("E")

# Keys that change on every mutation and so carry no information in history
_BOOKKEEPING_KEYS = frozenset(
    {"etag", "version", "createdAt", "updatedAt", "createdBy", "updatedBy", "dependsOn"}
)


class EtagFactory:
    """Generates weak etags unique per mutation.

    The token mixes the entity identity and version with a per-factory
    monotonic counter and a random component, so two mutations never share
    an etag even when they land in the same clock tick.

    Examples:
        >>> factory = EtagFactory()
        >>> a = factory.next_etag(EntityKind.SECTION, 1, 1)
        >>> b = factory.next_etag(EntityKind.SECTION, 1, 1)
        >>> a != b
        True
        >>> a.startswith('W/"')
        True
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next_etag(self, kind: EntityKind, entity_id: Any, version: int) -> str:
        with self._lock:
            seq = next(self._counter)
        token = f"{kind.value}|{entity_id}|{version}|{seq}|{uuid.uuid4().hex}".encode("utf-8")
        return f'W/"{hashlib.sha1(token).hexdigest()}"'


def check_etag(kind: EntityKind, entity: Any, supplied: Optional[str]) -> None:
    """Raise ConflictError unless supplied matches the entity's current etag.

    Raises:
        ConflictError: If supplied is missing or stale
    """
    if supplied is None or supplied != entity.etag:
        logger.warning(
            "etag mismatch entity=%s id=%s supplied=%s current=%s",
            kind.value,
            entity.id,
            supplied,
            entity.etag,
        )
        raise ConflictError(kind, entity.id, supplied, entity.etag)


def bump(entity: E, kind: EntityKind, etags: EtagFactory, actor_id: Optional[str], **changes: Any) -> E:
    """Return a new snapshot of entity with changes applied and version bumped.

    Args:
        entity: Current snapshot
        kind: Entity kind, mixed into the new etag
        etags: Factory issuing the new etag
        actor_id: Recorded as updatedBy where the entity has that field
        **changes: Field values to replace

    Returns:
        New snapshot with version + 1, a fresh etag and refreshed timestamps
    """
    version = entity.version + 1
    stamp: Dict[str, Any] = {
        "version": version,
        "etag": etags.next_etag(kind, entity.id, version),
        "updated_at": utcnow(),
    }
    if "updated_by" in {f.name for f in fields(entity)}:
        stamp["updated_by"] = actor_id
    return replace(entity, **changes, **stamp)


def changed_fields(old: Any, new: Any) -> Dict[str, Any]:
    """Serialized fields whose value differs between two snapshots.

    Returns:
        {camelCaseField: new value} without etag/version/timestamp bookkeeping
    """
    before = old.to_dict()
    after = new.to_dict()
    return {
        key: value
        for key, value in after.items()
        if key not in _BOOKKEEPING_KEYS and before.get(key) != value
    }


__all__ = [
    "EtagFactory",
    "check_etag",
    "bump",
    "changed_fields",
]
