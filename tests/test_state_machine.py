"""Unit tests for the lifecycle tables.

Tests cover:
- Valid and invalid form transitions
- Section/question/template transitions
- Terminal state handling and error details
"""

import pytest

from formbuilder.errors import InvalidStateTransitionError
from formbuilder.state_machine import (
    FORM_LIFECYCLE,
    FORM_STATUS_TO_ACTION,
    QUESTION_LIFECYCLE,
    SECTION_LIFECYCLE,
    VALID_FORM_TRANSITIONS,
)
from formbuilder.types import EntityStatus, FormStatus, HistoryAction


class TestFormLifecycle:
    """Test form transitions."""

    @pytest.mark.parametrize("current,target", [
        (FormStatus.DRAFT, FormStatus.ACTIVE),
        (FormStatus.ACTIVE, FormStatus.DRAFT),
        (FormStatus.DRAFT, FormStatus.ARCHIVED),
        (FormStatus.ACTIVE, FormStatus.ARCHIVED),
    ])
    def test_valid_transitions(self, current, target):
        """Should allow publish, unpublish and archive."""
        assert FORM_LIFECYCLE.can_transition(current, target)
        FORM_LIFECYCLE.ensure(current, target)

    def test_same_state_is_not_a_transition(self):
        """Should refuse publishing an already active form."""
        with pytest.raises(InvalidStateTransitionError, match="cannot move from 'active' to 'active'"):
            FORM_LIFECYCLE.ensure(FormStatus.ACTIVE, FormStatus.ACTIVE)

    def test_archived_is_terminal(self):
        assert FORM_LIFECYCLE.is_terminal(FormStatus.ARCHIVED)
        assert VALID_FORM_TRANSITIONS[FormStatus.ARCHIVED] == frozenset()
        with pytest.raises(InvalidStateTransitionError, match="terminal"):
            FORM_LIFECYCLE.ensure(FormStatus.ARCHIVED, FormStatus.DRAFT)

    def test_error_details(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            FORM_LIFECYCLE.ensure(FormStatus.ARCHIVED, FormStatus.ACTIVE)
        error = exc_info.value
        assert error.current_state == FormStatus.ARCHIVED
        assert error.target_state == FormStatus.ACTIVE
        assert error.to_dict()["details"] == {"from": "archived", "to": "active"}
        assert error.to_dict()["code"] == "invalid_transition"

    def test_history_actions(self):
        assert FORM_STATUS_TO_ACTION[FormStatus.ACTIVE] == HistoryAction.PUBLISHED
        assert FORM_STATUS_TO_ACTION[FormStatus.DRAFT] == HistoryAction.UNPUBLISHED
        assert FORM_STATUS_TO_ACTION[FormStatus.ARCHIVED] == HistoryAction.ARCHIVED


class TestEntityLifecycle:
    """Test section and question transitions."""

    def test_draft_to_active_and_back(self):
        assert SECTION_LIFECYCLE.can_transition(EntityStatus.DRAFT, EntityStatus.ACTIVE)
        assert SECTION_LIFECYCLE.can_transition(EntityStatus.ACTIVE, EntityStatus.DRAFT)

    def test_no_restore_from_archived(self):
        """Should offer no way out of archived."""
        for target in EntityStatus:
            assert not QUESTION_LIFECYCLE.can_transition(EntityStatus.ARCHIVED, target)

    def test_ensure_mutable(self):
        QUESTION_LIFECYCLE.ensure_mutable(EntityStatus.DRAFT)
        QUESTION_LIFECYCLE.ensure_mutable(EntityStatus.ACTIVE)
        with pytest.raises(InvalidStateTransitionError, match="Question is 'archived'"):
            QUESTION_LIFECYCLE.ensure_mutable(EntityStatus.ARCHIVED)
