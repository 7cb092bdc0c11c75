"""
Unit Tests - Review Moderation State Machine
"""
from datetime import datetime, timezone

import pytest

from ratings.database.models import ReviewStatus
from ratings.reviews.errors import DuplicateReview, InvalidStateTransition
from ratings.reviews.records import ReviewRecord
from ratings.reviews.state_machine import ReviewStateMachine, Transition


def make_review(status: ReviewStatus) -> ReviewRecord:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return ReviewRecord(
        id="r1",
        product_id="prod-1",
        user_id="alice",
        rating=4,
        comment="Solid",
        status=status,
        created_at=now,
        updated_at=now,
    )


class TestModerate:
    """Tests for ReviewStateMachine.moderate"""

    @pytest.mark.parametrize("target", [ReviewStatus.APPROVED, ReviewStatus.REJECTED])
    def test_pending_can_be_moderated(self, target):
        """PENDING moves to either outcome"""
        transition = ReviewStateMachine.moderate(make_review(ReviewStatus.PENDING), target)

        assert transition == Transition(ReviewStatus.PENDING, target)
        assert transition.changed

    @pytest.mark.parametrize("status", list(ReviewStatus))
    def test_same_status_is_noop(self, status):
        """Asking for the current status is not an error"""
        transition = ReviewStateMachine.moderate(make_review(status), status)

        assert not transition.changed
        assert not transition.affects_visibility

    @pytest.mark.parametrize(
        "status,target",
        [
            (ReviewStatus.APPROVED, ReviewStatus.REJECTED),
            (ReviewStatus.REJECTED, ReviewStatus.APPROVED),
            (ReviewStatus.APPROVED, ReviewStatus.PENDING),
            (ReviewStatus.REJECTED, ReviewStatus.PENDING),
        ],
    )
    def test_terminal_states_reject_moderation(self, status, target):
        """APPROVED and REJECTED are terminal"""
        with pytest.raises(InvalidStateTransition) as exc_info:
            ReviewStateMachine.moderate(make_review(status), target)

        assert exc_info.value.message == "Only PENDING reviews can be moderated."

    def test_unknown_status_string(self):
        """Strings outside the enum are rejected"""
        with pytest.raises(InvalidStateTransition):
            ReviewStateMachine.moderate(make_review(ReviewStatus.PENDING), "ARCHIVED")

    def test_status_string_is_accepted(self):
        """Enum values given as plain strings work"""
        transition = ReviewStateMachine.moderate(make_review(ReviewStatus.PENDING), "APPROVED")

        assert transition.target is ReviewStatus.APPROVED


class TestTransition:
    """Tests for Transition visibility flags"""

    def test_approval_affects_visibility(self):
        assert Transition(ReviewStatus.PENDING, ReviewStatus.APPROVED).affects_visibility

    def test_rejecting_pending_does_not_affect_visibility(self):
        """PENDING -> REJECTED never touched the approved set"""
        assert not Transition(ReviewStatus.PENDING, ReviewStatus.REJECTED).affects_visibility

    def test_leaving_approved_affects_visibility(self):
        assert Transition(ReviewStatus.APPROVED, ReviewStatus.REJECTED).affects_visibility


class TestEditableAndUnique:
    """Tests for edit guard and pair uniqueness"""

    def test_rejected_not_editable(self):
        with pytest.raises(InvalidStateTransition):
            ReviewStateMachine.ensure_editable(make_review(ReviewStatus.REJECTED))

    @pytest.mark.parametrize("status", [ReviewStatus.PENDING, ReviewStatus.APPROVED])
    def test_other_statuses_editable(self, status):
        ReviewStateMachine.ensure_editable(make_review(status))

    def test_initial_status_is_pending(self):
        assert ReviewStateMachine.initial_status() is ReviewStatus.PENDING

    @pytest.mark.parametrize("status", list(ReviewStatus))
    async def test_pair_taken_regardless_of_status(self, review_store, status):
        """A rejected review still blocks a second one for the same pair"""
        review_store.seed("prod-1", "alice", 3, status=status)
        machine = ReviewStateMachine(review_store)

        with pytest.raises(DuplicateReview):
            await machine.ensure_unique("prod-1", "alice")

    async def test_other_user_is_free(self, review_store):
        review_store.seed("prod-1", "alice", 3)
        machine = ReviewStateMachine(review_store)

        await machine.ensure_unique("prod-1", "bob")
        await machine.ensure_unique("prod-2", "alice")
