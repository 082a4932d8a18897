"""
Unit tests for ReviewStateMachine.
"""
import asyncio
from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from app.core.exceptions import (
    IllegalTransitionError,
    InvalidInputError,
    InvalidRatingError,
    NotFoundError,
    UnknownHostError,
)
from app.models.schemas import BulkTransitionItem, HostStatus, RelevanceGate
from app.services.state_machine import ALLOWED_TRANSITIONS, transition_error

PENDING = HostStatus.PENDING
ACCEPTED = HostStatus.ACCEPTED
REJECTED = HostStatus.REJECTED
ASSIGNED = HostStatus.ASSIGNED


class TestTransitionGraph:
    @pytest.mark.parametrize(
        "current,target",
        [
            (None, PENDING),
            (PENDING, ACCEPTED),
            (PENDING, REJECTED),
            (ACCEPTED, ASSIGNED),
            (ACCEPTED, PENDING),
            (REJECTED, PENDING),
            (ASSIGNED, ACCEPTED),
            (ASSIGNED, PENDING),
        ],
    )
    def test_allowed_edges(self, current, target):
        """Test every edge of the transition graph is accepted."""
        assert transition_error(current, target) is None

    @pytest.mark.parametrize(
        "current,target",
        [
            (None, ACCEPTED),
            (None, ASSIGNED),
            (PENDING, ASSIGNED),
            (REJECTED, ACCEPTED),
            (REJECTED, ASSIGNED),
            (ASSIGNED, REJECTED),
            (ACCEPTED, REJECTED),
        ],
    )
    def test_disallowed_edges(self, current, target):
        """Test edges outside the graph are refused."""
        assert transition_error(current, target) == "transition not allowed"

    @pytest.mark.parametrize("status", list(HostStatus))
    def test_self_transition_is_illegal(self, status):
        assert transition_error(status, status) == "status is unchanged"

    def test_external_id_only_with_assigned(self):
        assert transition_error(PENDING, ACCEPTED, external_id="X1") is not None
        assert transition_error(ACCEPTED, ASSIGNED, external_id="X1") is None

    def test_every_status_has_an_exit(self):
        """Every status can reach another one."""
        for status in HostStatus:
            assert ALLOWED_TRANSITIONS[status]


class TestRelevanceGate:
    @pytest.mark.asyncio
    async def test_new_video_awaits_triage(self, submit, statuses):
        """Test a new video starts in triage with no statuses."""
        video = await submit(likes_count=500)

        assert video.gate is RelevanceGate.RELEVANCE
        assert video.score is None
        assert video.taken_by == 0
        assert await statuses(video.id) == {1: None, 2: None}

    @pytest.mark.asyncio
    async def test_submitting_reviewable_starts_every_host_pending(self, submit, statuses):
        """Test a reviewable submission puts every host in pending."""
        video = await submit(likes_count=10, relevance_rating=2)

        assert video.score == 20
        assert await statuses(video.id) == {1: PENDING, 2: PENDING}

    @pytest.mark.asyncio
    async def test_likes_and_acceptance_scenario(self, submit, state_machine):
        """Test score and taken-by through a typical review."""
        video = await submit(likes_count=500)
        assert video.score is None

        video = await state_machine.set_relevance(video.id, 2)
        assert video.score == 1000

        result = await state_machine.transition_host(video.id, 1, ACCEPTED)
        assert result.taken_by == 1

        result = await state_machine.transition_host(video.id, 2, ACCEPTED)
        assert result.taken_by == 2

        result = await state_machine.transition_host(video.id, 1, PENDING)
        assert result.taken_by == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [4, -2, 10])
    async def test_invalid_rating(self, submit, state_machine, rating):
        video = await submit()

        with pytest.raises(InvalidRatingError):
            await state_machine.set_relevance(video.id, rating)

    @pytest.mark.asyncio
    async def test_boolean_is_not_a_rating(self, submit, state_machine):
        video = await submit()

        with pytest.raises(InvalidRatingError):
            await state_machine.set_relevance(video.id, True)

    @pytest.mark.asyncio
    async def test_unknown_video(self, state_machine):
        """Test rating an unknown video."""
        with pytest.raises(NotFoundError):
            await state_machine.set_relevance(999, 2)

    @pytest.mark.asyncio
    async def test_trash_clears_statuses_and_keeps_notes(
        self, submit, state_machine, review_service, statuses
    ):
        """Test trashing clears statuses and external ids but keeps notes."""
        video = await submit(likes_count=7, relevance_rating=3)
        await state_machine.transition_host(video.id, 1, ACCEPTED, note="great topic")
        await state_machine.transition_host(video.id, 1, ASSIGNED, external_id="EP-42")
        await state_machine.transition_host(video.id, 2, REJECTED)

        video = await state_machine.set_relevance(video.id, 0)

        assert video.gate is RelevanceGate.TRASH
        assert video.score == 0
        assert video.taken_by == 0
        assert await statuses(video.id) == {1: None, 2: None}

        detail = await review_service.get_video(video.id)
        host_1 = detail.reviews[0]
        assert host_1.note == "great topic"
        assert host_1.external_id is None

    @pytest.mark.asyncio
    async def test_reopening_gate_restarts_at_pending(self, submit, state_machine, statuses):
        """Test reopening the gate starts every host at pending."""
        video = await submit(relevance_rating=1)
        await state_machine.transition_host(video.id, 1, ACCEPTED)
        await state_machine.set_relevance(video.id, -1)

        video = await state_machine.set_relevance(video.id, 3)

        assert await statuses(video.id) == {1: PENDING, 2: PENDING}
        assert video.taken_by == 0

    @pytest.mark.asyncio
    async def test_round_trip_does_not_resurrect_judgments(self, submit, state_machine, statuses):
        """Test leaving and re-entering the gate forgets earlier judgments."""
        video = await submit(likes_count=3)
        await state_machine.set_relevance(video.id, 2)
        await state_machine.transition_host(video.id, 1, ACCEPTED)
        await state_machine.transition_host(video.id, 2, REJECTED)

        await state_machine.set_relevance(video.id, -1)
        video = await state_machine.set_relevance(video.id, 2)

        assert await statuses(video.id) == {1: PENDING, 2: PENDING}
        assert video.taken_by == 0
        assert video.score == 6

    @pytest.mark.asyncio
    async def test_rerating_within_reviewable_keeps_statuses(self, submit, state_machine, statuses):
        video = await submit(likes_count=4, relevance_rating=1)
        await state_machine.transition_host(video.id, 2, ACCEPTED)

        video = await state_machine.set_relevance(video.id, 3)

        assert video.score == 12
        assert video.taken_by == 1
        assert await statuses(video.id) == {1: PENDING, 2: ACCEPTED}


class TestHostTransitions:
    @pytest.mark.asyncio
    async def test_closed_gate_rejects_transitions(self, submit, state_machine):
        """Test transitions on a closed gate are illegal."""
        video = await submit()

        with pytest.raises(IllegalTransitionError) as exc_info:
            await state_machine.transition_host(video.id, 1, PENDING)

        assert "relevance gate" in exc_info.value.details["reason"]

    @pytest.mark.asyncio
    async def test_pending_cannot_jump_to_assigned(self, submit, state_machine):
        """Test pending cannot skip straight to assigned."""
        video = await submit(relevance_rating=2)

        with pytest.raises(IllegalTransitionError) as exc_info:
            await state_machine.transition_host(video.id, 1, ASSIGNED, external_id="X")

        assert exc_info.value.details["current"] == "pending"
        assert exc_info.value.details["attempted"] == "assigned"

    @pytest.mark.asyncio
    async def test_self_transition_rejected(self, submit, state_machine):
        video = await submit(relevance_rating=2)

        with pytest.raises(IllegalTransitionError):
            await state_machine.transition_host(video.id, 1, PENDING)

    @pytest.mark.asyncio
    async def test_external_id_rejected_without_assigned(self, submit, state_machine):
        video = await submit(relevance_rating=2)

        with pytest.raises(IllegalTransitionError):
            await state_machine.transition_host(video.id, 1, ACCEPTED, external_id="X")

    @pytest.mark.asyncio
    async def test_unknown_host(self, submit, state_machine):
        video = await submit(relevance_rating=2)

        with pytest.raises(UnknownHostError):
            await state_machine.transition_host(video.id, 9, ACCEPTED)

    @pytest.mark.asyncio
    async def test_unknown_status_value(self, submit, state_machine):
        """Test an unknown status string is invalid input."""
        video = await submit(relevance_rating=2)

        with pytest.raises(InvalidInputError):
            await state_machine.transition_host(video.id, 1, "approved")

    @pytest.mark.asyncio
    async def test_assign_then_revert_clears_external_id(self, submit, state_machine, review_service):
        """Test moving away from assigned drops the external id."""
        video = await submit(relevance_rating=2)
        await state_machine.transition_host(video.id, 1, ACCEPTED, note="call them")

        assigned = await state_machine.transition_host(video.id, 1, ASSIGNED, external_id="EP-7")
        assert assigned.external_id == "EP-7"
        assert assigned.taken_by == 1

        reverted = await state_machine.transition_host(video.id, 1, PENDING)
        assert reverted.external_id is None
        assert reverted.taken_by == 0

        review = await review_service._review_repo.get(video.id, 1)
        assert review.status is PENDING
        assert review.note == "call them"

    @pytest.mark.asyncio
    async def test_unassign_keeps_taken_by(self, submit, state_machine):
        video = await submit(relevance_rating=2)
        await state_machine.transition_host(video.id, 1, ACCEPTED)
        await state_machine.transition_host(video.id, 1, ASSIGNED, external_id="EP-7")

        result = await state_machine.transition_host(video.id, 1, ACCEPTED)

        assert result.external_id is None
        assert result.taken_by == 1

    @pytest.mark.asyncio
    async def test_note_handling(self, submit, state_machine, review_service):
        """Test note kept on None and cleared on empty string."""
        video = await submit(relevance_rating=2)
        await state_machine.transition_host(video.id, 1, ACCEPTED, note="first")

        # None keeps the current note
        await state_machine.transition_host(video.id, 1, PENDING)
        review = await review_service._review_repo.get(video.id, 1)
        assert review.note == "first"

        # Empty string clears it
        await state_machine.transition_host(video.id, 1, REJECTED, note="")
        review = await review_service._review_repo.get(video.id, 1)
        assert review.note is None

    @pytest.mark.asyncio
    async def test_transition_stamps_updated_at(self, submit, state_machine, review_service):
        """Test a status change stamps its timestamp."""
        video = await submit(relevance_rating=2)
        before = await review_service._review_repo.get(video.id, 1)

        result = await state_machine.transition_host(video.id, 1, ACCEPTED)

        assert before.updated_at is not None
        assert result.updated_at >= before.updated_at
        review = await review_service._review_repo.get(video.id, 1)
        assert review.updated_at == result.updated_at

    @pytest.mark.asyncio
    async def test_failed_aggregation_rolls_back_status(self, submit, state_machine, review_service):
        """Test a failure after the status write undoes it."""
        video = await submit(relevance_rating=2)

        with patch.object(
            state_machine._aggregator, "apply", side_effect=RuntimeError("storage down")
        ):
            with pytest.raises(RuntimeError):
                await state_machine.transition_host(video.id, 1, ACCEPTED)

        review = await review_service._review_repo.get(video.id, 1)
        assert review.status is PENDING

    @pytest.mark.asyncio
    async def test_illegal_transition_is_counted(self, submit, state_machine):
        """Test illegal transitions are counted in metrics."""
        labels = {"status": "assigned", "outcome": "illegal"}
        before = REGISTRY.get_sample_value("review_host_transitions_total", labels) or 0
        video = await submit(relevance_rating=2)

        with pytest.raises(IllegalTransitionError):
            await state_machine.transition_host(video.id, 2, ASSIGNED)

        after = REGISTRY.get_sample_value("review_host_transitions_total", labels)
        assert after == before + 1

    @pytest.fixture
    def yielding_reads(self, state_machine, review_service):
        """Make every host-row read give up the event loop, recording lock state."""
        repo = review_service._review_repo
        original = repo.get
        seen = []

        async def yielding_get(video_id, host_id):
            await asyncio.sleep(0)
            locks = state_machine.locks
            seen.append((locks.is_locked(video_id), locks._refs.get(video_id, 0)))
            return await original(video_id, host_id)

        with patch.object(repo, "get", side_effect=yielding_get):
            yield seen

    @pytest.mark.asyncio
    async def test_concurrent_transitions_keep_taken_by_exact(
        self, submit, state_machine, review_service, yielding_reads
    ):
        """Writers for one video queue on its lock instead of interleaving."""
        videos = [
            await submit(url=f"https://example.com/topic/{i}", relevance_rating=2)
            for i in range(5)
        ]
        yielding_reads.clear()

        await asyncio.gather(*[
            state_machine.transition_host(video.id, host_id, ACCEPTED)
            for video in videos
            for host_id in (1, 2)
        ])

        assert all(held for held, _ in yielding_reads)
        assert any(waiting > 1 for _, waiting in yielding_reads)
        for video in videos:
            stored = await review_service._video_repo.get(video.id)
            assert stored.taken_by == 2
            report = await review_service.check_consistency(video.id)
            assert report.consistent, report.violations

    @pytest.mark.asyncio
    async def test_relevance_change_and_transition_serialize(
        self, submit, state_machine, review_service, statuses, yielding_reads
    ):
        """Closing the gate while a host accepts leaves no status behind."""
        video = await submit(relevance_rating=2)

        results = await asyncio.gather(
            state_machine.transition_host(video.id, 1, ACCEPTED),
            state_machine.set_relevance(video.id, 0),
            return_exceptions=True,
        )

        assert not isinstance(results[1], Exception)
        # Whichever ran first, the transition either applied or hit the closed gate
        assert not isinstance(results[0], Exception) or isinstance(results[0], IllegalTransitionError)
        assert await statuses(video.id) == {1: None, 2: None}
        stored = await review_service._video_repo.get(video.id)
        assert stored.taken_by == 0
        report = await review_service.check_consistency(video.id)
        assert report.consistent, report.violations


class TestBulkAndNotes:
    @pytest.mark.asyncio
    async def test_bulk_reports_per_item(self, submit, state_machine):
        """Test bulk results are reported per item."""
        video = await submit(relevance_rating=2)
        items = [
            BulkTransitionItem(video_id=video.id, host_id=1, status=ACCEPTED),
            BulkTransitionItem(video_id=video.id, host_id=2, status=ASSIGNED),
            BulkTransitionItem(video_id=video.id, host_id=2, status=REJECTED),
        ]

        results = await state_machine.bulk_transition(items)

        assert [r.success for r in results] == [True, False, True]
        assert results[1].error["code"] == "ILLEGAL_TRANSITION"
        assert results[2].result.taken_by == 1

    @pytest.mark.asyncio
    async def test_update_note_leaves_status(self, submit, state_machine, review_service):
        """Test a note update leaves the status alone."""
        video = await submit(relevance_rating=2)

        review = await state_machine.update_note(video.id, 2, "needs a guest")

        assert review.note == "needs a guest"
        assert review.status is PENDING
        stored = await review_service._video_repo.get(video.id)
        assert stored.taken_by == 0

    @pytest.mark.asyncio
    async def test_update_note_on_closed_gate(self, submit, state_machine):
        """Notes can be edited whatever the gate."""
        video = await submit()

        review = await state_machine.update_note(video.id, 1, "check later")

        assert review.note == "check later"
        assert review.status is None
