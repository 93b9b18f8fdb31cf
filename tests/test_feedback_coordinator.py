from datetime import timedelta

import pytest

from conftest import TRANSCRIPT, FailingAssessor, FakeAssessor

from coursecert.core.error_handling import (
    ConcurrencyConflictError,
    InterviewArchivedError,
    NotFoundError,
    StoreTransientError,
    UpstreamFailureError,
    ValidationError,
)
from coursecert.core.metrics import collector
from coursecert.db.base import utcnow
from coursecert.db.store import SqlDocumentStore
from coursecert.services.feedback_coordinator import (
    FeedbackCommitCoordinator,
    feedback_id_for,
    flatten_transcript,
    validate_transcript,
)
from coursecert.services.records import InterviewStatus
from coursecert.services.repositories.feedback import FeedbackRepository
from coursecert.services.repositories.interviews import InterviewRepository
from coursecert.services.retake_policy import InterviewPolicyConfig


def _coordinator(store, assessor, config=None) -> FeedbackCommitCoordinator:
    return FeedbackCommitCoordinator(
        store,
        assessor,
        InterviewRepository(store),
        FeedbackRepository(store),
        config or InterviewPolicyConfig(),
    )


async def _latest_flags(store, interview_id):
    rows = await store.query("feedback", [("interview_id", "==", interview_id)])
    return [row["is_latest"] for row in rows]


@pytest.mark.asyncio
async def test_failing_score_sets_cooldown_and_reports_remaining_attempts(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    coordinator = _coordinator(store, FakeAssessor(65))

    before = utcnow()
    result = await coordinator.submit_transcript(interview.id, "u1", TRANSCRIPT)

    stored = await InterviewRepository(store).get_interview(interview.id)
    assert stored.status == InterviewStatus.COMPLETED
    assert stored.feedback_id == result.feedback.id
    assert stored.attempt_count == 1
    assert [entry.content for entry in stored.transcript] == [e["content"] for e in TRANSCRIPT]
    expected = before + timedelta(days=7)
    assert abs((stored.next_retake_date - expected).total_seconds()) <= 1

    assert result.replayed is False
    assert result.feedback.total_score == 65
    assert result.feedback.is_latest is True
    assert result.retake_eligibility.required is True
    assert result.retake_eligibility.available_date == stored.next_retake_date
    assert result.retake_eligibility.attempts_remaining == 2
    assert collector.snapshot()["counters"]["feedback_committed"] == 1


@pytest.mark.asyncio
async def test_passing_score_leaves_no_cooldown(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    result = await _coordinator(store, FakeAssessor(88)).submit_transcript(interview.id, "u1", TRANSCRIPT)

    stored = await InterviewRepository(store).get_interview(interview.id)
    assert stored.next_retake_date is None
    assert result.retake_eligibility.required is False
    assert result.retake_eligibility.available_date is None


@pytest.mark.asyncio
async def test_feedback_id_is_derived_from_interview_and_attempt(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    result = await _coordinator(store, FakeAssessor(40)).submit_transcript(interview.id, "u1", TRANSCRIPT)

    assert result.feedback.id == feedback_id_for(interview.id, 1)
    assert result.feedback.attempt_number == 1
    assert result.feedback.transcript == flatten_transcript(validate_transcript(TRANSCRIPT))
    assert feedback_id_for(interview.id, 1) != feedback_id_for(interview.id, 2)


@pytest.mark.asyncio
@pytest.mark.parametrize("transcript", [
    [],
    [{"role": "user"}],
    [{"role": "user", "content": "   "}],
    [{"role": "", "content": "hello"}],
])
async def test_invalid_transcript_fails_before_any_io(store, transcript) -> None:
    assessor = FakeAssessor(65)
    with pytest.raises(ValidationError):
        await _coordinator(store, assessor).submit_transcript("does-not-exist", "u1", transcript)
    assert assessor.calls == []


@pytest.mark.asyncio
async def test_unknown_or_foreign_interview_is_not_found(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    assessor = FakeAssessor(65)
    coordinator = _coordinator(store, assessor)

    with pytest.raises(NotFoundError):
        await coordinator.submit_transcript("missing", "u1", TRANSCRIPT)
    with pytest.raises(NotFoundError):
        await coordinator.submit_transcript(interview.id, "intruder", TRANSCRIPT)
    assert assessor.calls == []


@pytest.mark.asyncio
async def test_archived_interview_is_rejected(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    await store.update("interviews", interview.id, {"status": "archived"})

    with pytest.raises(InterviewArchivedError):
        await _coordinator(store, FakeAssessor(65)).submit_transcript(interview.id, "u1", TRANSCRIPT)


@pytest.mark.asyncio
async def test_upstream_failure_leaves_state_untouched(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    assessor = FailingAssessor()

    with pytest.raises(UpstreamFailureError):
        await _coordinator(store, assessor).submit_transcript(interview.id, "u1", TRANSCRIPT)

    stored = await InterviewRepository(store).get_interview(interview.id)
    assert stored.status == InterviewStatus.PENDING
    assert stored.feedback_id is None
    assert await store.query("feedback", [("interview_id", "==", interview.id)]) == []
    assert assessor.calls == 1


@pytest.mark.asyncio
async def test_rescoring_keeps_exactly_one_latest_feedback(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    coordinator = _coordinator(store, FakeAssessor(40, 50, 60), InterviewPolicyConfig(max_attempts=10))

    results = [await coordinator.submit_transcript(interview.id, "u1", TRANSCRIPT) for _ in range(3)]

    assert [r.feedback.attempt_number for r in results] == [1, 2, 3]
    assert sorted(await _latest_flags(store, interview.id)) == [False, False, True]

    stored = await InterviewRepository(store).get_interview(interview.id)
    assert stored.attempt_count == 3
    assert stored.feedback_id == results[-1].feedback.id
    latest = await store.get("feedback", stored.feedback_id)
    assert latest["is_latest"] is True
    assert latest["total_score"] == 60


class _DropsConnectionOnInterviewUpdate(SqlDocumentStore):
    async def _apply(self, session, op):
        await super()._apply(session, op)
        if op.kind == "update" and op.collection == "interviews":
            raise StoreTransientError("batch_commit", "connection reset during commit")


@pytest.mark.asyncio
async def test_failed_commit_changes_nothing(store) -> None:
    repo = InterviewRepository(store)
    interview = await repo.create_interview("c1", "u1", ["q1"], attempt_count=1)
    await _coordinator(store, FakeAssessor(40), InterviewPolicyConfig(max_attempts=10)).submit_transcript(
        interview.id, "u1", TRANSCRIPT
    )
    before = await repo.get_interview(interview.id)

    flaky = _DropsConnectionOnInterviewUpdate(store._session_factory)
    with pytest.raises(StoreTransientError):
        await _coordinator(flaky, FakeAssessor(55), InterviewPolicyConfig(max_attempts=10)).submit_transcript(
            interview.id, "u1", TRANSCRIPT
        )

    after = await repo.get_interview(interview.id)
    assert (after.status, after.feedback_id, after.attempt_count) == (
        before.status, before.feedback_id, before.attempt_count
    )
    rows = await store.query("feedback", [("interview_id", "==", interview.id)])
    assert [row["id"] for row in rows] == [before.feedback_id]
    assert rows[0]["is_latest"] is True
    assert collector.snapshot()["counters"]["feedback_commit_failed"] == 1


class _NonAtomicStore(SqlDocumentStore):
    """Applies batch writes one by one and loses the connection after the feedback insert."""

    atomic_batches = False

    async def commit_batch(self, operations):
        for op in operations:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._apply(session, op)
            if op.kind == "insert" and op.collection == "feedback":
                raise StoreTransientError("batch_commit", "connection lost mid-batch")


@pytest.mark.asyncio
async def test_non_atomic_store_failure_deletes_preallocated_feedback(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    non_atomic = _NonAtomicStore(store._session_factory)

    with pytest.raises(StoreTransientError):
        await _coordinator(non_atomic, FakeAssessor(65)).submit_transcript(interview.id, "u1", TRANSCRIPT)

    assert await store.get("feedback", feedback_id_for(interview.id, 1)) is None
    stored = await InterviewRepository(store).get_interview(interview.id)
    assert stored.status == InterviewStatus.PENDING


@pytest.mark.asyncio
async def test_third_failed_attempt_archives_earlier_attempts(store) -> None:
    repo = InterviewRepository(store)
    coordinator = _coordinator(store, FakeAssessor(40))
    attempts = []
    previous = None
    for attempt_count in (1, 2, 3):
        interview = await repo.create_interview(
            "c1", "u1", ["q1"], attempt_count=attempt_count,
            previous_interview_id=previous.id if previous else None,
        )
        result = await coordinator.submit_transcript(interview.id, "u1", TRANSCRIPT)
        attempts.append(interview)
        previous = interview

    statuses = [(await repo.get_interview(i.id)).status for i in attempts]
    assert statuses == [InterviewStatus.ARCHIVED, InterviewStatus.ARCHIVED, InterviewStatus.COMPLETED]
    assert result.retake_eligibility.attempts_remaining == 0
    assert (await repo.get_interview(attempts[0].id)).archived_at is not None


@pytest.mark.asyncio
async def test_coordinator_archives_siblings_when_attempt_cap_reached(store) -> None:
    created = utcnow() - timedelta(days=30)
    for attempt_count in (1, 2):
        await store.insert("interviews", {
            "id": f"old-{attempt_count}",
            "course_id": "c1",
            "user_id": "u1",
            "status": "completed",
            "attempt_count": attempt_count,
            "questions": ["q1"],
            "created_at": created + timedelta(days=attempt_count),
        })
    await store.insert("interviews", {
        "id": "other-course",
        "course_id": "c2",
        "user_id": "u1",
        "status": "completed",
        "attempt_count": 1,
        "questions": ["q1"],
    })
    await store.insert("interviews", {
        "id": "current",
        "course_id": "c1",
        "user_id": "u1",
        "status": "pending",
        "attempt_count": 3,
        "questions": ["q1"],
    })

    await _coordinator(store, FakeAssessor(40)).submit_transcript("current", "u1", TRANSCRIPT)

    repo = InterviewRepository(store)
    assert (await repo.get_interview("old-1")).status == InterviewStatus.ARCHIVED
    assert (await repo.get_interview("old-2")).status == InterviewStatus.ARCHIVED
    assert (await repo.get_interview("current")).status == InterviewStatus.COMPLETED
    assert (await repo.get_interview("other-course")).status == InterviewStatus.COMPLETED


class _StaleInterviewReads(InterviewRepository):
    """Serves the interview as it was before a twin request committed."""

    def __init__(self, store, snapshot):
        super().__init__(store)
        self.snapshot = snapshot

    async def get_interview(self, interview_id):
        return self.snapshot.model_copy()


@pytest.mark.asyncio
async def test_twin_submission_replays_the_committed_feedback(store) -> None:
    repo = InterviewRepository(store)
    interview = await repo.create_interview("c1", "u1", ["q1"], attempt_count=1)
    snapshot = await repo.get_interview(interview.id)

    committed = await _coordinator(store, FakeAssessor(65)).submit_transcript(interview.id, "u1", TRANSCRIPT)

    twin = FeedbackCommitCoordinator(
        store,
        FakeAssessor(90),
        _StaleInterviewReads(store, snapshot),
        FeedbackRepository(store),
        InterviewPolicyConfig(),
    )
    replayed = await twin.submit_transcript(interview.id, "u1", TRANSCRIPT)

    assert replayed.replayed is True
    assert replayed.feedback.id == committed.feedback.id
    assert replayed.feedback.total_score == 65
    assert replayed.retake_eligibility.required is True
    assert await _latest_flags(store, interview.id) == [True]
    stored = await repo.get_interview(interview.id)
    assert stored.attempt_count == 1
    assert stored.feedback_id == committed.feedback.id
    assert collector.snapshot()["counters"]["feedback_replayed"] == 1


@pytest.mark.asyncio
async def test_retry_with_same_attempt_number_replays_without_rescoring(store) -> None:
    repo = InterviewRepository(store)
    interview = await repo.create_interview("c1", "u1", ["q1"], attempt_count=1)
    assessor = FakeAssessor(65, 90)
    coordinator = _coordinator(store, assessor)

    first = await coordinator.submit_transcript(interview.id, "u1", TRANSCRIPT, attempt_number=1)
    retry = await coordinator.submit_transcript(interview.id, "u1", TRANSCRIPT, attempt_number=1)

    assert retry.replayed is True
    assert retry.feedback.id == first.feedback.id
    assert retry.feedback.total_score == 65
    assert retry.retake_eligibility.attempts_remaining == 2
    assert retry.retake_eligibility.available_date == first.retake_eligibility.available_date
    assert len(assessor.calls) == 1

    rows = await store.query("feedback", [("interview_id", "==", interview.id)])
    assert len(rows) == 1
    stored = await repo.get_interview(interview.id)
    assert stored.attempt_count == 1
    assert stored.feedback_id == first.feedback.id
    assert collector.snapshot()["counters"]["feedback_replayed"] == 1


@pytest.mark.asyncio
async def test_next_attempt_number_rescores(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    coordinator = _coordinator(store, FakeAssessor(40, 75), InterviewPolicyConfig(max_attempts=10))

    await coordinator.submit_transcript(interview.id, "u1", TRANSCRIPT, attempt_number=1)
    second = await coordinator.submit_transcript(interview.id, "u1", TRANSCRIPT, attempt_number=2)

    assert second.replayed is False
    assert second.feedback.attempt_number == 2
    assert second.feedback.total_score == 75
    assert sorted(await _latest_flags(store, interview.id)) == [False, True]


@pytest.mark.asyncio
async def test_attempt_number_ahead_of_interview_is_a_conflict(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)

    with pytest.raises(ConcurrencyConflictError):
        await _coordinator(store, FakeAssessor(65)).submit_transcript(
            interview.id, "u1", TRANSCRIPT, attempt_number=3
        )

    assert await store.query("feedback", [("interview_id", "==", interview.id)]) == []
    assert (await InterviewRepository(store).get_interview(interview.id)).status == InterviewStatus.PENDING


@pytest.mark.asyncio
async def test_non_positive_attempt_number_is_rejected(store) -> None:
    assessor = FakeAssessor(65)
    with pytest.raises(ValidationError):
        await _coordinator(store, assessor).submit_transcript("i1", "u1", TRANSCRIPT, attempt_number=0)
    assert assessor.calls == []


class _SequentialStore(SqlDocumentStore):
    """Commits each batch write in its own transaction."""

    atomic_batches = False

    async def commit_batch(self, operations):
        for op in operations:
            async with self._translate_errors("batch_commit", op.collection, op.document_id):
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._apply(session, op)


@pytest.mark.asyncio
async def test_conflict_with_in_flight_twin_keeps_its_feedback(store) -> None:
    interview = await InterviewRepository(store).create_interview("c1", "u1", ["q1"], attempt_count=1)
    twin_feedback_id = feedback_id_for(interview.id, 1)
    # The twin has inserted its feedback but not yet completed the interview.
    await store.insert("feedback", {
        "id": twin_feedback_id,
        "interview_id": interview.id,
        "user_id": "u1",
        "total_score": 70,
        "category_scores": {
            "communication": 70,
            "technical": 70,
            "problemSolving": 70,
            "culturalFit": 70,
            "confidence": 70,
        },
        "strengths": [],
        "areas_for_improvement": [],
        "final_assessment": "twin",
        "is_latest": True,
        "attempt_number": 1,
        "created_at": utcnow(),
    })

    sequential = _SequentialStore(store._session_factory)
    with pytest.raises(ConcurrencyConflictError):
        await _coordinator(sequential, FakeAssessor(65)).submit_transcript(interview.id, "u1", TRANSCRIPT)

    assert await store.get("feedback", twin_feedback_id) is not None
    assert collector.snapshot()["counters"]["feedback_commit_failed"] == 1
