import asyncio

import pytest

from app.errors import ErrorCode, PermissionDenied, Unavailable
from app.models.results import PublishedResult, ResultLock, SubmissionRecord, SubmissionStatus, result_key
from app.services import result_approval, result_drafts
from app.store.memory import MemoryDocumentStore

SESSION = "2025/2026"
TERM = "First Term"
SUBJECT = "Mathematics"
SUBMISSION_ID = result_key("C1", SESSION, TERM, SUBJECT)

SCORES = {
    "p1": {"ca_score": 30, "exam_score": 50},
    "p2": {"ca_score": 25, "exam_score": 0},
    "p3": {"ca_score": 0, "exam_score": 0},
}


async def _submitted(store):
    saved = await result_drafts.save_drafts(store, "C1", TERM, SUBJECT, SESSION, "t1", SCORES)
    assert saved.success
    result = await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1", "Mrs Ade", "Primary 1")
    assert result.success
    return result


async def test_submit_creates_pending_submission(store):
    result = await _submitted(store)
    assert result.data["submission_id"] == SUBMISSION_ID
    # p3 has no score yet.
    assert result.data["pupil_count"] == 2

    submission = await result_approval.get_submission(store, SUBMISSION_ID)
    assert submission.status == SubmissionStatus.PENDING
    assert submission.teacher_name == "Mrs Ade"
    assert submission.class_name == "Primary 1"
    assert submission.submitted_at is not None


async def test_second_submit_reports_already_submitted(store):
    await _submitted(store)
    again = await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1")
    assert not again.success
    assert again.code == ErrorCode.CONFLICT
    assert "already submitted" in again.message
    assert len(await store.find(SubmissionRecord.Settings.name)) == 1


async def test_submit_when_submission_read_is_denied(store, monkeypatch):
    await result_drafts.save_drafts(store, "C1", TERM, SUBJECT, SESSION, "t1", SCORES)
    original_get = store.get

    async def denied_for_submissions(collection, doc_id):
        if collection == SubmissionRecord.Settings.name:
            raise PermissionDenied("not authorized on result_submissions")
        return await original_get(collection, doc_id)

    monkeypatch.setattr(store, "get", denied_for_submissions)
    result = await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1")
    assert result.success, result.message
    assert result.data["pupil_count"] == 2

    [submission] = await store.find(SubmissionRecord.Settings.name)
    assert submission["status"] == SubmissionStatus.PENDING.value


async def test_submit_missing_parameters(store):
    result = await result_approval.submit(store, "C1", "", SUBJECT, SESSION, "t1")
    assert result.code == ErrorCode.INVALID_ARGUMENT
    assert "term" in result.message


async def test_approve_publishes_marks_and_locks_together(store):
    await _submitted(store)
    result = await result_approval.approve(store, SUBMISSION_ID, "admin1")
    assert result.success
    assert result.data["published"] == 3

    submission = await result_approval.get_submission(store, SUBMISSION_ID)
    assert submission.status == SubmissionStatus.APPROVED
    assert submission.approved_by == "admin1"

    docs = await store.find(PublishedResult.Settings.name)
    published = {d["pupil_id"]: PublishedResult.from_document(d) for d in docs}
    assert set(published) == {"p1", "p2", "p3"}
    assert published["p1"].total == 80
    assert published["p1"].submission_id == SUBMISSION_ID

    lock = await result_approval.is_locked(store, "C1", TERM, SUBJECT, SESSION)
    assert lock.locked
    assert lock.locked_by == "admin1"
    assert lock.reason == result_approval.APPROVAL_LOCK_REASON


async def test_failed_approval_leaves_nothing_visible(store, monkeypatch):
    await _submitted(store)
    original = MemoryDocumentStore._apply_op

    def failing_on_lock(self, staged, op, timestamp):
        if op.collection == ResultLock.Settings.name:
            raise Unavailable("connection reset")
        original(self, staged, op, timestamp)

    monkeypatch.setattr(MemoryDocumentStore, "_apply_op", failing_on_lock)
    result = await result_approval.approve(store, SUBMISSION_ID, "admin1")
    assert not result.success
    assert result.code == ErrorCode.UNAVAILABLE
    assert result.retry

    submission = await result_approval.get_submission(store, SUBMISSION_ID)
    assert submission.status == SubmissionStatus.PENDING
    assert await store.find(PublishedResult.Settings.name) == []
    assert await store.get(ResultLock.Settings.name, SUBMISSION_ID) is None


async def test_approve_twice_is_a_conflict(store):
    await _submitted(store)
    await result_approval.approve(store, SUBMISSION_ID, "admin1")
    again = await result_approval.approve(store, SUBMISSION_ID, "admin1")
    assert again.code == ErrorCode.CONFLICT


async def test_concurrent_approvals_publish_once(store):
    await _submitted(store)
    first, second = await asyncio.gather(
        result_approval.approve(store, SUBMISSION_ID, "admin1"),
        result_approval.approve(store, SUBMISSION_ID, "admin2"),
    )
    assert sorted([first.success, second.success]) == [False, True]
    winner, loser = (first, second) if first.success else (second, first)
    assert loser.code == ErrorCode.CONFLICT

    submission = await result_approval.get_submission(store, SUBMISSION_ID)
    winning_admin = "admin1" if winner is first else "admin2"
    assert submission.approved_by == winning_admin
    published = await store.find(PublishedResult.Settings.name)
    assert {d["approved_by"] for d in published} == {winning_admin}


async def test_approve_unknown_submission(store):
    result = await result_approval.approve(store, "nope", "admin1")
    assert result.code == ErrorCode.NOT_FOUND


async def test_approve_without_drafts(store):
    await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1")
    result = await result_approval.approve(store, SUBMISSION_ID, "admin1")
    assert result.code == ErrorCode.NOT_FOUND
    assert result.message == "No results found to approve"


@pytest.mark.usefixtures("beanie_models")
async def test_approve_beyond_batch_limit_fails_cleanly():
    store = MemoryDocumentStore(max_batch_size=3)
    await result_drafts.save_drafts(store, "C1", TERM, SUBJECT, SESSION, "t1", {"p1": {"ca_score": 10}})
    await result_drafts.save_drafts(store, "C1", TERM, SUBJECT, SESSION, "t1", {"p2": {"ca_score": 10}})
    await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1")

    # Two published results, the submission update and the lock make four writes.
    result = await result_approval.approve(store, SUBMISSION_ID, "admin1")
    assert result.code == ErrorCode.INVALID_ARGUMENT
    assert await store.find(PublishedResult.Settings.name) == []


async def test_reject_then_resubmit(store):
    await _submitted(store)
    rejected = await result_approval.reject(store, SUBMISSION_ID, "admin1")
    assert rejected.success

    submission = await result_approval.get_submission(store, SUBMISSION_ID)
    assert submission.status == SubmissionStatus.REJECTED
    assert submission.rejection_reason == result_approval.DEFAULT_REJECTION_REASON
    assert await result_approval.list_pending_submissions(store) == []

    again = await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1")
    assert again.success
    submission = await result_approval.get_submission(store, SUBMISSION_ID)
    assert submission.status == SubmissionStatus.PENDING


async def test_reject_approved_submission_is_a_conflict(store):
    await _submitted(store)
    await result_approval.approve(store, SUBMISSION_ID, "admin1")
    result = await result_approval.reject(store, SUBMISSION_ID, "admin1", "late")
    assert result.code == ErrorCode.CONFLICT


async def test_resubmit_after_approval_needs_unlock(store):
    await _submitted(store)
    await result_approval.approve(store, SUBMISSION_ID, "admin1")

    blocked = await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1")
    assert blocked.code == ErrorCode.CONFLICT

    await result_approval.unlock_results(store, "C1", "Primary 1", TERM, SUBJECT, SESSION, "admin1", "Correction")
    assert (await result_approval.submit(store, "C1", TERM, SUBJECT, SESSION, "t1")).success


async def test_unlock_records_history(store):
    await _submitted(store)
    await result_approval.approve(store, SUBMISSION_ID, "admin1")
    locked_at = (await result_approval.is_locked(store, "C1", TERM, SUBJECT, SESSION)).locked_at

    result = await result_approval.unlock_results(
        store, "C1", "Primary 1", TERM, SUBJECT, SESSION, "admin2", "Score typo"
    )
    assert result.success
    await result_approval.lock_results(store, "C1", "Primary 1", TERM, SUBJECT, SESSION, "admin1")
    await result_approval.unlock_results(store, "C1", "Primary 1", TERM, SUBJECT, SESSION, "admin1", "Second fix")

    lock = ResultLock.from_document(await store.get(ResultLock.Settings.name, SUBMISSION_ID))
    assert not lock.locked
    assert lock.unlock_reason == "Second fix"
    assert [entry.reason for entry in lock.unlock_history] == ["Score typo", "Second fix"]
    assert lock.unlock_history[0].unlocked_by == "admin2"
    assert lock.unlock_history[0].previous_lock_date == locked_at


async def test_unlock_requires_reason(store):
    result = await result_approval.unlock_results(store, "C1", "", TERM, SUBJECT, SESSION, "admin1", "")
    assert result.code == ErrorCode.INVALID_ARGUMENT


async def test_is_locked_without_lock_document(store):
    status = await result_approval.is_locked(store, "C1", TERM, SUBJECT, SESSION)
    assert not status.locked
    assert status.error is None


async def test_list_pending_newest_first(store):
    await result_approval.submit(store, "C1", TERM, "English", SESSION, "t1")
    await result_approval.submit(store, "C1", TERM, "Mathematics", SESSION, "t1")
    await result_approval.submit(store, "C2", TERM, "Mathematics", SESSION, "t2")

    pending = await result_approval.list_pending_submissions(store)
    assert [(s.class_id, s.subject) for s in pending] == [
        ("C2", "Mathematics"),
        ("C1", "Mathematics"),
        ("C1", "English"),
    ]


@pytest.mark.parametrize("session, term", [(None, None), (SESSION, TERM)])
async def test_published_results_for_pupil(store, session, term):
    await _submitted(store)
    await result_approval.approve(store, SUBMISSION_ID, "admin1")
    results = await result_approval.list_published_results(store, "p1", session=session, term=term)
    assert [(r.subject, r.total) for r in results] == [(SUBJECT, 80)]
    assert await result_approval.list_published_results(store, "p1", term="Third Term") == []
