"""Result submission/approval workflow and result locks.

A submission moves ``pending -> approved | rejected``; a rejected submission
can be resubmitted under the same key. Approval publishes the drafts, marks
the submission approved and sets the lock in one transaction, so a pupil
never sees an approved submission or a lock without the published results.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from app.errors import (
    ErrorCode,
    InvalidArgument,
    OperationResult,
    PermissionDenied,
    RecordError,
    fail,
    failure_from_error,
    ok,
)
from app.models.results import (
    LockStatus,
    PublishedResult,
    ResultDraft,
    ResultLock,
    SubmissionRecord,
    SubmissionStatus,
    result_key,
)
from app.store.base import SERVER_TIMESTAMP, ArrayAppend, DocumentStore, Transaction

logger = logging.getLogger(__name__)

APPROVAL_LOCK_REASON = "Admin approved and locked"
DEFAULT_REJECTION_REASON = "No reason provided"


def _missing(**values: Optional[str]) -> list[str]:
    return [name for name, value in values.items() if not value]


async def submit(
    store: DocumentStore,
    class_id: str,
    term: str,
    subject: str,
    session: str,
    teacher_uid: str,
    teacher_name: str = "",
    class_name: str = "",
) -> OperationResult:
    """Request approval for a class/subject/term.

    A pending submission for the same key is not overwritten; the second
    call gets an "already submitted" failure instead.
    """
    missing = _missing(class_id=class_id, term=term, subject=subject, session=session, teacher_uid=teacher_uid)
    if missing:
        return fail(ErrorCode.INVALID_ARGUMENT, f"Missing required parameters: {', '.join(missing)}")

    submission_id = result_key(class_id, session, term, subject)

    async def _submit(txn: Transaction) -> OperationResult:
        doc = await txn.get(SubmissionRecord.Settings.name, submission_id) if readable else None
        existing = SubmissionRecord.from_document(doc) if doc else None
        if existing and existing.status == SubmissionStatus.PENDING:
            return fail(ErrorCode.CONFLICT, "Results already submitted for approval", submission_id=submission_id)
        if existing and existing.status == SubmissionStatus.APPROVED:
            lock = await txn.get(ResultLock.Settings.name, submission_id)
            if lock and lock.get("locked"):
                return fail(ErrorCode.CONFLICT, "Results are already approved and locked", submission_id=submission_id)

        drafts = await store.find(
            ResultDraft.Settings.name,
            {"class_id": class_id, "session": session, "term": term, "subject": subject},
        )
        pupil_count = len({d.pupil_id for d in map(ResultDraft.from_document, drafts) if d.has_score})

        txn.set(
            SubmissionRecord.Settings.name,
            submission_id,
            {
                "class_id": class_id,
                "class_name": class_name,
                "session": session,
                "term": term,
                "subject": subject,
                "teacher_uid": teacher_uid,
                "teacher_name": teacher_name,
                "status": SubmissionStatus.PENDING.value,
                "pupil_count": pupil_count,
                "submitted_at": SERVER_TIMESTAMP,
            },
            merge=True,
        )
        return ok(
            "Results submitted successfully. Waiting for admin approval.",
            submission_id=submission_id,
            pupil_count=pupil_count,
        )

    try:
        readable = await _submission_readable(store, submission_id)
        result = await store.run_transaction(_submit)
    except RecordError as e:
        logger.error(f"Error submitting {submission_id} for approval: {e.message}")
        return failure_from_error(e, "Failed to submit results")
    if result.success:
        logger.info(f"Results submitted for approval: {submission_id} ({result.data['pupil_count']} pupils)")
    return result


async def _submission_readable(store: DocumentStore, submission_id: str) -> bool:
    # A denied read on a document that may not exist cannot be told apart
    # from a missing one, so it counts as "no existing submission". The read
    # happens before the transaction opens; a failed command inside a Mongo
    # transaction aborts it.
    try:
        await store.get(SubmissionRecord.Settings.name, submission_id)
    except PermissionDenied as e:
        logger.warning(f"Lookup of submission {submission_id} denied ({e.message}); treating as not submitted")
        return False
    return True


async def approve(store: DocumentStore, submission_id: str, admin_uid: str) -> OperationResult:
    """Publish the submission's drafts, mark it approved and lock it, atomically.

    The status check and the writes share one transaction, so of two
    concurrent approvals only one publishes; the other sees the approved
    submission on retry and gets a conflict.
    """
    missing = _missing(submission_id=submission_id, admin_uid=admin_uid)
    if missing:
        return fail(ErrorCode.INVALID_ARGUMENT, f"Missing required parameters: {', '.join(missing)}")

    async def _approve(txn: Transaction) -> OperationResult:
        doc = await txn.get(SubmissionRecord.Settings.name, submission_id)
        if doc is None:
            return fail(ErrorCode.NOT_FOUND, "Submission not found", submission_id=submission_id)
        submission = SubmissionRecord.from_document(doc)
        if submission.status == SubmissionStatus.APPROVED:
            return fail(ErrorCode.CONFLICT, "Submission is already approved", submission_id=submission_id)

        docs = await store.find(
            ResultDraft.Settings.name,
            {
                "class_id": submission.class_id,
                "session": submission.session,
                "term": submission.term,
                "subject": submission.subject,
                "teacher_id": submission.teacher_uid,
            },
        )
        drafts = [ResultDraft.from_document(d) for d in docs]
        if not drafts:
            return fail(ErrorCode.NOT_FOUND, "No results found to approve", submission_id=submission_id)
        # Published results plus the submission update and the lock.
        if len(drafts) + 2 > store.max_batch_size:
            raise InvalidArgument(
                f"Approval needs {len(drafts) + 2} writes, more than the limit of {store.max_batch_size}"
            )

        for draft in drafts:
            txn.set(
                PublishedResult.Settings.name,
                ResultDraft.key(draft.pupil_id, draft.term, draft.subject),
                {
                    "pupil_id": draft.pupil_id,
                    "class_id": draft.class_id,
                    "term": draft.term,
                    "subject": draft.subject,
                    "session": draft.session,
                    "ca_score": draft.ca_score,
                    "exam_score": draft.exam_score,
                    "total": draft.total,
                    "teacher_id": draft.teacher_id,
                    "submission_id": submission_id,
                    "approved_by": admin_uid,
                    "approved_at": SERVER_TIMESTAMP,
                    "published_at": SERVER_TIMESTAMP,
                },
            )
        txn.update(
            SubmissionRecord.Settings.name,
            submission_id,
            {
                "status": SubmissionStatus.APPROVED.value,
                "approved_at": SERVER_TIMESTAMP,
                "approved_by": admin_uid,
            },
        )
        txn.set(
            ResultLock.Settings.name,
            submission_id,
            _lock_fields(
                submission.class_id,
                submission.class_name,
                submission.session,
                submission.term,
                submission.subject,
                admin_uid,
                APPROVAL_LOCK_REASON,
            ),
            merge=True,
        )
        return ok(
            "Results approved and locked successfully",
            submission_id=submission_id,
            published=len(drafts),
        )

    try:
        result = await store.run_transaction(_approve)
    except RecordError as e:
        logger.error(f"Error approving {submission_id}: {e.message}")
        return failure_from_error(e, "Failed to approve results")
    if result.success:
        logger.info(f"Results approved and locked: {submission_id} ({result.data['published']} published)")
    return result


async def reject(
    store: DocumentStore,
    submission_id: str,
    admin_uid: str,
    reason: Optional[str] = None,
) -> OperationResult:
    missing = _missing(submission_id=submission_id, admin_uid=admin_uid)
    if missing:
        return fail(ErrorCode.INVALID_ARGUMENT, f"Missing required parameters: {', '.join(missing)}")

    async def _reject(txn: Transaction) -> OperationResult:
        doc = await txn.get(SubmissionRecord.Settings.name, submission_id)
        if doc is None:
            return fail(ErrorCode.NOT_FOUND, "Submission not found", submission_id=submission_id)
        if SubmissionRecord.from_document(doc).status == SubmissionStatus.APPROVED:
            return fail(ErrorCode.CONFLICT, "Approved results cannot be rejected", submission_id=submission_id)
        txn.update(
            SubmissionRecord.Settings.name,
            submission_id,
            {
                "status": SubmissionStatus.REJECTED.value,
                "rejected_at": SERVER_TIMESTAMP,
                "rejected_by": admin_uid,
                "rejection_reason": reason or DEFAULT_REJECTION_REASON,
            },
        )
        return ok("Results rejected. Teacher will be notified.", submission_id=submission_id)

    try:
        result = await store.run_transaction(_reject)
    except RecordError as e:
        logger.error(f"Error rejecting {submission_id}: {e.message}")
        return failure_from_error(e, "Failed to reject results")
    if result.success:
        logger.info(f"Results rejected: {submission_id}")
    return result


def _lock_fields(
    class_id: str, class_name: str, session: str, term: str, subject: str, admin_uid: str, reason: str
) -> dict:
    return {
        "class_id": class_id,
        "class_name": class_name,
        "session": session,
        "term": term,
        "subject": subject,
        "locked": True,
        "locked_at": SERVER_TIMESTAMP,
        "locked_by": admin_uid,
        "reason": reason,
    }


async def lock_results(
    store: DocumentStore,
    class_id: str,
    class_name: str,
    term: str,
    subject: str,
    session: str,
    admin_uid: str,
    reason: str = APPROVAL_LOCK_REASON,
) -> OperationResult:
    """Set the lock outside the approval flow (manual override)."""
    missing = _missing(class_id=class_id, term=term, subject=subject, session=session, admin_uid=admin_uid)
    if missing:
        return fail(ErrorCode.INVALID_ARGUMENT, f"Missing required parameters: {', '.join(missing)}")

    lock_id = result_key(class_id, session, term, subject)
    fields = _lock_fields(class_id, class_name, session, term, subject, admin_uid, reason)
    try:
        await store.set(ResultLock.Settings.name, lock_id, fields, merge=True)
    except RecordError as e:
        logger.error(f"Error locking results {lock_id}: {e.message}")
        return failure_from_error(e, "Failed to lock results")
    logger.info(f"Results locked: {class_name or class_id} - {term} - {subject}")
    return ok("Results locked", lock_id=lock_id)


async def unlock_results(
    store: DocumentStore,
    class_id: str,
    class_name: str,
    term: str,
    subject: str,
    session: str,
    admin_uid: str,
    reason: str,
) -> OperationResult:
    """Clear the lock, appending who/why/previous lock date to the unlock history.

    Does not reopen the submission; it only lets drafts be edited again.
    """
    missing = _missing(
        class_id=class_id, term=term, subject=subject, session=session, admin_uid=admin_uid, reason=reason
    )
    if missing:
        return fail(ErrorCode.INVALID_ARGUMENT, f"Missing required parameters: {', '.join(missing)}")

    lock_id = result_key(class_id, session, term, subject)

    async def _unlock(txn: Transaction) -> None:
        doc = await txn.get(ResultLock.Settings.name, lock_id)
        previous = ResultLock.from_document(doc).locked_at if doc else None
        txn.set(
            ResultLock.Settings.name,
            lock_id,
            {
                "class_id": class_id,
                "class_name": class_name,
                "session": session,
                "term": term,
                "subject": subject,
                "locked": False,
                "unlocked_at": SERVER_TIMESTAMP,
                "unlocked_by": admin_uid,
                "unlock_reason": reason,
                "unlock_history": ArrayAppend(
                    {
                        "unlocked_at": datetime.now(timezone.utc),
                        "unlocked_by": admin_uid,
                        "reason": reason,
                        "previous_lock_date": previous,
                    }
                ),
            },
            merge=True,
        )

    try:
        await store.run_transaction(_unlock)
    except RecordError as e:
        logger.error(f"Error unlocking results {lock_id}: {e.message}")
        return failure_from_error(e, "Failed to unlock results")
    logger.info(f"Results unlocked: {class_name or class_id} - {term} - {subject} by {admin_uid}")
    return ok("Results unlocked", lock_id=lock_id)


async def is_locked(store: DocumentStore, class_id: str, term: str, subject: str, session: str) -> LockStatus:
    """Lock state for a class/subject/term; a missing lock document means unlocked."""
    lock_id = result_key(class_id, session, term, subject)
    try:
        doc = await store.get(ResultLock.Settings.name, lock_id)
    except RecordError as e:
        logger.error(f"Error checking lock status for {lock_id}: {e.message}")
        return LockStatus(locked=False, error=e.message, error_code=e.code)
    if doc is None:
        return LockStatus(locked=False)
    lock = ResultLock.from_document(doc)
    return LockStatus(locked=lock.locked, locked_at=lock.locked_at, locked_by=lock.locked_by, reason=lock.reason)


async def get_submission(store: DocumentStore, submission_id: str) -> Optional[SubmissionRecord]:
    try:
        doc = await store.get(SubmissionRecord.Settings.name, submission_id)
    except RecordError as e:
        logger.error(f"Error loading submission {submission_id}: {e.message}")
        return None
    return SubmissionRecord.from_document(doc) if doc else None


async def list_pending_submissions(store: DocumentStore) -> list[SubmissionRecord]:
    """Pending submissions, newest first."""
    try:
        docs = await store.find(
            SubmissionRecord.Settings.name,
            {"status": SubmissionStatus.PENDING.value},
            sort="-submitted_at",
        )
    except RecordError as e:
        logger.error(f"Error getting submitted results: {e.message}")
        return []
    return [SubmissionRecord.from_document(d) for d in docs]


async def list_published_results(
    store: DocumentStore, pupil_id: str, session: Optional[str] = None, term: Optional[str] = None
) -> list[PublishedResult]:
    filters = {"pupil_id": pupil_id}
    if session:
        filters["session"] = session
    if term:
        filters["term"] = term
    try:
        docs = await store.find(PublishedResult.Settings.name, filters, sort="subject")
    except RecordError as e:
        logger.error(f"Error loading published results for {pupil_id}: {e.message}")
        return []
    return [PublishedResult.from_document(d) for d in docs]
