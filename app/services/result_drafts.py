"""Teacher-entered draft scores, gated by the result lock."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Union

from app.errors import ErrorCode, InvalidArgument, OperationResult, RecordError, fail, failure_from_error, ok
from app.models.results import CA_MAX, EXAM_MAX, ResultDraft, ScoreEntry
from app.services.result_approval import is_locked
from app.store.base import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)


def _as_entry(value: Union[ScoreEntry, Mapping[str, Any]]) -> ScoreEntry:
    return value if isinstance(value, ScoreEntry) else ScoreEntry.model_validate(value)


def _check_scores(scores: Mapping[str, ScoreEntry]) -> None:
    for pupil_id, entry in scores.items():
        if not 0 <= entry.ca_score <= CA_MAX:
            raise InvalidArgument(f"Invalid CA score for {pupil_id}: {entry.ca_score}. Must be between 0 and {CA_MAX}.")
        if not 0 <= entry.exam_score <= EXAM_MAX:
            raise InvalidArgument(
                f"Invalid exam score for {pupil_id}: {entry.exam_score}. Must be between 0 and {EXAM_MAX}."
            )


async def save_drafts(
    store: DocumentStore,
    class_id: str,
    term: str,
    subject: str,
    session: str,
    teacher_uid: str,
    scores: Mapping[str, Union[ScoreEntry, Mapping[str, Any]]],
) -> OperationResult:
    """Write draft scores for a class/subject in one batch.

    Refused while the class/subject/term result lock is set.
    """
    if not all([class_id, term, subject, session, teacher_uid]):
        return fail(ErrorCode.INVALID_ARGUMENT, "Missing required parameters")
    if not scores:
        return fail(ErrorCode.INVALID_ARGUMENT, "No scores to save. Enter at least one score.")
    entries = {pupil_id: _as_entry(value) for pupil_id, value in scores.items()}
    try:
        _check_scores(entries)
    except InvalidArgument as e:
        return fail(e.code, e.message)

    lock = await is_locked(store, class_id, term, subject, session)
    if lock.locked:
        return fail(
            ErrorCode.PERMISSION_DENIED,
            f"Results for {subject} ({term}) are locked. Ask an administrator to unlock them.",
        )

    batch = store.batch()
    for pupil_id, entry in entries.items():
        batch.set(
            ResultDraft.Settings.name,
            ResultDraft.key(pupil_id, term, subject),
            {
                "pupil_id": pupil_id,
                "class_id": class_id,
                "term": term,
                "subject": subject,
                "session": session,
                "ca_score": entry.ca_score,
                "exam_score": entry.exam_score,
                "teacher_id": teacher_uid,
                "updated_at": SERVER_TIMESTAMP,
            },
            merge=True,
        )
    try:
        await batch.commit()
    except RecordError as e:
        logger.error(f"Failed to save drafts for {class_id} {subject} {term}: {e.message}")
        return failure_from_error(e, "Failed to save results")

    logger.info(f"Saved {len(entries)} draft result(s) for {class_id} - {subject} - {term}")
    return ok(f"{len(entries)} result(s) saved successfully", saved=len(entries))


async def list_drafts(store: DocumentStore, class_id: str, term: str, subject: str, session: str) -> list[ResultDraft]:
    try:
        docs = await store.find(
            ResultDraft.Settings.name,
            {"class_id": class_id, "session": session, "term": term, "subject": subject},
            sort="pupil_id",
        )
    except RecordError as e:
        logger.error(f"Failed to load drafts for {class_id} {subject} {term}: {e.message}")
        return []
    return [ResultDraft.from_document(d) for d in docs]
