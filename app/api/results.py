from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from app.api.deps import AdminOnly, CurrentActor, Store, TeacherOrAdmin, raise_for_failure
from app.models.results import LockStatus, PublishedResult, ResultDraft, ScoreEntry, SubmissionRecord
from app.models.user import UserRole
from app.services import result_approval, result_drafts

router = APIRouter()


class ResultScope(BaseModel):
    class_id: str
    term: str
    subject: str
    session: str


class SaveDraftsRequest(ResultScope):
    scores: dict[str, ScoreEntry]


class SubmitRequest(ResultScope):
    class_name: str = ""


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class LockRequest(ResultScope):
    class_name: str = ""
    reason: Optional[str] = None


class UnlockRequest(ResultScope):
    class_name: str = ""
    reason: str


@router.put("/drafts")
async def save_drafts(data: SaveDraftsRequest, user: TeacherOrAdmin, store: Store):
    result = await result_drafts.save_drafts(
        store, data.class_id, data.term, data.subject, data.session, user.uid, data.scores
    )
    return raise_for_failure(result)


@router.get("/drafts", response_model=List[ResultDraft])
async def list_drafts(class_id: str, term: str, subject: str, session: str, user: TeacherOrAdmin, store: Store):
    return await result_drafts.list_drafts(store, class_id, term, subject, session)


@router.post("/submissions")
async def submit_for_approval(data: SubmitRequest, user: TeacherOrAdmin, store: Store):
    result = await result_approval.submit(
        store,
        data.class_id,
        data.term,
        data.subject,
        data.session,
        user.uid,
        teacher_name=user.name,
        class_name=data.class_name,
    )
    return raise_for_failure(result)


@router.get("/submissions/pending", response_model=List[SubmissionRecord])
async def list_pending(user: AdminOnly, store: Store):
    """Pending submissions, newest first."""
    return await result_approval.list_pending_submissions(store)


# Session names contain "/" (e.g. 2024/2025), so submission ids are matched as paths.
@router.post("/submissions/{submission_id:path}/approve")
async def approve_submission(submission_id: str, user: AdminOnly, store: Store):
    return raise_for_failure(await result_approval.approve(store, submission_id, user.uid))


@router.post("/submissions/{submission_id:path}/reject")
async def reject_submission(submission_id: str, data: RejectRequest, user: AdminOnly, store: Store):
    return raise_for_failure(await result_approval.reject(store, submission_id, user.uid, data.reason))


@router.get("/submissions/{submission_id:path}", response_model=SubmissionRecord)
async def get_submission(submission_id: str, user: TeacherOrAdmin, store: Store):
    submission = await result_approval.get_submission(store, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission


@router.get("/locks", response_model=LockStatus)
async def lock_status(class_id: str, term: str, subject: str, session: str, user: TeacherOrAdmin, store: Store):
    return await result_approval.is_locked(store, class_id, term, subject, session)


@router.post("/locks/lock")
async def lock_results(data: LockRequest, user: AdminOnly, store: Store):
    result = await result_approval.lock_results(
        store,
        data.class_id,
        data.class_name,
        data.term,
        data.subject,
        data.session,
        user.uid,
        reason=data.reason or result_approval.APPROVAL_LOCK_REASON,
    )
    return raise_for_failure(result)


@router.post("/locks/unlock")
async def unlock_results(data: UnlockRequest, user: AdminOnly, store: Store):
    result = await result_approval.unlock_results(
        store, data.class_id, data.class_name, data.term, data.subject, data.session, user.uid, data.reason
    )
    return raise_for_failure(result)


@router.get("/published", response_model=List[PublishedResult])
async def published_results(
    user: CurrentActor,
    store: Store,
    pupil_id: Optional[str] = Query(None),
    session: Optional[str] = Query(None),
    term: Optional[str] = Query(None),
):
    """Published results; pupils only ever see their own."""
    if user.role == UserRole.PUPIL:
        if pupil_id and pupil_id != user.uid:
            raise HTTPException(status_code=403, detail="Pupils can only view their own results")
        pupil_id = user.uid
    if not pupil_id:
        raise HTTPException(status_code=400, detail="pupil_id is required")
    return await result_approval.list_published_results(store, pupil_id, session=session, term=term)
