"""Result drafts, approval workflow records, published results and locks."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Indexed
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from app.errors import ErrorCode
from app.models.base import StoredModel

CA_MAX = 40
EXAM_MAX = 60


def result_key(class_id: str, session: str, term: str, subject: str) -> str:
    """Key shared by a submission and its lock."""
    return f"{class_id}_{session}_{term}_{subject}"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ScoreEntry(BaseModel):
    ca_score: float = 0
    exam_score: float = 0


class ResultDraft(StoredModel):
    pupil_id: Indexed(str)
    class_id: str
    term: str
    subject: str
    session: str
    ca_score: float = 0
    exam_score: float = 0
    teacher_id: str = ""
    updated_at: Optional[datetime] = None

    @property
    def total(self) -> float:
        return self.ca_score + self.exam_score

    @property
    def has_score(self) -> bool:
        return self.ca_score > 0 or self.exam_score > 0

    @staticmethod
    def key(pupil_id: str, term: str, subject: str) -> str:
        return f"{pupil_id}_{term}_{subject}"

    class Settings:
        name = "result_drafts"
        indexes = [
            IndexModel([("class_id", ASCENDING), ("session", ASCENDING), ("term", ASCENDING), ("subject", ASCENDING)]),
        ]


class SubmissionRecord(StoredModel):
    class_id: str
    class_name: str = ""
    session: str
    term: str
    subject: str
    teacher_uid: str
    teacher_name: str = ""
    status: SubmissionStatus = SubmissionStatus.PENDING
    pupil_count: int = 0
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    class Settings:
        name = "result_submissions"
        indexes = [
            IndexModel([("status", ASCENDING), ("submitted_at", DESCENDING)]),
        ]


class PublishedResult(StoredModel):
    """Pupil-visible copy of a draft, written only by approval."""
    pupil_id: Indexed(str)
    class_id: str
    term: str
    subject: str
    session: str
    ca_score: float = 0
    exam_score: float = 0
    total: float = 0
    teacher_id: str = ""
    submission_id: str = ""
    approved_by: str = ""
    approved_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    class Settings:
        name = "published_results"


class UnlockEntry(BaseModel):
    unlocked_at: datetime
    unlocked_by: str
    reason: str = ""
    previous_lock_date: Optional[datetime] = None


class ResultLock(StoredModel):
    class_id: str
    class_name: str = ""
    session: str
    term: str
    subject: str
    locked: bool = False
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    reason: Optional[str] = None
    unlocked_at: Optional[datetime] = None
    unlocked_by: Optional[str] = None
    unlock_reason: Optional[str] = None
    unlock_history: list[UnlockEntry] = Field(default_factory=list)

    class Settings:
        name = "result_locks"


class LockStatus(BaseModel):
    locked: bool = False
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
