from datetime import datetime
from typing import ClassVar, Optional

from beanie import Indexed
from pydantic import BaseModel, Field

from app.models.base import StoredModel


class SchoolClass(StoredModel):
    """School class (e.g., Nursery 1, Primary 3)."""
    name: Indexed(str) = "Unnamed Class"
    created_at: Optional[datetime] = None

    class Settings:
        name = "classes"


class ClassRef(BaseModel):
    id: str
    name: str


class ClassHierarchy(StoredModel):
    """Singleton progression order; list position is progression order."""
    singleton_id: ClassVar[str] = "class_hierarchy"

    ordered_class_ids: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    last_updated: Optional[datetime] = None
    version: int = 1
    note: Optional[str] = None

    class Settings:
        name = "settings"
