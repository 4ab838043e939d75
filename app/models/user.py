"""Caller identity as supplied by the identity service."""
from enum import Enum

from pydantic import BaseModel


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    PUPIL = "pupil"


class Actor(BaseModel):
    uid: str
    role: UserRole
    name: str = ""
