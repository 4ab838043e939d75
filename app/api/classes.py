from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from app.api.deps import AdminOnly, CurrentActor, Store, raise_for_failure
from app.models.school_class import ClassHierarchy, ClassRef
from app.services import class_hierarchy

router = APIRouter()


class ClassCreate(BaseModel):
    id: str
    name: str


class ClassOrderUpdate(BaseModel):
    ordered_class_ids: List[str]


@router.post("/")
async def create_class(data: ClassCreate, user: AdminOnly, store: Store):
    return raise_for_failure(await class_hierarchy.create_class(store, data.id, data.name))


@router.post("/hierarchy/initialize")
async def initialize_hierarchy(user: AdminOnly, store: Store):
    """Create the progression order from the current classes if none exists yet."""
    return raise_for_failure(await class_hierarchy.initialize_class_hierarchy(store, created_by=user.uid))


@router.get("/hierarchy", response_model=ClassHierarchy)
async def get_hierarchy(user: CurrentActor, store: Store):
    return await class_hierarchy.get_class_hierarchy(store)


@router.put("/hierarchy")
async def save_hierarchy(data: ClassOrderUpdate, user: AdminOnly, store: Store):
    return raise_for_failure(await class_hierarchy.save_class_hierarchy(store, data.ordered_class_ids))


@router.get("/ordered", response_model=List[ClassRef])
async def ordered_classes(user: CurrentActor, store: Store):
    return await class_hierarchy.get_ordered_classes(store)


@router.get("/next")
async def next_class(name: str, user: CurrentActor, store: Store):
    return {"name": name, "next": await class_hierarchy.get_next_class(store, name)}


@router.get("/terminal")
async def terminal_class(name: str, user: CurrentActor, store: Store):
    return {"name": name, "terminal": await class_hierarchy.is_terminal(store, name)}


@router.get("/level")
async def class_level(name: str, user: CurrentActor, store: Store):
    return {"name": name, "level": await class_hierarchy.get_level(store, name)}
