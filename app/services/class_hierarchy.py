"""Class progression order.

The hierarchy is a single settings document holding the ordered class ids.
It is created exactly once by ``initialize_class_hierarchy``; classes added
later are appended to the end of the order rather than reshuffling it.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from app.errors import (
    ErrorCode,
    InvalidArgument,
    OperationResult,
    RecordError,
    TransactionAborted,
    fail,
    failure_from_error,
    ok,
)
from app.models.school_class import ClassHierarchy, ClassRef, SchoolClass
from app.store.base import SERVER_TIMESTAMP, DocumentStore, Transaction

logger = logging.getLogger(__name__)

EMPTY_NOTE = "Empty - waiting for classes to be created"
AUTO_NOTE = "Auto-initialized in alphabetical order. Rearrange in School Settings if needed."


async def _all_classes(store: DocumentStore) -> list[ClassRef]:
    docs = await store.find(SchoolClass.Settings.name, sort="name")
    classes = [ClassRef(id=d["id"], name=SchoolClass.from_document(d).name) for d in docs]
    return sorted(classes, key=lambda c: c.name.lower())


async def create_class(store: DocumentStore, class_id: str, name: str) -> OperationResult:
    """Create a class under a new id; an existing id is a conflict, never overwritten."""
    if not class_id or not (name or "").strip():
        return fail(ErrorCode.INVALID_ARGUMENT, "Class id and name are required")

    async def _create(txn: Transaction) -> OperationResult:
        if await txn.get(SchoolClass.Settings.name, class_id):
            return fail(ErrorCode.CONFLICT, f"Class {class_id} already exists")
        txn.set(SchoolClass.Settings.name, class_id, {"name": name.strip(), "created_at": SERVER_TIMESTAMP})
        return ok("Class created", class_id=class_id)

    try:
        result = await store.run_transaction(_create)
    except RecordError as e:
        logger.error(f"Error creating class {class_id}: {e.message}")
        return failure_from_error(e, "Failed to create class")
    if result.success:
        logger.info(f"Class created: {class_id} ({name.strip()})")
    return result


async def initialize_class_hierarchy(
    store: DocumentStore,
    created_by: str = "system",
    max_attempts: Optional[int] = None,
) -> OperationResult:
    """Create the hierarchy document if it does not exist yet.

    Runs as a read-then-write transaction. When it already exists, its
    current state is reported and nothing is written. Concurrent
    initializers serialize through the store's conflict detection; a caller
    that still loses after all retries gets a failure with ``retry`` set.
    """

    async def _initialize(txn: Transaction) -> OperationResult:
        doc = await txn.get(ClassHierarchy.Settings.name, ClassHierarchy.singleton_id)
        if doc is not None:
            ordered = ClassHierarchy.from_document(doc).ordered_class_ids
            if not ordered:
                return ok(
                    "Hierarchy exists but is empty",
                    already_exists=True,
                    is_empty=True,
                    class_count=0,
                    ordered_class_ids=[],
                )
            return ok(
                "Hierarchy already exists",
                already_exists=True,
                is_empty=False,
                class_count=len(ordered),
                ordered_class_ids=ordered,
            )

        # Read outside the transaction; the transaction is the only writer of the document.
        class_ids = [c.id for c in await _all_classes(store)]
        txn.set(
            ClassHierarchy.Settings.name,
            ClassHierarchy.singleton_id,
            {
                "ordered_class_ids": class_ids,
                "created_at": SERVER_TIMESTAMP,
                "created_by": created_by,
                "last_updated": SERVER_TIMESTAMP,
                "version": 1,
                "note": AUTO_NOTE if class_ids else EMPTY_NOTE,
            },
        )
        return ok(
            "Hierarchy initialized" if class_ids else "Hierarchy initialized but empty",
            created=True,
            is_empty=not class_ids,
            class_count=len(class_ids),
            ordered_class_ids=class_ids,
        )

    try:
        result = await store.run_transaction(_initialize, max_attempts=max_attempts)
    except TransactionAborted:
        logger.warning("Class hierarchy initialization aborted by a concurrent initializer")
        return fail(ErrorCode.CONFLICT, "Concurrent initialization detected, please refresh", retry=True)
    except RecordError as e:
        logger.error(f"Error initializing class hierarchy: {e.message}")
        return failure_from_error(e, "Failed to initialize class hierarchy")

    if result.data.get("created"):
        logger.info(f"Class hierarchy created with {result.data['class_count']} classes")
    return result


async def get_class_hierarchy(store: DocumentStore) -> ClassHierarchy:
    try:
        doc = await store.get(ClassHierarchy.Settings.name, ClassHierarchy.singleton_id)
    except RecordError as e:
        logger.error(f"Error loading class hierarchy: {e.message}")
        return ClassHierarchy()
    return ClassHierarchy.from_document(doc) if doc else ClassHierarchy()


async def save_class_hierarchy(store: DocumentStore, ordered_class_ids: Sequence[str]) -> OperationResult:
    """Replace the progression order with an explicit admin ordering."""
    try:
        if len(set(ordered_class_ids)) != len(ordered_class_ids):
            raise InvalidArgument("Class order contains duplicate class ids")
        if not all(ordered_class_ids):
            raise InvalidArgument("Class order contains an empty class id")
        await store.set(
            ClassHierarchy.Settings.name,
            ClassHierarchy.singleton_id,
            {"ordered_class_ids": list(ordered_class_ids), "last_updated": SERVER_TIMESTAMP},
            merge=True,
        )
    except RecordError as e:
        logger.error(f"Error saving class hierarchy: {e.message}")
        return failure_from_error(e, "Failed to save class order")
    logger.info(f"Class progression order saved: {list(ordered_class_ids)}")
    return ok("Class order saved", ordered_class_ids=list(ordered_class_ids))


def merge_order(ordered_class_ids: Sequence[str], classes: Sequence[ClassRef]) -> list[ClassRef]:
    """Saved order first, then any class missing from it in the given order.

    Ids in the saved order that no longer match a class are dropped.
    """
    by_id = {c.id: c for c in classes}
    ordered = [by_id[class_id] for class_id in ordered_class_ids if class_id in by_id]
    saved = set(ordered_class_ids)
    ordered.extend(c for c in classes if c.id not in saved)
    return ordered


async def get_ordered_classes(store: DocumentStore) -> list[ClassRef]:
    """All classes in progression order; alphabetical when no order was ever saved."""
    try:
        classes = await _all_classes(store)
        doc = await store.get(ClassHierarchy.Settings.name, ClassHierarchy.singleton_id)
    except RecordError as e:
        logger.error(f"Error getting classes in order: {e.message}")
        return []
    if doc is None:
        return classes
    return merge_order(ClassHierarchy.from_document(doc).ordered_class_ids, classes)


def next_class(ordered: Sequence[ClassRef], name: str) -> Optional[str]:
    """Name of the class after ``name``.

    Returns None both for the last class and for a name not in the list;
    callers cannot tell the two apart.
    """
    names = [c.name for c in ordered]
    if name not in names:
        return None
    index = names.index(name)
    if index == len(names) - 1:
        return None
    return names[index + 1]


def is_terminal_class(ordered: Sequence[ClassRef], name: str) -> bool:
    """True only for the last class; an unknown name or empty list gives False."""
    return bool(ordered) and ordered[-1].name == name


def class_level(ordered: Sequence[ClassRef], name: str) -> int:
    """1-based position in the progression, 0 when not found."""
    for index, cls in enumerate(ordered, start=1):
        if cls.name == name:
            return index
    return 0


async def get_next_class(store: DocumentStore, name: str) -> Optional[str]:
    return next_class(await get_ordered_classes(store), name)


async def is_terminal(store: DocumentStore, name: str) -> bool:
    return is_terminal_class(await get_ordered_classes(store), name)


async def get_level(store: DocumentStore, name: str) -> int:
    return class_level(await get_ordered_classes(store), name)
