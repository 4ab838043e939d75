from typing import Any, Optional

from beanie import Document
from pydantic import AliasChoices, ConfigDict, Field


class StoredModel(Document):
    """Typed view of a stored document.

    Missing or null fields fall back to the model defaults when a document
    is read, so services never have to guard individual fields. Ids are the
    natural string keys the services build, not ObjectIds.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("id", "_id"),
        serialization_alias="id",
    )

    @classmethod
    def from_document(cls, doc: dict[str, Any]):
        return cls.model_validate({k: v for k, v in doc.items() if v is not None})
