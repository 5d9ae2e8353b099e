"""
Base model for entities stored in the remote store.

Records are kept in the wire shape the mobile clients already write:
camelCase keys, ISO-8601 timestamps and plain JSON numbers for amounts.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Timezone-aware current time, the only clock stamps are taken from."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps read from the store as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class StoreRecord(BaseModel):
    """
    A model that round-trips through a store path.

    The record key lives in the path (``expenses/{id}``), and is copied
    into the model's ``id`` when read back.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_record(self) -> dict[str, Any]:
        """Serialize to the JSON document written to the store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, key: str, data: dict[str, Any]):
        """Build a model from a store document and its key."""
        return cls.model_validate({**data, "id": key})
