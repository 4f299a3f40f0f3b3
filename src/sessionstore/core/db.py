from collections.abc import AsyncIterable, Iterator
from contextlib import contextmanager
from typing import Any, Self
from uuid import UUID, uuid4

import pymongo
from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import DuplicateKeyError, PyMongoError

from sessionstore import errors


class MongoModel(BaseModel):
    id: UUID = Field(alias="_id", serialization_alias="id", default_factory=uuid4)

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        json_schema_serialization_defaults_required=True,
    )

    def to_mongo(self) -> dict[str, Any]:
        """Convert the model to a dictionary for MongoDB storage with _id field."""
        data = self.model_dump()
        if "id" in data:
            data["_id"] = data.pop("id")  # Rename id → _id for MongoDB
        return data

    @classmethod
    async def list_cursor(cls, cursor: AsyncIterable[dict[str, Any]]) -> list[Self]:
        """Iterate over an async cursor and return a list of model instances."""
        return [cls.model_validate(item) async for item in cursor]


@contextmanager
def mongo_errors(timeout: float | None = None) -> Iterator[None]:
    """Run database calls under a deadline and translate driver errors.

    Cancellation is not touched: asyncio.CancelledError is not a PyMongoError.
    """
    try:
        with pymongo.timeout(timeout):
            yield
    except DuplicateKeyError as exc:
        raise errors.DuplicateKeyError from exc
    except PyMongoError as exc:
        if exc.timeout:
            raise errors.OperationTimeoutError from exc
        raise errors.BackingStoreError(str(exc)) from exc
