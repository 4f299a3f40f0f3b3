import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from sessionstore.core.core import Service
from sessionstore.core.db import mongo_errors
from sessionstore.core.modules.session.models import AdditionalToken, LastEnter, Session
from sessionstore.errors import NotFoundError, PartialWriteError, SessionNotFoundError, ValidationError
from sessionstore.utils import generate_secret, is_valid_service_name, now

logger = structlog.get_logger(__name__)


class SessionService[ID, UserID](Service):
    """Stores authentication sessions and per-user last enter records.

    Writes that touch both a session and its user's last enter record are
    issued independently and are not rolled back when one of them fails.
    """

    def __init__(
        self,
        database: AsyncDatabase[dict[str, Any]],
        *,
        session_model: type[Session[ID, UserID]] = Session,
        session_collection: str = "session",
        last_enter_collection: str = "last_enter",
        operation_timeout: float | None = None,
        id_factory: Callable[[], ID] | None = None,
    ) -> None:
        super().__init__(database)
        self._sessions = database.get_collection(session_collection)
        self._last_enter = database.get_collection(last_enter_collection)
        self._session_model = session_model
        self._timeout = operation_timeout
        self._id_factory = id_factory or _default_id_factory(session_model)

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self._write_all(
            "Failed to create session indexes",
            # Unique index for secret (for authentication lookups)
            self._sessions.create_index([("secret", 1)], unique=True),
            # Single index for user_id (for finding sessions by user)
            self._sessions.create_index([("user_id", 1)]),
        )
        logger.debug("session_indexes_created", collection=self._sessions.name)

    async def create_session(self, session: Session[ID, UserID]) -> Session[ID, UserID]:
        """Insert a new session and record the user's last enter.

        A secret is generated when the session has none, and an id when the
        session has none and the service knows how to make one. Returns the
        stored session.
        """
        updates: dict[str, Any] = {}
        if session.id is None:
            if self._id_factory is None:
                raise ValidationError("Session id is required")
            updates["id"] = self._id_factory()
        if session.secret is None:
            updates["secret"] = generate_secret()
        if updates:
            session = session.model_copy(update=updates)
        await self._write_all(
            "Session creation partially failed",
            self._sessions.insert_one(session.to_mongo()),
            self._last_enter.update_one({"_id": session.user_id}, {"$set": {"last_enter": now()}}, upsert=True),
        )
        return session

    async def update_session(self, session: Session[ID, UserID]) -> None:
        """Store user agent and last usage; does nothing if the session is gone."""
        await self._write_all(
            "Session update partially failed",
            self._sessions.update_one(
                {"_id": session.id},
                {"$set": {"user_agent": session.user_agent, "last_usage": session.last_usage}},
            ),
            self._last_enter.update_one({"_id": session.user_id}, {"$set": {"last_enter": now()}}),
        )

    async def delete_all_sessions_except_this(self, session_id: ID) -> int:
        """Delete every other session of this session's user and return how many were deleted."""
        session = await self._get_session(session_id)
        with mongo_errors(self._timeout):
            result = await self._sessions.delete_many({"user_id": session.user_id, "_id": {"$ne": session.id}})
        logger.debug("other_sessions_deleted", user_id=session.user_id, deleted=result.deleted_count)
        return result.deleted_count

    async def delete_session_by_secret(self, secret: str) -> Session[ID, UserID]:
        with mongo_errors(self._timeout):
            doc = await self._sessions.find_one_and_delete({"secret": secret})
        if doc is None:
            raise SessionNotFoundError
        return self._session_model.model_validate(doc)

    async def delete_session_by_id(self, session_id: ID) -> Session[ID, UserID]:
        with mongo_errors(self._timeout):
            doc = await self._sessions.find_one_and_delete({"_id": session_id})
        if doc is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return self._session_model.model_validate(doc)

    async def delete_sessions_by_user(self, user_id: UserID) -> int:
        """Delete all sessions of a user and return count of deleted sessions."""
        with mongo_errors(self._timeout):
            result = await self._sessions.delete_many({"user_id": user_id})
        logger.debug("user_sessions_deleted", user_id=user_id, deleted=result.deleted_count)
        return result.deleted_count

    async def get_sessions_by_user(self, user_id: UserID) -> list[Session[ID, UserID]]:
        """Get all sessions of a user with secrets left out."""
        with mongo_errors(self._timeout):
            cursor = self._sessions.find({"user_id": user_id}, projection={"secret": 0})
            return await self._session_model.list_cursor(cursor)

    async def get_last_enter_by_user(self, user_id: UserID) -> datetime:
        with mongo_errors(self._timeout):
            doc = await self._last_enter.find_one({"_id": user_id})
        if doc is None:
            raise NotFoundError(f"Last enter of user '{user_id}' not found")
        return LastEnter.model_validate(doc).last_enter

    async def get_session_by_secret(self, secret: str) -> Session[ID, UserID]:
        """Get session by secret; the returned session has no secret."""
        with mongo_errors(self._timeout):
            doc = await self._sessions.find_one({"secret": secret}, projection={"secret": 0})
        if doc is None:
            raise SessionNotFoundError
        return self._session_model.model_validate(doc)

    async def add_unique_ip(self, session_id: ID, ip: str) -> None:
        """Add an IP address to the session and to its user's last enter record."""
        session = await self._get_session(session_id)
        update = {"$addToSet": {"ip_addresses": ip}}
        await self._write_all(
            "Adding IP address partially failed",
            self._sessions.update_one({"_id": session.id}, update),
            self._last_enter.update_one({"_id": session.user_id}, update),
        )

    async def append_unique_token_to_session(self, session_id: ID, service: str, token: str) -> None:
        """Append a token for the service unless the session already holds it."""
        field = self._tokens_field(service)
        token_doc = AdditionalToken(value=token).model_dump()
        with mongo_errors(self._timeout):
            await self._sessions.update_one(
                {"_id": session_id, f"{field}.value": {"$ne": token}},
                {"$push": {field: token_doc}},
            )

    async def remove_token_from_session(self, session_id: ID, service: str, token: str) -> None:
        field = self._tokens_field(service)
        with mongo_errors(self._timeout):
            await self._sessions.update_one({"_id": session_id}, {"$pull": {field: {"value": token}}})

    async def get_all_tokens_by_user_and_service(self, user_id: UserID, service: str) -> list[AdditionalToken]:
        """Collect the service tokens of all user sessions into one list."""
        field = self._tokens_field(service)
        pipeline: list[dict[str, Any]] = [
            {"$match": {"user_id": user_id, field: {"$exists": True}}},
            {"$project": {"_id": 0, "tokens": f"${field}"}},
            {"$unwind": "$tokens"},
            {"$replaceRoot": {"newRoot": "$tokens"}},
        ]
        with mongo_errors(self._timeout):
            cursor = await self._sessions.aggregate(pipeline)
            return [AdditionalToken.model_validate(doc) async for doc in cursor]

    async def _get_session(self, session_id: ID) -> Session[ID, UserID]:
        with mongo_errors(self._timeout):
            doc = await self._sessions.find_one({"_id": session_id})
        if doc is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return self._session_model.model_validate(doc)

    @staticmethod
    def _tokens_field(service: str) -> str:
        if not is_valid_service_name(service):
            raise ValidationError(f"Invalid service name: {service!r}")
        return f"tokens.{service}"

    async def _write_all(self, message: str, *writes: Awaitable[Any]) -> None:
        """Run independent writes concurrently and raise all their failures together."""
        results = await asyncio.gather(*(self._guarded(write) for write in writes), return_exceptions=True)
        failures: list[Exception] = []
        for result in results:
            if isinstance(result, Exception):
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
        if failures:
            raise PartialWriteError(message, failures)

    async def _guarded(self, write: Awaitable[Any]) -> Any:
        with mongo_errors(self._timeout):
            return await write


def _default_id_factory(session_model: type[Session[Any, Any]]) -> Callable[[], Any] | None:
    """Ids are only generated for UUID-keyed sessions."""
    args = session_model.__pydantic_generic_metadata__["args"]
    if args and args[0] is UUID:
        return uuid4
    return None
