from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse
from uuid import UUID

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from sessionstore.config import Config

if TYPE_CHECKING:
    from sessionstore.core.modules.session.service import SessionService


class Service:
    """Base class for services with direct database access."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        self.database = database

    async def on_start(self) -> None:
        """Initialize service on startup."""

    async def on_stop(self) -> None:
        """Cleanup service on shutdown."""


class Services:
    """Service registry bound to one database."""

    session: SessionService[UUID, UUID]

    def __init__(self, database: AsyncDatabase[dict[str, Any]], config: Config) -> None:
        from sessionstore.core.modules.session.models import DefaultSession  # noqa: PLC0415
        from sessionstore.core.modules.session.service import SessionService  # noqa: PLC0415

        self.session = SessionService(
            database,
            session_model=DefaultSession,
            session_collection=config.session_collection,
            last_enter_collection=config.last_enter_collection,
            operation_timeout=config.operation_timeout,
        )
        self._services: list[Service] = [self.session]

    async def start_all(self) -> None:
        """Start all services, in registration order."""
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        """Stop all services, in reverse registration order."""
        for service in reversed(self._services):
            await service.on_stop()


class Core:
    """Container providing config, database, and all service instances."""

    config: Config
    mongo_client: AsyncMongoClient[dict[str, Any]]
    database: AsyncDatabase[dict[str, Any]]
    services: Services

    def __init__(self, config: Config) -> None:
        """Initialize core with config, MongoDB client, and services."""
        self.config = config
        self.mongo_client = AsyncMongoClient(config.database_url, uuidRepresentation="standard", tz_aware=True)
        self.database = self.mongo_client.get_database(urlparse(config.database_url).path[1:])
        self.services = Services(self.database, config)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Manage lifecycle - startup and shutdown."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        """Start all services (creates indexes)."""
        await self.services.start_all()

    async def on_stop(self) -> None:
        """Stop services and close MongoDB connection."""
        await self.services.stop_all()
        await self.mongo_client.aclose()
