from __future__ import annotations

import importlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, cast

import structlog

from geonotes.config import Config
from geonotes.core.storage.base import Storage

if TYPE_CHECKING:
    from geonotes.core.modules.bulk_import.service import BulkImportService
    from geonotes.core.modules.note.service import NoteService
    from geonotes.core.modules.quota.service import QuotaService
    from geonotes.core.modules.spatial.service import SpatialService

logger = structlog.get_logger(__name__)


class Service:
    """Base class for services with direct storage access."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self._core: Core | None = None

    async def on_start(self) -> None:
        """Initialize service on application startup."""

    async def on_stop(self) -> None:
        """Cleanup service on application shutdown."""

    @property
    def core(self) -> Core:
        """Get the core application context."""
        if self._core is None:
            raise RuntimeError("Core not set for service")
        return self._core

    def set_core(self, core: Core) -> None:
        """Set the core application context."""
        self._core = core


class Services:
    """Service registry that automatically discovers and initializes services."""

    quota: QuotaService
    spatial: SpatialService
    note: NoteService
    bulk_import: BulkImportService

    def __init__(self, storage: Storage) -> None:
        """Initialize all services automatically using service configuration."""
        self._services: list[Service] = []

        # Service configuration: (attribute_name, module_path, class_name)
        # Order matters: the spatial index is rebuilt before notes are served,
        # and bulk import stops first so in-flight items finish against live services
        service_configs = [
            ("quota", "geonotes.core.modules.quota.service", "QuotaService"),
            ("spatial", "geonotes.core.modules.spatial.service", "SpatialService"),
            ("note", "geonotes.core.modules.note.service", "NoteService"),
            ("bulk_import", "geonotes.core.modules.bulk_import.service", "BulkImportService"),
        ]

        for attr_name, module_path, class_name in service_configs:
            module = importlib.import_module(module_path)
            service_class = cast(type[Service], getattr(module, class_name))
            service_instance = service_class(storage)
            setattr(self, attr_name, service_instance)
            self._services.append(service_instance)

    def set_core(self, core: Core) -> None:
        """Set core reference for all services."""
        for service in self._services:
            service.set_core(core)

    async def start_all(self) -> None:
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        """Stop services in reverse start order."""
        for service in reversed(self._services):
            await service.on_stop()


class Core:
    """Container providing config, storage, and all service instances."""

    config: Config
    storage: Storage
    services: Services

    def __init__(self, config: Config, storage: Storage | None = None) -> None:
        """Initialize core with config and storage, and auto-register services.

        Without an explicit storage, MongoDB is used when config.database_url is set
        and the in-memory backend otherwise.
        """
        self.config = config
        self.storage = storage if storage is not None else create_storage(config)
        self.services = Services(self.storage)
        self.services.set_core(self)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Manage application lifecycle - startup and shutdown."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        await self.storage.on_start()
        await self.services.start_all()
        logger.info("core_started", storage=type(self.storage).__name__)

    async def on_stop(self) -> None:
        """Stop services and close storage on shutdown."""
        await self.services.stop_all()
        await self.storage.on_stop()


def create_storage(config: Config) -> Storage:
    if config.database_url:
        from geonotes.core.storage.mongo import MongoStorage  # noqa: PLC0415

        return MongoStorage(config.database_url)

    from geonotes.core.storage.memory import MemoryStorage  # noqa: PLC0415

    return MemoryStorage()
