"""Wiring: build every access-layer component from one configuration.

Typical usage::

    async with await Docrel.from_config(load_config(Path("docrel.toml"))) as docrel:
        discounts = docrel.service("Discounts")
        created = await discounts.create({"name": "Spring"}, actor_id=7)
        page = await discounts.list({"status": "true"}, page=1, limit=20)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from docrel.codes import UniqueCodeGenerator
from docrel.config import DocrelConfig
from docrel.core.metrics import AccessMetrics, access_metrics, init_metrics
from docrel.core.telemetry import init_telemetry
from docrel.db import Database
from docrel.entities import EntityStore
from docrel.errors import ConfigError
from docrel.identifiers import DualKeyResolver
from docrel.model import EntityDefinition
from docrel.pagination import Paginator
from docrel.registry import EntityRegistry
from docrel.relations import RelationPopulator
from docrel.sequence import SequenceGenerator
from docrel.service import ResourceService
from docrel.store.base import DocumentStore
from docrel.store.memory import MemoryDocumentStore
from docrel.store.postgres import PostgresDocumentStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "docrel"


class Docrel:
    """Holds the registry, the store and the shared components.

    ``start()`` validates the registry and creates the unique indexes; call
    it once before serving any request.
    """

    def __init__(
        self,
        store: DocumentStore,
        definitions: Iterable[EntityDefinition] = (),
        *,
        config: DocrelConfig | None = None,
        database: Database | None = None,
        metrics: AccessMetrics | None = None,
    ) -> None:
        self.config = config or DocrelConfig()
        self.store = store
        self.database = database
        self.registry = EntityRegistry(definitions)
        metrics = metrics or access_metrics()

        self.sequence = SequenceGenerator(store, metrics=metrics)
        self.entities = EntityStore(self.registry, store, self.sequence)
        self.resolver = DualKeyResolver(self.registry, self.entities)
        self.populator = RelationPopulator(self.registry, store, metrics=metrics)
        pagination = self.config.pagination
        self.paginator = Paginator(
            self.entities,
            default_limit=pagination.default_limit,
            max_limit=pagination.max_limit,
        )
        self.codes = UniqueCodeGenerator(
            max_attempts=self.config.code_max_attempts, metrics=metrics
        )
        self._services: dict[str, ResourceService] = {}
        self._started = False

    @classmethod
    async def from_config(cls, config: DocrelConfig) -> Docrel:
        """Open the configured backend and register the configured entities.

        For the Postgres backend the pool is created and the schema ensured;
        the database itself must already exist (see ``docrel init-db``).
        Tracing and metrics export are initialised first; both stay no-op
        unless ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set.
        """
        init_telemetry(SERVICE_NAME)
        init_metrics(SERVICE_NAME)

        db = config.database
        if db.backend == "memory":
            return cls(MemoryDocumentStore(), config.entities, config=config)
        if db.backend != "postgres":
            raise ConfigError(f"Unsupported database backend: {db.backend!r}")

        if db.url:
            database = Database.from_url(
                db.url, min_pool_size=db.min_pool_size, max_pool_size=db.max_pool_size
            )
        else:
            database = Database.from_env(
                min_pool_size=db.min_pool_size, max_pool_size=db.max_pool_size
            )
        pool = await database.connect()
        store = PostgresDocumentStore(pool)
        await store.ensure_schema()
        return cls(store, config.entities, config=config, database=database)

    def register(self, definition: EntityDefinition) -> EntityDefinition:
        """Register an entity type; only allowed before :meth:`start`."""
        if self._started:
            raise ConfigError(f"Cannot register {definition.name!r} after startup")
        return self.registry.register(definition)

    async def start(self) -> None:
        if self._started:
            return
        await self.registry.bootstrap(self.store)
        self._started = True
        logger.info("docrel started with entities: %s", ", ".join(self.registry.names()))

    async def close(self) -> None:
        if self.database is not None:
            await self.database.close()
        else:
            await self.store.close()
        self._started = False

    async def __aenter__(self) -> Docrel:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.close()

    def service(self, entity_type: str) -> ResourceService:
        """Return the (cached) :class:`ResourceService` for *entity_type*.

        Raises:
            UnknownEntityError: *entity_type* was never registered.
        """
        cached = self._services.get(entity_type)
        if cached is not None:
            return cached
        definition = self.registry.get(entity_type)
        pagination = self.config.pagination
        service = ResourceService(
            definition,
            entities=self.entities,
            resolver=self.resolver,
            populator=self.populator,
            paginator=self.paginator,
            codes=self.codes,
            default_sort_by=pagination.default_sort_by,
            default_sort_order=pagination.default_sort_order,
        )
        self._services[entity_type] = service
        return service
