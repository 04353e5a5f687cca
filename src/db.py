"""
PostgreSQL Resource Store - Durable backend for configuration resources.

Resources live in a single ``resources`` table keyed by namespace, kind and
resource id. Every write draws a new value from ``resource_revision_seq``;
that revision is the resource's version token and also the cursor the
watch poller uses to find changes. Deletes are soft so the poller can see
them.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import asyncpg

from events import EventBus, EventSubscription, EventType, ResourceEvent, kind_filter
from migrate import run_migrations
from resources import NAMESPACE, Resource, ResourceRegistry
from store import ConflictError, NotFoundError, ResourceStore, SpecMutator

logger = logging.getLogger(__name__)

MAX_MERGE_ATTEMPTS = 5

_UPSERT_SQL = """
    WITH rev AS (SELECT nextval('resource_revision_seq') AS value)
    INSERT INTO resources (
        namespace, kind, resource_id, spec, revision, created_revision
    )
    VALUES ($1, $2, $3, $4, (SELECT value FROM rev), (SELECT value FROM rev))
    ON CONFLICT (namespace, kind, resource_id) DO UPDATE
    SET spec = EXCLUDED.spec,
        revision = EXCLUDED.revision,
        created_revision = CASE
            WHEN resources.deleted_at IS NULL THEN resources.created_revision
            ELSE EXCLUDED.revision
        END,
        deleted_at = NULL,
        updated_at = NOW()
    {condition}
    RETURNING revision
"""


class PostgresResourceStore(ResourceStore):
    """Resource store backed by PostgreSQL via asyncpg."""

    def __init__(
        self,
        registry: ResourceRegistry,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 1,
        max_pool_size: int = 5,
        poll_interval: float = 1.0,
        event_bus: Optional[EventBus] = None,
    ):
        super().__init__(registry)
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.poll_interval = poll_interval
        self.event_bus = event_bus or EventBus()
        self.pool: Optional[asyncpg.Pool] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._last_revision = 0
        self._watch_ids = set()

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Stop the watch poller and close the connection pool."""
        await self._stop_poller()
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    async def get(
        self, kind: str, resource_id: str, namespace: str = NAMESPACE
    ) -> Resource:
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT spec, revision FROM resources
                WHERE namespace = $1 AND kind = $2 AND resource_id = $3
                  AND deleted_at IS NULL
                """,
                namespace,
                kind,
                resource_id,
            )

        if row is None:
            raise NotFoundError(kind, resource_id, namespace)
        return self._to_resource(kind, resource_id, namespace, row)

    async def put(
        self,
        kind: str,
        resource_id: str,
        spec: Dict[str, Any],
        namespace: str = NAMESPACE,
    ) -> Resource:
        self.registry.validate_spec(kind, spec)
        self._ensure_connected()

        async with self.pool.acquire() as conn:
            revision = await conn.fetchval(
                _UPSERT_SQL.format(condition=""),
                namespace,
                kind,
                resource_id,
                json.dumps(spec),
            )

        logger.debug(f"Stored {kind}/{resource_id} at revision {revision}")
        return Resource(
            kind=kind,
            resource_id=resource_id,
            spec=json.loads(json.dumps(spec)),
            version=str(revision),
            namespace=namespace,
        )

    async def delete(
        self, kind: str, resource_id: str, namespace: str = NAMESPACE
    ) -> bool:
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            revision = await conn.fetchval(
                """
                UPDATE resources
                SET deleted_at = NOW(),
                    updated_at = NOW(),
                    revision = nextval('resource_revision_seq')
                WHERE namespace = $1 AND kind = $2 AND resource_id = $3
                  AND deleted_at IS NULL
                RETURNING revision
                """,
                namespace,
                kind,
                resource_id,
            )

        if revision is None:
            return False

        logger.info(f"Deleted {kind}/{resource_id} at revision {revision}")
        return True

    async def merge_update(
        self,
        kind: str,
        resource_id: str,
        mutator: SpecMutator,
        namespace: str = NAMESPACE,
    ) -> Resource:
        """
        Read-modify-write with optimistic concurrency.

        The write only lands if the row still has the revision that was
        read; otherwise the mutator is re-applied to the fresh spec.
        """
        self._ensure_connected()

        for attempt in range(1, MAX_MERGE_ATTEMPTS + 1):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT spec, revision FROM resources
                    WHERE namespace = $1 AND kind = $2 AND resource_id = $3
                      AND deleted_at IS NULL
                    """,
                    namespace,
                    kind,
                    resource_id,
                )

                current = (
                    self._to_resource(kind, resource_id, namespace, row)
                    if row is not None
                    else None
                )
                spec = json.loads(row["spec"]) if row is not None else {}
                mutator(spec)

                if current is not None and spec == current.spec:
                    return current

                self.registry.validate_spec(kind, spec)

                if current is None:
                    revision = await conn.fetchval(
                        _UPSERT_SQL.format(
                            condition="WHERE resources.deleted_at IS NOT NULL"
                        ),
                        namespace,
                        kind,
                        resource_id,
                        json.dumps(spec),
                    )
                else:
                    revision = await conn.fetchval(
                        """
                        UPDATE resources
                        SET spec = $4,
                            updated_at = NOW(),
                            revision = nextval('resource_revision_seq')
                        WHERE namespace = $1 AND kind = $2 AND resource_id = $3
                          AND revision = $5 AND deleted_at IS NULL
                        RETURNING revision
                        """,
                        namespace,
                        kind,
                        resource_id,
                        json.dumps(spec),
                        row["revision"],
                    )

            if revision is not None:
                return Resource(
                    kind=kind,
                    resource_id=resource_id,
                    spec=spec,
                    version=str(revision),
                    namespace=namespace,
                )

            logger.debug(
                f"Concurrent write to {kind}/{resource_id}, "
                f"retrying (attempt {attempt}/{MAX_MERGE_ATTEMPTS})"
            )

        raise ConflictError(kind, resource_id, namespace)

    async def watch(self, kinds: Iterable[str]) -> Tuple[str, EventSubscription]:
        """
        Subscribe to changes, starting from the current revision.

        Changes are discovered by polling every ``poll_interval`` seconds.
        """
        self._ensure_connected()
        watch_id, subscription = await self.event_bus.subscribe(kind_filter(kinds))
        self._watch_ids.add(watch_id)

        if self._poll_task is None:
            async with self.pool.acquire() as conn:
                self._last_revision = await conn.fetchval(
                    "SELECT COALESCE(MAX(revision), 0) FROM resources"
                )
            self._poll_task = asyncio.create_task(self._poll_loop())
            logger.debug(f"Started watch poller at revision {self._last_revision}")

        return watch_id, subscription

    async def unwatch(self, watch_id: str) -> None:
        self._watch_ids.discard(watch_id)
        await self.event_bus.unsubscribe(watch_id)
        if not self._watch_ids:
            await self._stop_poller()

    async def _stop_poller(self) -> None:
        if self._poll_task is None:
            return

        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_changes()
            except Exception as e:
                logger.error(f"Error polling for resource changes: {e}", exc_info=True)

            await asyncio.sleep(self.poll_interval)

    async def poll_changes(self) -> int:
        """
        Publish an event for every row written since the last poll.

        Returns:
            Number of events published.
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT namespace, kind, resource_id, revision, created_revision,
                       deleted_at
                FROM resources
                WHERE revision > $1
                ORDER BY revision
                """,
                self._last_revision,
            )

        for row in rows:
            if row["deleted_at"] is not None:
                event_type = EventType.DELETED
            elif row["revision"] == row["created_revision"]:
                event_type = EventType.CREATED
            else:
                event_type = EventType.MODIFIED

            await self.event_bus.publish(
                ResourceEvent.create(
                    event_type,
                    row["kind"],
                    row["namespace"],
                    row["resource_id"],
                    str(row["revision"]),
                )
            )
            self._last_revision = row["revision"]

        return len(rows)

    def _to_resource(
        self,
        kind: str,
        resource_id: str,
        namespace: str,
        row: asyncpg.Record,
    ) -> Resource:
        return Resource(
            kind=kind,
            resource_id=resource_id,
            spec=json.loads(row["spec"]) if row["spec"] else {},
            version=str(row["revision"]),
            namespace=namespace,
        )
