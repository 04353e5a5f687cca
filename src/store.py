"""
Resource Store - Interface to the reactive configuration store.

The renderer only needs four capabilities from its store: read a resource
by identity, write one, merge-update one with optimistic concurrency and
watch for changes. ``ResourceStore`` captures that contract so the
controller stays independent of where resources actually live.
``InMemoryResourceStore`` is the default single-process implementation;
``db.PostgresResourceStore`` persists to PostgreSQL.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from events import EventBus, EventSubscription, EventType, ResourceEvent, kind_filter
from resources import NAMESPACE, Resource, ResourceRegistry

logger = logging.getLogger(__name__)

# Mutates a resource spec in place
SpecMutator = Callable[[Dict[str, Any]], None]


class StoreError(Exception):
    """Base class for resource store errors."""


class NotFoundError(StoreError):
    """Raised when a resource does not exist."""

    def __init__(self, kind: str, resource_id: str, namespace: str = NAMESPACE):
        self.kind = kind
        self.resource_id = resource_id
        self.namespace = namespace
        super().__init__(f"Resource {namespace}/{kind}/{resource_id} not found")


class ConflictError(StoreError):
    """Raised when an optimistic update keeps losing to concurrent writers."""

    def __init__(self, kind: str, resource_id: str, namespace: str = NAMESPACE):
        self.kind = kind
        self.resource_id = resource_id
        self.namespace = namespace
        super().__init__(
            f"Conflict updating resource {namespace}/{kind}/{resource_id}"
        )


def is_not_found(error: BaseException) -> bool:
    """Check whether an error means the resource does not exist."""
    return isinstance(error, NotFoundError)


class ResourceStore(ABC):
    """Abstract resource store."""

    def __init__(self, registry: ResourceRegistry):
        self.registry = registry

    @abstractmethod
    async def get(
        self, kind: str, resource_id: str, namespace: str = NAMESPACE
    ) -> Resource:
        """
        Get a resource by identity.

        Raises:
            NotFoundError: If the resource does not exist
        """

    @abstractmethod
    async def put(
        self,
        kind: str,
        resource_id: str,
        spec: Dict[str, Any],
        namespace: str = NAMESPACE,
    ) -> Resource:
        """
        Create or replace a resource.

        The spec is validated against the kind's schema and a new version
        token is assigned.

        Raises:
            SpecValidationError: If the spec does not match the schema
        """

    @abstractmethod
    async def delete(
        self, kind: str, resource_id: str, namespace: str = NAMESPACE
    ) -> bool:
        """Delete a resource. Returns True if something was deleted."""

    @abstractmethod
    async def merge_update(
        self,
        kind: str,
        resource_id: str,
        mutator: SpecMutator,
        namespace: str = NAMESPACE,
    ) -> Resource:
        """
        Read-modify-write a resource.

        A missing resource is created from an empty spec before the mutator
        runs. If the mutator leaves the spec unchanged no write happens.

        Raises:
            ConflictError: If the optimistic update cannot be applied
        """

    @abstractmethod
    async def watch(self, kinds: Iterable[str]) -> Tuple[str, EventSubscription]:
        """
        Subscribe to change events for the given kinds.

        Returns:
            A tuple of ``(watch_id, EventSubscription)``.
        """

    @abstractmethod
    async def unwatch(self, watch_id: str) -> None:
        """Stop a watch started with :meth:`watch`."""

    async def get_optional(
        self, kind: str, resource_id: str, namespace: str = NAMESPACE
    ) -> Optional[Resource]:
        """Get a resource, returning None instead of raising NotFoundError."""
        try:
            return await self.get(kind, resource_id, namespace)
        except NotFoundError:
            return None


class InMemoryResourceStore(ResourceStore):
    """
    Dict-backed resource store.

    Version tokens come from a store-wide revision counter, so a deleted and
    re-created resource never reuses an old token.
    """

    def __init__(
        self, registry: ResourceRegistry, event_bus: Optional[EventBus] = None
    ):
        super().__init__(registry)
        self.event_bus = event_bus or EventBus()
        self._resources: Dict[Tuple[str, str, str], Resource] = {}
        self._revision = 0
        self._lock = asyncio.Lock()

    def _next_version(self) -> str:
        self._revision += 1
        return str(self._revision)

    async def _publish(self, event_type: EventType, resource: Resource) -> None:
        await self.event_bus.publish(
            ResourceEvent.create(
                event_type,
                resource.kind,
                resource.namespace,
                resource.resource_id,
                resource.version,
            )
        )

    async def get(
        self, kind: str, resource_id: str, namespace: str = NAMESPACE
    ) -> Resource:
        resource = self._resources.get((namespace, kind, resource_id))
        if resource is None:
            raise NotFoundError(kind, resource_id, namespace)
        return resource.copy()

    async def put(
        self,
        kind: str,
        resource_id: str,
        spec: Dict[str, Any],
        namespace: str = NAMESPACE,
    ) -> Resource:
        self.registry.validate_spec(kind, spec)

        async with self._lock:
            key = (namespace, kind, resource_id)
            event_type = (
                EventType.MODIFIED if key in self._resources else EventType.CREATED
            )
            resource = Resource(
                kind=kind,
                resource_id=resource_id,
                spec=copy.deepcopy(spec),
                version=self._next_version(),
                namespace=namespace,
            )
            self._resources[key] = resource

        logger.debug(f"Stored {kind}/{resource_id} at version {resource.version}")
        await self._publish(event_type, resource)
        return resource.copy()

    async def delete(
        self, kind: str, resource_id: str, namespace: str = NAMESPACE
    ) -> bool:
        async with self._lock:
            resource = self._resources.pop((namespace, kind, resource_id), None)

        if resource is None:
            return False

        await self._publish(EventType.DELETED, resource)
        return True

    async def merge_update(
        self,
        kind: str,
        resource_id: str,
        mutator: SpecMutator,
        namespace: str = NAMESPACE,
    ) -> Resource:
        async with self._lock:
            key = (namespace, kind, resource_id)
            current = self._resources.get(key)
            spec = copy.deepcopy(current.spec) if current else {}
            mutator(spec)

            if current is not None and spec == current.spec:
                return current.copy()

            self.registry.validate_spec(kind, spec)
            resource = Resource(
                kind=kind,
                resource_id=resource_id,
                spec=spec,
                version=self._next_version(),
                namespace=namespace,
            )
            self._resources[key] = resource

        event_type = EventType.CREATED if current is None else EventType.MODIFIED
        await self._publish(event_type, resource)
        return resource.copy()

    async def watch(self, kinds: Iterable[str]) -> Tuple[str, EventSubscription]:
        return await self.event_bus.subscribe(kind_filter(kinds))

    async def unwatch(self, watch_id: str) -> None:
        await self.event_bus.unsubscribe(watch_id)
