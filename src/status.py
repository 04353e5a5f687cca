"""
Status Publisher - Announce that rendered configuration is current.

Consumers poll the ``ConfigStatus`` singleton and restart the control plane
once ``version`` changes and ``ready`` is set.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from resources import CONFIG_STATUS, CONFIG_STATUS_STATIC_POD_ID, NAMESPACE
from store import ResourceStore

logger = logging.getLogger(__name__)


@dataclass
class ConfigStatus:
    """Typed view of the ConfigStatus spec."""

    ready: bool = False
    version: str = ""

    @classmethod
    def from_spec(cls, spec: Dict[str, Any]) -> "ConfigStatus":
        return cls(
            ready=bool(spec.get("ready", False)),
            version=str(spec.get("version", "")),
        )


def compute_version(
    admission_version: str, audit_version: str, scheduler_version: str
) -> str:
    """Concatenate the required inputs' version tokens in canonical order."""
    return admission_version + audit_version + scheduler_version


class StatusPublisher:
    """Merge-updates the ConfigStatus singleton."""

    def __init__(
        self,
        store: ResourceStore,
        resource_id: str = CONFIG_STATUS_STATIC_POD_ID,
        namespace: str = NAMESPACE,
    ):
        self.store = store
        self.resource_id = resource_id
        self.namespace = namespace

    async def publish(self, version: str) -> ConfigStatus:
        """
        Mark the configuration ready at ``version``.

        Raises:
            StoreError: If the update cannot be applied
        """

        def mutate(spec: Dict[str, Any]) -> None:
            spec["ready"] = True
            spec["version"] = version

        resource = await self.store.merge_update(
            CONFIG_STATUS, self.resource_id, mutate, self.namespace
        )
        return ConfigStatus.from_spec(resource.spec)

    async def current(self) -> Optional[ConfigStatus]:
        """Return the published status, or None before the first publish."""
        resource = await self.store.get_optional(
            CONFIG_STATUS, self.resource_id, self.namespace
        )
        if resource is None:
            return None
        return ConfigStatus.from_spec(resource.spec)
