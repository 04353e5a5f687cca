"""
Resource Kinds - Definitions and registry for control-plane config resources.

Every resource the renderer reads or writes lives in the ``controlplane``
namespace under a fixed, well-known ID. The registry maps a kind name to its
definition (ID, sensitivity, spec schema) and is built once at startup and
handed to the stores and the API explicitly.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from validation import check_schema, validate_spec_against_schema

logger = logging.getLogger(__name__)

NAMESPACE = "controlplane"

# Upstream configuration kinds
ADMISSION_CONTROL_CONFIG = "AdmissionControlConfig"
AUDIT_POLICY_CONFIG = "AuditPolicyConfig"
STRUCTURED_AUTHENTICATION_CONFIG = "StructuredAuthenticationConfig"
STRUCTURED_AUTHORIZATION_CONFIG = "StructuredAuthorizationConfig"
SCHEDULER_CONFIG = "SchedulerConfig"

# Output kind
CONFIG_STATUS = "ConfigStatus"

ADMISSION_CONTROL_CONFIG_ID = "admission-control"
AUDIT_POLICY_CONFIG_ID = "audit-policy"
STRUCTURED_AUTHENTICATION_CONFIG_ID = "structured-authentication-config"
STRUCTURED_AUTHORIZATION_CONFIG_ID = "structured-authorization-config"
SCHEDULER_CONFIG_ID = "scheduler"
CONFIG_STATUS_STATIC_POD_ID = "static-pods"

_GENERIC_CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {"config": {"type": ["object", "null"]}},
    "additionalProperties": False,
}

_ADMISSION_CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "config": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "configuration": {"type": ["object", "null"]},
                },
                "additionalProperties": False,
            },
        }
    },
    "additionalProperties": False,
}

_CONFIG_STATUS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "ready": {"type": "boolean"},
        "version": {"type": "string"},
    },
    "additionalProperties": False,
}


class SpecValidationError(ValueError):
    """Raised when a spec does not match its kind's schema."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"Invalid {kind} spec: {message}")


@dataclass
class Resource:
    """A stored resource: identity, opaque spec and store-assigned version."""

    kind: str
    resource_id: str
    spec: Dict[str, Any] = field(default_factory=dict)
    version: str = ""
    namespace: str = NAMESPACE

    def copy(self) -> "Resource":
        """Return a deep copy so callers never alias store state."""
        return Resource(
            kind=self.kind,
            resource_id=self.resource_id,
            spec=copy.deepcopy(self.spec),
            version=self.version,
            namespace=self.namespace,
        )


@dataclass(frozen=True)
class ResourceDefinition:
    """Registration metadata for a resource kind."""

    kind: str
    default_id: str
    schema: Dict[str, Any]
    namespace: str = NAMESPACE
    sensitive: bool = False
    required: bool = False
    output: bool = False


class ResourceRegistry:
    """
    Registry of resource kinds known to the renderer.

    Lookups are by kind name. Registration validates the kind's schema so a
    broken definition fails at startup rather than on first ingestion.
    """

    def __init__(self):
        self._definitions: Dict[str, ResourceDefinition] = {}

    def register(self, definition: ResourceDefinition) -> None:
        """
        Register a resource kind.

        Args:
            definition: The kind's definition

        Raises:
            ValueError: If the schema is invalid or the kind already exists
        """
        is_valid, error = check_schema(definition.schema)
        if not is_valid:
            raise ValueError(f"Cannot register {definition.kind}: {error}")

        if definition.kind in self._definitions:
            raise ValueError(f"Resource kind already registered: {definition.kind}")

        self._definitions[definition.kind] = definition
        logger.debug(f"Registered resource kind: {definition.kind}")

    def get(self, kind: str) -> ResourceDefinition:
        """
        Get the definition for a kind.

        Raises:
            KeyError: If the kind is not registered
        """
        if kind not in self._definitions:
            available = ", ".join(self._definitions.keys()) or "none"
            raise KeyError(
                f"Unknown resource kind: {kind}. Available kinds: {available}"
            )
        return self._definitions[kind]

    def has(self, kind: str) -> bool:
        """Check if a kind is registered."""
        return kind in self._definitions

    def list_kinds(self, output: Optional[bool] = None) -> List[str]:
        """
        List registered kind names in registration order.

        Args:
            output: If set, only return output (True) or input (False) kinds
        """
        return [
            kind
            for kind, definition in self._definitions.items()
            if output is None or definition.output == output
        ]

    def validate_spec(self, kind: str, spec: Dict[str, Any]) -> None:
        """
        Validate a spec against the kind's schema.

        Raises:
            KeyError: If the kind is not registered
            SpecValidationError: If the spec does not match
        """
        definition = self.get(kind)
        is_valid, error = validate_spec_against_schema(spec, definition.schema)
        if not is_valid:
            raise SpecValidationError(kind, error)


def build_registry() -> ResourceRegistry:
    """Build the registry with every kind the renderer reads or writes."""
    registry = ResourceRegistry()

    registry.register(
        ResourceDefinition(
            kind=ADMISSION_CONTROL_CONFIG,
            default_id=ADMISSION_CONTROL_CONFIG_ID,
            schema=_ADMISSION_CONFIG_SCHEMA,
            sensitive=True,
            required=True,
        )
    )
    registry.register(
        ResourceDefinition(
            kind=AUDIT_POLICY_CONFIG,
            default_id=AUDIT_POLICY_CONFIG_ID,
            schema=_GENERIC_CONFIG_SCHEMA,
            sensitive=True,
            required=True,
        )
    )
    registry.register(
        ResourceDefinition(
            kind=STRUCTURED_AUTHENTICATION_CONFIG,
            default_id=STRUCTURED_AUTHENTICATION_CONFIG_ID,
            schema=_GENERIC_CONFIG_SCHEMA,
            sensitive=True,
        )
    )
    registry.register(
        ResourceDefinition(
            kind=STRUCTURED_AUTHORIZATION_CONFIG,
            default_id=STRUCTURED_AUTHORIZATION_CONFIG_ID,
            schema=_GENERIC_CONFIG_SCHEMA,
            sensitive=True,
        )
    )
    registry.register(
        ResourceDefinition(
            kind=SCHEDULER_CONFIG,
            default_id=SCHEDULER_CONFIG_ID,
            schema=_GENERIC_CONFIG_SCHEMA,
            sensitive=True,
            required=True,
        )
    )
    registry.register(
        ResourceDefinition(
            kind=CONFIG_STATUS,
            default_id=CONFIG_STATUS_STATIC_POD_ID,
            schema=_CONFIG_STATUS_SCHEMA,
            output=True,
        )
    )

    return registry
