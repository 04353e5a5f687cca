"""
Target Schema Converters - Generic payloads to typed control-plane documents.

Each upstream resource carries a loosely typed ``config`` mapping. The
functions here turn that mapping into a strongly typed document for the
API server or the scheduler, one function per configuration kind. The
documents are pydantic models that reject unknown fields, so a payload that
does not fit the target schema fails here instead of producing a broken
file on disk.

Converters always stamp ``apiVersion``/``kind`` themselves; whatever the
payload says for those fields is overridden.
"""

import json
import logging
from functools import partial
from typing import Any, Callable, ClassVar, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from resources import (
    ADMISSION_CONTROL_CONFIG,
    AUDIT_POLICY_CONFIG,
    SCHEDULER_CONFIG,
    STRUCTURED_AUTHENTICATION_CONFIG,
    STRUCTURED_AUTHORIZATION_CONFIG,
)

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """Raised when a payload does not conform to its target schema."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind}: {message}")


class TargetModel(BaseModel):
    """Base for all target schema objects: camelCase keys, no extra fields."""

    model_config = ConfigDict(alias_generator=to_camel, extra="forbid")


class TargetDocument(TargetModel):
    """A top-level document with ``apiVersion``/``kind`` discriminators."""

    API_VERSION: ClassVar[str] = ""
    KIND: ClassVar[str] = ""

    api_version: str = ""
    kind: str = ""

    def stamp(self) -> None:
        """Force the discriminators to the values this type requires."""
        self.api_version = self.API_VERSION
        self.kind = self.KIND


# ==================== Admission control ====================


class AdmissionPluginConfiguration(TargetModel):
    name: str
    path: Optional[str] = None
    configuration: Optional[Dict[str, Any]] = None


class AdmissionConfiguration(TargetDocument):
    API_VERSION: ClassVar[str] = "apiserver.config.k8s.io/v1"
    KIND: ClassVar[str] = "AdmissionConfiguration"

    plugins: List[AdmissionPluginConfiguration] = Field(default_factory=list)


# ==================== Audit policy ====================

Stage = Literal["RequestReceived", "ResponseStarted", "ResponseComplete", "Panic"]
Level = Literal["None", "Metadata", "Request", "RequestResponse"]


class GroupResources(TargetModel):
    group: Optional[str] = None
    resources: Optional[List[str]] = None
    resource_names: Optional[List[str]] = None


class PolicyRule(TargetModel):
    level: Level
    users: Optional[List[str]] = None
    user_groups: Optional[List[str]] = None
    verbs: Optional[List[str]] = None
    resources: Optional[List[GroupResources]] = None
    namespaces: Optional[List[str]] = None
    non_resource_urls: Optional[List[str]] = Field(
        default=None, alias="nonResourceURLs"
    )
    omit_stages: Optional[List[Stage]] = None
    omit_managed_fields: Optional[bool] = None


class Policy(TargetDocument):
    API_VERSION: ClassVar[str] = "audit.k8s.io/v1"
    KIND: ClassVar[str] = "Policy"

    metadata: Optional[Dict[str, Any]] = None
    rules: List[PolicyRule]
    omit_stages: Optional[List[Stage]] = None
    omit_managed_fields: Optional[bool] = None


# ==================== Structured authentication ====================


class Issuer(TargetModel):
    url: str
    discovery_url: Optional[str] = Field(default=None, alias="discoveryURL")
    certificate_authority: Optional[str] = None
    audiences: List[str]
    audience_match_policy: Optional[str] = None
    egress_selector_type: Optional[str] = None


class ClaimValidationRule(TargetModel):
    claim: Optional[str] = None
    required_value: Optional[str] = None
    expression: Optional[str] = None
    message: Optional[str] = None


class PrefixedClaimOrExpression(TargetModel):
    claim: Optional[str] = None
    prefix: Optional[str] = None
    expression: Optional[str] = None


class ClaimOrExpression(TargetModel):
    claim: Optional[str] = None
    expression: Optional[str] = None


class ExtraMapping(TargetModel):
    key: str
    value_expression: str


class ClaimMappings(TargetModel):
    username: PrefixedClaimOrExpression
    groups: Optional[PrefixedClaimOrExpression] = None
    uid: Optional[ClaimOrExpression] = None
    extra: Optional[List[ExtraMapping]] = None


class UserValidationRule(TargetModel):
    expression: str
    message: Optional[str] = None


class JWTAuthenticator(TargetModel):
    issuer: Issuer
    claim_validation_rules: Optional[List[ClaimValidationRule]] = None
    claim_mappings: ClaimMappings
    user_validation_rules: Optional[List[UserValidationRule]] = None


class AnonymousAuthCondition(TargetModel):
    path: str


class AnonymousAuthConfig(TargetModel):
    enabled: bool
    conditions: Optional[List[AnonymousAuthCondition]] = None


class AuthenticationConfiguration(TargetDocument):
    """
    The v1beta1 authentication document.

    Covers JWT authenticators and anonymous auth. Unknown fields are rejected
    so that a typo cannot silently drop part of the configuration.
    """

    API_VERSION: ClassVar[str] = "apiserver.config.k8s.io/v1beta1"
    KIND: ClassVar[str] = "AuthenticationConfiguration"

    jwt: Optional[List[JWTAuthenticator]] = None
    anonymous: Optional[AnonymousAuthConfig] = None


# ==================== Structured authorization ====================


class WebhookConnectionInfo(TargetModel):
    type: Literal["KubeConfigFile", "InClusterConfig"]
    kube_config_file: Optional[str] = None


class WebhookMatchCondition(TargetModel):
    expression: str


class WebhookConfiguration(TargetModel):
    authorized_ttl: str = Field(alias="authorizedTTL")
    unauthorized_ttl: str = Field(alias="unauthorizedTTL")
    timeout: str
    subject_access_review_version: str
    match_condition_subject_access_review_version: str
    failure_policy: Literal["NoOpinion", "Deny"]
    connection_info: WebhookConnectionInfo
    match_conditions: Optional[List[WebhookMatchCondition]] = None


class AuthorizerConfiguration(TargetModel):
    type: str
    name: str
    webhook: Optional[WebhookConfiguration] = None


class AuthorizationConfiguration(TargetDocument):
    API_VERSION: ClassVar[str] = "apiserver.config.k8s.io/v1beta1"
    KIND: ClassVar[str] = "AuthorizationConfiguration"

    authorizers: List[AuthorizerConfiguration]


# ==================== Scheduler ====================


class ClientConnection(TargetModel):
    kubeconfig: Optional[str] = None
    accept_content_types: Optional[str] = None
    content_type: Optional[str] = None
    qps: Optional[float] = None
    burst: Optional[int] = None


class LeaderElection(TargetModel):
    leader_elect: Optional[bool] = None
    lease_duration: Optional[str] = None
    renew_deadline: Optional[str] = None
    retry_period: Optional[str] = None
    resource_lock: Optional[str] = None
    resource_name: Optional[str] = None
    resource_namespace: Optional[str] = None


class KubeSchedulerProfile(TargetModel):
    scheduler_name: Optional[str] = None
    percentage_of_nodes_to_score: Optional[int] = None
    plugins: Optional[Dict[str, Any]] = None
    plugin_config: Optional[List[Dict[str, Any]]] = None


class KubeSchedulerConfiguration(TargetDocument):
    API_VERSION: ClassVar[str] = "kubescheduler.config.k8s.io/v1"
    KIND: ClassVar[str] = "KubeSchedulerConfiguration"

    parallelism: Optional[int] = None
    leader_election: Optional[LeaderElection] = None
    client_connection: Optional[ClientConnection] = None
    enable_profiling: Optional[bool] = None
    enable_contention_profiling: Optional[bool] = None
    percentage_of_nodes_to_score: Optional[int] = None
    pod_initial_backoff_seconds: Optional[int] = None
    pod_max_backoff_seconds: Optional[int] = None
    profiles: Optional[List[KubeSchedulerProfile]] = None
    extenders: Optional[List[Dict[str, Any]]] = None
    delay_cache_until_active: Optional[bool] = None


DOCUMENT_TYPES: List[Type[TargetDocument]] = [
    AdmissionConfiguration,
    Policy,
    AuthenticationConfiguration,
    AuthorizationConfiguration,
    KubeSchedulerConfiguration,
]


# ==================== Conversion ====================


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as ``path: message`` pairs."""
    messages = []
    for err in error.errors():
        path = ".".join(str(p) for p in err["loc"]) or "(root)"
        messages.append(f"{path}: {err['msg']}")
    return "; ".join(messages)


def _nested_model(annotation: Any) -> Optional[Type[BaseModel]]:
    """Find the model type inside an annotation like Optional[List[Model]]."""
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    for arg in getattr(annotation, "__args__", ()):
        found = _nested_model(arg)
        if found is not None:
            return found
    return None


def prune_unknown_fields(model: Type[BaseModel], data: Any) -> Any:
    """
    Drop keys that ``model`` does not declare, recursing into sub-models.

    Values that are not mappings are returned untouched so the subsequent
    validation still reports type errors.
    """
    if not isinstance(data, dict):
        return data

    pruned = {}
    for name, field_info in model.model_fields.items():
        key = field_info.alias or name
        if key not in data:
            continue

        value = data[key]
        nested = _nested_model(field_info.annotation)
        if nested is not None and isinstance(value, list):
            value = [prune_unknown_fields(nested, item) for item in value]
        elif nested is not None:
            value = prune_unknown_fields(nested, value)
        pruned[key] = value

    return pruned


def _from_payload(
    kind: str, model: Type[TargetDocument], payload: Any, strict: bool = True
) -> TargetDocument:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ConversionError(
            kind, f"expected a mapping, got {type(payload).__name__}"
        )

    if not strict:
        payload = prune_unknown_fields(model, payload)

    try:
        document = model.model_validate(payload)
    except ValidationError as e:
        raise ConversionError(kind, format_validation_error(e)) from e

    document.stamp()
    return document


def admission_control_config(plugins: Any) -> AdmissionConfiguration:
    """
    Build the API server admission configuration.

    Each plugin's configuration is re-encoded through JSON into an opaque
    embedded object. Plugin order is kept exactly as given.

    Args:
        plugins: List of ``{"name": ..., "configuration": {...}}`` mappings
    """
    if plugins is None:
        plugins = []
    if not isinstance(plugins, list):
        raise ConversionError(
            ADMISSION_CONTROL_CONFIG,
            f"expected a list of plugins, got {type(plugins).__name__}",
        )

    document = AdmissionConfiguration()
    document.stamp()

    for plugin in plugins:
        if not isinstance(plugin, dict) or not isinstance(plugin.get("name"), str):
            raise ConversionError(
                ADMISSION_CONTROL_CONFIG, f"invalid plugin entry: {plugin!r}"
            )
        name = plugin["name"]

        try:
            raw = json.dumps(plugin.get("configuration"))
        except (TypeError, ValueError) as e:
            raise ConversionError(
                ADMISSION_CONTROL_CONFIG,
                f"error marshaling configuration for plugin {name!r}: {e}",
            ) from e

        try:
            entry = AdmissionPluginConfiguration.model_validate(
                {"name": name, "configuration": json.loads(raw)}
            )
        except ValidationError as e:
            raise ConversionError(
                ADMISSION_CONTROL_CONFIG,
                f"plugin {name!r}: {format_validation_error(e)}",
            ) from e

        document.plugins.append(entry)

    return document


def audit_policy_config(config: Any) -> Policy:
    """Build the API server audit policy."""
    return _from_payload(AUDIT_POLICY_CONFIG, Policy, config)


def structured_authentication_config(config: Any) -> AuthenticationConfiguration:
    """Build the API server structured authentication configuration."""
    return _from_payload(
        STRUCTURED_AUTHENTICATION_CONFIG, AuthenticationConfiguration, config
    )


def structured_authorization_config(config: Any) -> AuthorizationConfiguration:
    """Build the API server structured authorization configuration."""
    return _from_payload(
        STRUCTURED_AUTHORIZATION_CONFIG, AuthorizationConfiguration, config
    )


def scheduler_config(config: Any, kubeconfig_path: str) -> KubeSchedulerConfiguration:
    """
    Build the scheduler configuration.

    Unknown fields in the payload are ignored rather than rejected. The
    client connection kubeconfig is always ``kubeconfig_path``; a value in
    the payload never wins.
    """
    document = _from_payload(
        SCHEDULER_CONFIG, KubeSchedulerConfiguration, config, strict=False
    )

    if document.client_connection is None:
        document.client_connection = ClientConnection()
    document.client_connection.kubeconfig = kubeconfig_path

    return document


Converter = Callable[[Any], TargetDocument]


def build_converters(scheduler_kubeconfig: str) -> Dict[str, Converter]:
    """
    Map each upstream kind to its converter.

    Args:
        scheduler_kubeconfig: Path injected into the scheduler configuration
    """
    return {
        ADMISSION_CONTROL_CONFIG: admission_control_config,
        AUDIT_POLICY_CONFIG: audit_policy_config,
        STRUCTURED_AUTHENTICATION_CONFIG: structured_authentication_config,
        STRUCTURED_AUTHORIZATION_CONFIG: structured_authorization_config,
        SCHEDULER_CONFIG: partial(
            scheduler_config, kubeconfig_path=scheduler_kubeconfig
        ),
    }
