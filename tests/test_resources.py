"""Unit tests for resources.py - Resource kinds and registry."""

import pytest

from resources import (
    ADMISSION_CONTROL_CONFIG,
    AUDIT_POLICY_CONFIG,
    CONFIG_STATUS,
    NAMESPACE,
    SCHEDULER_CONFIG,
    STRUCTURED_AUTHENTICATION_CONFIG,
    STRUCTURED_AUTHORIZATION_CONFIG,
    Resource,
    ResourceDefinition,
    ResourceRegistry,
    SpecValidationError,
    build_registry,
)


class TestResource:
    """Tests for the Resource dataclass."""

    def test_defaults(self):
        resource = Resource(kind="Foo", resource_id="foo")
        assert resource.spec == {}
        assert resource.version == ""
        assert resource.namespace == NAMESPACE

    def test_copy_is_deep(self):
        resource = Resource(
            kind="Foo", resource_id="foo", spec={"config": {"a": [1]}}, version="3"
        )
        clone = resource.copy()
        clone.spec["config"]["a"].append(2)

        assert resource.spec == {"config": {"a": [1]}}
        assert clone.version == "3"


class TestResourceRegistry:
    """Tests for ResourceRegistry class."""

    def _definition(self, kind="Foo", schema=None):
        return ResourceDefinition(
            kind=kind, default_id="foo", schema=schema or {"type": "object"}
        )

    def test_register_and_get(self):
        registry = ResourceRegistry()
        definition = self._definition()
        registry.register(definition)

        assert registry.has("Foo")
        assert registry.get("Foo") is definition

    def test_register_duplicate_raises(self):
        registry = ResourceRegistry()
        registry.register(self._definition())
        with pytest.raises(ValueError) as exc_info:
            registry.register(self._definition())
        assert "already registered" in str(exc_info.value)

    def test_register_invalid_schema_raises(self):
        registry = ResourceRegistry()
        with pytest.raises(ValueError) as exc_info:
            registry.register(self._definition(schema={"type": "bogus"}))
        assert "Cannot register Foo" in str(exc_info.value)
        assert not registry.has("Foo")

    def test_get_unknown_lists_available(self):
        registry = ResourceRegistry()
        registry.register(self._definition())
        with pytest.raises(KeyError) as exc_info:
            registry.get("Bar")
        assert "Available kinds: Foo" in str(exc_info.value)

    def test_validate_spec_raises(self):
        registry = ResourceRegistry()
        registry.register(
            self._definition(
                schema={"type": "object", "required": ["config"]},
            )
        )
        with pytest.raises(SpecValidationError) as exc_info:
            registry.validate_spec("Foo", {})
        assert exc_info.value.kind == "Foo"
        assert "config" in exc_info.value.message

    def test_spec_validation_error_is_value_error(self):
        assert issubclass(SpecValidationError, ValueError)


class TestBuildRegistry:
    """Tests for the renderer's registry."""

    def test_kinds_in_order(self, registry):
        assert registry.list_kinds() == [
            ADMISSION_CONTROL_CONFIG,
            AUDIT_POLICY_CONFIG,
            STRUCTURED_AUTHENTICATION_CONFIG,
            STRUCTURED_AUTHORIZATION_CONFIG,
            SCHEDULER_CONFIG,
            CONFIG_STATUS,
        ]

    def test_output_filter(self, registry):
        assert registry.list_kinds(output=True) == [CONFIG_STATUS]
        assert CONFIG_STATUS not in registry.list_kinds(output=False)

    def test_required_kinds(self, registry):
        required = [k for k in registry.list_kinds() if registry.get(k).required]
        assert required == [
            ADMISSION_CONTROL_CONFIG,
            AUDIT_POLICY_CONFIG,
            SCHEDULER_CONFIG,
        ]

    def test_inputs_are_sensitive(self, registry):
        for kind in registry.list_kinds(output=False):
            assert registry.get(kind).sensitive is True
        assert registry.get(CONFIG_STATUS).sensitive is False

    def test_admission_spec_validation(self, registry, admission_spec):
        registry.validate_spec(ADMISSION_CONTROL_CONFIG, admission_spec)
        registry.validate_spec(ADMISSION_CONTROL_CONFIG, {"config": None})

        with pytest.raises(SpecValidationError):
            registry.validate_spec(
                ADMISSION_CONTROL_CONFIG, {"config": [{"configuration": {}}]}
            )
        with pytest.raises(SpecValidationError):
            registry.validate_spec(ADMISSION_CONTROL_CONFIG, {"config": {"a": 1}})

    def test_generic_spec_validation(self, registry, audit_spec):
        registry.validate_spec(AUDIT_POLICY_CONFIG, audit_spec)
        registry.validate_spec(AUDIT_POLICY_CONFIG, {})

        with pytest.raises(SpecValidationError):
            registry.validate_spec(AUDIT_POLICY_CONFIG, {"config": [1]})
        with pytest.raises(SpecValidationError):
            registry.validate_spec(AUDIT_POLICY_CONFIG, {"other": {}})

    def test_status_spec_validation(self, registry):
        registry.validate_spec(CONFIG_STATUS, {"ready": True, "version": "123"})
        with pytest.raises(SpecValidationError):
            registry.validate_spec(CONFIG_STATUS, {"ready": "yes"})
