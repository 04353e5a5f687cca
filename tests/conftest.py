"""Pytest configuration and fixtures."""

import os

import pytest
from unittest.mock import AsyncMock, MagicMock

from config import RenderConfig
from resources import build_registry
from store import InMemoryResourceStore


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn


@pytest.fixture
def registry():
    """Registry with every renderer kind."""
    return build_registry()


@pytest.fixture
def store(registry):
    """Empty in-memory resource store."""
    return InMemoryResourceStore(registry)


@pytest.fixture
def render_config(tmp_path):
    """Render into tmp_path, owned by the current user."""
    return RenderConfig(
        apiserver_config_dir=str(tmp_path / "kube-apiserver"),
        apiserver_run_user=os.getuid(),
        apiserver_run_group=os.getgid(),
        scheduler_config_dir=str(tmp_path / "kube-scheduler"),
        scheduler_run_user=os.getuid(),
        scheduler_run_group=os.getgid(),
        scheduler_secrets_dir="/system/secrets/kube-scheduler",
    )


@pytest.fixture
def admission_spec():
    """Admission control spec with a single plugin."""
    return {"config": [{"name": "Foo", "configuration": {"a": 1}}]}


@pytest.fixture
def audit_spec():
    """Minimal valid audit policy spec."""
    return {
        "config": {
            "apiVersion": "audit.k8s.io/v1",
            "kind": "Policy",
            "rules": [{"level": "Metadata"}],
        }
    }


@pytest.fixture
def scheduler_spec():
    """Minimal valid scheduler spec."""
    return {
        "config": {
            "apiVersion": "kubescheduler.config.k8s.io/v1",
            "kind": "KubeSchedulerConfiguration",
            "clientConnection": {"kubeconfig": "/tmp/other-kubeconfig"},
        }
    }


@pytest.fixture
def authentication_spec():
    """Structured authentication spec with one JWT issuer."""
    return {
        "config": {
            "jwt": [
                {
                    "issuer": {
                        "url": "https://issuer.example.com",
                        "audiences": ["kubernetes"],
                    },
                    "claimMappings": {
                        "username": {"claim": "sub", "prefix": ""},
                    },
                }
            ]
        }
    }


@pytest.fixture
def authorization_spec():
    """Structured authorization spec with the Node and RBAC authorizers."""
    return {
        "config": {
            "authorizers": [
                {"type": "Node", "name": "node"},
                {"type": "RBAC", "name": "rbac"},
            ]
        }
    }
