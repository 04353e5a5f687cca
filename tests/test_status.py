"""Unit tests for status.py - ConfigStatus publishing."""

import pytest
from unittest.mock import AsyncMock

from resources import CONFIG_STATUS, CONFIG_STATUS_STATIC_POD_ID
from status import ConfigStatus, StatusPublisher, compute_version
from store import ConflictError


class TestComputeVersion:
    """Tests for compute_version."""

    def test_concatenates_in_order(self):
        assert compute_version("1", "22", "333") == "122333"

    def test_order_matters(self):
        assert compute_version("1", "2", "3") != compute_version("3", "2", "1")


class TestConfigStatus:
    """Tests for the ConfigStatus dataclass."""

    def test_from_spec(self):
        status = ConfigStatus.from_spec({"ready": True, "version": "123"})
        assert status == ConfigStatus(ready=True, version="123")

    def test_from_empty_spec(self):
        assert ConfigStatus.from_spec({}) == ConfigStatus()


@pytest.mark.asyncio
class TestStatusPublisher:
    """Tests for StatusPublisher."""

    async def test_current_before_publish(self, store):
        assert await StatusPublisher(store).current() is None

    async def test_publish(self, store):
        publisher = StatusPublisher(store)
        status = await publisher.publish("123")

        assert status == ConfigStatus(ready=True, version="123")
        assert await publisher.current() == status

        resource = await store.get(CONFIG_STATUS, CONFIG_STATUS_STATIC_POD_ID)
        assert resource.spec == {"ready": True, "version": "123"}

    async def test_republish_same_version_is_noop(self, store):
        publisher = StatusPublisher(store)
        await publisher.publish("1")
        first = await store.get(CONFIG_STATUS, CONFIG_STATUS_STATIC_POD_ID)
        await publisher.publish("1")
        second = await store.get(CONFIG_STATUS, CONFIG_STATUS_STATIC_POD_ID)

        assert first.version == second.version

    async def test_publish_propagates_conflict(self):
        store = AsyncMock()
        store.merge_update.side_effect = ConflictError(
            CONFIG_STATUS, CONFIG_STATUS_STATIC_POD_ID
        )

        with pytest.raises(ConflictError):
            await StatusPublisher(store).publish("1")
