# SPDX-License-Identifier: Apache-2.0

"""
Tests for application wiring and health reporting.
"""

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from relief_api.app import ReliefApplication
from relief_api.config import Settings


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        cache_ttl_seconds=120,
        default_search_radius_meters=2500,
        broadcast_queue_size=7,
        otel_enabled=False
    )


@pytest.fixture
def application(settings, mongo_service):
    return ReliefApplication(settings, mongo_service=mongo_service, configure_observability=False)


class TestReliefApplication:

    def test_components_share_one_store_handle(self, application, mongo_service):
        assert application.store.mongo_service is mongo_service
        assert application.cache.mongo_service is mongo_service
        assert application.service.store is application.store
        assert application.service.broadcast is application.broadcast
        assert application.proximity.cache is application.cache

    def test_settings_are_applied(self, application):
        assert application.cache.ttl.total_seconds() == 120
        assert application.proximity.default_radius == 2500
        assert application.broadcast.queue_size == 7
        assert application.relay is None

    @pytest.mark.asyncio
    async def test_lifecycle_and_health(self, application, fake_client):
        async with application:
            subscription = application.broadcast.subscribe("*")
            health = await application.health()
            subscription.close()

        assert health["status"] == "healthy"
        assert health["dependencies"]["mongodb"]["status"] == "healthy"
        assert health["dependencies"]["cache"]["entries"] == 0
        assert health["dependencies"]["broadcast"]["subscribers"] == 1
        assert "amqp" not in health["dependencies"]
        assert fake_client.closed is True

    @pytest.mark.asyncio
    async def test_unhealthy_store(self, application, fake_client):
        fake_client.admin.fail_with = ServerSelectionTimeoutError("no servers")

        health = await application.health()

        assert health["status"] == "unhealthy"
        assert health["uptime_seconds"] is None

    @pytest.mark.asyncio
    async def test_request_round_trip(self, application, sample_incident_data):
        """Test a coordinator call wrapped by the error handler."""
        body, status = await application.errors.run(
            application.service.create_incident,
            sample_incident_data,
            "netrunnerX",
            success_status=201
        )
        assert status == 201
        assert body["data"]["title"] == "NYC Flood"

        body, status = await application.errors.run(
            application.service.delete_incident,
            "0123456789abcdef01234567",
            "netrunnerX"
        )
        assert status == 404
        assert body["instance"] == "delete_incident"
