"""
Test opportunity event publishing
"""

import json
import pytest
from types import SimpleNamespace
from uuid import UUID

from pipeline.app.core.config import settings
from pipeline.app.schemas.requests import BatchCreationRequest
from pipeline.app.models import OpportunityStage
from pipeline.app.services import opportunity_service
from pipeline.app.services.nats_client import NATSClient


class RecordingPublisher:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    async def publish_event(self, subject, data, headers=None):
        if self.fail:
            raise ConnectionError("nats unavailable")
        self.events.append((subject, data))


@pytest.fixture
def publisher(monkeypatch):
    recorder = RecordingPublisher()

    async def get_client():
        return recorder

    monkeypatch.setattr(settings, "nats_enabled", True)
    monkeypatch.setattr(opportunity_service, "get_nats_client", get_client)
    return recorder


async def test_batch_and_stage_events(service, batch_payload, publisher):
    result = await service.create_batch(BatchCreationRequest(**batch_payload))
    opportunity_id = result.created[0]["id"]

    await service.update_stage(UUID(opportunity_id), OpportunityStage.INITIAL_OUTREACH)

    subjects = [subject for subject, _ in publisher.events]
    assert subjects == ["opportunities.batch_created", "opportunities.stage_changed"]

    batch_event = publisher.events[0][1]
    assert batch_event["opportunity_ids"] == [view["id"] for view in result.created]

    stage_event = publisher.events[1][1]
    assert stage_event["opportunity_id"] == opportunity_id
    assert stage_event["event_data"] == {"old_stage": "new_lead", "new_stage": "initial_outreach"}


async def test_publish_failure_does_not_fail_request(service, batch_payload, monkeypatch):
    async def get_client():
        return RecordingPublisher(fail=True)

    monkeypatch.setattr(settings, "nats_enabled", True)
    monkeypatch.setattr(opportunity_service, "get_nats_client", get_client)

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.total_created == 2


async def test_disabled_events_are_not_published(service, batch_payload, monkeypatch):
    async def get_client():
        raise AssertionError("NATS should not be used when disabled")

    monkeypatch.setattr(opportunity_service, "get_nats_client", get_client)

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.total_created == 2


async def test_nats_client_wraps_payload():
    published = []

    class FakeJetStream:
        async def publish(self, subject, payload, headers=None):
            published.append((subject, json.loads(payload)))
            return SimpleNamespace(seq=7)

    client = NATSClient("nats://localhost:4222")
    client.js = FakeJetStream()

    ack = await client.publish_event("opportunities.deleted", {"opportunity_id": "abc"})

    assert ack.seq == 7
    subject, body = published[0]
    assert subject == "opportunities.deleted"
    assert body["data"] == {"opportunity_id": "abc"}
    assert "timestamp" in body
    assert await client.health_check() is False
