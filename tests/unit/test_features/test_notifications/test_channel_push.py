"""Tests for the push dispatcher (FCM and APNs over httpx)."""

from __future__ import annotations

import json
from uuid import uuid4

import httpx
import pytest

from notification_service.core.settings import ProviderSettings
from notification_service.features.notifications.channels import (
    DeliveryTarget,
    Device,
    MessageContent,
    PushDispatcher,
)
from notification_service.features.notifications.enums import DevicePlatform, ErrorCategory, Priority

GOOD = "good-token-0123456789"
DEAD = "dead-token-0123456789"
BAD = "bad-token-0123456789"


def fcm_handler(requests: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        token = json.loads(request.content)["message"]["token"]
        if token == DEAD:
            return httpx.Response(404, json={"error": {"status": "NOT_FOUND", "message": "Requested entity was not found."}})
        if token == BAD:
            return httpx.Response(
                400,
                json={
                    "error": {
                        "status": "INVALID_ARGUMENT",
                        "message": "The registration token is not valid",
                        "details": [{"errorCode": "INVALID_ARGUMENT"}],
                    }
                },
            )
        return httpx.Response(200, json={"name": "projects/demo/messages/1"})

    return handler


@pytest.fixture
def settings() -> ProviderSettings:
    return ProviderSettings(fcm_project_id="demo", fcm_access_token="fcm-token")


@pytest.fixture
def content() -> MessageContent:
    return MessageContent(
        notification_id=uuid4(),
        type="ORDER_STATUS",
        title="Order #1",
        body="Shipped",
        data={"order_id": 1},
        priority=Priority.HIGH,
    )


def android(token: str) -> Device:
    return Device(token=token, platform=DevicePlatform.ANDROID)


@pytest.mark.unit
class TestPushDispatcher:
    async def test_no_devices_fails_without_calls(self, settings, content):
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=httpx.MockTransport(fcm_handler(requests))) as client:
            result = await PushDispatcher(settings, client).send(DeliveryTarget(user_id="u-1"), content)

        assert result.success is False
        assert result.error == "No active device tokens"
        assert requests == []

    async def test_partial_success_reports_dead_tokens(self, settings, content):
        requests: list[httpx.Request] = []
        target = DeliveryTarget(user_id="u-1", devices=(android(GOOD), android(DEAD)))
        async with httpx.AsyncClient(transport=httpx.MockTransport(fcm_handler(requests))) as client:
            result = await PushDispatcher(settings, client).send(target, content)

        assert result.success is True
        assert result.message_id == "projects/demo/messages/1"
        assert result.invalid_tokens == [DEAD]
        assert result.metadata == {"devices": 2, "accepted": 1}
        assert len(requests) == 2

    async def test_payload_carries_string_data(self, settings, content):
        requests: list[httpx.Request] = []
        target = DeliveryTarget(user_id="u-1", devices=(android(GOOD),))
        async with httpx.AsyncClient(transport=httpx.MockTransport(fcm_handler(requests))) as client:
            await PushDispatcher(settings, client).send(target, content)

        message = json.loads(requests[0].content)["message"]
        assert requests[0].headers["Authorization"] == "Bearer fcm-token"
        assert message["data"] == {
            "order_id": "1",
            "notification_id": str(content.notification_id),
            "type": "ORDER_STATUS",
        }
        assert message["android"]["priority"] == "high"

    async def test_unregistered_device(self, settings, content):
        target = DeliveryTarget(user_id="u-1", devices=(android(DEAD),))
        async with httpx.AsyncClient(transport=httpx.MockTransport(fcm_handler([]))) as client:
            result = await PushDispatcher(settings, client).send(target, content)

        assert result.success is False
        assert result.error_category == ErrorCategory.UNREGISTERED_DEVICE
        assert result.invalid_tokens == [DEAD]

    async def test_invalid_token(self, settings, content):
        target = DeliveryTarget(user_id="u-1", devices=(android(BAD),))
        async with httpx.AsyncClient(transport=httpx.MockTransport(fcm_handler([]))) as client:
            result = await PushDispatcher(settings, client).send(target, content)

        assert result.success is False
        assert result.error_category == ErrorCategory.INVALID_TOKEN
        assert result.invalid_tokens == [BAD]

    async def test_unconfigured_apns_is_auth_error(self, settings, content):
        target = DeliveryTarget(user_id="u-1", devices=(Device(token=GOOD, platform=DevicePlatform.IOS),))
        async with httpx.AsyncClient(transport=httpx.MockTransport(fcm_handler([]))) as client:
            result = await PushDispatcher(settings, client).send(target, content)

        assert result.success is False
        assert result.error_category == ErrorCategory.AUTH_ERROR
        assert result.invalid_tokens == []

    async def test_timeout_is_classified(self, settings, content):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        target = DeliveryTarget(user_id="u-1", devices=(android(GOOD),))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await PushDispatcher(settings, client).send(target, content)

        assert result.success is False
        assert result.error_category == ErrorCategory.TIMEOUT

    async def test_availability(self):
        async with httpx.AsyncClient() as client:
            assert PushDispatcher(ProviderSettings(), client).is_available() is False
            assert PushDispatcher(ProviderSettings(apns_topic="app", apns_auth_token="jwt"), client).is_available() is True
