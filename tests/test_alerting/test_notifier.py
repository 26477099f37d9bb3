"""Tests for HttpPushNotifier using httpx.MockTransport."""

import json

import httpx
import pytest

from flowwatch.alerting.notifier import HttpPushNotifier
from flowwatch.alerting.schemas import PushMessage

MESSAGE = PushMessage(
    token="device-token-1",
    title="Major Flow Alert: Clear Creek",
    body="Forecasted flow: 4500 CFS (Today)",
    data={"type": "flow_alert", "alertId": "r1_10yr_1"},
    color="#FF5722",
    priority="default",
)


def notifier_with(handler, **kwargs) -> HttpPushNotifier:
    return HttpPushNotifier(
        gateway_url=kwargs.pop("gateway_url", "https://push.test/send"),
        api_key=kwargs.pop("api_key", "secret"),
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
class TestHttpPushNotifier:
    async def test_accepted(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "msg-1"})

        assert await notifier_with(handler).send(MESSAGE) is True

        request = seen[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer secret"
        payload = json.loads(request.content)
        assert payload["token"] == "device-token-1"
        assert payload["notification"] == {
            "title": MESSAGE.title,
            "body": MESSAGE.body,
            "color": "#FF5722",
        }
        assert payload["data"]["alertId"] == "r1_10yr_1"
        assert payload["priority"] == "default"

    async def test_no_api_key_no_auth_header(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202)

        assert await notifier_with(handler, api_key="").send(MESSAGE) is True
        assert "Authorization" not in seen[0].headers

    @pytest.mark.parametrize("status", [400, 404, 500, 503])
    async def test_rejected_status(self, status):
        assert await notifier_with(lambda r: httpx.Response(status)).send(MESSAGE) is False

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        assert await notifier_with(handler).send(MESSAGE) is False

    async def test_unconfigured_gateway(self):
        calls = []
        notifier = notifier_with(lambda r: calls.append(r) or httpx.Response(200), gateway_url="")
        assert await notifier.send(MESSAGE) is False
        assert calls == []
