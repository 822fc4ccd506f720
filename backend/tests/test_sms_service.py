"""
SMS gateway client tests. The gateway is never contacted: httpx.post is replaced.
"""

import httpx
import pytest
from flask import Flask

from steeltrack.services import sms_service
from steeltrack.services.sms_service import ConsoleSmsSender, Fast2SmsSender, init_sms_sender


GATEWAY_URL = "https://sms.example/dev/bulkV2"


@pytest.fixture
def sender():
    return Fast2SmsSender(
        api_key="key-123",
        url=GATEWAY_URL,
        sender_id="STEEL",
        template_id="208865",
        timeout=2,
    )


@pytest.fixture
def gateway(monkeypatch):
    """Install a fake httpx.post returning the configured response."""
    calls = []
    state = {"response": httpx.Response(200, json={"return": True, "request_id": "r-1"}), "error": None}

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if state["error"] is not None:
            raise state["error"]
        return state["response"]

    monkeypatch.setattr(sms_service.httpx, "post", fake_post)
    state["calls"] = calls
    return state


class TestFast2SmsSender:

    def test_payload_carries_only_the_code(self, sender):
        payload = sender.build_payload("9876543210", "482913")
        assert payload == {
            "route": "dlt",
            "sender_id": "STEEL",
            "message": "208865",
            "variables_values": "482913",
            "flash": 0,
            "numbers": "9876543210",
        }

    def test_accepted(self, app, sender, gateway):
        assert sender.send("91", "9876543210", "482913") is True

        call = gateway["calls"][0]
        assert call["url"] == GATEWAY_URL
        assert call["headers"]["authorization"] == "key-123"
        assert call["timeout"] == 2

    @pytest.mark.parametrize("response", [
        httpx.Response(200, json={"return": False, "message": ["Invalid template"]}),
        httpx.Response(500, json={"return": True}),
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json=["queued"]),
    ])
    def test_refused(self, app, sender, gateway, response):
        gateway["response"] = response
        assert sender.send("91", "9876543210", "482913") is False

    def test_transport_error(self, app, sender, gateway):
        gateway["error"] = httpx.ConnectError("connection refused")
        assert sender.send("91", "9876543210", "482913") is False


class TestSenderSelection:

    def test_console_without_api_key(self):
        app = Flask(__name__)
        app.config["FAST2SMS_API_KEY"] = ""
        assert isinstance(init_sms_sender(app), ConsoleSmsSender)

    def test_gateway_with_api_key(self):
        app = Flask(__name__)
        app.config.update({
            "FAST2SMS_API_KEY": "key-123",
            "FAST2SMS_URL": GATEWAY_URL,
            "SMS_SENDER_ID": "STEEL",
            "SMS_TEMPLATE_ID": "208865",
            "SMS_TIMEOUT_SECONDS": 5.0,
        })
        sender = init_sms_sender(app)

        assert isinstance(sender, Fast2SmsSender)
        assert app.extensions["sms_sender"] is sender

    def test_console_sender_always_delivers(self, app):
        assert ConsoleSmsSender().send("91", "9876543210", "123456") is True
