# Overview: Outbound SMS delivery for OTP codes (gateway client and test-mode console sender).

from __future__ import annotations

import httpx
from flask import current_app


class SmsSender:
    """Best-effort OTP delivery. send() returns True when the gateway accepted the message."""

    def send(self, country_code: str, phone_no: str, code: str) -> bool:
        raise NotImplementedError


class ConsoleSmsSender(SmsSender):
    """Test mode: no gateway configured, the code goes to the application log."""

    def send(self, country_code: str, phone_no: str, code: str) -> bool:
        current_app.logger.info("TEST MODE OTP for +%s %s: %s", country_code, phone_no, code)
        return True


class Fast2SmsSender(SmsSender):
    """
    Fast2SMS DLT route client.

    The gateway renders the registered template with variables_values, so
    only the code itself is sent. Any transport error or a response without
    "return": true counts as not delivered.
    """

    def __init__(self, api_key: str, url: str, sender_id: str, template_id: str, timeout: float = 10.0):
        self.api_key = api_key
        self.url = url
        self.sender_id = sender_id
        self.template_id = template_id
        self.timeout = timeout

    def build_payload(self, phone_no: str, code: str) -> dict:
        return {
            "route": "dlt",
            "sender_id": self.sender_id,
            "message": self.template_id,
            "variables_values": code,
            "flash": 0,
            "numbers": phone_no,
        }

    def send(self, country_code: str, phone_no: str, code: str) -> bool:
        try:
            response = httpx.post(
                self.url,
                json=self.build_payload(phone_no, code),
                headers={
                    "authorization": self.api_key,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            current_app.logger.warning("SMS delivery to %s failed: %s", phone_no, exc)
            return False

        if response.status_code != 200:
            current_app.logger.warning(
                "SMS gateway rejected message to %s: HTTP %s", phone_no, response.status_code
            )
            return False

        try:
            body = response.json()
        except ValueError:
            current_app.logger.warning("SMS gateway returned non-JSON body for %s", phone_no)
            return False

        if not isinstance(body, dict):
            current_app.logger.warning("SMS gateway returned unexpected body for %s: %r", phone_no, body)
            return False

        if body.get("return") is True:
            current_app.logger.info("SMS delivered to %s (request %s)", phone_no, body.get("request_id"))
            return True

        current_app.logger.warning("SMS gateway refused message to %s: %s", phone_no, body.get("message"))
        return False


def init_sms_sender(app) -> SmsSender:
    """Pick the sender from config and register it on the app."""
    api_key = app.config.get("FAST2SMS_API_KEY")
    if api_key:
        sender = Fast2SmsSender(
            api_key=api_key,
            url=app.config["FAST2SMS_URL"],
            sender_id=app.config["SMS_SENDER_ID"],
            template_id=app.config["SMS_TEMPLATE_ID"],
            timeout=app.config["SMS_TIMEOUT_SECONDS"],
        )
    else:
        sender = ConsoleSmsSender()
    app.extensions["sms_sender"] = sender
    return sender


def get_sms_sender() -> SmsSender:
    return current_app.extensions["sms_sender"]
