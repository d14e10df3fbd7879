"""tests/test_dispatch.py

Tests for lead scoring and webhook delivery of extracted commands.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import json
from typing import List

# Third-Party Libraries
import httpx
import pytest

# Local Modules
from motorchat.dispatch import CommandDispatcher, lead_score
from motorchat.models import FinancingOffer, LeadCapture, PriceAlert, SmsRequest, SubjectProduct, TurnContext

PRO_XS_CONTEXT = TurnContext(
    subject=SubjectProduct(id="m-115-proxs", model="115 ELPT Pro XS", hp=115, price=18450),
    page="/quote/motor-selection",
)


@pytest.fixture
def webhook_settings(settings):
    return dataclasses.replace(
        settings,
        lead_webhook_url="https://hooks.test/lead",
        sms_webhook_url="https://hooks.test/sms",
        alert_webhook_url=None,
    )


def _dispatcher(settings, status: int = 200):
    requests: List[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json={"ok": status < 400})

    client = httpx.Client(transport=httpx.MockTransport(_handler))
    return CommandDispatcher(settings, client=client), requests


class TestLeadScore:
    """Test suite for lead_score()."""

    def test_phone_only(self) -> None:
        assert lead_score(LeadCapture(name="", phone="905-555-1234")) == 50

    def test_full_lead_on_premium_motor_caps(self) -> None:
        lead = LeadCapture(name="Mike", phone="905-555-1234", email="mike@example.com")
        assert lead_score(lead, PRO_XS_CONTEXT) == 100

    def test_name_and_phone_with_small_motor(self) -> None:
        context = TurnContext(subject=SubjectProduct(model="9.9 MH FourStroke", hp=9.9, price=3645))
        assert lead_score(LeadCapture(name="Ann", phone="111-222-3333"), context) == 75


class TestCommandDispatcher:
    """Test suite for CommandDispatcher.dispatch()."""

    def test_lead_posts_enriched_body(self, webhook_settings) -> None:
        dispatcher, requests = _dispatcher(webhook_settings)
        lead = LeadCapture(name="Mike", phone="905-555-1234")

        assert dispatcher.dispatch(lead, PRO_XS_CONTEXT, "Asked about the 115")
        assert len(requests) == 1
        assert str(requests[0].url) == "https://hooks.test/lead"
        body = json.loads(requests[0].content)
        assert body["kind"] == "lead_capture"
        assert body["source"] == "ai_chat"
        assert body["current_page"] == "/quote/motor-selection"
        assert body["motor_context"] == {"model": "115 ELPT Pro XS", "hp": 115.0, "price": 18450.0}
        assert body["lead_score"] == 85
        assert body["notes"] == "Asked about the 115 | Interested in: 115 ELPT Pro XS | Page: /quote/motor-selection"

    def test_sms_posts_to_sms_hook(self, webhook_settings) -> None:
        dispatcher, requests = _dispatcher(webhook_settings)
        assert dispatcher.dispatch(SmsRequest(phone="905-555-1234", content_kind="quote"))
        assert str(requests[0].url) == "https://hooks.test/sms"
        assert "lead_score" not in json.loads(requests[0].content)

    def test_missing_webhook_is_not_delivered(self, webhook_settings) -> None:
        dispatcher, requests = _dispatcher(webhook_settings)
        assert not dispatcher.dispatch(PriceAlert(phone="905-555-1234", hp=60))
        assert requests == []

    def test_financing_offer_needs_no_webhook(self, webhook_settings) -> None:
        dispatcher, requests = _dispatcher(webhook_settings)
        offer = FinancingOffer(price=12161, monthly_payment=280, term_months=60, rate=7.99)
        assert dispatcher.dispatch(offer)
        assert requests == []

    def test_error_status_returns_false(self, webhook_settings) -> None:
        dispatcher, requests = _dispatcher(webhook_settings, status=500)
        assert not dispatcher.dispatch(LeadCapture(name="Mike", phone="905-555-1234"))
        assert len(requests) == 1

    def test_transport_error_returns_false(self, webhook_settings) -> None:
        def _boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        dispatcher = CommandDispatcher(webhook_settings, client=httpx.Client(transport=httpx.MockTransport(_boom)))
        assert not dispatcher.dispatch(LeadCapture(name="Mike", phone="905-555-1234"))
