from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from .config import Settings
from .models import CommandPayload, FinancingOffer, LeadCapture, PriceAlert, SmsRequest, TurnContext
from .utils import mask_contact_value

logger = logging.getLogger("motorchat.dispatch")

LEAD_BASE_SCORE = 25
LEAD_HIGH_VALUE_PRICE = 15000


def lead_score(lead: LeadCapture, context: Optional[TurnContext] = None) -> int:
    """Purpose: Score a captured lead for follow-up priority.
    Inputs/Outputs: Inputs are the lead and the turn context; output is 0-100.
    Side Effects / State: None.
    Dependencies: Subject product model/price from the context.
    Failure Modes: None; missing context only lowers the score.
    If Removed: Sales staff lose the callback priority hint.
    Testing Notes: Full contact on a $18,450 motor scores 100.
    """
    # Base engagement score plus one increment per useful field.
    score = LEAD_BASE_SCORE
    if lead.name:
        score += 15
    if lead.phone:
        score += 25
    if lead.email:
        score += 15
    subject = context.subject if context else None
    if subject and subject.model:
        score += 10
    if subject and subject.price and subject.price > LEAD_HIGH_VALUE_PRICE:
        score += 10
    return min(score, 100)


class CommandDispatcher:
    """Forwards extracted commands to the configured webhooks."""

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None) -> None:
        self._urls: Dict[str, Optional[str]] = {
            "lead_capture": settings.lead_webhook_url,
            "sms_request": settings.sms_webhook_url,
            "price_alert": settings.alert_webhook_url,
        }
        self._client = client or httpx.Client(timeout=settings.dispatch_timeout_sec)

    def build_body(self, payload: CommandPayload, context: Optional[TurnContext], summary: str) -> Dict[str, object]:
        body: Dict[str, object] = payload.model_dump()
        page = context.page if context else "/"
        subject = context.subject if context else None
        body["source"] = "ai_chat"
        body["current_page"] = page
        if subject:
            body["motor_context"] = {"model": subject.model, "hp": subject.hp, "price": subject.price}
        if isinstance(payload, LeadCapture):
            body["lead_score"] = lead_score(payload, context)
            notes = [summary or "Requested callback from AI chat"]
            if subject and subject.model:
                notes.append(f"Interested in: {subject.model}")
            notes.append(f"Page: {page}")
            body["notes"] = " | ".join(notes)
        return body

    def dispatch(self, payload: CommandPayload, context: Optional[TurnContext] = None, summary: str = "") -> bool:
        """Purpose: Deliver one command payload; never raises.
        Inputs/Outputs: Inputs are the payload, the turn context and a short
            conversation summary; output is True when delivered.
        Side Effects / State: One HTTP POST per deliverable command.
        Dependencies: httpx, webhook URLs from Settings.
        Failure Modes: Missing webhook, transport errors and non-2xx responses are
            logged and return False. Financing offers are rendered by the UI and
            have no webhook; they count as delivered.
        If Removed: Leads, SMS and price alerts captured in chat go nowhere.
        Testing Notes: Use httpx.MockTransport to assert the posted JSON.
        """
        # Financing CTAs are surfaced in the chat only.
        if isinstance(payload, FinancingOffer):
            logger.info("financing offer surfaced price=%s term=%s", payload.price, payload.term_months)
            return True
        url = self._urls.get(payload.kind)
        phone = mask_contact_value(payload.phone) if isinstance(payload, (LeadCapture, SmsRequest, PriceAlert)) else ""
        if not url:
            logger.info("dispatch skipped kind=%s reason=no_webhook phone=%s", payload.kind, phone)
            return False
        try:
            response = self._client.post(url, json=self.build_body(payload, context, summary))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("dispatch failed kind=%s phone=%s error=%s", payload.kind, phone, exc)
            return False
        logger.info("dispatch ok kind=%s phone=%s status=%s", payload.kind, phone, response.status_code)
        return True

    def close(self) -> None:
        self._client.close()
