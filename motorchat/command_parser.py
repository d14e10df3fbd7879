"""In-band command extraction for streamed assistant replies.

Role:
    The model appends machine-readable markers such as
    [LEAD_CAPTURE: {"name": "Mike", "phone": "905-555-1234"}] to its prose. While
    tokens stream in, feed() returns only the human-visible part of the buffer;
    once the stream ends, finalize() extracts typed payloads and returns the
    cleaned text.

Display contract:
    The buffer is cut at the first complete opening "[TAG:" anywhere, and at any
    partial opening ("[", "[F", ... "[FINANCING_CTA") sitting at the very end of
    the buffer. For replies whose markers come last, every intermediate display
    is a prefix of the final display. A literal "[FINANCING_CTA" typed
    mid-sentence hides the prose after it until the stream ends.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Set, Tuple

from pydantic import ValidationError

from .models import CommandPayload, FinancingOffer, LeadCapture, PriceAlert, SmsRequest
from .utils import mask_contact_value

logger = logging.getLogger("motorchat.commands")

TAGS: Tuple[str, ...] = ("LEAD_CAPTURE", "SEND_SMS", "PRICE_ALERT", "FINANCING_CTA")
OPENINGS: Tuple[str, ...] = tuple(f"[{tag}:" for tag in TAGS)

OPEN_TAG_RE = re.compile(r"\[(?:" + "|".join(TAGS) + r"):")
# Commands close a reply, so anything from a leftover opening on is marker text.
LEFTOVER_RE = re.compile(r"\s*\[(?:" + "|".join(TAGS) + r"):.*\Z", re.DOTALL)


def _marker_pattern(tag: str) -> Pattern[str]:
    # Single-line JSON object; brackets may appear only inside string values.
    return re.compile(r"[ \t]*\[" + tag + r':\s*(\{(?:[^"\[\]]|"(?:[^"\\]|\\.)*")*\})\]')


def _lead(data: Dict[str, object], _: float) -> Optional[CommandPayload]:
    return LeadCapture(name=data["name"], phone=data["phone"], email=data.get("email") or None)


def _sms(data: Dict[str, object], _: float) -> Optional[CommandPayload]:
    return SmsRequest(name=data.get("name") or None, phone=data["phone"], content_kind=data.get("content") or "quote")


def _alert(data: Dict[str, object], _: float) -> Optional[CommandPayload]:
    return PriceAlert(name=data.get("name") or None, phone=data["phone"], hp=data.get("motor_hp"))


def _financing(data: Dict[str, object], min_price: float) -> Optional[CommandPayload]:
    offer = FinancingOffer(
        price=data["price"],
        monthly_payment=data["monthly"],
        term_months=data["term"],
        rate=data["rate"],
        motor_model=data.get("motorModel") or None,
    )
    if offer.price < min_price:
        logger.info("financing offer suppressed price=%s min=%s", offer.price, min_price)
        return None
    return offer


PayloadBuilder = Callable[[Dict[str, object], float], Optional[CommandPayload]]

# Extraction priority: lead, SMS, price alert, financing.
GRAMMAR: Tuple[Tuple[str, Pattern[str], PayloadBuilder], ...] = (
    ("LEAD_CAPTURE", _marker_pattern("LEAD_CAPTURE"), _lead),
    ("SEND_SMS", _marker_pattern("SEND_SMS"), _sms),
    ("PRICE_ALERT", _marker_pattern("PRICE_ALERT"), _alert),
    ("FINANCING_CTA", _marker_pattern("FINANCING_CTA"), _financing),
)


@dataclass
class ParsedResponse:
    """Final display text plus the commands extracted from it."""
    display_text: str
    commands: List[CommandPayload] = field(default_factory=list)


def display_cut(buffer: str) -> int:
    """Index where the human-visible part of a streaming buffer ends."""
    cut = len(buffer)
    match = OPEN_TAG_RE.search(buffer)
    if match:
        cut = match.start()
    bracket = buffer.rfind("[", 0, cut)
    if bracket != -1:
        tail = buffer[bracket:]
        if any(opening.startswith(tail) for opening in OPENINGS):
            cut = bracket
    return cut


def strip_markers(text: str) -> str:
    """Remove every complete or unterminated command marker from stored text."""
    cleaned = text or ""
    for _, pattern, _ in GRAMMAR:
        cleaned = pattern.sub("", cleaned)
    return LEFTOVER_RE.sub("", cleaned).strip()


class CommandChannelParser:
    """Per-turn parser; create one for every assistant reply."""

    def __init__(self, financing_min_price: float = 5000) -> None:
        self._buffer = ""
        self._financing_min_price = financing_min_price
        self._finalized: Optional[ParsedResponse] = None

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, delta: str) -> str:
        """Append a streamed delta and return the text safe to show right now."""
        if self._finalized is not None:
            raise RuntimeError("parser already finalized")
        self._buffer += delta or ""
        return self.display_text()

    def display_text(self) -> str:
        return self._buffer[: display_cut(self._buffer)].strip()

    def reset(self, text: str = "") -> None:
        """Replace the buffer, e.g. with the fallback text after a failed stream."""
        self._buffer = text
        self._finalized = None

    def finalize(self) -> ParsedResponse:
        """Purpose: Extract command payloads and produce the cleaned final text.
        Inputs/Outputs: No inputs; returns ParsedResponse(display_text, commands).
        Side Effects / State: Caches the result; later feed() calls raise.
        Dependencies: GRAMMAR table, pydantic command models.
        Failure Modes: Invalid JSON or missing fields strip the marker, log a
            warning and produce no payload. Repeated tags are stripped and
            ignored. Financing below the minimum price is suppressed.
        If Removed: Markers leak into persisted text and no side effects fire.
        Testing Notes: Feed a marker split across chunks, then finalize.
        """
        if self._finalized is not None:
            return self._finalized
        # Walk the grammar in priority order, stripping every span it matches.
        text = self._buffer
        commands: List[CommandPayload] = []
        seen: Set[str] = set()
        for tag, pattern, builder in GRAMMAR:

            def _replace(match: "re.Match[str]", tag: str = tag, builder: PayloadBuilder = builder) -> str:
                if tag in seen:
                    logger.warning("duplicate command marker ignored tag=%s", tag)
                    return ""
                seen.add(tag)
                try:
                    data = json.loads(match.group(1))
                    if not isinstance(data, dict):
                        raise TypeError("marker body is not an object")
                    payload = builder(data, self._financing_min_price)
                except (ValueError, TypeError, KeyError, ValidationError) as exc:
                    logger.warning("malformed command marker tag=%s error=%s", tag, exc)
                    return ""
                if payload is not None:
                    commands.append(payload)
                    logger.info(
                        "command extracted kind=%s phone=%s",
                        payload.kind,
                        mask_contact_value(getattr(payload, "phone", None)),
                    )
                return ""

            text = pattern.sub(_replace, text)

        text = LEFTOVER_RE.sub("", text).strip()
        self._finalized = ParsedResponse(display_text=text, commands=commands)
        return self._finalized
