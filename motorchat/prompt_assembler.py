"""Deterministic construction of the instruction payload sent to the model.

Role:
    Turns the persona template, the knowledge document, live inventory and
    promotion summaries, the turn context snapshot, optional augmentation and the
    rolling history into a single InstructionPayload. Nothing here reads the clock,
    the network or the filesystem; the season and every other time-derived value
    arrive as arguments, so identical inputs always give identical payloads.

Payload contract:
    - system_instruction: rendered persona plus appended context blocks, in the
      order subject/progress (inside the template), extra blocks, hints,
      augmentation.
    - contents: Gemini role/parts list, truncated history first, ending with the
      current user message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .inventory import Motor, Promotion, build_grouped_inventory_summary, build_hp_range, build_promotion_summary
from .knowledge_loader import KnowledgeDocument
from .models import HistoryEntry, TurnContext
from .prompt_loader import render_prompt
from .utils import format_hp, format_money

TOPIC_HINTS: Tuple[Tuple[str, str], ...] = (
    ("fishing", "They're into fishing - be enthusiastic!"),
    ("comparison", "Comparison mode - be balanced and honest."),
    ("price_concern", "Budget matters - focus on value."),
)

GEMINI_ROLES = {"user": "user", "assistant": "model"}

# Every filler assemble() provides to the persona template.
PERSONA_PLACEHOLDERS: Tuple[str, ...] = (
    "BUSINESS_NAME",
    "ABOUT",
    "TOPIC_HINT",
    "SEASON_NAME",
    "SEASON_CONTEXT",
    "SUBJECT_BLOCK",
    "PROGRESS_BLOCK",
    "INVENTORY_COUNT",
    "HP_RANGE",
    "INVENTORY_SUMMARY",
    "PROMOTIONS",
    "REPOWER",
    "FINANCING",
    "FINANCING_PATH",
    "FINANCING_MIN_PRICE",
    "TRADE_IN_PATH",
    "LICENSE_BLOCK",
    "SERVICE_URL",
    "CONTACT_BLOCK",
    "PHONE",
)


@dataclass(frozen=True)
class StaticRules:
    """Persona template plus the knowledge document it is rendered against."""
    template: str
    knowledge: KnowledgeDocument


@dataclass(frozen=True)
class InventorySnapshot:
    """Precomputed inventory text for one turn."""
    count: int
    hp_range: str
    summary: str

    @classmethod
    def from_motors(cls, motors: Sequence[Motor]) -> "InventorySnapshot":
        return cls(
            count=len(motors),
            hp_range=build_hp_range(motors),
            summary=build_grouped_inventory_summary(motors),
        )


@dataclass
class InstructionPayload:
    """Final model request: system instruction plus role/parts contents."""
    system_instruction: str
    contents: List[Dict[str, object]] = field(default_factory=list)

    @property
    def user_message(self) -> str:
        if not self.contents:
            return ""
        parts = self.contents[-1].get("parts") or []
        return str(parts[0].get("text", "")) if parts else ""


def truncate_history(history: Sequence[HistoryEntry], turns: int = 4) -> List[HistoryEntry]:
    """Purpose: Keep the most recent complete user/assistant pairs.
    Inputs/Outputs: Inputs are the rolling history and a pair budget; output is at
        most 2 * turns entries, oldest first.
    Side Effects / State: None.
    Dependencies: HistoryEntry roles.
    Failure Modes: Unpaired entries (a leading assistant, a trailing user, or two
        same-role entries in a row) are dropped rather than sent half-paired.
    If Removed: Long conversations overflow the model context.
    Testing Notes: Ten pairs with turns=4 yields the last eight messages.
    """
    # Pair each user entry with the assistant entry that directly follows it.
    pairs: List[Tuple[HistoryEntry, HistoryEntry]] = []
    index = 0
    entries = list(history)
    while index < len(entries) - 1:
        current, following = entries[index], entries[index + 1]
        if current.role == "user" and following.role == "assistant":
            pairs.append((current, following))
            index += 2
        else:
            index += 1
    if turns <= 0:
        return []
    kept = pairs[-turns:]
    return [entry for pair in kept for entry in pair]


def financing_summary(knowledge: KnowledgeDocument) -> str:
    """Render financing tiers as text, e.g. "7.99% for $10,000+, 8.99% under $10,000"."""
    financing = knowledge.financing
    tiers = sorted(financing.get("tiers", []), key=lambda t: t.get("min_price", 0), reverse=True)
    parts: List[str] = []
    previous_floor: Optional[float] = None
    for tier in tiers:
        floor = float(tier.get("min_price", 0))
        if floor > 0:
            parts.append(f"{tier['rate']}% for {format_money(floor)}+")
        elif previous_floor is not None:
            parts.append(f"{tier['rate']}% under {format_money(previous_floor)}")
        else:
            parts.append(f"{tier['rate']}%")
        previous_floor = floor
    terms = financing.get("terms_months") or []
    line = ", ".join(parts)
    if terms:
        line += f". Terms: {min(terms)}-{max(terms)} months."
    provider = financing.get("provider")
    if provider:
        line = f"Financing through {provider}. {line}"
    return line


def subject_block(context: TurnContext, knowledge: KnowledgeDocument) -> str:
    subject = context.subject
    if not subject or not subject.model:
        return ""
    lines = [
        "## MOTOR THEY'RE VIEWING",
        f"**{subject.model}** - {format_hp(subject.hp)}HP @ {format_money(subject.price)} CAD",
    ]
    blurb = knowledge.family_info(subject.family or subject.model)
    if blurb:
        lines.append(blurb)
    if subject.description:
        lines.append(subject.description)
    return "\n".join(lines)


def progress_block(context: TurnContext) -> str:
    progress = context.progress
    if not progress:
        return ""
    line = f"Quote: Step {progress.step}/{progress.total}"
    if progress.selected_package:
        line += f" • {progress.selected_package}"
    if progress.trade_in_value:
        line += f" • trade-in estimate {format_money(progress.trade_in_value)}"
    return line


def contact_block(knowledge: KnowledgeDocument) -> str:
    contact = knowledge.contact
    hours = contact.get("hours", {})
    lines = [
        f"Phone: {contact.get('phone', '')} | Text: {contact.get('text', '')} | Email: {contact.get('email', '')}",
        f"Hours: {hours.get('season', '')} | {hours.get('offseason', '')}",
        f"Address: {contact.get('address', '')}",
    ]
    if contact.get("directions_url"):
        lines.append(f"Directions: {contact['directions_url']}")
    return "\n".join(lines)


def license_block(knowledge: KnowledgeDocument) -> str:
    partner = knowledge.partner("boat_license")
    if not partner:
        return "Required for operating any powered watercraft in Canada."
    return (
        "Required for operating any powered watercraft in Canada.\n"
        f"We partner with {partner.get('provider', '')} for online certification: {partner.get('url', '')}\n"
        f"ALWAYS mention DISCOUNT CODE {partner.get('discount_code', '')} ({partner.get('discount_amount', '')})."
    )


def topic_hint(topics: Sequence[str]) -> str:
    for topic, hint in TOPIC_HINTS:
        if topic in topics:
            return f"Tone: {hint}"
    return ""


def assemble(
    static_rules: StaticRules,
    live_inventory_summary: InventorySnapshot,
    active_promotions: Sequence[Promotion],
    subject_context: TurnContext,
    augmentation: Optional[str],
    history: Sequence[HistoryEntry],
    message: str,
    season: Tuple[str, str],
    topics: Sequence[str] = (),
    extra_blocks: Sequence[str] = (),
    history_turns: int = 4,
    financing_min_price: float = 5000,
) -> InstructionPayload:
    """Purpose: Build the full instruction payload for one turn.
    Inputs/Outputs: Inputs are the persona/knowledge pair, precomputed inventory
        and promotions, the frozen turn context, optional augmentation text, the
        rolling history, the user message and the (name, context) season tuple;
        output is an InstructionPayload.
    Side Effects / State: None; pure.
    Dependencies: render_prompt, truncate_history, inventory summary builders.
    Failure Modes: Missing template placeholders are left in place; missing
        knowledge sections render as empty lines.
    If Removed: No request can be sent to the model.
    Testing Notes: Call twice with identical inputs and compare payloads.
    """
    # Render the persona with every numeric fact already formatted as text.
    knowledge = static_rules.knowledge
    business = knowledge.data.get("business", {})
    season_name, season_context = season
    props = " | ".join(f"{p['headline']}: {p['message']}" for p in knowledge.repower_props(3))
    values = {
        "BUSINESS_NAME": knowledge.business_name,
        "ABOUT": "\n".join(f"- {line}" for line in business.get("about", [])),
        "TOPIC_HINT": topic_hint(topics),
        "SEASON_NAME": season_name.upper(),
        "SEASON_CONTEXT": season_context,
        "SUBJECT_BLOCK": subject_block(subject_context, knowledge),
        "PROGRESS_BLOCK": progress_block(subject_context),
        "INVENTORY_COUNT": str(live_inventory_summary.count),
        "HP_RANGE": live_inventory_summary.hp_range,
        "INVENTORY_SUMMARY": live_inventory_summary.summary or "Contact us for inventory",
        "PROMOTIONS": build_promotion_summary(active_promotions) or "Ask about current offers",
        "REPOWER": props,
        "FINANCING": financing_summary(knowledge),
        "FINANCING_PATH": str(business.get("financing_application_path", "")),
        "FINANCING_MIN_PRICE": format_money(financing_min_price),
        "TRADE_IN_PATH": str(business.get("trade_in_path", "")),
        "LICENSE_BLOCK": license_block(knowledge),
        "SERVICE_URL": str(business.get("service_url", "")),
        "CONTACT_BLOCK": contact_block(knowledge),
        "PHONE": knowledge.phone,
    }
    sections = [render_prompt(static_rules.template, values).rstrip()]
    sections.extend(block.strip() for block in extra_blocks if block and block.strip())
    if subject_context.augmentation_hints:
        hints = "\n".join(f"- {hint}" for hint in subject_context.augmentation_hints)
        sections.append(f"## PAGE NOTES\n{hints}")
    if augmentation:
        sections.append(augmentation.strip())

    contents: List[Dict[str, object]] = [
        {"role": GEMINI_ROLES[entry.role], "parts": [{"text": entry.content}]}
        for entry in truncate_history(history, history_turns)
    ]
    contents.append({"role": "user", "parts": [{"text": message}]})
    return InstructionPayload(system_instruction="\n\n".join(sections), contents=contents)
