from __future__ import annotations

from typing import List, Optional, Tuple

from .models import SubjectProduct
from .utils import format_hp

SUBJECT_CATEGORIES = ("repower", "quote", "financing", "promotions", "general")

# (path fragment, subject category); first match wins.
PAGE_CATEGORY_RULES: Tuple[Tuple[str, str], ...] = (
    ("/financing", "financing"),
    ("/promotions", "promotions"),
    ("/repower", "repower"),
    ("/quote", "quote"),
)

PAGE_WELCOMES: Tuple[Tuple[str, str], ...] = (
    ("/quote/options", "Hey! Need help picking a package? I can break down what's in each one."),
    ("/quote/purchase-path", "Hey! Deciding between pro install or DIY? I can walk you through the options."),
    ("/quote/boat-info", "Hey! Got questions about compatibility or controls? I'm here to help."),
    ("/quote/trade-in", "Hey! Got something to trade? Tell me what you've got and we'll point you to a proper appraisal."),
    ("/quote/summary", "Hey! Looking over your quote? Let me know if you have any questions about pricing or next steps."),
    ("/financing", "Hey! Curious about financing? I can help you figure out monthly payments and options."),
    ("/promotions", "Hey! Looking at the current deals? I can help you find the best one for what you need."),
    ("/repower", "Hey! Thinking about a repower? Tell me about your boat and what's on it now."),
)

DEFAULT_WELCOME = "Hey! I'm here to help you find the perfect Mercury motor. What are you looking for?"

PAGE_PROMPTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("/financing", ("What would my monthly payment be?", "Can I get pre-approved?", "What rates do you offer?")),
    ("/promotions", ("What's the best deal right now?", "Do rebates stack?", "When does the promo end?")),
    ("/repower", ("Is it worth repowering my boat?", "What HP does my boat need?", "How long does a repower take?")),
    ("/quote/trade-in", ("How does trade-in work?", "What info do you need about my motor?", "Can I trade a non-Mercury?")),
    ("/quote", ("What's included in each package?", "Pro install or DIY?", "Can I finance this?")),
)

DEFAULT_PROMPTS = ("What motor fits my boat?", "Do you offer financing?", "Where are you located?")


def subject_category_for_page(page: str) -> str:
    """Page-derived subject category: repower, quote, financing, promotions or general."""
    path = (page or "/").lower()
    for fragment, category in PAGE_CATEGORY_RULES:
        if fragment in path:
            return category
    return "general"


def motor_family(model: str) -> str:
    lowered = (model or "").lower()
    if "verado" in lowered:
        return "Verado"
    if "pro xs" in lowered:
        return "Pro XS"
    if "seapro" in lowered:
        return "SeaPro"
    if "prokicker" in lowered:
        return "ProKicker"
    return "FourStroke"


def welcome_message(page: str, subject: Optional[SubjectProduct] = None) -> str:
    """Purpose: Pick the greeting shown when a conversation starts fresh.
    Inputs/Outputs: Inputs are the page path and the product in view; output is text.
    Side Effects / State: None.
    Dependencies: PAGE_WELCOMES table.
    Failure Modes: Unknown pages use DEFAULT_WELCOME.
    If Removed: Fresh conversations open empty.
    Testing Notes: A subject product wins over the page greeting.
    """
    # A product in view beats any page greeting.
    if subject and subject.model:
        family = subject.family or motor_family(subject.model)
        return f"Hey! Checking out the {format_hp(subject.hp)}HP {family}? Solid choice - what do you want to know about it?"
    path = (page or "/").lower()
    for fragment, text in PAGE_WELCOMES:
        if fragment in path:
            return text
    return DEFAULT_WELCOME


def motor_prompts(subject: SubjectProduct) -> List[str]:
    """HP and family aware starter questions for a motor in view."""
    family = (subject.family or motor_family(subject.model)).lower()
    model = (subject.model or "").lower()
    hp = subject.hp
    if "prokicker" in model or "prokicker" in family:
        return ["What's the ideal trolling speed?", "ProKicker vs regular 9.9?", "Will it fit my boat's kicker bracket?"]
    if "verado" in family:
        return ["What makes Verado special?", "Is the Verado worth the premium?", "Warranty coverage?"]
    if "pro xs" in family:
        return ["Pro XS vs standard FourStroke?", "Best prop for top speed?", "WOT fuel burn?"]
    if "seapro" in family:
        return ["Commercial warranty options?", "Best for heavy use?", "SeaPro vs FourStroke?"]
    if hp <= 6:
        return ["How heavy is this to carry?", "Good for a canoe or kayak?", "Fuel tank built-in?"]
    if hp <= 15:
        return ["Will this plane my boat?", "How quiet at trolling?", "Power tilt worth it?" if hp >= 9.9 else "Good for inflatables?"]
    if hp <= 30:
        return ["Power trim included?", f"Is {format_hp(hp)}HP enough for my boat?", "Fuel consumption at cruise?"]
    if hp <= 60:
        return [f"Compare to the {format_hp(hp + 10)}HP", "Best for pontoons?", "What boats does this fit?"]
    if hp <= 150:
        return ["Command Thrust worth it?", "Break-in procedure?", "Fuel burn at WOT?"]
    return ["Verado vs Pro XS?", "Best prop for my use?", "Financing options?"]


def contextual_prompts(page: str, subject: Optional[SubjectProduct] = None, limit: int = 3) -> List[str]:
    """Suggested starter questions for the current page and product."""
    if subject and subject.model:
        return motor_prompts(subject)[:limit]
    path = (page or "/").lower()
    for fragment, prompts in PAGE_PROMPTS:
        if fragment in path:
            return list(prompts)[:limit]
    return list(DEFAULT_PROMPTS)[:limit]
