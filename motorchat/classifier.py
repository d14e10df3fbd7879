"""Rule-based message classification for knowledge routing.

Role:
    Decides which knowledge domain (if any) a shopper message belongs to, so the
    pipeline knows whether to run an external lookup before answering. The rules
    are an ordered table evaluated top to bottom; the first matching rule wins.

Ordering contract:
    Redirect intents come first. "What's my old motor worth" must land on
    TRADEIN_REDIRECT before any general-knowledge rule can see it, and money
    questions land on FINANCING, both of which are answered only from
    first-party data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Sequence, Tuple

from .utils import normalize_text


class Category(str, Enum):
    MERCURY = "mercury"
    HARRIS = "harris"
    LOCAL = "local"
    BOATING = "boating"
    LICENSING = "licensing"
    TOWING = "towing"
    SEASONAL = "seasonal"
    PROMOTIONS = "promotions"
    ACCESSORIES = "accessories"
    ENVIRONMENTAL = "environmental"
    EVENTS = "events"
    COMPATIBILITY = "compatibility"
    TROUBLESHOOTING = "troubleshooting"
    FINANCING = "financing"
    TRADEIN_REDIRECT = "tradein_redirect"
    GENERAL = "general"
    NONE = "none"


@dataclass(frozen=True)
class ClassifierRule:
    """One row of the routing table: a category and the patterns that select it."""
    category: Category
    patterns: Tuple[Pattern[str], ...]

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.patterns)


def _rule(category: Category, *patterns: str) -> ClassifierRule:
    return ClassifierRule(category, tuple(re.compile(p, re.IGNORECASE) for p in patterns))


CATEGORY_RULES: Tuple[ClassifierRule, ...] = (
    _rule(
        Category.TRADEIN_REDIRECT,
        r"\b(trade.?in|what('s| is) my.*(worth|value)|resale|sell my|apprais\w*|value of my)\b",
        r"\b(how much.*(get|worth)|what (can|will).*(get|offer))\b",
    ),
    _rule(
        Category.FINANCING,
        r"\b(financ\w*|loans?|credit|monthly payments?|interest rates?|apr|down payment)\b",
        r"\b(pre.?approv\w*|qualify|credit (check|score)|payment (plan|option)s?)\b",
        r"\b(can i (afford|finance)|pay (over|monthly)|spread.*(payment|cost))\b",
    ),
    _rule(
        Category.TROUBLESHOOTING,
        r"\b(problem|issue|trouble|won't start|not starting|stall\w*|rough idle)\b",
        r"\b(overheat\w*|beep\w*|alarm|warning|error|fault)\b",
        r"\b(smok\w*|vibrat\w*|noise|knock\w*|shimmy|shak\w*)\b",
        r"\b(diagnos\w*|fix|repair|what's wrong|help me)\b",
        r"\b(leak\w*|drip\w*|water in|oil in)\b",
    ),
    _rule(
        Category.LICENSING,
        r"\b(boat (card|license|licence)|pcoc|pleasure craft.*(card|license|operator))\b",
        r"\b(operator card|boating (course|test|exam|certification))\b",
        r"\b(registration|license plate|vessel (number|registration))\b",
        r"\b(legal|requirements?|regulations?|law|rules?|bylaw|allowed|permitted)\b",
        r"\b(age (requirement|limit)|how old|can (my kid|a minor|children))\b",
        r"\b(transport canada|coast guard|ministry)\b",
        r"\b(need.*(license|licence|card)|do i need)\b",
    ),
    _rule(
        Category.TOWING,
        r"\b(tow\w*|trailer|hitch|backing|launch|ramp|boat launch)\b",
        r"\b(tongue weight|ball|coupler|tie.?down|strap)\b",
        r"\b(road|highway|transport|haul)\b",
    ),
    _rule(
        Category.SEASONAL,
        r"\b(ice.?out|freeze|water temp|spring|fall|season start|when (does|can))\b",
        r"\b(best time|conditions|waves?|wind|rough water)\b",
    ),
    _rule(
        Category.PROMOTIONS,
        r"\b(rebates?|mercury.*(deal|offer|promotion)s?|manufacturer.*(rebate|discount)s?)\b",
        r"\b(current (deal|offer|promo)s?|seasonal (deal|sale)s?|promos?|promotions?)\b",
    ),
    _rule(
        Category.ACCESSORIES,
        r"\b(props?|propellers?|pitch|gauges?|rigging|electronics|fish ?finders?)\b",
        r"\b(steering|throttle|control|cable|binnacle)\b",
        r"\b(trim tabs?|jack plate|hydrofoil|stabilizer)\b",
        r"\b(trolling motor|bow mount|transom mount)\b",
    ),
    _rule(
        Category.ENVIRONMENTAL,
        r"\b(ethanol|e10|fuel (treatment|stabilizer)|stabil\w*)\b",
        r"\b(non.?ethanol|marina fuel|premium gas)\b",
        r"\b(environment\w*|eco|clean water|invasive species)\b",
    ),
    _rule(
        Category.EVENTS,
        r"\b(boat show|fishing derby|tournament|club|association)\b",
        r"\b(events?|rendezvous|rally|gathering)\b",
        r"\b(marina|yacht club|boating community)\b",
    ),
    _rule(
        Category.COMPATIBILITY,
        r"\b(lund|tracker|princecraft|legend|crestliner|alumacraft|g3|starcraft)\b",
        r"\b(fit (on|my)|compatible|transom (height|size)|mount(ing)?)\b",
        r"\b(what (size|motor|engine) for|max hp|horsepower limit)\b",
    ),
    _rule(
        Category.MERCURY,
        r"verado|pro ?xs|seapro|fourstroke|command ?thrust|jet ?drive|racing",
        r"mercury .*(feature|technology|system|innovation)",
        r"joystick|active ?trim|skyhook|smartcraft|vessel ?view",
        r"fuel (consumption|economy|efficiency)|mpg|gph|gallons? per",
        r"weight|dry weight|shaft length",
        r"rpm|thrust|torque|top speed",
        r"oil (type|capacity|change|grade)|quicksilver",
        r"maintenance|winteriz|break-?in|service (interval|schedule)",
        r"warranty|extend(ed)? (coverage|warranty)",
        r"compare.*(yamaha|honda|suzuki|evinrude|tohatsu)",
        r"(yamaha|honda|suzuki|evinrude|tohatsu).*(compare|vs|versus|better)",
        r"what('s| is) (the )?(new|latest|2025|2026|2027)",
        r"how does .+ work",
        r"tiller|remote|electric start|pull start",
        r"gear ratio|displacement|cylinder",
        r"power trim|hydraulic",
    ),
    _rule(
        Category.HARRIS,
        r"\b(hours?|open|closed|when (are|do) you)\b",
        r"\b(location|address|where (are|is) (you|harris)|directions?|how.*(get|find) (you|there))\b",
        r"\b(parking|dock|boat ramp)\b",
        r"\b(do you have|have a|got a|is there|can (i|we))\b",
        r"\b(rent(al)?s?|rent (a|out))\b",
        r"\b(slip|shower|washroom|bathroom|wifi|wi-fi|amenities)\b",
        r"\b(storage|winter storage|shrink wrap|haul.?out)\b",
        r"\b(reviews?|rating|reputation|testimonial)\b",
        r"\b(harris|your) (history|story|about|team|staff|technicians?)\b",
        r"\b(installation|repower|install|rigging)\b",
        r"\b(delivery|pick.?up|shipping)\b",
        r"\b(water test|sea trial|demo)\b",
        r"\b(certified|authorized|dealer|dealership)\b",
    ),
    _rule(
        Category.LOCAL,
        r"\b(rice lake|kawartha|simcoe|georgian bay|muskoka|trent.?severn)\b",
        r"\b(fishing|fish|walleye|bass|muskie|muskellunge|pike|perch|trout|salmon|panfish)\b",
        r"\b(gores landing|cobourg|peterborough|port hope|brighton|colborne|bewdley|harwood)\b",
        r"\b(catch|limit|fishing (season|regulation|license))\b",
        r"\b(local|area|nearby|around here|this region)\b",
    ),
    _rule(
        Category.BOATING,
        r"\b(hp limit|horsepower (limit|rating|restriction)|capacity plate)\b",
        r"\b(pontoon|bass boat|fishing boat|aluminum|fibreglass|inflatable|jon ?boat|runabout|bowrider)\b",
        r"\b(cavitation|ventilation|porpoising|chine walk)\b",
        r"\b(anchoring|anchor|docking|mooring)\b",
        r"\b(safety|life jacket|pfd|fire extinguisher|flare|whistle)\b",
        r"\b(navigation|nav lights|right.?of.?way)\b",
        r"\b(new motor|first (run|time|use))\b",
    ),
)

PRICING_QUERY_RE = re.compile(r"(price|cost|how much|in stock|available|inventory)", re.IGNORECASE)

# Product-in-view questions that only make sense as product knowledge.
PRODUCT_FOCUS_RE = re.compile(
    r"\b(fuel|gas|burn\w*|consum\w*|efficien\w*|economy|mpg|gph|"
    r"size|big|heavy|weigh\w*|how fast|speed|performance|power\w*|torque|quiet|loud|range)\b",
    re.IGNORECASE,
)

GENERIC_CATEGORIES = {Category.NONE, Category.GENERAL}


def classify(message: str, has_active_subject_context: bool = False) -> Category:
    """Purpose: Map a shopper message to exactly one knowledge category.
    Inputs/Outputs: Inputs are the raw message and whether a specific product is in
        view; output is a Category.
    Side Effects / State: None; pure and deterministic.
    Dependencies: Uses CATEGORY_RULES, PRICING_QUERY_RE, PRODUCT_FOCUS_RE.
    Failure Modes: None; unmatched text falls back to GENERAL (questions) or NONE.
    If Removed: The pipeline cannot decide whether to augment or redirect.
    Testing Notes: "what's my old outboard worth" -> TRADEIN_REDIRECT; a fuel
        question with a motor in view -> MERCURY.
    """
    # First matching rule wins; then apply the question fallback and widening.
    text = normalize_text(message)
    category = Category.NONE
    for rule in CATEGORY_RULES:
        if rule.matches(text):
            category = rule.category
            break
    else:
        if "?" in message and not PRICING_QUERY_RE.search(text):
            category = Category.GENERAL

    if has_active_subject_context and category in GENERIC_CATEGORIES and PRODUCT_FOCUS_RE.search(text):
        return Category.MERCURY
    return category


def detect_topics(message: str) -> List[str]:
    """Topic tags used to steer the persona's tone for this turn."""
    text = normalize_text(message)
    topics: List[str] = []
    if re.search(r"\b(fish|fishing|angler|bass|walleye|trout|muskie|perch)\b", text):
        topics.append("fishing")
    if re.search(r"\b(compare|vs|versus|difference|better|which)\b", text):
        topics.append("comparison")
    if re.search(r"\b(price|cost|expensive|budget|afford|cheap)\b", text):
        topics.append("price_concern")
    if re.search(r"\b(weekend|saturday|sunday)\b", text):
        topics.append("weekend_plans")
    if re.search(r"\b(300|350|400|450|verado)\b", text):
        topics.append("big_motor")
    if re.search(r"(?<![\d.])(2\.5|3\.5|4|5|6|8|9\.9)(?![\d.])|\bportable\b", text):
        topics.append("small_motor")
    return topics


@dataclass(frozen=True)
class Comparison:
    is_comparison: bool
    hp1: Optional[float] = None
    hp2: Optional[float] = None


COMPARISON_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"compare\s+(\d+(?:\.\d+)?)\s*(?:hp)?\s*(?:vs|versus|or|and|to|with)\s*(\d+(?:\.\d+)?)\s*(?:hp)?", re.I),
    re.compile(r"(\d+(?:\.\d+)?)\s*(?:hp)?\s*(?:vs\.?|versus|compared to|or)\s*(\d+(?:\.\d+)?)\s*(?:hp)?", re.I),
    re.compile(r"difference between\s+(\d+(?:\.\d+)?)\s*(?:hp)?\s*and\s*(\d+(?:\.\d+)?)\s*(?:hp)?", re.I),
    re.compile(r"which is better[,:]?\s*(\d+(?:\.\d+)?)\s*(?:hp)?\s*or\s*(\d+(?:\.\d+)?)\s*(?:hp)?", re.I),
)


def detect_comparison_query(message: str) -> Comparison:
    """Detect "30 vs 60"-style questions; hp1 is always the smaller motor."""
    for pattern in COMPARISON_PATTERNS:
        match = pattern.search(message or "")
        if match:
            first, second = float(match.group(1)), float(match.group(2))
            return Comparison(True, min(first, second), max(first, second))
    return Comparison(False)


HP_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"(\d+(?:\.\d+)?)\s*(?:hp|horse\s*power|horsepower)", re.I),
    re.compile(r"(?:price|cost|much|about|info).+?(\d+(?:\.\d+)?)", re.I),
    re.compile(r"(\d+(?:\.\d+)?)\s*(?:motor|outboard|engine)", re.I),
    re.compile(r"^(?:the\s+)?(\d+(?:\.\d+)?)$", re.I),
)


def detect_hp_query(message: str) -> Optional[float]:
    """Return the horsepower a message asks about, limited to 2-600 HP."""
    text = (message or "").strip()
    for pattern in HP_PATTERNS:
        match = pattern.search(text)
        if match:
            hp = float(match.group(1))
            if 2 <= hp <= 600:
                return hp
    return None
