import re
import unicodedata
from typing import Optional


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable pattern matching.
    Inputs/Outputs: Input is a raw string; output is lowercase text with diacritics
        removed, curly quotes straightened, and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by the classifier and greetings.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Classification misses apostrophe variants ("what’s" vs "what's").
    Testing Notes: Check curly apostrophes and accented letters normalize.
    """
    # Lowercase, strip combining marks, and straighten quotes.
    if not text:
        return ""
    lowered = text.lower().replace("’", "'").replace("‘", "'")
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", stripped).strip()


def mask_contact_value(value: object) -> str:
    """Purpose: Hide a shopper phone number or email before it reaches a log line.
    Inputs/Outputs: Any value; returns "***" plus at most the last three digits.
    Side Effects / State: None; pure function.
    Dependencies: re; called by the command parser and the lead dispatcher.
    Failure Modes: Fewer than four digits collapse to a bare "***".
    If Removed: Logs may expose customer phone numbers.
    Testing Notes: "705-555-0123" becomes "***123".
    """
    if value is None:
        return ""
    digits = re.findall(r"\d", str(value))
    if len(digits) < 4:
        return "***"
    return "***" + "".join(digits[-3:])


def format_money(amount: Optional[float]) -> str:
    """Format a dollar amount the way prices are quoted to shoppers ($12,161)."""
    if amount is None:
        return "TBD"
    if float(amount).is_integer():
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def format_hp(hp: float) -> str:
    """Render horsepower without a trailing .0 (9.9 stays 9.9, 30.0 becomes 30)."""
    return str(int(hp)) if float(hp).is_integer() else str(hp)
