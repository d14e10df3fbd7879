from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Mapping, Set

logger = logging.getLogger("motorchat.prompts")

PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")


def placeholders(template: str) -> Set[str]:
    """Names of every <<KEY>> placeholder in a template."""
    return set(PLACEHOLDER_RE.findall(template))


def load_prompt(prompt_path: Path, required: Iterable[str] = ()) -> str:
    """Purpose: Read the persona template and check it against its fillers.
    Inputs/Outputs: Inputs are the template path and the placeholder names the
        caller will fill; output is the template text without a leading BOM.
    Side Effects / State: Reads the file; logs placeholders the template lacks.
    Dependencies: PLACEHOLDER_RE; used by create_app for system_persona.txt.
    Failure Modes: Undecodable bytes become U+FFFD instead of raising; a missing
        file raises FileNotFoundError at startup.
    If Removed: The assistant has no persona and every turn fails.
    Testing Notes: A BOM-prefixed file loads without the BOM.
    """
    # Decode tolerantly, then report fillers the template never uses.
    text = prompt_path.read_bytes().decode("utf-8", errors="replace").lstrip("\ufeff")
    missing = sorted(set(required) - placeholders(text))
    if missing:
        logger.warning("prompt %s lacks placeholders: %s", prompt_path.name, ", ".join(missing))
    return text


def render_prompt(template: str, values: Mapping[str, str]) -> str:
    """Replace <<KEY>> placeholders in a template; unknown placeholders are left as-is."""
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace(f"<<{key}>>", value)
    return rendered
