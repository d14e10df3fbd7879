"""Loader for the versioned business knowledge document.

The document holds the static facts the assistant may quote (contact details,
financing tiers, seasonal context, motor family blurbs, partner discounts,
catalogue links). It is loaded once at startup and handed to the prompt
assembler by reference so tests can swap it for a fixture.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class KnowledgeMeta:
    """Metadata describing the knowledge file version for logging."""
    file_name: str
    version: str
    updated_at: str
    sha256: str


@dataclass
class KnowledgeDocument:
    """Parsed knowledge document with lookup helpers."""
    version: str
    data: Dict[str, Any]

    @property
    def business_name(self) -> str:
        return str(self.data.get("business", {}).get("name", ""))

    @property
    def contact(self) -> Dict[str, Any]:
        return self.data.get("contact", {})

    @property
    def phone(self) -> str:
        return str(self.contact.get("phone", ""))

    @property
    def financing(self) -> Dict[str, Any]:
        return self.data.get("financing", {})

    def fallback_message(self) -> str:
        """Fixed apology shown when a completion fails."""
        template = str(self.data.get("fallback_message") or "Sorry, something went wrong. Please call us at {phone}.")
        return template.replace("{phone}", self.phone)

    def season_for_month(self, month: int) -> Tuple[str, str]:
        """Return (season_name, context_line) for a calendar month."""
        for name, season in self.data.get("seasons", {}).items():
            if month in season.get("months", []):
                return name, str(season.get("context", ""))
        return "", ""

    def financing_rate(self, price: float) -> Optional[float]:
        """Purpose: Pick the financing rate tier that applies to a price.
        Inputs/Outputs: Input is a price; output is the APR or None without tiers.
        Side Effects / State: None.
        Dependencies: Reads financing.tiers from the document.
        Failure Modes: Returns None when no tier matches.
        If Removed: Prompt financing lines would have to hard-code rates.
        Testing Notes: 12000 -> 7.99, 8000 -> 8.99 with the shipped document.
        """
        # Highest threshold the price clears wins.
        tiers = sorted(self.financing.get("tiers", []), key=lambda t: t.get("min_price", 0), reverse=True)
        for tier in tiers:
            if price >= float(tier.get("min_price", 0)):
                return float(tier["rate"])
        return None

    def family_info(self, family_or_model: str) -> str:
        """One-line motor family blurb for a family or model name, or ''."""
        key = re.sub(r"[^a-z]", "", (family_or_model or "").lower())
        for family_key, family in self.data.get("motor_families", {}).items():
            if family_key in key:
                return f"**{family['name']}**: {family['tagline']}. Best for: {family['best_for']}"
        return ""

    def catalogue_section(self, message: str) -> Optional[Tuple[str, str]]:
        """Map a parts/accessories question to a (url, label) catalogue link."""
        catalogue = self.data.get("catalogue", {})
        base = str(catalogue.get("base_url", ""))
        if not base:
            return None
        lowered = (message or "").lower()
        for section in catalogue.get("sections", []):
            if re.search(section["pattern"], lowered):
                return f"{base}/#page={section['page']}", str(section["label"])
        generic = catalogue.get("generic_pattern")
        if generic and re.search(generic, lowered):
            return base, "Marine Catalogue"
        return None

    def repower_props(self, limit: int = 3) -> List[Dict[str, str]]:
        return list(self.data.get("repower_value_props", []))[:limit]

    def partner(self, key: str) -> Dict[str, Any]:
        return self.data.get("partners", {}).get(key, {})


def load_knowledge(path: Path) -> Tuple[KnowledgeDocument, KnowledgeMeta]:
    """Purpose: Load and validate the knowledge document from disk.
    Inputs/Outputs: Input is a Path; returns the KnowledgeDocument and KnowledgeMeta.
    Side Effects / State: Reads file contents and computes hash/mtime.
    Dependencies: Uses json and hashlib.
    Failure Modes: JSON decode errors propagate; a document without a version
        raises ValueError.
    If Removed: The prompt assembler has no business facts to ground answers.
    Testing Notes: Load the shipped document and check version and contact phone.
    """
    # Read bytes for hashing and parse the JSON body.
    raw_bytes = path.read_bytes()
    sha256 = hashlib.sha256(raw_bytes).hexdigest()
    updated_at = datetime.fromtimestamp(path.stat().st_mtime).isoformat()
    data = json.loads(raw_bytes.decode("utf-8-sig"))
    if not isinstance(data, dict) or not data.get("version"):
        raise ValueError(f"Knowledge document {path.name} is missing a version")
    version = str(data["version"])
    meta = KnowledgeMeta(file_name=path.name, version=version, updated_at=updated_at, sha256=sha256)
    return KnowledgeDocument(version=version, data=data), meta
