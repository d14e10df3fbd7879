from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, knowledge sources, and runtime limits."""
    gemini_api_key: str
    gemini_model: str
    perplexity_api_key: str
    perplexity_model: str
    perplexity_url: str
    augment_timeout_sec: float
    history_turns: int
    financing_min_price: float
    max_output_tokens: int
    temperature: float
    knowledge_path: Path
    inventory_path: Path
    prompts_dir: Path
    data_dir: Path
    lead_webhook_url: Optional[str]
    sms_webhook_url: Optional[str]
    alert_webhook_url: Optional[str]
    dispatch_timeout_sec: float


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values (HISTORY_TURNS, AUGMENT_TIMEOUT_SEC,
        FINANCING_MIN_PRICE, ...) raise ValueError.
    If Removed: App cannot configure models/knowledge and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve knowledge, inventory and data paths, then build Settings.
    knowledge_path = os.getenv("KNOWLEDGE_PATH")
    inventory_path = os.getenv("INVENTORY_PATH")
    data_dir = os.getenv("DATA_DIR")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        perplexity_api_key=os.getenv("PERPLEXITY_API_KEY", ""),
        perplexity_model=os.getenv("PERPLEXITY_MODEL", "sonar"),
        perplexity_url=os.getenv("PERPLEXITY_URL", "https://api.perplexity.ai/chat/completions"),
        augment_timeout_sec=float(os.getenv("AUGMENT_TIMEOUT_SEC", "6")),
        history_turns=int(os.getenv("HISTORY_TURNS", "4")),
        financing_min_price=float(os.getenv("FINANCING_MIN_PRICE", "5000")),
        max_output_tokens=int(os.getenv("MAX_OUTPUT_TOKENS", "600")),
        temperature=float(os.getenv("TEMPERATURE", "0.7")),
        knowledge_path=Path(knowledge_path) if knowledge_path else (BASE_DIR / "resources" / "knowledge.json"),
        inventory_path=Path(inventory_path) if inventory_path else (BASE_DIR / "resources" / "inventory.json"),
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        data_dir=Path(data_dir) if data_dir else (BASE_DIR / "data").resolve(),
        lead_webhook_url=os.getenv("LEAD_WEBHOOK_URL") or None,
        sms_webhook_url=os.getenv("SMS_WEBHOOK_URL") or None,
        alert_webhook_url=os.getenv("ALERT_WEBHOOK_URL") or None,
        dispatch_timeout_sec=float(os.getenv("DISPATCH_TIMEOUT_SEC", "10")),
    )
