"""tests/test_knowledge.py

Tests for the knowledge document, prompt loading, settings and the small
text helpers.
"""

from __future__ import annotations

# Standard Library
import json
from pathlib import Path

# Third-Party Libraries
import pytest

# Local Modules
from motorchat.config import load_settings
from motorchat.knowledge_loader import load_knowledge
from motorchat.prompt_loader import load_prompt, render_prompt
from motorchat.utils import format_hp, format_money, mask_contact_value, normalize_text


class TestKnowledgeDocument:
    """Test suite for KnowledgeDocument lookups."""

    def test_shipped_document(self, settings) -> None:
        document, meta = load_knowledge(settings.knowledge_path)
        assert meta.version == document.version == "2026.10.1"
        assert len(meta.sha256) == 64
        assert document.business_name == "Harris Boat Works"
        assert document.phone == "(905) 342-2153"

    def test_fallback_message_has_phone(self, knowledge) -> None:
        message = knowledge.fallback_message()
        assert "(905) 342-2153" in message
        assert "{phone}" not in message

    @pytest.mark.parametrize("month, season", [(1, "winter"), (4, "spring"), (7, "summer"), (10, "fall")])
    def test_season_for_month(self, knowledge, month: int, season: str) -> None:
        assert knowledge.season_for_month(month)[0] == season

    @pytest.mark.parametrize("price, rate", [(12000, 7.99), (10000, 7.99), (8000, 8.99)])
    def test_financing_rate(self, knowledge, price: float, rate: float) -> None:
        assert knowledge.financing_rate(price) == rate

    def test_family_info(self, knowledge) -> None:
        assert knowledge.family_info("300 XL Verado").startswith("**Verado**")
        assert knowledge.family_info("Pro XS").startswith("**Pro XS**")
        assert knowledge.family_info("") == ""

    def test_catalogue_section(self, knowledge) -> None:
        url, label = knowledge.catalogue_section("Do you sell propellers?")
        assert label == "Propellers & Trim Tabs"
        assert url == "https://www.marinecatalogue.ca/#page=1039"
        assert knowledge.catalogue_section("Any accessories for pontoons?") == (
            "https://www.marinecatalogue.ca",
            "Marine Catalogue",
        )
        assert knowledge.catalogue_section("hello") is None

    def test_partner(self, knowledge) -> None:
        assert knowledge.partner("boat_license")["discount_code"] == "HARRIS15"
        assert knowledge.partner("missing") == {}

    def test_missing_version_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "knowledge.json"
        path.write_text(json.dumps({"business": {}}), encoding="utf-8")
        with pytest.raises(ValueError):
            load_knowledge(path)


class TestPromptLoader:
    """Test suite for prompt loading and rendering."""

    def test_strips_bom(self, tmp_path: Path) -> None:
        path = tmp_path / "persona.txt"
        path.write_bytes("\ufeffHello <<NAME>>".encode("utf-8"))
        assert load_prompt(path) == "Hello <<NAME>>"

    def test_render_leaves_unknown_placeholders(self) -> None:
        assert render_prompt("<<A>> and <<B>>", {"A": "one"}) == "one and <<B>>"


class TestSettings:
    """Test suite for load_settings()."""

    def test_defaults(self, monkeypatch) -> None:
        for name in ("GEMINI_MODEL", "HISTORY_TURNS", "FINANCING_MIN_PRICE", "LEAD_WEBHOOK_URL", "DATA_DIR"):
            monkeypatch.delenv(name, raising=False)
        settings = load_settings()
        assert settings.gemini_model == "gemini-2.5-flash"
        assert settings.history_turns == 4
        assert settings.financing_min_price == 5000
        assert settings.lead_webhook_url is None
        assert settings.knowledge_path.name == "knowledge.json"

    def test_overrides(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("HISTORY_TURNS", "6")
        monkeypatch.setenv("LEAD_WEBHOOK_URL", "https://hooks.test/lead")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        settings = load_settings()
        assert settings.history_turns == 6
        assert settings.lead_webhook_url == "https://hooks.test/lead"
        assert settings.data_dir == tmp_path

    def test_invalid_number_raises(self, monkeypatch) -> None:
        monkeypatch.setenv("HISTORY_TURNS", "four")
        with pytest.raises(ValueError):
            load_settings()


class TestUtils:
    """Test suite for text helpers."""

    def test_normalize_text(self) -> None:
        assert normalize_text("  What’s   the PRICE of Évinrude ") == "what's the price of evinrude"
        assert normalize_text("") == ""

    def test_mask_contact_value(self) -> None:
        assert mask_contact_value("905-555-1234") == "***234"
        assert mask_contact_value("12") == "***"
        assert mask_contact_value(None) == ""

    def test_formatting(self) -> None:
        assert format_money(12161) == "$12,161"
        assert format_money(99.5) == "$99.50"
        assert format_money(None) == "TBD"
        assert format_hp(9.9) == "9.9"
        assert format_hp(30.0) == "30"
