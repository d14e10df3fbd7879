"""tests/test_prompt_assembler.py

Tests for payload assembly: determinism, history truncation and the
context blocks rendered into the system instruction.
"""

from __future__ import annotations

# Standard Library
from typing import List

# Third-Party Libraries
import pytest

# Local Modules
from motorchat.models import HistoryEntry, QuoteProgress, SubjectProduct, TurnContext
from motorchat.prompt_assembler import (
    PERSONA_PLACEHOLDERS,
    InventorySnapshot,
    StaticRules,
    assemble,
    financing_summary,
    progress_block,
    truncate_history,
)
from motorchat.prompt_loader import placeholders


def _pairs(count: int) -> List[HistoryEntry]:
    history: List[HistoryEntry] = []
    for index in range(count):
        history.append(HistoryEntry(role="user", content=f"question {index}"))
        history.append(HistoryEntry(role="assistant", content=f"answer {index}"))
    return history


@pytest.fixture
def assemble_args(knowledge, inventory, persona, today):
    """Keyword arguments for one ordinary turn."""
    motors = inventory.list_motors()
    return dict(
        static_rules=StaticRules(template=persona, knowledge=knowledge),
        live_inventory_summary=InventorySnapshot.from_motors(motors),
        active_promotions=inventory.active_promotions(today),
        subject_context=TurnContext(page="/quote/motor-selection"),
        augmentation=None,
        history=_pairs(2),
        message="What 30hp motors do you have?",
        season=knowledge.season_for_month(today.month),
    )


class TestTruncateHistory:
    """Test suite for truncate_history()."""

    def test_keeps_last_four_pairs(self) -> None:
        kept = truncate_history(_pairs(10), turns=4)
        assert len(kept) == 8
        assert kept[0].content == "question 6"
        assert kept[-1].content == "answer 9"

    def test_drops_unpaired_entries(self) -> None:
        history = [
            HistoryEntry(role="assistant", content="welcome"),
            HistoryEntry(role="user", content="first"),
            HistoryEntry(role="user", content="second"),
            HistoryEntry(role="assistant", content="reply"),
            HistoryEntry(role="user", content="pending"),
        ]
        kept = truncate_history(history)
        assert [entry.content for entry in kept] == ["second", "reply"]

    def test_zero_turns(self) -> None:
        assert truncate_history(_pairs(3), turns=0) == []


class TestAssemble:
    """Test suite for assemble()."""

    def test_deterministic(self, assemble_args) -> None:
        first = assemble(**assemble_args)
        second = assemble(**assemble_args)
        assert first.system_instruction == second.system_instruction
        assert first.contents == second.contents

    def test_contents_end_with_user_message(self, assemble_args) -> None:
        payload = assemble(**assemble_args)
        assert payload.user_message == "What 30hp motors do you have?"
        assert payload.contents[-1]["role"] == "user"
        assert [item["role"] for item in payload.contents[:4]] == ["user", "model", "user", "model"]

    def test_persona_fills_every_placeholder(self, persona: str, assemble_args) -> None:
        assert placeholders(persona) == set(PERSONA_PLACEHOLDERS)
        assert "<<" not in assemble(**assemble_args).system_instruction

    def test_history_is_truncated(self, assemble_args) -> None:
        assemble_args["history"] = _pairs(10)
        payload = assemble(**assemble_args)
        assert len(payload.contents) == 9

    def test_placeholders_rendered(self, assemble_args) -> None:
        payload = assemble(**assemble_args)
        assert "<<" not in payload.system_instruction
        assert "Harris Boat Works" in payload.system_instruction
        assert "## CURRENT SEASON: FALL" in payload.system_instruction
        assert "(905) 342-2153" in payload.system_instruction
        assert "$5,000" in payload.system_instruction

    def test_subject_and_progress_blocks(self, assemble_args) -> None:
        assemble_args["subject_context"] = TurnContext(
            subject=SubjectProduct(id="m-60-elpt", model="60 ELPT FourStroke", hp=60, price=12161),
            page="/quote/options",
            progress=QuoteProgress(step=3, total=6, selected_package="Better"),
        )
        payload = assemble(**assemble_args)
        assert "## MOTOR THEY'RE VIEWING" in payload.system_instruction
        assert "**60 ELPT FourStroke** - 60HP @ $12,161 CAD" in payload.system_instruction
        assert "Quote: Step 3/6 • Better" in payload.system_instruction

    def test_block_order(self, assemble_args) -> None:
        assemble_args["subject_context"] = TurnContext(augmentation_hints=("Shopper is on the repower page",))
        assemble_args["extra_blocks"] = ["## 30HP OPTIONS\n- 30 MH"]
        assemble_args["augmentation"] = "## LOCAL INFO\nRice Lake is shallow."
        instruction = assemble(**assemble_args).system_instruction

        extra = instruction.index("## 30HP OPTIONS")
        hints = instruction.index("## PAGE NOTES")
        augmentation = instruction.index("## LOCAL INFO")
        assert extra < hints < augmentation
        assert instruction.endswith("Rice Lake is shallow.")

    def test_topic_hint(self, assemble_args) -> None:
        assemble_args["topics"] = ["fishing"]
        payload = assemble(**assemble_args)
        assert "Tone: They're into fishing - be enthusiastic!" in payload.system_instruction


class TestBlocks:
    """Test suite for the small block renderers."""

    def test_financing_summary(self, knowledge) -> None:
        assert financing_summary(knowledge) == (
            "Financing through Dealerplan. 7.99% for $10,000+, 8.99% under $10,000. Terms: 36-60 months."
        )

    def test_progress_block_empty_without_progress(self) -> None:
        assert progress_block(TurnContext()) == ""

    def test_progress_block_trade_in(self) -> None:
        context = TurnContext(progress=QuoteProgress(step=5, total=6, trade_in_value=2500))
        assert progress_block(context) == "Quote: Step 5/6 • trade-in estimate $2,500"
